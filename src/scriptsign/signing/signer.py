from __future__ import annotations

import base64
import datetime
import hashlib
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, runtime_checkable

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from pydantic import BaseModel

from ..cert.model import SigningCertificate
from ..cert.stores import TrustStore, trust_status
from ..errors import SigningError
from ..utils.logging import get_logger
from ..utils.powershell import PowerShell, PowerShellFailed, ps_quote
from .trailer import (
    SignatureEnvelope,
    decode_trailer,
    encode_trailer,
    newline_of,
    prepare_body,
    split_trailer,
)

log = get_logger()

# Get-AuthenticodeSignature status names
NOT_SIGNED = "NotSigned"
VALID = "Valid"
HASH_MISMATCH = "HashMismatch"
NOT_TRUSTED = "NotTrusted"
INVALID = "Invalid"


class VerifyResult(BaseModel):
    path: str
    status: str
    thumbprint: Optional[str] = None
    subject: Optional[str] = None
    message: str = ""

    @property
    def valid(self) -> bool:
        return self.status == VALID


@runtime_checkable
class Signer(Protocol):
    def sign(self, path: str, cert: SigningCertificate) -> None: ...


def _read(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise SigningError(f"cannot read {path}: {e}") from e


@dataclass
class TrailerSigner:
    """Signs with the certificate's RSA key and writes a ``# SIG #`` trailer."""

    def sign(self, path: str, cert: SigningCertificate) -> None:
        body = prepare_body(_read(path))
        envelope = SignatureEnvelope(
            thumbprint=cert.thumbprint,
            subject=cert.subject,
            signed_at=datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z"),
            digest_sha256_b64=base64.b64encode(hashlib.sha256(body).digest()).decode(),
            cert_der_b64=base64.b64encode(cert.cert_der()).decode(),
        )
        sig = cert.private_key.sign(envelope.signing_input(), padding.PKCS1v15(), hashes.SHA256())
        envelope.sig_b64 = base64.b64encode(sig).decode()
        data = body + encode_trailer(envelope, newline_of(body))
        # write beside the target then swap so a failure never leaves half a file
        tmp = f"{path}.scriptsign.tmp"
        try:
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as e:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise SigningError(f"cannot write {path}: {e}") from e
        log.info("signed %s with %s", path, cert.thumbprint)


def verify_script(path: str, trust_stores: Optional[List[TrustStore]] = None,
                  now: datetime.datetime | None = None) -> VerifyResult:
    data = _read(path)
    body, trailer = split_trailer(data)
    if trailer is None:
        return VerifyResult(path=path, status=NOT_SIGNED, message="file carries no signature block")
    try:
        env = decode_trailer(trailer)
        cert = x509.load_der_x509_certificate(base64.b64decode(env.cert_der_b64))
    except ValueError as e:
        return VerifyResult(path=path, status=INVALID, message=str(e))
    thumb = cert.fingerprint(hashes.SHA1()).hex().upper()
    res = dict(path=path, thumbprint=thumb, subject=cert.subject.rfc4514_string())
    if thumb != env.thumbprint.upper():
        return VerifyResult(status=INVALID, message="embedded certificate does not match thumbprint", **res)
    digest = base64.b64encode(hashlib.sha256(body).digest()).decode()
    if digest != env.digest_sha256_b64:
        return VerifyResult(status=HASH_MISMATCH, message="content changed after signing", **res)
    pub = cert.public_key()
    if not isinstance(pub, rsa.RSAPublicKey) or not env.sig_b64:
        return VerifyResult(status=INVALID, message="unsupported or missing signature", **res)
    try:
        pub.verify(base64.b64decode(env.sig_b64), env.signing_input(), padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, ValueError):
        return VerifyResult(status=INVALID, message="signature does not verify", **res)
    now = now or datetime.datetime.now(datetime.timezone.utc)
    if not (cert.not_valid_before_utc <= now <= cert.not_valid_after_utc):
        return VerifyResult(status=NOT_TRUSTED, message="signing certificate is outside its validity window", **res)
    if trust_stores:
        missing = [name for name, ok in trust_status(trust_stores, thumb).items() if not ok]
        if missing:
            return VerifyResult(status=NOT_TRUSTED, message=f"signer not present in {', '.join(missing)}", **res)
    return VerifyResult(status=VALID, message="signature verified", **res)


@dataclass
class AuthenticodeSigner:
    """Windows Authenticode via Set-AuthenticodeSignature.

    The certificate and key are imported into the current user's personal store
    first (through a password-protected PFX that is removed right after).
    """

    staging_dir: str
    shell: PowerShell = field(default_factory=PowerShell)
    location: str = "Cert:\\CurrentUser\\My"

    def _entry(self, cert: SigningCertificate) -> str:
        return self.location + "\\" + cert.thumbprint

    def _ensure_imported(self, cert: SigningCertificate) -> None:
        if self.shell.run(f"Test-Path {ps_quote(self._entry(cert))}").lower() == "true":
            return
        password = secrets.token_urlsafe(24)
        pfx = pkcs12.serialize_key_and_certificates(
            name=cert.subject.encode(),
            key=cert.private_key,
            cert=cert.certificate,
            cas=None,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
        )
        os.makedirs(self.staging_dir, exist_ok=True)
        path = os.path.join(self.staging_dir, f"{cert.thumbprint}.pfx")
        try:
            with open(path, "wb") as f:
                f.write(pfx)
            self.shell.run(
                f"Import-PfxCertificate -FilePath {ps_quote(os.path.abspath(path))} "
                f"-CertStoreLocation {ps_quote(self.location)} "
                f"-Password (ConvertTo-SecureString -String {ps_quote(password)} -AsPlainText -Force) | Out-Null"
            )
        finally:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

    def sign(self, path: str, cert: SigningCertificate) -> None:
        try:
            self._ensure_imported(cert)
            status = self.shell.run(
                f"(Set-AuthenticodeSignature -FilePath {ps_quote(os.path.abspath(path))} "
                f"-Certificate (Get-Item {ps_quote(self._entry(cert))})).Status"
            )
        except (PowerShellFailed, OSError) as e:
            raise SigningError(f"Set-AuthenticodeSignature {path}: {e}") from e
        if status != VALID:
            raise SigningError(f"Set-AuthenticodeSignature {path}: status {status or '<empty>'}")
        log.info("authenticode-signed %s with %s", path, cert.thumbprint)


def default_signer(backend: str) -> str:
    """Authenticode where PowerShell enforces the policy, the trailer elsewhere."""
    return "authenticode" if backend == "powershell" else "trailer"


def open_signer(kind: str, staging_dir: str) -> Signer:
    if kind == "trailer":
        return TrailerSigner()
    if kind == "authenticode":
        return AuthenticodeSigner(staging_dir=staging_dir)
    raise ValueError(f"unknown signer: {kind}")
