"""Certificate stores.

Two roles:
 - personal store: keeps the generated certificate with its private key so later
   runs reuse it (``find_valid``)
 - trust stores (Root, TrustedPublisher): receive the public certificate from an
   exported file (``import_file``)
"""
from __future__ import annotations

import datetime
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, runtime_checkable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..config import PERSONAL_STORE_DIR, TRUST_STORE_DIR
from ..errors import CertificateStoreError
from ..utils.logging import get_logger
from ..utils.powershell import PowerShell, PowerShellFailed, ps_quote
from .model import SigningCertificate

log = get_logger()

ROOT = "Root"
TRUSTED_PUBLISHER = "TrustedPublisher"
TRUST_STORE_NAMES = (ROOT, TRUSTED_PUBLISHER)


def _thumbprint_of_file(path: str) -> str:
    with open(path, "rb") as f:
        data = f.read()
    try:
        cert = x509.load_der_x509_certificate(data)
    except ValueError:
        cert = x509.load_pem_x509_certificate(data)
    return cert.fingerprint(hashes.SHA1()).hex().upper()


@runtime_checkable
class TrustStore(Protocol):
    name: str

    def import_file(self, path: str) -> None: ...
    def contains(self, thumbprint: str) -> bool: ...


@runtime_checkable
class PersonalStore(Protocol):
    def save(self, cert: SigningCertificate) -> None: ...
    def find_valid(self, subject: str, now: datetime.datetime | None = None) -> Optional[SigningCertificate]: ...


@dataclass
class MemoryTrustStore:
    name: str
    thumbprints: set = field(default_factory=set)
    fail: bool = False

    def import_file(self, path: str) -> None:
        if self.fail:
            raise CertificateStoreError(f"{self.name}: import refused")
        try:
            self.thumbprints.add(_thumbprint_of_file(path))
        except (OSError, ValueError) as e:
            raise CertificateStoreError(f"{self.name}: cannot read {path}: {e}") from e

    def contains(self, thumbprint: str) -> bool:
        return thumbprint.upper() in self.thumbprints


@dataclass
class DirectoryTrustStore:
    """Trust store kept as ``<root>/<name>/<THUMBPRINT>.cer`` (DER)."""

    name: str
    root: str = TRUST_STORE_DIR

    @property
    def path(self) -> str:
        return os.path.join(self.root, self.name)

    def import_file(self, path: str) -> None:
        try:
            thumb = _thumbprint_of_file(path)
            with open(path, "rb") as f:
                data = f.read()
            os.makedirs(self.path, exist_ok=True)
            with open(os.path.join(self.path, f"{thumb}.cer"), "wb") as f:
                f.write(data)
        except (OSError, ValueError) as e:
            raise CertificateStoreError(f"{self.name}: import of {path} failed: {e}") from e
        log.info("imported %s into %s", thumb, self.path)

    def contains(self, thumbprint: str) -> bool:
        return os.path.exists(os.path.join(self.path, f"{thumbprint.upper()}.cer"))


@dataclass
class PowerShellTrustStore:
    """Machine certificate store, e.g. ``Cert:\\LocalMachine\\Root``."""

    name: str
    scope: str = "LocalMachine"
    shell: PowerShell = field(default_factory=PowerShell)

    @property
    def location(self) -> str:
        return f"Cert:\\{self.scope}\\{self.name}"

    def import_file(self, path: str) -> None:
        try:
            self.shell.run(
                f"Import-Certificate -FilePath {ps_quote(os.path.abspath(path))} "
                f"-CertStoreLocation {ps_quote(self.location)} | Out-Null"
            )
        except PowerShellFailed as e:
            raise CertificateStoreError(f"{self.location}: {e}") from e
        log.info("imported %s into %s", path, self.location)

    def contains(self, thumbprint: str) -> bool:
        entry = self.location + "\\" + thumbprint.upper()
        try:
            out = self.shell.run(f"Test-Path {ps_quote(entry)}")
        except PowerShellFailed as e:
            raise CertificateStoreError(f"{self.location}: {e}") from e
        return out.lower() == "true"


@dataclass
class MemoryPersonalStore:
    certificates: List[SigningCertificate] = field(default_factory=list)

    def save(self, cert: SigningCertificate) -> None:
        self.certificates.append(cert)

    def find_valid(self, subject: str, now: datetime.datetime | None = None) -> Optional[SigningCertificate]:
        for cert in reversed(self.certificates):
            if cert.matches(subject) and cert.is_valid(now):
                return cert
        return None


@dataclass
class DirectoryPersonalStore:
    """Keeps ``<THUMBPRINT>.crt.pem`` and ``<THUMBPRINT>.key.pem`` pairs."""

    root: str = PERSONAL_STORE_DIR

    def _paths(self, thumbprint: str):
        base = os.path.join(self.root, thumbprint)
        return base + ".crt.pem", base + ".key.pem"

    def save(self, cert: SigningCertificate) -> None:
        crt_path, key_path = self._paths(cert.thumbprint)
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(crt_path, "wb") as f:
                f.write(cert.cert_pem())
            # private key readable by the owner only
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(cert.key_pem())
        except OSError as e:
            raise CertificateStoreError(f"cannot save {cert.thumbprint} to {self.root}: {e}") from e

    def load(self, thumbprint: str) -> SigningCertificate:
        crt_path, key_path = self._paths(thumbprint.upper())
        try:
            with open(crt_path, "rb") as f:
                cert = x509.load_pem_x509_certificate(f.read())
            with open(key_path, "rb") as f:
                key = serialization.load_pem_private_key(f.read(), password=None)
        except (OSError, ValueError) as e:
            raise CertificateStoreError(f"cannot load {thumbprint} from {self.root}: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise CertificateStoreError(f"{thumbprint}: expected an RSA private key")
        return SigningCertificate(certificate=cert, private_key=key)

    def list_thumbprints(self) -> List[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(n[: -len(".crt.pem")] for n in os.listdir(self.root) if n.endswith(".crt.pem"))

    def find_valid(self, subject: str, now: datetime.datetime | None = None) -> Optional[SigningCertificate]:
        best: Optional[SigningCertificate] = None
        for thumb in self.list_thumbprints():
            try:
                cert = self.load(thumb)
            except CertificateStoreError as e:
                log.warning("skipping personal store entry: %s", e)
                continue
            if not (cert.matches(subject) and cert.is_valid(now)):
                continue
            # prefer the one that expires last
            if best is None or cert.not_after > best.not_after:
                best = cert
        return best


def open_trust_stores(backend: str) -> List[TrustStore]:
    if backend == "powershell":
        return [PowerShellTrustStore(name) for name in TRUST_STORE_NAMES]
    if backend == "file":
        return [DirectoryTrustStore(name) for name in TRUST_STORE_NAMES]
    if backend == "memory":
        return [MemoryTrustStore(name) for name in TRUST_STORE_NAMES]
    raise ValueError(f"unknown backend: {backend}")


def open_personal_store(backend: str) -> PersonalStore:
    if backend == "memory":
        return MemoryPersonalStore()
    return DirectoryPersonalStore()


def trust_status(stores: List[TrustStore], thumbprint: str) -> Dict[str, bool]:
    status: Dict[str, bool] = {}
    for store in stores:
        try:
            status[store.name] = store.contains(thumbprint)
        except CertificateStoreError as e:
            log.warning("cannot query %s: %s", store.name, e)
            status[store.name] = False
    return status
