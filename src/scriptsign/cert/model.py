"""Self-signed code-signing certificate generation and the provisioning result."""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Dict, List

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

DEFAULT_SUBJECT = "CN=Local Script Signing"
DEFAULT_VALIDITY_YEARS = 5
KEY_SIZE = 2048


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def add_years(when: datetime.datetime, years: int) -> datetime.datetime:
    try:
        return when.replace(year=when.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return when.replace(year=when.year + years, day=28)


def parse_subject(subject: str) -> x509.Name:
    return x509.Name.from_rfc4514_string(subject)


@dataclass(frozen=True)
class SigningCertificate:
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey

    @property
    def thumbprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA1()).hex().upper()

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def not_before(self) -> datetime.datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    def is_valid(self, now: datetime.datetime | None = None) -> bool:
        now = now or utcnow()
        return self.not_before <= now <= self.not_after

    def matches(self, subject: str) -> bool:
        return self.certificate.subject == parse_subject(subject)

    def cert_der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    def cert_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )


def generate_certificate(
    subject: str = DEFAULT_SUBJECT,
    validity_years: int = DEFAULT_VALIDITY_YEARS,
    now: datetime.datetime | None = None,
) -> SigningCertificate:
    # X.509 times carry whole seconds
    created = (now or utcnow()).replace(microsecond=0)
    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    name = parse_subject(subject)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(created)
        .not_valid_after(add_years(created, validity_years))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return SigningCertificate(certificate=cert, private_key=key)


@dataclass
class ProvisionResult:
    """Outcome of provisioning.

    ``certificate`` is always usable for signing. ``installed`` maps each trust
    store name to whether it holds the certificate afterwards.
    """

    certificate: SigningCertificate
    created: bool
    installed: Dict[str, bool] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def trusted(self) -> bool:
        return bool(self.installed) and all(self.installed.values())
