"""Code-signing certificate provisioning.

Trust installation is best effort: export/import/cleanup failures are logged
and recorded on the result, never raised. The caller always gets a certificate
it can sign with and decides what an untrusted certificate means.
"""
from __future__ import annotations

import datetime
import os
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..errors import CertificateStoreError
from ..utils.logging import get_logger
from .model import (
    DEFAULT_SUBJECT,
    DEFAULT_VALIDITY_YEARS,
    ProvisionResult,
    SigningCertificate,
    utcnow,
    generate_certificate,
)
from .stores import PersonalStore, TrustStore, trust_status

log = get_logger()


def staging_path(cert: SigningCertificate, staging_dir: str) -> str:
    return os.path.join(staging_dir, f"{cert.thumbprint}.cer")


def export_certificate(cert: SigningCertificate, path: str) -> None:
    """Write the public certificate (DER) to ``path``."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(cert.cert_der())


@dataclass
class CertificateProvisioner:
    personal_store: PersonalStore
    trust_stores: List[TrustStore]
    staging_dir: str
    subject: str = DEFAULT_SUBJECT
    validity_years: int = DEFAULT_VALIDITY_YEARS
    clock: Callable[[], datetime.datetime] = utcnow

    def obtain(self) -> tuple[SigningCertificate, bool, List[str]]:
        """Reuse a valid certificate for the subject or create one.

        Returns (certificate, created, errors).
        """
        now = self.clock()
        errors: List[str] = []
        existing: Optional[SigningCertificate] = None
        try:
            existing = self.personal_store.find_valid(self.subject, now)
        except CertificateStoreError as e:
            log.warning("personal store lookup failed: %s", e)
            errors.append(f"personal store lookup: {e}")
        if existing is not None:
            log.info("reusing code-signing certificate %s (expires %s)", existing.thumbprint, existing.not_after.isoformat())
            return existing, False, errors
        cert = generate_certificate(self.subject, self.validity_years, now=now)
        log.info("created code-signing certificate %s for %s", cert.thumbprint, cert.subject)
        try:
            self.personal_store.save(cert)
        except CertificateStoreError as e:
            log.error("could not save certificate %s: %s", cert.thumbprint, e)
            errors.append(f"personal store save: {e}")
        return cert, True, errors

    def install_trust(self, cert: SigningCertificate) -> tuple[dict, List[str]]:
        errors: List[str] = []
        installed = trust_status(self.trust_stores, cert.thumbprint)
        pending = [s for s in self.trust_stores if not installed.get(s.name)]
        if not pending:
            log.info("certificate %s already trusted by %s", cert.thumbprint, ", ".join(installed))
            return installed, errors
        path = staging_path(cert, self.staging_dir)
        try:
            export_certificate(cert, path)
            for store in pending:
                try:
                    store.import_file(path)
                    installed[store.name] = True
                except CertificateStoreError as e:
                    log.error("import into %s failed: %s", store.name, e)
                    errors.append(f"import into {store.name}: {e}")
        except OSError as e:
            log.error("export of %s failed: %s", cert.thumbprint, e)
            errors.append(f"export: {e}")
        finally:
            try:
                os.remove(path)
            except (FileNotFoundError, NotADirectoryError):
                pass
            except OSError as e:
                log.error("could not remove %s: %s", path, e)
                errors.append(f"cleanup of {path}: {e}")
        return installed, errors

    def provision(self) -> ProvisionResult:
        cert, created, errors = self.obtain()
        installed, trust_errors = self.install_trust(cert)
        result = ProvisionResult(
            certificate=cert,
            created=created,
            installed=installed,
            errors=errors + trust_errors,
        )
        if not result.trusted:
            log.warning("certificate %s is not trusted by every store: %s", cert.thumbprint, installed)
        return result
