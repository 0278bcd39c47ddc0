import datetime
import os

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from scriptsign.cert import provision
from scriptsign.cert.model import add_years, generate_certificate
from scriptsign.cert.provision import CertificateProvisioner
from scriptsign.cert.stores import (
    DirectoryPersonalStore,
    DirectoryTrustStore,
    MemoryPersonalStore,
    MemoryTrustStore,
)
from scriptsign.errors import CertificateStoreError

SUBJECT = "CN=Test Script Signing"
NOW = datetime.datetime(2026, 3, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


def _provisioner(tmp_path, trust_stores=None, personal=None, **kw):
    return CertificateProvisioner(
        personal_store=personal if personal is not None else MemoryPersonalStore(),
        trust_stores=trust_stores if trust_stores is not None else [MemoryTrustStore("Root"), MemoryTrustStore("TrustedPublisher")],
        staging_dir=str(tmp_path / "staging"),
        subject=SUBJECT,
        clock=lambda: NOW,
        **kw,
    )


def test_generated_certificate_shape():
    cert = generate_certificate(SUBJECT, 5, now=NOW)
    assert cert.subject == SUBJECT
    assert cert.not_before == NOW
    assert cert.not_after == NOW.replace(year=2031)
    assert len(cert.thumbprint) == 40 and cert.thumbprint == cert.thumbprint.upper()
    eku = cert.certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.CODE_SIGNING in eku
    assert cert.is_valid(NOW + datetime.timedelta(days=1))
    assert not cert.is_valid(NOW.replace(year=2032))


def test_add_years_leap_day():
    leap = datetime.datetime(2028, 2, 29, tzinfo=datetime.timezone.utc)
    assert add_years(leap, 5) == datetime.datetime(2033, 2, 28, tzinfo=datetime.timezone.utc)


def test_installs_into_both_stores_and_cleans_staging(tmp_path):
    prov = _provisioner(tmp_path)
    res = prov.provision()
    assert res.created
    assert res.trusted
    assert res.installed == {"Root": True, "TrustedPublisher": True}
    for store in prov.trust_stores:
        assert store.contains(res.certificate.thumbprint)
    assert os.path.isdir(tmp_path / "staging")
    assert os.listdir(tmp_path / "staging") == []


def test_import_failure_still_returns_certificate(tmp_path):
    stores = [MemoryTrustStore("Root", fail=True), MemoryTrustStore("TrustedPublisher")]
    res = _provisioner(tmp_path, trust_stores=stores).provision()
    assert res.certificate is not None
    assert res.certificate.private_key is not None
    assert not res.trusted
    assert res.installed == {"Root": False, "TrustedPublisher": True}
    assert any("Root" in e for e in res.errors)
    assert os.listdir(tmp_path / "staging") == []


def test_all_imports_failing_leaves_no_staging_file(tmp_path):
    stores = [MemoryTrustStore("Root", fail=True), MemoryTrustStore("TrustedPublisher", fail=True)]
    res = _provisioner(tmp_path, trust_stores=stores).provision()
    assert res.installed == {"Root": False, "TrustedPublisher": False}
    assert len(res.errors) == 2
    assert os.listdir(tmp_path / "staging") == []


def test_export_failure_is_recorded(tmp_path):
    # staging path is a file, so the directory cannot be created
    blocker = tmp_path / "staging"
    blocker.write_text("not a directory")
    res = _provisioner(tmp_path).provision()
    assert res.certificate is not None
    assert not res.trusted
    assert any(e.startswith("export") for e in res.errors)


def test_partial_export_is_removed(tmp_path, monkeypatch):
    def _half_written(cert, path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(cert.cert_der()[:10])
        raise OSError("no space left on device")

    monkeypatch.setattr(provision, "export_certificate", _half_written)
    res = _provisioner(tmp_path).provision()
    assert not res.trusted
    assert any("no space left" in e for e in res.errors)
    assert os.listdir(tmp_path / "staging") == []


class _BrokenPersonalStore(MemoryPersonalStore):
    def save(self, cert):
        raise CertificateStoreError("disk full")


def test_personal_store_failure_is_recorded(tmp_path):
    res = _provisioner(tmp_path, personal=_BrokenPersonalStore()).provision()
    assert res.created
    assert res.trusted
    assert any("disk full" in e for e in res.errors)


def test_second_run_reuses_certificate_and_skips_import(tmp_path):
    personal = DirectoryPersonalStore(str(tmp_path / "my"))
    trust = [DirectoryTrustStore("Root", str(tmp_path / "trust")), DirectoryTrustStore("TrustedPublisher", str(tmp_path / "trust"))]
    first = _provisioner(tmp_path, trust_stores=trust, personal=personal).provision()

    class _NoImport(DirectoryTrustStore):
        def import_file(self, path):
            raise AssertionError("already trusted; must not re-import")

    trust2 = [_NoImport("Root", str(tmp_path / "trust")), _NoImport("TrustedPublisher", str(tmp_path / "trust"))]
    second = _provisioner(tmp_path, trust_stores=trust2, personal=personal).provision()
    assert not second.created
    assert second.certificate.thumbprint == first.certificate.thumbprint
    assert second.trusted
    assert second.errors == []


def test_expired_certificate_is_replaced(tmp_path):
    personal = MemoryPersonalStore()
    old = generate_certificate(SUBJECT, 1, now=NOW.replace(year=2020))
    personal.save(old)
    res = _provisioner(tmp_path, personal=personal).provision()
    assert res.created
    assert res.certificate.thumbprint != old.thumbprint


def test_other_subject_is_not_reused(tmp_path):
    personal = MemoryPersonalStore()
    personal.save(generate_certificate("CN=Someone Else", 5, now=NOW))
    res = _provisioner(tmp_path, personal=personal).provision()
    assert res.created
    assert res.certificate.subject == SUBJECT


def test_directory_personal_store_roundtrip(tmp_path):
    store = DirectoryPersonalStore(str(tmp_path / "my"))
    cert = generate_certificate(SUBJECT, 5, now=NOW)
    store.save(cert)
    loaded = store.load(cert.thumbprint)
    assert loaded.thumbprint == cert.thumbprint
    assert store.find_valid(SUBJECT, NOW).thumbprint == cert.thumbprint
    assert store.find_valid("CN=Nobody", NOW) is None
    with pytest.raises(CertificateStoreError):
        store.load("00" * 20)
