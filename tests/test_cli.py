import io
import json
import sys

import pytest

from scriptsign import cli
from scriptsign.cli import main


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for k in ("SCRIPTSIGN_TARGET_POLICY", "SCRIPTSIGN_ASSUME_YES", "SCRIPTSIGN_CONFIG"):
        monkeypatch.delenv(k, raising=False)
    script = tmp_path / "job.ps1"
    script.write_text("Write-Output 'job'\n")
    return tmp_path


def test_status_memory_backend(workdir, capsys):
    assert main(["--backend", "memory", "status"]) == 0
    out = capsys.readouterr().out
    assert "Process: Undefined" in out
    assert "LocalMachine: Undefined" in out


def test_run_then_verify_with_file_backend(workdir, capsys):
    rc = main(["--backend", "file", "run", "--yes", "--target", "AllSigned", "--file", "job.ps1"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "LocalMachine: AllSigned" in out
    assert "Signed job.ps1" in out
    policies = json.loads((workdir / "var" / "scriptsign" / "policies.json").read_text())
    assert policies == {"Process": "AllSigned", "CurrentUser": "AllSigned", "LocalMachine": "AllSigned"}

    assert main(["--backend", "file", "verify", "job.ps1", "--json"]) == 0
    res = json.loads(capsys.readouterr().out)
    assert res["status"] == "Valid"


def test_run_declined_at_prompt(workdir, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("yes\n"))
    assert main(["--backend", "file", "run", "--file", "job.ps1"]) == 2
    assert "Aborted" in capsys.readouterr().out
    assert not (workdir / "var" / "scriptsign" / "policies.json").exists()


def test_sign_missing_file(workdir):
    assert main(["--backend", "memory", "sign", "absent.ps1"]) == 3


def test_sign_then_resign_reuses_certificate(workdir, capsys):
    assert main(["--backend", "file", "sign", "job.ps1"]) == 0
    first = capsys.readouterr().out
    assert "created" in first
    assert main(["--backend", "file", "sign", "job.ps1"]) == 0
    second = capsys.readouterr().out
    assert "reused" in second
    assert (workdir / "job.ps1").read_bytes().count(b"# SIG # Begin signature block") == 1


def test_verify_unsigned(workdir, capsys):
    assert main(["--backend", "memory", "verify", "job.ps1", "--no-trust"]) == 1
    assert "NotSigned" in capsys.readouterr().out


def test_verify_missing_file_reports_error(workdir, capsys):
    assert main(["--backend", "memory", "verify", "absent.ps1"]) == 1
    assert "error:" in capsys.readouterr().err


def test_status_with_malformed_policy_file(workdir, capsys):
    data = workdir / "var" / "scriptsign"
    data.mkdir(parents=True)
    (data / "policies.json").write_text("[]")
    assert main(["--backend", "file", "status"]) == 1
    assert "error:" in capsys.readouterr().err


def test_sign_picks_signer_from_backend(workdir, monkeypatch):
    kinds = []
    real = cli.open_signer

    def _recording(kind, staging_dir):
        kinds.append(kind)
        return real(kind, staging_dir)

    monkeypatch.setattr(cli, "open_signer", _recording)
    assert main(["--backend", "memory", "sign", "job.ps1"]) == 0
    assert kinds == ["trailer"]
