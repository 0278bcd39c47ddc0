import pytest

from scriptsign.policy.model import ExecutionPolicy
from scriptsign.workflow.config import WorkflowConfig, load_config, parse_target

ENV_KEYS = [
    "SCRIPTSIGN_TARGET_POLICY",
    "SCRIPTSIGN_CERT_SUBJECT",
    "SCRIPTSIGN_CERT_YEARS",
    "SCRIPTSIGN_SCRIPT_EXTENSION",
    "SCRIPTSIGN_STAGING_DIR",
    "SCRIPTSIGN_PROMPT_TIMEOUT_SEC",
    "SCRIPTSIGN_ASSUME_YES",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


def test_defaults_without_file(tmp_path):
    cfg = load_config(str(tmp_path / "missing.yml"))
    assert cfg.target_policy is ExecutionPolicy.REMOTE_SIGNED
    assert cfg.cert_validity_years == 5
    assert cfg.script_extension == ".ps1"
    assert cfg.assume_yes is False


def test_yaml_then_env(tmp_path, monkeypatch):
    path = tmp_path / "scriptsign.yml"
    path.write_text("target_policy: AllSigned\ncert_subject: 'CN=Build Agent'\nprompt_timeout_sec: 30\nbogus: 1\n")
    cfg = load_config(str(path))
    assert cfg.target_policy is ExecutionPolicy.ALL_SIGNED
    assert cfg.cert_subject == "CN=Build Agent"
    assert cfg.prompt_timeout_sec == 30.0

    monkeypatch.setenv("SCRIPTSIGN_TARGET_POLICY", "remotesigned")
    monkeypatch.setenv("SCRIPTSIGN_ASSUME_YES", "true")
    cfg = load_config(str(path))
    assert cfg.target_policy is ExecutionPolicy.REMOTE_SIGNED
    assert cfg.assume_yes is True


def test_invalid_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("SCRIPTSIGN_CERT_YEARS", "five")
    assert load_config(str(tmp_path / "none.yml")).cert_validity_years == 5


def test_unknown_target_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("SCRIPTSIGN_TARGET_POLICY", "Whatever")
    with pytest.raises(ValueError):
        load_config(str(tmp_path / "none.yml"))


def test_overrides():
    cfg = WorkflowConfig().with_overrides(target_policy="AllSigned", assume_yes=None, prompt_timeout_sec=5.0)
    assert cfg.target_policy is ExecutionPolicy.ALL_SIGNED
    assert cfg.assume_yes is False
    assert cfg.prompt_timeout_sec == 5.0


def test_unknown_sentinel_rejected():
    with pytest.raises(ValueError):
        WorkflowConfig(target_policy=ExecutionPolicy.UNKNOWN)
    with pytest.raises(ValueError):
        WorkflowConfig(cert_validity_years=0)


def test_parse_target():
    assert parse_target("AllSigned") is ExecutionPolicy.ALL_SIGNED
    with pytest.raises(ValueError):
        parse_target("nope")
