"""Workflow configuration loader.

Defaults, then the optional YAML file (``SCRIPTSIGN_CONFIG``, default
config/scriptsign.yml), then environment overrides. CLI flags are applied on
top by the caller.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

import yaml

from ..cert.model import DEFAULT_SUBJECT, DEFAULT_VALIDITY_YEARS, parse_subject
from ..config import CONFIG_PATH, DATA_DIR
from ..policy.model import ExecutionPolicy
from ..utils.logging import get_logger

log = get_logger()

_DEFAULT: Dict[str, Any] = {
    "target_policy": "RemoteSigned",
    "cert_subject": DEFAULT_SUBJECT,
    "cert_validity_years": DEFAULT_VALIDITY_YEARS,
    "script_extension": ".ps1",
    "staging_dir": os.path.join(DATA_DIR, "staging"),
    "prompt_timeout_sec": 0.0,
    "assume_yes": False,
}

_ENV_MAP = {
    "target_policy": ("SCRIPTSIGN_TARGET_POLICY", str),
    "cert_subject": ("SCRIPTSIGN_CERT_SUBJECT", str),
    "cert_validity_years": ("SCRIPTSIGN_CERT_YEARS", int),
    "script_extension": ("SCRIPTSIGN_SCRIPT_EXTENSION", str),
    "staging_dir": ("SCRIPTSIGN_STAGING_DIR", str),
    "prompt_timeout_sec": ("SCRIPTSIGN_PROMPT_TIMEOUT_SEC", float),
    "assume_yes": ("SCRIPTSIGN_ASSUME_YES", lambda v: v.strip().lower() in ("1", "true", "yes")),
}


@dataclass(frozen=True)
class WorkflowConfig:
    target_policy: ExecutionPolicy = ExecutionPolicy.REMOTE_SIGNED
    cert_subject: str = DEFAULT_SUBJECT
    cert_validity_years: int = DEFAULT_VALIDITY_YEARS
    script_extension: str = ".ps1"
    staging_dir: str = _DEFAULT["staging_dir"]
    prompt_timeout_sec: float = 0.0
    assume_yes: bool = False

    def __post_init__(self):
        if self.target_policy is ExecutionPolicy.UNKNOWN:
            raise ValueError("target policy cannot be Unknown")
        if self.cert_validity_years < 1:
            raise ValueError("cert_validity_years must be >= 1")
        parse_subject(self.cert_subject)

    def with_overrides(self, **kw) -> "WorkflowConfig":
        kw = {k: v for k, v in kw.items() if v is not None}
        if "target_policy" in kw:
            kw["target_policy"] = parse_target(kw["target_policy"])
        return replace(self, **kw)


def parse_target(value) -> ExecutionPolicy:
    if isinstance(value, ExecutionPolicy):
        return value
    policy = ExecutionPolicy.parse(str(value))
    if policy is ExecutionPolicy.UNKNOWN:
        raise ValueError(f"unknown execution policy: {value}")
    return policy


def load_config(path: Optional[str] = None) -> WorkflowConfig:
    path = path or CONFIG_PATH
    data: Dict[str, Any] = dict(_DEFAULT)
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            file_cfg = yaml.safe_load(f) or {}
        if not isinstance(file_cfg, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        unknown = sorted(set(file_cfg) - set(_DEFAULT))
        if unknown:
            log.warning("%s: ignoring unknown keys %s", path, ", ".join(unknown))
        data.update({k: v for k, v in file_cfg.items() if k in _DEFAULT})
    for k, (env, cast) in _ENV_MAP.items():
        if env in os.environ:
            try:
                data[k] = cast(os.environ[env])
            except ValueError:
                log.warning("ignoring invalid %s=%r", env, os.environ[env])
    return WorkflowConfig(
        target_policy=parse_target(data["target_policy"]),
        cert_subject=str(data["cert_subject"]),
        cert_validity_years=int(data["cert_validity_years"]),
        script_extension=str(data["script_extension"]),
        staging_dir=str(data["staging_dir"]),
        prompt_timeout_sec=float(data["prompt_timeout_sec"]),
        assume_yes=bool(data["assume_yes"]),
    )
