"""Policy store backends.

All backends expose ``get(scope)`` / ``set(scope, policy)`` and raise
``PolicyStoreError`` on failure. ``set`` returning normally does not mean the
value took effect; callers re-read.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, runtime_checkable

from ..config import POLICY_FILE
from ..errors import PolicyStoreError
from ..utils.logging import get_logger
from ..utils.powershell import PowerShell, PowerShellFailed
from .model import SCOPES, ExecutionPolicy, Scope

log = get_logger()

# Process-scope policy lives in this variable; child PowerShell processes inherit it
PROCESS_POLICY_ENV = "PSExecutionPolicyPreference"


@runtime_checkable
class PolicyStore(Protocol):
    def get(self, scope: Scope) -> ExecutionPolicy: ...
    def set(self, scope: Scope, policy: ExecutionPolicy) -> None: ...


@dataclass
class MemoryPolicyStore:
    """In-process store used for dry runs and tests.

    ``locked`` scopes raise on set; ``overridden`` scopes accept the call but keep
    their value (what a group-policy override looks like from the outside).
    """

    values: Dict[Scope, ExecutionPolicy] = field(default_factory=dict)
    locked: set = field(default_factory=set)
    overridden: set = field(default_factory=set)
    unreadable: set = field(default_factory=set)

    @classmethod
    def uniform(cls, policy: ExecutionPolicy, **kw) -> "MemoryPolicyStore":
        return cls(values={s: policy for s in SCOPES}, **kw)

    def get(self, scope: Scope) -> ExecutionPolicy:
        if scope in self.unreadable:
            raise PolicyStoreError(f"cannot read {scope.value}")
        return self.values.get(scope, ExecutionPolicy.UNDEFINED)

    def set(self, scope: Scope, policy: ExecutionPolicy) -> None:
        if scope in self.locked:
            raise PolicyStoreError(f"{scope.value} is locked")
        if scope in self.overridden:
            return
        self.values[scope] = policy


class FilePolicyStore(MemoryPolicyStore):
    """JSON-file backed store for hosts without PowerShell."""

    def __init__(self, path: str = POLICY_FILE):
        super().__init__()
        self.path = path
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, ValueError) as e:
                raise PolicyStoreError(f"unreadable policy file {path}: {e}") from e
            if not isinstance(raw, dict):
                raise PolicyStoreError(f"{path}: expected an object of scope -> policy")
            for k, v in raw.items():
                try:
                    scope = Scope(k)
                except ValueError:
                    log.warning("ignoring unknown scope %r in %s", k, path)
                    continue
                if not isinstance(v, str):
                    raise PolicyStoreError(f"{path}: policy for {k} must be a string, got {v!r}")
                self.values[scope] = ExecutionPolicy.parse(v)

    def set(self, scope: Scope, policy: ExecutionPolicy) -> None:
        super().set(scope, policy)
        parent = os.path.dirname(self.path)
        try:
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({s.value: p.value for s, p in self.values.items()}, f, indent=2)
        except OSError as e:
            raise PolicyStoreError(f"cannot write {self.path}: {e}") from e


@dataclass
class PowerShellPolicyStore:
    shell: PowerShell = field(default_factory=PowerShell)
    environ: Optional[Dict[str, str]] = None

    def __post_init__(self):
        if self.environ is None:
            self.environ = os.environ  # type: ignore[assignment]

    def get(self, scope: Scope) -> ExecutionPolicy:
        try:
            out = self.shell.run(f"Get-ExecutionPolicy -Scope {scope.value}")
        except PowerShellFailed as e:
            raise PolicyStoreError(f"Get-ExecutionPolicy {scope.value}: {e}") from e
        policy = ExecutionPolicy.parse(out.splitlines()[-1] if out else "")
        if policy is ExecutionPolicy.UNKNOWN:
            raise PolicyStoreError(f"unexpected Get-ExecutionPolicy output: {out!r}")
        return policy

    def set(self, scope: Scope, policy: ExecutionPolicy) -> None:
        if policy is ExecutionPolicy.UNKNOWN:
            raise PolicyStoreError("refusing to set the Unknown sentinel")
        if scope is Scope.PROCESS:
            # a child process's Process scope dies with it
            self.environ[PROCESS_POLICY_ENV] = policy.value
            return
        try:
            self.shell.run(
                f"Set-ExecutionPolicy -ExecutionPolicy {policy.value} -Scope {scope.value} -Force"
            )
        except PowerShellFailed as e:
            raise PolicyStoreError(f"Set-ExecutionPolicy {scope.value}: {e}") from e


def open_policy_store(backend: str) -> PolicyStore:
    if backend == "powershell":
        return PowerShellPolicyStore()
    if backend == "file":
        return FilePolicyStore()
    if backend == "memory":
        return MemoryPolicyStore.uniform(ExecutionPolicy.UNDEFINED)
    raise ValueError(f"unknown backend: {backend}")
