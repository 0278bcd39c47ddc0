"""Apply one target policy to every scope.

Each scope is attempted independently: a rejected scope is recorded and the
remaining scopes are still attempted. The value reported for a scope is the
one read back from the store afterwards, not the one requested.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from ..errors import PolicyStoreError
from ..utils.logging import get_logger
from .inspector import read_scope
from .model import SCOPES, ExecutionPolicy, PolicySnapshot, Scope
from .store import PolicyStore

log = get_logger()


@dataclass
class PolicyUpdateResult:
    target: ExecutionPolicy
    snapshot: PolicySnapshot
    failures: Dict[Scope, str] = field(default_factory=dict)

    @property
    def unchanged(self) -> List[Scope]:
        """Scopes whose observed value is not the target (rejected or overridden)."""
        return [sp.scope for sp in self.snapshot if sp.policy is not self.target]

    @property
    def ok(self) -> bool:
        return not self.failures and not self.unchanged


def update_policies(store: PolicyStore, target: ExecutionPolicy) -> PolicyUpdateResult:
    if target is ExecutionPolicy.UNKNOWN:
        raise ValueError("Unknown is not a settable policy")
    observed: Dict[Scope, ExecutionPolicy] = {}
    failures: Dict[Scope, str] = {}
    for scope in SCOPES:
        try:
            store.set(scope, target)
            log.info("set %s policy to %s", scope.value, target.value)
        except PolicyStoreError as e:
            log.error("failed to set %s policy to %s: %s", scope.value, target.value, e)
            failures[scope] = str(e)
        observed[scope] = read_scope(store, scope)
        if observed[scope] is not target and scope not in failures:
            log.warning("%s policy reads %s after setting %s", scope.value, observed[scope].value, target.value)
    return PolicyUpdateResult(target=target, snapshot=PolicySnapshot(observed), failures=failures)
