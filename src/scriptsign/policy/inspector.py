from __future__ import annotations

from typing import Dict

from ..errors import PolicyStoreError
from ..utils.logging import get_logger
from .model import SCOPES, ExecutionPolicy, PolicySnapshot, Scope
from .store import PolicyStore

log = get_logger()


def read_scope(store: PolicyStore, scope: Scope) -> ExecutionPolicy:
    """Read one scope; an unreadable scope reports Unknown instead of aborting."""
    try:
        return store.get(scope)
    except PolicyStoreError as e:
        log.warning("could not read %s policy: %s", scope.value, e)
        return ExecutionPolicy.UNKNOWN


def inspect_policies(store: PolicyStore) -> PolicySnapshot:
    values: Dict[Scope, ExecutionPolicy] = {}
    for scope in SCOPES:
        values[scope] = read_scope(store, scope)
    return PolicySnapshot(values)
