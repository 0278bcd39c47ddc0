"""Execution policy data model.

Scopes are listed most specific first; that order is also the reporting order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Tuple

__all__ = [
    "Scope",
    "ExecutionPolicy",
    "ScopePolicy",
    "PolicySnapshot",
    "SCOPES",
]


class Scope(str, Enum):
    PROCESS = "Process"
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"


SCOPES: Tuple[Scope, ...] = (Scope.PROCESS, Scope.CURRENT_USER, Scope.LOCAL_MACHINE)


class ExecutionPolicy(str, Enum):
    RESTRICTED = "Restricted"
    ALL_SIGNED = "AllSigned"
    REMOTE_SIGNED = "RemoteSigned"
    UNRESTRICTED = "Unrestricted"
    BYPASS = "Bypass"
    UNDEFINED = "Undefined"
    DEFAULT = "Default"
    # not a real policy: the scope could not be read
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, label: str | None) -> "ExecutionPolicy":
        text = (label or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.UNKNOWN

    @classmethod
    def settable(cls) -> List["ExecutionPolicy"]:
        return [p for p in cls if p is not cls.UNKNOWN]


@dataclass(frozen=True)
class ScopePolicy:
    scope: Scope
    policy: ExecutionPolicy

    def __str__(self) -> str:
        return f"{self.scope.value}: {self.policy.value}"


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable scope -> policy mapping captured at one point in time."""

    values: Mapping[Scope, ExecutionPolicy] = field(default_factory=dict)

    def __post_init__(self):
        # freeze a private copy so later changes to the source dict don't leak in
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.values.items())))

    def __getitem__(self, scope: Scope) -> ExecutionPolicy:
        return self.values.get(scope, ExecutionPolicy.UNKNOWN)

    def __iter__(self) -> Iterator[ScopePolicy]:
        for scope in SCOPES:
            yield ScopePolicy(scope, self[scope])

    def as_dict(self) -> Dict[str, str]:
        return {sp.scope.value: sp.policy.value for sp in self}
