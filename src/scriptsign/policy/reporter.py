from __future__ import annotations

import sys
from typing import TextIO

from .model import PolicySnapshot


def format_snapshot(snapshot: PolicySnapshot, heading: str) -> str:
    lines = [heading]
    lines.extend(f"  {sp}" for sp in snapshot)
    return "\n".join(lines)


def report_snapshot(snapshot: PolicySnapshot, heading: str, out: TextIO | None = None) -> None:
    print(format_snapshot(snapshot, heading), file=out or sys.stdout)
