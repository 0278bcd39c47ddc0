"""Thin wrapper around the PowerShell executable.

Commands are passed with -Command; callers quote paths with ``ps_quote``.
The runner is injectable so the backends can be exercised without Windows.
"""
from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import Callable, List

from ..config import POWERSHELL, POWERSHELL_TIMEOUT_SEC
from .logging import get_logger

log = get_logger()

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def ps_quote(value: str) -> str:
    """Single-quote a string for PowerShell (embedded quotes are doubled)."""
    return "'" + value.replace("'", "''") + "'"


class PowerShellFailed(RuntimeError):
    def __init__(self, command: str, returncode: int, stderr: str):
        super().__init__(f"powershell exited {returncode}: {stderr.strip() or '<no output>'}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class PowerShell:
    executable: str = POWERSHELL
    timeout: float = POWERSHELL_TIMEOUT_SEC
    runner: Runner = field(default=subprocess.run)

    def argv(self, command: str) -> List[str]:
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", command]

    def run(self, command: str) -> str:
        log.debug("powershell: %s", command)
        # surface non-terminating cmdlet errors as a non-zero exit
        command = "$ErrorActionPreference = 'Stop'; " + command
        try:
            proc = self.runner(self.argv(command), capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise PowerShellFailed(command, 127, f"{self.executable} not found") from e
        except subprocess.TimeoutExpired as e:
            raise PowerShellFailed(command, -1, f"timed out after {self.timeout}s") from e
        if proc.returncode != 0:
            raise PowerShellFailed(command, proc.returncode, proc.stderr or "")
        return (proc.stdout or "").strip()
