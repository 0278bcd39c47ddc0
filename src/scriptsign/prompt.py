"""Input sources for interactive questions.

``ask`` returns the line typed (without its newline) or None when no answer
arrived (end of input, timeout).
"""
from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, TextIO, runtime_checkable

from .utils.logging import get_logger

log = get_logger()


@runtime_checkable
class PromptProvider(Protocol):
    def ask(self, message: str) -> Optional[str]: ...


@dataclass
class ConsolePrompt:
    timeout: Optional[float] = None
    stdin: TextIO = field(default_factory=lambda: sys.stdin)
    stdout: TextIO = field(default_factory=lambda: sys.stdout)

    def _readline(self) -> Optional[str]:
        line = self.stdin.readline()
        if not line:
            return None
        return line[:-1] if line.endswith("\n") else line

    def ask(self, message: str) -> Optional[str]:
        self.stdout.write(message)
        self.stdout.flush()
        if not self.timeout:
            return self._readline()
        answer: List[Optional[str]] = []
        reader = threading.Thread(target=lambda: answer.append(self._readline()), daemon=True)
        reader.start()
        reader.join(self.timeout)
        if reader.is_alive():
            log.warning("no answer within %ss", self.timeout)
            self.stdout.write("\n")
            return None
        return answer[0] if answer else None


@dataclass
class StaticPrompt:
    """Answers every question with a fixed reply and remembers what was asked."""

    answer: Optional[str]
    asked: List[str] = field(default_factory=list)

    def ask(self, message: str) -> Optional[str]:
        self.asked.append(message)
        return self.answer
