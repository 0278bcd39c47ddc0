from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Optional, TextIO

from .errors import ConsentDeclined
from .policy.model import ExecutionPolicy, PolicySnapshot
from .policy.reporter import report_snapshot
from .prompt import PromptProvider
from .utils.logging import get_logger

log = get_logger()

CONSENT_TOKEN = "proceed"

WARNING = (
    "WARNING: Changing the execution policy alters which scripts this machine will run.\n"
    "Relaxing signature enforcement lets unsigned or tampered scripts execute; every\n"
    "scope listed above will be set to {target}, and the generated code-signing\n"
    "certificate will be trusted machine-wide. Only continue on a machine you administer."
)


@dataclass
class ConsentGate:
    prompt: PromptProvider
    out: Optional[TextIO] = None
    token: str = CONSENT_TOKEN

    def show(self, snapshot: PolicySnapshot, target: ExecutionPolicy) -> None:
        out = self.out or sys.stdout
        report_snapshot(snapshot, "Current execution policies:", out)
        print(file=out)
        print(WARNING.format(target=target.value), file=out)

    def request(self, snapshot: PolicySnapshot, target: ExecutionPolicy) -> bool:
        """Show the current policies and the warning; True only for the exact token."""
        self.show(snapshot, target)
        answer = self.prompt.ask(f"Type '{self.token}' to continue: ")
        if answer == self.token:
            log.info("consent given")
            return True
        log.info("consent declined (answer=%r)", answer)
        return False

    def require(self, snapshot: PolicySnapshot, target: ExecutionPolicy, assume_yes: bool = False) -> None:
        """Like ``request`` but raises ``ConsentDeclined``.

        With ``assume_yes`` the warning is still printed and no question is asked.
        """
        if assume_yes:
            self.show(snapshot, target)
            log.info("consent given on the command line")
            return
        if not self.request(snapshot, target):
            raise ConsentDeclined(f"'{self.token}' was not entered")
