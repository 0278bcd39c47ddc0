"""End-to-end workflow: inspect -> consent -> update -> provision -> pick -> sign.

Recoverable failures (a scope that will not change, a trust store that refuses
the certificate, a signer error) are collected and printed in the summary.
Declined consent, a cancelled selection and a missing target file end the run
early with their own exit codes.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional, TextIO

from ..cert.model import ProvisionResult
from ..cert.provision import CertificateProvisioner
from ..consent import ConsentGate
from ..errors import ConsentDeclined, SigningError
from ..picker import FilePicker
from ..policy.inspector import inspect_policies
from ..policy.model import PolicySnapshot
from ..policy.reporter import report_snapshot
from ..policy.store import PolicyStore
from ..policy.updater import PolicyUpdateResult, update_policies
from ..prompt import PromptProvider
from ..signing.signer import Signer
from ..utils.logging import get_logger
from .config import WorkflowConfig

log = get_logger()

EXIT_OK = 0
EXIT_DECLINED = 2
EXIT_MISSING_FILE = 3
EXIT_CANCELLED = 4


@dataclass(frozen=True)
class StepError:
    step: str
    message: str

    def __str__(self) -> str:
        return f"[{self.step}] {self.message}"


@dataclass
class WorkflowResult:
    exit_code: int
    before: PolicySnapshot
    after: Optional[PolicySnapshot] = None
    update: Optional[PolicyUpdateResult] = None
    provision: Optional[ProvisionResult] = None
    target_path: Optional[str] = None
    signed: bool = False
    errors: List[StepError] = field(default_factory=list)


def describe_certificate(res: ProvisionResult) -> str:
    cert = res.certificate
    origin = "created" if res.created else "reused"
    trust = "trusted" if res.trusted else "NOT trusted by: " + ", ".join(
        name for name, ok in res.installed.items() if not ok
    )
    return (
        f"Code-signing certificate {cert.thumbprint} ({origin}, {cert.subject}, "
        f"valid until {cert.not_after.date().isoformat()}; {trust})"
    )


def print_summary(errors: List[StepError], out: TextIO) -> None:
    print(file=out)
    if not errors:
        print("Summary: all steps completed.", file=out)
        return
    print(f"Summary: completed with {len(errors)} problem(s):", file=out)
    for err in errors:
        print(f"  {err}", file=out)


def sign_target(signer: Signer, provision: ProvisionResult, path: str,
                errors: List[StepError], out: TextIO) -> bool:
    try:
        signer.sign(path, provision.certificate)
    except SigningError as e:
        log.error("signing %s failed: %s", path, e)
        errors.append(StepError("sign", str(e)))
        return False
    print(f"Signed {path} with certificate {provision.certificate.thumbprint}.", file=out)
    return True


@dataclass
class Workflow:
    config: WorkflowConfig
    policy_store: PolicyStore
    prompt: PromptProvider
    provisioner: CertificateProvisioner
    picker: FilePicker
    signer: Signer
    out: Optional[TextIO] = None

    def run(self) -> WorkflowResult:
        out = self.out or sys.stdout
        target = self.config.target_policy
        result = WorkflowResult(exit_code=EXIT_OK, before=inspect_policies(self.policy_store))

        try:
            ConsentGate(self.prompt, out).require(result.before, target, assume_yes=self.config.assume_yes)
        except ConsentDeclined:
            print("Aborted: no changes were made.", file=out)
            result.exit_code = EXIT_DECLINED
            return result

        update = update_policies(self.policy_store, target)
        result.update, result.after = update, update.snapshot
        for scope, msg in update.failures.items():
            result.errors.append(StepError("policy", f"{scope.value}: {msg}"))
        for scope in update.unchanged:
            if scope not in update.failures:
                result.errors.append(StepError(
                    "policy", f"{scope.value} still reads {update.snapshot[scope].value} after setting {target.value}"))
        print(file=out)
        report_snapshot(update.snapshot, "Updated execution policies:", out)

        result.provision = self.provisioner.provision()
        result.errors.extend(StepError("certificate", e) for e in result.provision.errors)
        print(file=out)
        print(describe_certificate(result.provision), file=out)

        picked = self.picker.pick(self.config.script_extension)
        if picked.cancelled:
            print("No file selected; nothing was signed.", file=out)
            result.exit_code = EXIT_CANCELLED
            print_summary(result.errors, out)
            return result
        result.target_path = picked.path
        if not os.path.isfile(picked.path):
            print(f"File not found: {picked.path}; nothing was signed.", file=out)
            result.exit_code = EXIT_MISSING_FILE
            print_summary(result.errors, out)
            return result

        result.signed = sign_target(self.signer, result.provision, picked.path, result.errors, out)
        print_summary(result.errors, out)
        return result
