from __future__ import annotations

import argparse
import json
import os
import sys

from .cert.provision import CertificateProvisioner
from .cert.stores import open_personal_store, open_trust_stores
from .config import resolve_backend
from .errors import ScriptSignError
from .picker import FixedPathPicker, TkFilePicker
from .policy.inspector import inspect_policies
from .policy.model import ExecutionPolicy
from .policy.reporter import report_snapshot
from .policy.store import open_policy_store
from .prompt import ConsolePrompt
from .signing.signer import default_signer, open_signer, verify_script
from .utils.logging import get_logger
from .workflow.config import WorkflowConfig, load_config
from .workflow.run import (
    EXIT_MISSING_FILE,
    StepError,
    Workflow,
    describe_certificate,
    print_summary,
    sign_target,
)

log = get_logger()


def _config(args: argparse.Namespace) -> WorkflowConfig:
    cfg = load_config(args.config)
    return cfg.with_overrides(
        target_policy=getattr(args, "target", None),
        assume_yes=True if getattr(args, "yes", False) else None,
        prompt_timeout_sec=getattr(args, "timeout", None),
    )


def _provisioner(backend: str, cfg: WorkflowConfig) -> CertificateProvisioner:
    return CertificateProvisioner(
        personal_store=open_personal_store(backend),
        trust_stores=open_trust_stores(backend),
        staging_dir=cfg.staging_dir,
        subject=cfg.cert_subject,
        validity_years=cfg.cert_validity_years,
    )


def cmd_status(args: argparse.Namespace) -> int:
    store = open_policy_store(resolve_backend(args.backend))
    report_snapshot(inspect_policies(store), "Current execution policies:")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    cfg = _config(args)
    backend = resolve_backend(args.backend)
    wf = Workflow(
        config=cfg,
        policy_store=open_policy_store(backend),
        prompt=ConsolePrompt(timeout=cfg.prompt_timeout_sec or None),
        provisioner=_provisioner(backend, cfg),
        picker=FixedPathPicker(args.file) if args.file else TkFilePicker(),
        signer=open_signer(args.signer or default_signer(backend), cfg.staging_dir),
    )
    return wf.run().exit_code


def cmd_sign(args: argparse.Namespace) -> int:
    cfg = _config(args)
    if not os.path.isfile(args.file):
        print(f"File not found: {args.file}; nothing was signed.")
        return EXIT_MISSING_FILE
    backend = resolve_backend(args.backend)
    provision = _provisioner(backend, cfg).provision()
    print(describe_certificate(provision))
    errors = [StepError("certificate", e) for e in provision.errors]
    signer = open_signer(args.signer or default_signer(backend), cfg.staging_dir)
    signed = sign_target(signer, provision, args.file, errors, sys.stdout)
    print_summary(errors, sys.stdout)
    return 0 if signed else 1


def cmd_verify(args: argparse.Namespace) -> int:
    stores = None if args.no_trust else open_trust_stores(resolve_backend(args.backend))
    res = verify_script(args.file, stores)
    if args.json:
        print(json.dumps(res.model_dump(), indent=2))
    else:
        print(f"{res.path}: {res.status}")
        if res.subject:
            print(f"  signer: {res.subject} ({res.thumbprint})")
        if res.message:
            print(f"  {res.message}")
    return 0 if res.valid else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser("scriptsign", description="Execution policy and script signing helper")
    p.add_argument("--config", help="YAML config file (default: $SCRIPTSIGN_CONFIG or config/scriptsign.yml)")
    p.add_argument("--backend", choices=["auto", "powershell", "file", "memory"], default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    p_status = sub.add_parser("status", help="show the execution policy of every scope")
    p_status.set_defaults(func=cmd_status)

    p_run = sub.add_parser("run", help="update policies, provision a certificate and sign a script")
    p_run.add_argument("--target", choices=[x.value for x in ExecutionPolicy.settable()], default=None)
    p_run.add_argument("--yes", action="store_true", help="do not ask for consent")
    p_run.add_argument("--file", help="script to sign (skips the file dialog)")
    p_run.add_argument("--signer", choices=["trailer", "authenticode"], default=None,
                       help="default: authenticode with the powershell backend, trailer otherwise")
    p_run.add_argument("--timeout", type=float, default=None, help="consent prompt timeout in seconds")
    p_run.set_defaults(func=cmd_run)

    p_sign = sub.add_parser("sign", help="sign a script without touching policies")
    p_sign.add_argument("file")
    p_sign.add_argument("--signer", choices=["trailer", "authenticode"], default=None,
                        help="default: authenticode with the powershell backend, trailer otherwise")
    p_sign.set_defaults(func=cmd_sign)

    p_ver = sub.add_parser("verify", help="check a script's signature block")
    p_ver.add_argument("file")
    p_ver.add_argument("--json", action="store_true")
    p_ver.add_argument("--no-trust", dest="no_trust", action="store_true", help="skip the trust store check")
    p_ver.set_defaults(func=cmd_verify)

    args = p.parse_args(argv)
    try:
        return args.func(args)
    except (ScriptSignError, ValueError) as e:
        log.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
