#!/usr/bin/env python3
"""
anonid CLI

Holder, issuer, and operator tooling around the authorization core.

Usage:
    anonid <command> [subcommand] [options]

Commands:
    keygen        Generate an Ed25519 key and its did:key principal
    commit        Commit to a credential payload (prints the secret opening)
    prove         Prove knowledge of an opening for given public inputs
    check-proof   Check a proof bundle against the configured proof system
    issuer        Add, remove, or check trusted issuers
    credential    Issue, revoke, or look up credentials
    consent       Grant, revoke, or check verifier consent
    config        Configuration management
    log           Inspect and replay a JSON-lines event log

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from anonid.errors import AuthorizationCoreError

__version__ = "0.3.0"


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_json(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise CLIError(f"File not found: {path}", exit_code=2)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CLIError(f"Invalid JSON in {path}: {e}", exit_code=2) from e


def _write_json(path: str, data: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")


class AnonidCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="anonid",
            description="Anonymous credential authorization core",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"anonid {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress non-essential output",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file (default: search standard locations)",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_key_commands()
        self._register_proof_commands()
        self._register_issuer_commands()
        self._register_credential_commands()
        self._register_consent_commands()
        self._register_config_commands()
        self._register_log_commands()

    @staticmethod
    def _add_caller_args(parser: argparse.ArgumentParser) -> None:
        caller = parser.add_mutually_exclusive_group(required=True)
        caller.add_argument("--as", dest="as_principal", metavar="PRINCIPAL", help="Act as this principal")
        caller.add_argument("--key", metavar="FILE", help="Act as the principal of a key file written by 'keygen'")

    def _register_issuer_commands(self) -> None:
        issuer = self.subparsers.add_parser("issuer", help="Trusted issuer registry")
        issuer_sub = issuer.add_subparsers(dest="subcommand")

        add = issuer_sub.add_parser("add", help="Trust an issuer (administrator only)")
        add.add_argument("issuer", help="Issuer principal")
        self._add_caller_args(add)

        remove = issuer_sub.add_parser("remove", help="Withdraw trust from an issuer (administrator only)")
        remove.add_argument("issuer", help="Issuer principal")
        self._add_caller_args(remove)

        check = issuer_sub.add_parser("check", help="Is the issuer currently trusted")
        check.add_argument("issuer", help="Issuer principal")

    def _register_credential_commands(self) -> None:
        credential = self.subparsers.add_parser("credential", help="Credential ledger")
        credential_sub = credential.add_subparsers(dest="subcommand")

        issue = credential_sub.add_parser("issue", help="Bind a commitment to the calling issuer")
        issue.add_argument("commitment", help="0x-prefixed commitment")
        self._add_caller_args(issue)

        revoke = credential_sub.add_parser("revoke", help="Revoke a credential (original issuer only)")
        revoke.add_argument("commitment", help="0x-prefixed commitment")
        self._add_caller_args(revoke)

        get = credential_sub.add_parser("get", help="Show a credential record")
        get.add_argument("commitment", help="0x-prefixed commitment")

    def _register_consent_commands(self) -> None:
        consent = self.subparsers.add_parser("consent", help="Holder consent to verifiers")
        consent_sub = consent.add_subparsers(dest="subcommand")

        for name, help_text in (
            ("grant", "Allow a verifier to verify a credential"),
            ("revoke", "Withdraw a verifier's consent"),
            ("check", "Does the verifier hold consent"),
        ):
            cmd = consent_sub.add_parser(name, help=help_text)
            cmd.add_argument("commitment", help="0x-prefixed commitment")
            cmd.add_argument("verifier", help="Verifier principal")
            if name != "check":
                self._add_caller_args(cmd)

    def _register_key_commands(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate an Ed25519 did:key principal")
        keygen.add_argument("--out", "-o", help="Write the key pair to this file instead of stdout")

    def _register_proof_commands(self) -> None:
        commit = self.subparsers.add_parser("commit", help="Commit to a credential payload")
        commit.add_argument("--payload", "-p", required=True, help="JSON payload file")
        commit.add_argument("--out", "-o", help="Write the opening (secret) to this file")

        prove = self.subparsers.add_parser("prove", help="Prove knowledge of a commitment opening")
        prove.add_argument("--opening", required=True, help="Opening file written by 'commit'")
        prove.add_argument("--issuer", "-i", required=True, help="Issuer principal of the credential")
        prove.add_argument("--timestamp", "-t", type=int, help="currentTimestamp (default: now)")
        prove.add_argument("--out", "-o", help="Write the proof bundle to this file")

        check = self.subparsers.add_parser("check-proof", help="Check a proof bundle")
        check.add_argument("bundle", help="JSON file with 'proof' and 'public_inputs'")
        check.add_argument(
            "--system", "-s",
            choices=["groth16", "pedersen"],
            help="Proof system (default: verification.proof_system)",
        )
        check.add_argument("--vk", help="Groth16 verification key (default: verification.verification_key_path)")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config get
        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., verification.proof_system)")

        # config set
        set_cmd = config_sub.add_parser("set", help="Set configuration value")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="Value to set")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def _register_log_commands(self) -> None:
        log = self.subparsers.add_parser("log", help="Event log inspection")
        log_sub = log.add_subparsers(dest="subcommand")

        show = log_sub.add_parser("show", help="List event records")
        show.add_argument("--path", help="Event log (default: core.event_log_path)")
        show.add_argument("--stream", help="Only records of this stream")

        state = log_sub.add_parser("state", help="Replay the log and print the resulting state")
        state.add_argument("--path", help="Event log (default: core.event_log_path)")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        fmt = OutputFormat(parsed.format)
        try:
            self._load_config(parsed)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            if isinstance(result, dict) and result.get("valid") is False:
                return 1
            return 0

        except AuthorizationCoreError as e:
            print(format_output({"error": e.to_dict()}, fmt))
            return 1

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _load_config(self, args: argparse.Namespace) -> None:
        from anonid.config import get_config_manager
        from anonid.observability import configure_logging

        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        else:
            mgr.load_defaults()
        configure_logging(
            level="error" if args.quiet else mgr.get("observability.log_level"),
            fmt=mgr.get("observability.log_format"),
        )

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    # Key and proof handlers
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        from anonid.identity import generate_principal, private_key_to_hex
        principal, private_key = generate_principal()
        keypair = {"principal": principal.id, "private_key": private_key_to_hex(private_key)}
        if args.out:
            _write_json(args.out, keypair)
            return {"principal": principal.id, "path": args.out}
        return keypair

    def _handle_commit(self, args: argparse.Namespace) -> Any:
        from anonid.commitment import commit_payload
        payload = _read_json(args.payload)
        if not isinstance(payload, dict):
            raise CLIError("Credential payload must be a JSON object", exit_code=2)
        opening = commit_payload(payload)
        if args.out:
            _write_json(args.out, opening.to_dict())
            return {"commitment": opening.commitment.hex, "opening": args.out}
        return opening.to_dict()

    def _handle_prove(self, args: argparse.Namespace) -> Any:
        from anonid.commitment import CredentialOpening
        from anonid.zkp import PedersenOpeningProver, PublicInputs
        opening = CredentialOpening.from_dict(_read_json(args.opening))
        inputs = PublicInputs.for_credential(opening.commitment, args.issuer, args.timestamp)
        proof = PedersenOpeningProver().prove(opening, inputs)
        bundle = {"proof": proof.to_dict(), "public_inputs": inputs.to_list()}
        if args.out:
            _write_json(args.out, bundle)
            return {"commitment": opening.commitment.hex, "bundle": args.out}
        return bundle

    def _handle_check_proof(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        from anonid.core import build_proof_verifier

        bundle = _read_json(args.bundle)
        if not isinstance(bundle, dict) or "proof" not in bundle or "public_inputs" not in bundle:
            raise CLIError("Proof bundle must contain 'proof' and 'public_inputs'", exit_code=2)
        inputs = bundle["public_inputs"]
        if not isinstance(inputs, list) or not inputs:
            raise CLIError("public_inputs must be a non-empty list", exit_code=2)

        mgr = get_config_manager()
        verifier = build_proof_verifier(
            args.system or mgr.get("verification.proof_system"),
            args.vk or mgr.get("verification.verification_key_path"),
        )

        valid = verifier.check(bundle["proof"], inputs, inputs[0])
        return {
            "valid": valid,
            "proof_system": verifier.proof_system.value,
            "commitment": inputs[0],
        }

    # Registry, ledger, and consent handlers
    def _open_core(self) -> Any:
        from anonid.config import get_config_manager
        from anonid.core import AuthorizationCore
        mgr = get_config_manager()
        if not mgr.get("core.event_log_path"):
            raise CLIError("core.event_log_path must be set to read or record state", exit_code=2)
        return AuthorizationCore.from_config(mgr)

    def _caller(self, args: argparse.Namespace) -> Any:
        from anonid.identity import Principal, ed25519_public_key_from_did_key, private_key_from_hex
        if not args.key:
            return Principal.of(args.as_principal)

        doc = _read_json(args.key)
        try:
            private_key = private_key_from_hex(doc["private_key"])
            declared = ed25519_public_key_from_did_key(doc["principal"])
        except (KeyError, TypeError, ValueError) as e:
            raise CLIError(f"Invalid key file {args.key}: {e}", exit_code=2) from e
        if declared.public_bytes_raw() != private_key.public_key().public_bytes_raw():
            raise CLIError(f"Key file {args.key}: principal does not match the private key", exit_code=2)
        return Principal(doc["principal"])

    @staticmethod
    def _issuer_record(record: Any) -> Any:
        return {
            "issuer": record.issuer.id,
            "active": record.active,
            "changed_at": record.changed_at,
            "changed_by": record.changed_by.id,
        }

    def _handle_issuer_add(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        return self._issuer_record(self._open_core().add_issuer(caller, args.issuer))

    def _handle_issuer_remove(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        return self._issuer_record(self._open_core().remove_issuer(caller, args.issuer))

    def _handle_issuer_check(self, args: argparse.Namespace) -> Any:
        return {"issuer": args.issuer, "trusted": self._open_core().is_trusted(args.issuer)}

    def _handle_credential_issue(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        return self._open_core().issue(caller, args.commitment).to_dict()

    def _handle_credential_revoke(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        return self._open_core().revoke(caller, args.commitment).to_dict()

    def _handle_credential_get(self, args: argparse.Namespace) -> Any:
        credential = self._open_core().get_credential(args.commitment)
        if credential is None:
            return {"commitment": args.commitment, "found": False}
        return {"found": True, **credential.to_dict()}

    def _handle_consent_grant(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        return self._open_core().grant_consent(caller, args.commitment, args.verifier).to_dict()

    def _handle_consent_revoke(self, args: argparse.Namespace) -> Any:
        caller = self._caller(args)
        self._open_core().revoke_consent(caller, args.commitment, args.verifier)
        return {"commitment": args.commitment, "verifier": args.verifier, "granted": False}

    def _handle_consent_check(self, args: argparse.Namespace) -> Any:
        core = self._open_core()
        return {
            "commitment": args.commitment,
            "verifier": args.verifier,
            "granted": core.has_consent(args.commitment, args.verifier),
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        mgr = get_config_manager()
        mgr.set(args.path, args.value)
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        mgr = get_config_manager()
        return mgr.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        mgr = get_config_manager()
        errors = mgr.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        mgr = get_config_manager()
        return mgr.export_schema()

    # Event log handlers
    def _open_log(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        from anonid.events import JsonlEventStore
        path = args.path or get_config_manager().get("core.event_log_path")
        if not path:
            raise CLIError("No event log given (--path or core.event_log_path)", exit_code=2)
        if not Path(path).exists():
            raise CLIError(f"Event log not found: {path}", exit_code=2)
        return JsonlEventStore(path, fsync=False)

    def _handle_log_show(self, args: argparse.Namespace) -> Any:
        store = self._open_log(args)
        records = [
            r for r in store.iter_all()
            if args.stream is None or r.stream_id == args.stream
        ]
        return [
            {
                "seq": r.sequence_number,
                "stream": r.stream_id,
                "version": r.version,
                "type": r.event.event_type,
                "actor": r.event.actor,
                "occurred_at": r.event.occurred_at,
            }
            for r in records
        ]

    def _handle_log_state(self, args: argparse.Namespace) -> Any:
        from anonid.config import get_config_manager
        from anonid.core import AuthorizationCore
        store = self._open_log(args)
        core = AuthorizationCore(get_config_manager().get("core.administrator"), store=store)
        return {
            "events": store.total_events,
            "issuers": [
                {"issuer": i.issuer.id, "active": i.active, "changed_at": i.changed_at}
                for i in core.registry.list_issuers(active_only=False)
            ],
            "credentials": [
                c.to_dict()
                for i in core.registry.list_issuers(active_only=False)
                for c in core.ledger.credentials_by_issuer(i.issuer)
            ],
            "consents": len(core.consents),
        }


def main() -> int:
    """CLI entry point."""
    cli = AnonidCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
