#!/usr/bin/env python3
"""
ReliefChain CLI

Command-line interface for the supply registry. Every invocation loads the
registry from a snapshot file, performs one call and, if the call committed,
writes the updated snapshot back.

Usage:
    reliefchain [--state FILE] <command> [subcommand] [options]

Commands:
    init              Create a new registry snapshot
    org               Verification capability management
    mint              Mint a supply-batch token
    transfer          Transfer a token
    burn              Retire a token
    update-metadata   Replace uri and description
    add-version       Append a version entry
    grant-license     Grant a time-bound license
    revoke-license    Revoke every license of a licensee
    add-collaborator  Record a collaborator
    lock / unlock     Toggle the transfer lock
    pause / unpause   Admin pause switch
    show              Every record of one token
    list              Summary of all tokens
    status            Registry-wide state
    config            Configuration management
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from reliefchain import __version__
from reliefchain.config import ConfigError, get_config_manager
from reliefchain.errors import Response
from reliefchain.hardening import ValidationErrors
from reliefchain.observability import (
    RegistryLayer,
    configure_logging,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from reliefchain.registry import SupplyRegistry
from reliefchain.snapshot import SnapshotError, compute_state_root, export_snapshot, read_snapshot, save_snapshot
from reliefchain.verification import (
    OrganizationRegistry,
    SignedApprovalVerifier,
    VerificationError,
    generate_verifier_keypair,
    load_private_key,
    private_key_b64url,
    sign_approval,
)

logger = get_logger("cli", RegistryLayer.CLI)

DEFAULT_STATE_FILE = "reliefchain-state.yaml"


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
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
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


def _parse_trusted_keys(entries: List[str]) -> Dict[str, str]:
    keys: Dict[str, str] = {}
    for entry in entries:
        key_id, sep, encoded = entry.partition("=")
        if not sep or not key_id or not encoded:
            raise CLIError(f"Trusted key must look like KEY_ID=PUBLIC_KEY: {entry!r}")
        keys[key_id] = encoded
    return keys


class ReliefChainCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="reliefchain",
            description="ReliefChain humanitarian supply registry CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"reliefchain {__version__}",
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
            "--state", "-s",
            default=DEFAULT_STATE_FILE,
            help=f"Registry snapshot file, .json or .yaml (default: {DEFAULT_STATE_FILE})",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (default: reliefchain.yaml search path)",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_init_command()
        self._register_org_commands()
        self._register_token_commands()
        self._register_admin_commands()
        self._register_query_commands()
        self._register_config_commands()

    @staticmethod
    def _add_caller(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--caller", required=True, help="Authenticated caller identity")

    def _register_init_command(self) -> None:
        init = self.subparsers.add_parser("init", help="Create a new registry snapshot")
        init.add_argument("--admin", required=True, help="Admin identity")
        init.add_argument(
            "--verifier",
            choices=["allowlist", "signed", "none"],
            default="allowlist",
            help="Verification capability (default: allowlist administered by --admin)",
        )
        init.add_argument("--org", action="append", default=[], help="Pre-approved organization (allowlist)")
        init.add_argument(
            "--trusted-key",
            action="append",
            default=[],
            help="KEY_ID=PUBLIC_KEY trusted for signed approvals",
        )
        init.add_argument("--force", action="store_true", help="Overwrite an existing state file")

    def _register_org_commands(self) -> None:
        org = self.subparsers.add_parser("org", help="Verification capability management")
        org_sub = org.add_subparsers(dest="subcommand")

        approve = org_sub.add_parser("approve", help="Approve an organization (allowlist)")
        approve.add_argument("organization")
        self._add_caller(approve)

        revoke = org_sub.add_parser("revoke", help="Revoke an organization (allowlist)")
        revoke.add_argument("organization")
        self._add_caller(revoke)

        org_sub.add_parser("list", help="List verified organizations")

        org_sub.add_parser("keygen", help="Generate a verifier keypair")

        sign = org_sub.add_parser("sign", help="Sign an approval with a verifier key")
        sign.add_argument("organization")
        sign.add_argument("--private-key", required=True, help="Verifier private key (base64url)")

        submit = org_sub.add_parser("submit", help="Submit a signed approval")
        submit.add_argument("organization")
        submit.add_argument("--key-id", required=True, help="Trusted key id")
        submit.add_argument("--signature", required=True, help="Approval signature (base64url)")

    def _register_token_commands(self) -> None:
        mint = self.subparsers.add_parser("mint", help="Mint a supply-batch token")
        self._add_caller(mint)
        mint.add_argument("--recipient", required=True, help="Initial owner")
        mint.add_argument("--uri", required=True, help="Metadata uri")
        mint.add_argument("--supply-type", required=True, help="Supply type")
        mint.add_argument("--quantity", type=int, required=True, help="Quantity")
        mint.add_argument("--expiration", type=int, help="Expiration height")
        mint.add_argument("--description", default="", help="Description")
        mint.add_argument("--tag", action="append", default=[], help="Tag (repeatable)")

        transfer = self.subparsers.add_parser("transfer", help="Transfer a token")
        transfer.add_argument("token_id", type=int)
        self._add_caller(transfer)
        transfer.add_argument("--sender", required=True, help="Current owner")
        transfer.add_argument("--recipient", required=True, help="New owner")

        burn = self.subparsers.add_parser("burn", help="Retire a token")
        burn.add_argument("token_id", type=int)
        self._add_caller(burn)

        update = self.subparsers.add_parser("update-metadata", help="Replace uri and description")
        update.add_argument("token_id", type=int)
        self._add_caller(update)
        update.add_argument("--uri", required=True)
        update.add_argument("--description", required=True)

        version = self.subparsers.add_parser("add-version", help="Append a version entry")
        version.add_argument("token_id", type=int)
        self._add_caller(version)
        version.add_argument("--version", dest="version_number", type=int, required=True)
        version.add_argument("--uri", required=True, help="Updated uri")
        version.add_argument("--notes", default="")

        grant = self.subparsers.add_parser("grant-license", help="Grant a time-bound license")
        grant.add_argument("token_id", type=int)
        self._add_caller(grant)
        grant.add_argument("--licensee", required=True)
        grant.add_argument("--duration", type=int, required=True, help="Duration in blocks")
        grant.add_argument("--terms", default="")

        revoke = self.subparsers.add_parser("revoke-license", help="Revoke every license of a licensee")
        revoke.add_argument("token_id", type=int)
        self._add_caller(revoke)
        revoke.add_argument("--licensee", required=True)

        collab = self.subparsers.add_parser("add-collaborator", help="Record a collaborator")
        collab.add_argument("token_id", type=int)
        self._add_caller(collab)
        collab.add_argument("--collaborator", required=True)
        collab.add_argument("--role", required=True)
        collab.add_argument("--permission", action="append", default=[], help="Permission (repeatable)")

        for name, help_text in (("lock", "Block transfers"), ("unlock", "Allow transfers")):
            cmd = self.subparsers.add_parser(name, help=help_text)
            cmd.add_argument("token_id", type=int)
            self._add_caller(cmd)

    def _register_admin_commands(self) -> None:
        for name, help_text in (("pause", "Pause the registry"), ("unpause", "Resume the registry")):
            cmd = self.subparsers.add_parser(name, help=help_text)
            self._add_caller(cmd)

    def _register_query_commands(self) -> None:
        show = self.subparsers.add_parser("show", help="Every record of one token")
        show.add_argument("token_id", type=int)
        show.add_argument("--licensee", help="Also report whether this licensee holds an active license")

        self.subparsers.add_parser("list", help="Summary of all tokens")
        self.subparsers.add_parser("status", help="Registry-wide state")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., registry.max_versions)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        set_correlation_id(generate_correlation_id())
        try:
            mgr = get_config_manager()
            if parsed.config:
                mgr.load_from_file(parsed.config)
            configure_logging(level="error" if parsed.quiet else None, stream=sys.stderr)

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (ConfigError, SnapshotError, ValidationErrors, VerificationError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    def _load(self, args: argparse.Namespace) -> SupplyRegistry:
        path = Path(args.state)
        if not path.exists():
            raise CLIError(f"No registry at {path}; run `reliefchain init` first")
        return read_snapshot(path)

    def _commit(
        self,
        args: argparse.Namespace,
        registry: SupplyRegistry,
        response: Response,
    ) -> Dict[str, Any]:
        """Persist a committed call, or turn a failed one into a CLIError."""
        if not response.ok:
            raise CLIError(f"{response.error.name} ({int(response.error)})")

        snapshot = save_snapshot(registry, args.state)
        receipt = registry.ledger.last_receipt
        return {
            "ok": True,
            "value": response.value,
            "height": snapshot["height"],
            "receipt": receipt.digest if receipt is not None else None,
            "state_root": snapshot["state_root"],
        }

    def _call(self, args: argparse.Namespace, call: Callable[[SupplyRegistry], Response]) -> Dict[str, Any]:
        registry = self._load(args)
        return self._commit(args, registry, call(registry))

    # -------------------------------------------------------------------------
    # init / org
    # -------------------------------------------------------------------------

    def _handle_init(self, args: argparse.Namespace) -> Any:
        path = Path(args.state)
        if path.exists() and not args.force:
            raise CLIError(f"{path} already exists (use --force to overwrite)")

        if args.verifier == "allowlist":
            verifier = OrganizationRegistry(args.admin, args.org)
        elif args.verifier == "signed":
            verifier = SignedApprovalVerifier(_parse_trusted_keys(args.trusted_key))
        else:
            verifier = None

        registry = SupplyRegistry(args.admin, verifier=verifier)
        snapshot = save_snapshot(registry, path)
        logger.info("Registry initialized", operation="init", state=str(path), admin=args.admin)
        return {
            "state": str(path),
            "admin": args.admin,
            "verifier": args.verifier,
            "height": snapshot["height"],
            "state_root": snapshot["state_root"],
        }

    def _allowlist(self, registry: SupplyRegistry) -> OrganizationRegistry:
        verifier = registry.get_verification_capability()
        if not isinstance(verifier, OrganizationRegistry):
            raise CLIError("Registry is not using an organization allow-list")
        return verifier

    def _handle_org_approve(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        response = self._allowlist(registry).approve(args.caller, args.organization)
        if not response.ok:
            raise CLIError(f"{response.error.name} ({int(response.error)})")
        save_snapshot(registry, args.state)
        return {"organization": args.organization, "verified": True}

    def _handle_org_revoke(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        response = self._allowlist(registry).revoke(args.caller, args.organization)
        if not response.ok:
            raise CLIError(f"{response.error.name} ({int(response.error)})")
        save_snapshot(registry, args.state)
        return {"organization": args.organization, "verified": False}

    def _handle_org_list(self, args: argparse.Namespace) -> Any:
        verifier = self._load(args).get_verification_capability()
        if verifier is None:
            return {"kind": None, "organizations": []}
        if isinstance(verifier, OrganizationRegistry):
            orgs = verifier.organizations()
        elif isinstance(verifier, SignedApprovalVerifier):
            orgs = [a.organization for a in verifier.approvals() if verifier.is_verified(a.organization)]
        else:
            orgs = []
        return {"kind": verifier.kind, "organizations": orgs}

    def _handle_org_keygen(self, args: argparse.Namespace) -> Any:
        priv, pub = generate_verifier_keypair()
        return {"private_key": private_key_b64url(priv), "public_key": pub}

    def _handle_org_sign(self, args: argparse.Namespace) -> Any:
        priv = load_private_key(args.private_key)
        return {"organization": args.organization, "signature": sign_approval(priv, args.organization)}

    def _handle_org_submit(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        verifier = registry.get_verification_capability()
        if not isinstance(verifier, SignedApprovalVerifier):
            raise CLIError("Registry is not using signed approvals")
        if not verifier.submit_approval(args.organization, args.key_id, args.signature):
            raise CLIError(f"Approval for {args.organization} does not verify under key {args.key_id}")
        save_snapshot(registry, args.state)
        return {"organization": args.organization, "verified": True}

    # -------------------------------------------------------------------------
    # Token operations
    # -------------------------------------------------------------------------

    def _handle_mint(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.mint(
            args.caller,
            recipient=args.recipient,
            uri=args.uri,
            supply_type=args.supply_type,
            quantity=args.quantity,
            expiration=args.expiration,
            description=args.description,
            tags=args.tag,
        ))

    def _handle_transfer(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.transfer(args.caller, args.token_id, args.sender, args.recipient))

    def _handle_burn(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.burn(args.caller, args.token_id))

    def _handle_update_metadata(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.update_metadata(args.caller, args.token_id, args.uri, args.description))

    def _handle_add_version(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.add_version(
            args.caller, args.token_id, args.version_number, args.uri, args.notes
        ))

    def _handle_grant_license(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.grant_license(
            args.caller, args.token_id, args.licensee, args.duration, args.terms
        ))

    def _handle_revoke_license(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.revoke_license(args.caller, args.token_id, args.licensee))

    def _handle_add_collaborator(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.add_collaborator(
            args.caller, args.token_id, args.collaborator, args.role, args.permission
        ))

    def _handle_lock(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.lock(args.caller, args.token_id))

    def _handle_unlock(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.unlock(args.caller, args.token_id))

    def _handle_pause(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.pause(args.caller))

    def _handle_unpause(self, args: argparse.Namespace) -> Any:
        return self._call(args, lambda r: r.unpause(args.caller))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _handle_show(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        record = registry.describe_token(args.token_id)
        if record is None:
            raise CLIError(f"NOT_FOUND (101): token {args.token_id}")
        if args.licensee:
            record["license_active"] = registry.is_license_active(args.token_id, args.licensee)
        return record

    def _handle_list(self, args: argparse.Namespace) -> Any:
        return [
            {
                "token_id": t["token_id"],
                "owner": t["owner"],
                "uri": t["metadata"]["uri"],
                "quantity": t["metadata"]["quantity"],
                "status": t["status"]["status"],
                "locked": t["metadata"]["locked"],
            }
            for t in self._load(args).iter_tokens()
        ]

    def _handle_status(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        snapshot = export_snapshot(registry)
        verifier = registry.get_verification_capability()
        return {
            "admin": registry.get_admin(),
            "paused": registry.is_paused(),
            "last_token_id": registry.get_last_token_id(),
            "height": snapshot["height"],
            "verification": verifier.kind if verifier is not None else None,
            "tokens": len(snapshot["tokens"]),
            "state_root": compute_state_root(snapshot),
        }

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": get_config_manager().get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("Invalid configuration: " + "; ".join(errors))
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = ReliefChainCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
