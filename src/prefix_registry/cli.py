"""Prefix registry CLI — command-line interface for the registry service.

Usage:
    python -m prefix_registry.cli keygen --out admin.key
    python -m prefix_registry.cli init --key admin.key --fee 1000000
    python -m prefix_registry.cli fund --identity <id> --amount 5000000
    python -m prefix_registry.cli submit --key owner.key --prefix MYAPP \\
        --uri https://example.com/meta.json --hash <64 hex chars>
    python -m prefix_registry.cli approve --key verifier.key --prefix MYAPP --ref-hash <hex>
    python -m prefix_registry.cli show MYAPP
    python -m prefix_registry.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from prefix_registry.crypto.signatures import (
    generate_keypair,
    identity_of,
    is_valid_identity,
    sign_message,
)
from prefix_registry.engine.errors import RegistryError
from prefix_registry.logger import get_logger
from prefix_registry.persistence.event_log import EventLog
from prefix_registry.persistence.ledger_store import LedgerStore
from prefix_registry.policy.resolver import PolicyResolver
from prefix_registry.service import PrefixRegistryService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(config_dir: Path, data_dir: Path = DEFAULT_DATA) -> PrefixRegistryService:
    """Create a PrefixRegistryService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    return PrefixRegistryService(
        resolver,
        ledger=LedgerStore(storage_path=data_dir / "state.json"),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
    )


def _hex_bytes(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}") from e


def _identity(value: str) -> str:
    if not is_valid_identity(value):
        raise argparse.ArgumentTypeError(f"not an Ed25519 identity: {value!r}")
    return value


def _load_key(path: Path) -> tuple[str, str]:
    """Read a key file written by ``keygen``. Returns (private_key_hex, identity)."""
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    private_key = data["private_key"]
    identity = identity_of(private_key)
    if data.get("identity", identity) != identity:
        raise ValueError(f"Key file {path} identity does not match its private key")
    return private_key, identity


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_keygen(args: argparse.Namespace) -> int:
    private_key, identity = generate_keypair()
    args.out.parent.mkdir(parents=True, exist_ok=True)
    with args.out.open("w", encoding="utf-8") as f:
        json.dump({"private_key": private_key, "identity": identity}, f, indent=2)
    print(identity)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    record = service.get_prefix(args.prefix)
    if record is None:
        print(f"Failed: no record for prefix {args.prefix}", file=sys.stderr)
        return 1
    print(json.dumps({
        "address": service.prefix_address(record.prefix),
        "record": record.to_dict(),
        "history": [e.to_dict() for e in service.prefix_history(record.prefix)],
    }, indent=2))
    return 0


def cmd_fund(args: argparse.Namespace) -> int:
    identity = args.identity or _load_key(args.key)[1]
    service = _make_service(args.config, args.data)
    return _report(service.fund(identity, args.amount))


def cmd_init(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.initialize(admin, args.fee))


def cmd_update_fee(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.update_fee(admin, args.fee))


def cmd_set_pause(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.set_pause(admin, args.state == "on"))


def cmd_withdraw(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.withdraw_treasury(admin, args.amount, args.to))


def cmd_add_verifier(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.add_verifier(admin, args.verifier))


def cmd_remove_verifier(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.remove_verifier(admin, args.verifier))


def cmd_submit(args: argparse.Namespace) -> int:
    private_key, owner = _load_key(args.key)
    service = _make_service(args.config, args.data)
    proof = sign_message(private_key, args.hash)
    return _report(service.submit_with_fee(
        owner, args.prefix, args.uri, args.hash, proof, args.authority_key,
    ))


def cmd_approve(args: argparse.Namespace) -> int:
    _, verifier = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.approve(verifier, args.prefix, args.ref_hash))


def cmd_reject(args: argparse.Namespace) -> int:
    _, verifier = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.reject(verifier, args.prefix, args.reason))


def cmd_update_metadata(args: argparse.Namespace) -> int:
    private_key, owner = _load_key(args.key)
    service = _make_service(args.config, args.data)
    proof = sign_message(private_key, args.hash)
    return _report(service.update_metadata(owner, args.prefix, args.uri, args.hash, proof))


def cmd_update_authority(args: argparse.Namespace) -> int:
    _, owner = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.update_authority_keys(owner, args.prefix, args.authority_key))


def cmd_deactivate(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.deactivate(admin, args.prefix))


def cmd_reactivate(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.reactivate(admin, args.prefix))


def cmd_refund(args: argparse.Namespace) -> int:
    _, owner = _load_key(args.key)
    service = _make_service(args.config, args.data)
    return _report(service.refund(owner, args.prefix))


def cmd_recover_owner(args: argparse.Namespace) -> int:
    _, admin = _load_key(args.key)
    new_owner_key, new_owner = _load_key(args.new_owner_key)
    service = _make_service(args.config, args.data)
    try:
        message = service.recovery_message(args.prefix)
    except RegistryError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    proof = sign_message(new_owner_key, message)
    return _report(service.recover_owner_with_fee(admin, args.prefix, new_owner, proof))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run registry invariant checks against the config and data directory."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(config_dir=args.config, data_dir=args.data)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prefix-registry",
        description="Prefix registry — fee-gated namespace registry CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory holding state.json and events.jsonl (default: data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr output (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # keygen
    p_keygen = sub.add_parser("keygen", help="Generate an Ed25519 key file")
    p_keygen.add_argument("--out", type=Path, required=True, help="Key file to write")

    # status / show
    sub.add_parser("status", help="Show registry status")
    p_show = sub.add_parser("show", help="Show a prefix record and its history")
    p_show.add_argument("prefix", help="Prefix (case-insensitive)")

    # fund
    p_fund = sub.add_parser("fund", help="Credit an identity's balance")
    who = p_fund.add_mutually_exclusive_group(required=True)
    who.add_argument("--identity", type=_identity, help="Identity (hex public key)")
    who.add_argument("--key", type=Path, help="Key file of the identity to fund")
    p_fund.add_argument("--amount", type=int, required=True, help="Amount to credit")

    # admin: fee registry and treasury
    p_init = sub.add_parser("init", help="Initialize the registry (one-time)")
    p_init.add_argument("--key", type=Path, required=True, help="Admin key file")
    p_init.add_argument("--fee", type=int, required=True, help="Initial submission fee")

    p_fee = sub.add_parser("update-fee", help="Change the submission fee")
    p_fee.add_argument("--key", type=Path, required=True, help="Admin key file")
    p_fee.add_argument("--fee", type=int, required=True, help="New fee")

    p_pause = sub.add_parser("set-pause", help="Pause or resume fee operations")
    p_pause.add_argument("--key", type=Path, required=True, help="Admin key file")
    p_pause.add_argument("state", choices=["on", "off"], help="on pauses, off resumes")

    p_wd = sub.add_parser("withdraw", help="Withdraw from the treasury")
    p_wd.add_argument("--key", type=Path, required=True, help="Admin key file")
    p_wd.add_argument("--amount", type=int, required=True, help="Amount to withdraw")
    p_wd.add_argument("--to", type=_identity, required=True, help="Recipient identity")

    # admin: verifier roster
    for name, help_text in (
        ("add-verifier", "Add a verifier to the roster"),
        ("remove-verifier", "Remove a verifier from the roster"),
    ):
        p_ver = sub.add_parser(name, help=help_text)
        p_ver.add_argument("--key", type=Path, required=True, help="Admin key file")
        p_ver.add_argument("--verifier", type=_identity, required=True, help="Verifier identity")

    # owner: submission and updates
    p_submit = sub.add_parser("submit", help="Pay the fee and submit a prefix")
    p_submit.add_argument("--key", type=Path, required=True, help="Owner key file")
    p_submit.add_argument("--prefix", required=True, help="Prefix, uppercase A-Z0-9")
    p_submit.add_argument("--uri", required=True, help="Metadata URI (https:// or ipfs://)")
    p_submit.add_argument("--hash", type=_hex_bytes, required=True, help="Metadata hash (hex)")
    p_submit.add_argument(
        "--authority-key", action="append", default=[],
        help="Authority key (repeatable)",
    )

    p_meta = sub.add_parser("update-metadata", help="Replace a prefix's metadata")
    p_meta.add_argument("--key", type=Path, required=True, help="Owner key file")
    p_meta.add_argument("--prefix", required=True)
    p_meta.add_argument("--uri", required=True, help="New metadata URI")
    p_meta.add_argument("--hash", type=_hex_bytes, required=True, help="New metadata hash (hex)")

    p_auth = sub.add_parser("update-authority", help="Replace a prefix's authority keys")
    p_auth.add_argument("--key", type=Path, required=True, help="Owner key file")
    p_auth.add_argument("--prefix", required=True)
    p_auth.add_argument(
        "--authority-key", action="append", default=[],
        help="Authority key (repeatable; omit all to clear)",
    )

    p_refund = sub.add_parser("refund", help="Refund a rejected or expired submission")
    p_refund.add_argument("--key", type=Path, required=True, help="Owner key file")
    p_refund.add_argument("--prefix", required=True)

    # verifier: review
    p_approve = sub.add_parser("approve", help="Approve a pending prefix")
    p_approve.add_argument("--key", type=Path, required=True, help="Verifier key file")
    p_approve.add_argument("--prefix", required=True)
    p_approve.add_argument(
        "--ref-hash", type=_hex_bytes, required=True, help="Verification reference hash (hex)",
    )

    p_reject = sub.add_parser("reject", help="Reject a pending prefix")
    p_reject.add_argument("--key", type=Path, required=True, help="Verifier key file")
    p_reject.add_argument("--prefix", required=True)
    p_reject.add_argument("--reason", required=True, help="Rejection reason")

    # admin: status control and recovery
    for name, help_text in (
        ("deactivate", "Deactivate an active prefix"),
        ("reactivate", "Reactivate an inactive prefix"),
    ):
        p_state = sub.add_parser(name, help=help_text)
        p_state.add_argument("--key", type=Path, required=True, help="Admin key file")
        p_state.add_argument("--prefix", required=True)

    p_recover = sub.add_parser("recover-owner", help="Reassign a prefix to a new owner")
    p_recover.add_argument("--key", type=Path, required=True, help="Admin key file")
    p_recover.add_argument("--prefix", required=True)
    p_recover.add_argument(
        "--new-owner-key", type=Path, required=True,
        help="New owner key file (signs consent and pays the fee)",
    )

    # check-invariants
    sub.add_parser("check-invariants", help="Run registry invariant checks")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    get_logger(level=getattr(logging, args.log_level))

    commands = {
        "keygen": cmd_keygen,
        "status": cmd_status,
        "show": cmd_show,
        "fund": cmd_fund,
        "init": cmd_init,
        "update-fee": cmd_update_fee,
        "set-pause": cmd_set_pause,
        "withdraw": cmd_withdraw,
        "add-verifier": cmd_add_verifier,
        "remove-verifier": cmd_remove_verifier,
        "submit": cmd_submit,
        "update-metadata": cmd_update_metadata,
        "update-authority": cmd_update_authority,
        "refund": cmd_refund,
        "approve": cmd_approve,
        "reject": cmd_reject,
        "deactivate": cmd_deactivate,
        "reactivate": cmd_reactivate,
        "recover-owner": cmd_recover_owner,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
