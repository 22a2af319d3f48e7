#!/usr/bin/env python3
"""Registry invariant checks against the config file and persisted state."""

import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from prefix_registry.crypto.addressing import derive_address
from prefix_registry.engine.errors import RegistryError
from prefix_registry.engine.validation import validate_submitted_prefix
from prefix_registry.models.registry import PrefixStatus
from prefix_registry.persistence.event_log import EventLog
from prefix_registry.persistence.ledger_store import (
    KIND_PREFIX_RECORD,
    KIND_TREASURY,
    LedgerStore,
)
from prefix_registry.policy.resolver import U64_MAX, PolicyResolver


CONFIG_DIR = ROOT / "config"


def check_config(resolver: PolicyResolver, errors: list[str]) -> None:
    min_len, max_len = resolver.prefix_length_bounds()
    if min_len < 1:
        errors.append(f"prefix.min_length must be >= 1, got {min_len}")
    if min_len > max_len:
        errors.append("prefix.min_length cannot exceed prefix.max_length")
    if resolver.metadata_hash_length() != 32:
        errors.append("metadata.hash_length must be 32 (Ed25519 proofs sign a 32-byte hash)")
    for scheme in resolver.allowed_uri_schemes():
        if not scheme.endswith("://"):
            errors.append(f"metadata.allowed_schemes entry must end with '://': {scheme}")
    if resolver.max_uri_length() <= max(len(s) for s in resolver.allowed_uri_schemes()):
        errors.append("metadata.max_uri_length leaves no room after the scheme")
    if resolver.max_fee() > U64_MAX:
        errors.append("fees.max_fee must fit an unsigned 64-bit integer")
    if resolver.treasury_reserve_minimum() < 0:
        errors.append("fees.treasury_reserve_minimum must be >= 0")
    if resolver.pending_review_window().total_seconds() <= 0:
        errors.append("expiry.pending_review_days must be > 0")


def check_state(
    resolver: PolicyResolver,
    data_dir: Path,
    errors: list[str],
    warnings: list[str],
) -> None:
    state_path = data_dir / "state.json"
    events_path = data_dir / "events.jsonl"

    try:
        EventLog(storage_path=events_path)
    except (ValueError, KeyError) as e:
        errors.append(f"Event log integrity: {e}")

    try:
        ledger = LedgerStore(storage_path=state_path)
    except (ValueError, KeyError) as e:
        errors.append(f"State file unreadable: {e}")
        return

    program_id = resolver.program_id()
    for account in ledger.accounts():
        if derive_address(program_id, *account.seeds) != account.address:
            errors.append(f"Account {account.address} does not match its seeds {account.seeds}")

    refundable = 0
    for account in ledger.accounts(KIND_PREFIX_RECORD):
        record = account.data
        try:
            validate_submitted_prefix(record.prefix, resolver)
        except RegistryError as e:
            errors.append(f"Record {account.address}: {e}")
        if record.prefix != account.seeds[1]:
            errors.append(f"Record {record.prefix} stored under seed {account.seeds[1]}")
        if len(record.authority_keys) > resolver.max_authority_keys():
            errors.append(f"Record {record.prefix} has {len(record.authority_keys)} authority keys")
        if len(set(record.authority_keys)) != len(record.authority_keys):
            errors.append(f"Record {record.prefix} has duplicate authority keys")
        if record.status == PrefixStatus.PENDING and record.expiry_at is None:
            errors.append(f"Pending record {record.prefix} has no expiry")
        if record.fee_paid < 0:
            errors.append(f"Record {record.prefix} has negative fee_paid")
        if record.status in (PrefixStatus.PENDING, PrefixStatus.REJECTED):
            refundable += record.fee_paid

    for holder, amount in ledger.balances().items():
        if amount < 0:
            errors.append(f"Negative balance for {holder}: {amount}")

    treasuries = ledger.accounts(KIND_TREASURY)
    if treasuries:
        balance = ledger.balance(treasuries[0].address)
        # Withdrawals are bounded by the reserve minimum, not by open refunds.
        if balance < refundable:
            warnings.append(
                f"Treasury balance {balance} is below refundable fees {refundable}"
            )


def check(config_dir: Path = CONFIG_DIR, data_dir: Optional[Path] = None) -> int:
    errors: list[str] = []
    warnings: list[str] = []

    try:
        resolver = PolicyResolver.from_config_dir(config_dir)
    except (OSError, ValueError) as e:
        print("Invariant check failed:")
        print(f"- Config: {e}")
        return 1

    check_config(resolver, errors)
    if data_dir is not None and data_dir.exists():
        check_state(resolver, data_dir, errors, warnings)

    for warning in warnings:
        print(f"Warning: {warning}")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    data = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    raise SystemExit(check(data_dir=data))
