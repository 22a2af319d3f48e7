"""Ledger store — the atomic account and balance layer the registry runs on.

Provides the three primitives the registry engine depends on:
1. Atomic execution: ``transaction()`` runs a block against a snapshot;
   if the block raises, every account and balance change is undone.
2. Create-if-absent: ``create_account`` refuses an occupied address, so
   two submissions racing for one prefix cannot both succeed.
3. Balance transfer between identities and protocol-owned accounts.

Transactions are serialized with a re-entrant lock. Nested
``transaction()`` blocks join the outermost one. State can be persisted
to a JSON file and loaded back on construction.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from prefix_registry.models.registry import FeeRegistry, PrefixRecord, VerifierRoster


PROTOCOL_OWNER = "protocol"

KIND_FEE_REGISTRY = "fee_registry"
KIND_VERIFIER_ROSTER = "verifier_roster"
KIND_TREASURY = "treasury"
KIND_PREFIX_RECORD = "prefix_record"

_DECODERS = {
    KIND_FEE_REGISTRY: FeeRegistry.from_dict,
    KIND_VERIFIER_ROSTER: VerifierRoster.from_dict,
    KIND_PREFIX_RECORD: PrefixRecord.from_dict,
}


class AccountExistsError(ValueError):
    """An account already occupies the requested address."""


class AccountNotFoundError(ValueError):
    """No account exists at the requested address."""


class InsufficientFundsError(ValueError):
    """A transfer source does not hold the requested amount."""


@dataclass
class StoredAccount:
    """An account at a derived address.

    ``seeds`` are the (namespace_tag, key) pair the address was derived
    from, kept so the address can be re-derived and checked on load.
    """
    address: str
    kind: str
    seeds: tuple[str, str]
    owner: str = PROTOCOL_OWNER
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "kind": self.kind,
            "seeds": list(self.seeds),
            "owner": self.owner,
            "data": self.data.to_dict() if self.data is not None else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> StoredAccount:
        kind = data["kind"]
        raw = data.get("data")
        decoded = _DECODERS[kind](raw) if raw is not None and kind in _DECODERS else None
        return StoredAccount(
            address=data["address"],
            kind=kind,
            seeds=tuple(data["seeds"]),
            owner=data.get("owner", PROTOCOL_OWNER),
            data=decoded,
        )


class LedgerStore:
    """In-process ledger: accounts by address plus balances by holder.

    Usage:
        store = LedgerStore()
        store.credit("alice", 1_000)
        with store.transaction():
            store.create_account(addr, KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=record)
            store.transfer("alice", treasury_addr, 100)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._accounts: dict[str, StoredAccount] = {}
        self._balances: dict[str, int] = {}
        self._lock = threading.RLock()
        self._depth = 0

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # Atomic execution
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[LedgerStore]:
        """Run a block atomically. Any exception restores the prior state."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = (copy.deepcopy(self._accounts), dict(self._balances))
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._accounts, self._balances = snapshot
                raise
            finally:
                self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        address: str,
        kind: str,
        seeds: tuple[str, str],
        data: Any = None,
        owner: str = PROTOCOL_OWNER,
    ) -> StoredAccount:
        """Create an account at ``address``. Raises AccountExistsError if occupied."""
        with self._lock:
            if address in self._accounts:
                raise AccountExistsError(f"Account already exists at {address}")
            account = StoredAccount(
                address=address, kind=kind, seeds=tuple(seeds), owner=owner, data=data,
            )
            self._accounts[address] = account
            self._balances.setdefault(address, 0)
            return account

    def get_account(self, address: str) -> Optional[StoredAccount]:
        return self._accounts.get(address)

    def close_account(self, address: str) -> StoredAccount:
        """Remove the account at ``address``, freeing it for re-creation.

        Any balance left on a closed account is discarded; callers move
        funds out first.
        """
        with self._lock:
            account = self._accounts.pop(address, None)
            if account is None:
                raise AccountNotFoundError(f"No account at {address}")
            self._balances.pop(address, None)
            return account

    def accounts(self, kind: Optional[str] = None) -> list[StoredAccount]:
        if kind is None:
            return list(self._accounts.values())
        return [a for a in self._accounts.values() if a.kind == kind]

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def balances(self) -> dict[str, int]:
        return dict(self._balances)

    def credit(self, holder: str, amount: int) -> int:
        """Credit funds from outside the ledger (faucet / deposit)."""
        if amount < 0:
            raise ValueError(f"Credit amount must be non-negative, got {amount}")
        with self._lock:
            self._balances[holder] = self._balances.get(holder, 0) + amount
            return self._balances[holder]

    def transfer(self, source: str, destination: str, amount: int) -> None:
        """Move ``amount`` from ``source`` to ``destination``."""
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative, got {amount}")
        with self._lock:
            available = self._balances.get(source, 0)
            if available < amount:
                raise InsufficientFundsError(
                    f"{source} holds {available}, cannot transfer {amount}"
                )
            self._balances[source] = available - amount
            self._balances[destination] = self._balances.get(destination, 0) + amount

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write the full state to the storage file (if configured).

        Writes to a temporary file and renames it over the target, so a
        crash mid-write never leaves a truncated state file.
        """
        if self._storage_path is None:
            return
        with self._lock:
            state = {
                "accounts": [a.to_dict() for a in self._accounts.values()],
                "balances": dict(sorted(self._balances.items())),
            }
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._storage_path)

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            state = json.load(f)
        for raw in state.get("accounts", []):
            account = StoredAccount.from_dict(raw)
            if account.address in self._accounts:
                raise ValueError(f"Duplicate account address in state file: {account.address}")
            self._accounts[account.address] = account
        self._balances = {k: int(v) for k, v in state.get("balances", {}).items()}
