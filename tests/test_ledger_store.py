"""Tests for the ledger store — proves atomicity, create-if-absent, and persistence."""

import threading

import pytest
from datetime import datetime, timezone
from pathlib import Path

from prefix_registry.models.registry import PrefixRecord
from prefix_registry.persistence.ledger_store import (
    KIND_PREFIX_RECORD,
    AccountExistsError,
    AccountNotFoundError,
    InsufficientFundsError,
    LedgerStore,
)


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(prefix: str = "MYAPP") -> PrefixRecord:
    return PrefixRecord(
        owner="owner-1",
        prefix=prefix,
        metadata_uri="https://example.com/meta.json",
        metadata_hash=bytes([1] * 32),
        fee_paid=100,
        expiry_at=_now(),
        created_at=_now(),
        updated_at=_now(),
    )


class TestAccounts:
    def test_create_and_get(self) -> None:
        store = LedgerStore()
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
        account = store.get_account("addr-1")
        assert account is not None
        assert account.data.prefix == "MYAPP"
        assert account.seeds == ("prefix", "MYAPP")

    def test_create_if_absent(self) -> None:
        store = LedgerStore()
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
        with pytest.raises(AccountExistsError):
            store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())

    def test_close_frees_address(self) -> None:
        store = LedgerStore()
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
        store.close_account("addr-1")
        assert store.get_account("addr-1") is None
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())

    def test_close_missing_account(self) -> None:
        with pytest.raises(AccountNotFoundError):
            LedgerStore().close_account("nowhere")

    def test_filter_by_kind(self) -> None:
        store = LedgerStore()
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "AAA"), data=_record("AAA"))
        store.create_account("addr-2", "treasury", ("treasury", "x"))
        assert len(store.accounts(KIND_PREFIX_RECORD)) == 1
        assert len(store.accounts()) == 2


class TestBalances:
    def test_credit_and_transfer(self) -> None:
        store = LedgerStore()
        store.credit("alice", 500)
        store.transfer("alice", "bob", 200)
        assert store.balance("alice") == 300
        assert store.balance("bob") == 200

    def test_insufficient_funds(self) -> None:
        store = LedgerStore()
        store.credit("alice", 50)
        with pytest.raises(InsufficientFundsError):
            store.transfer("alice", "bob", 51)
        assert store.balance("alice") == 50

    def test_negative_amounts_rejected(self) -> None:
        store = LedgerStore()
        with pytest.raises(ValueError):
            store.credit("alice", -1)
        with pytest.raises(ValueError):
            store.transfer("alice", "bob", -1)


class TestTransactions:
    def test_failure_restores_everything(self) -> None:
        store = LedgerStore()
        store.credit("alice", 500)
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.transfer("alice", "treasury", 100)
                store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
                raise RuntimeError("abort")
        assert store.balance("alice") == 500
        assert store.balance("treasury") == 0
        assert store.get_account("addr-1") is None

    def test_failure_restores_mutated_data(self) -> None:
        store = LedgerStore()
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.get_account("addr-1").data.owner = "mallory"
                raise RuntimeError("abort")
        assert store.get_account("addr-1").data.owner == "owner-1"

    def test_nested_transactions_join_outer(self) -> None:
        store = LedgerStore()
        store.credit("alice", 500)
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.transfer("alice", "bob", 100)
                assert store.in_transaction
                raise RuntimeError("abort")
        assert store.balance("bob") == 0
        assert not store.in_transaction

    def test_concurrent_create_one_winner(self) -> None:
        store = LedgerStore()
        outcomes: list[str] = []
        barrier = threading.Barrier(8)

        def _claim(n: int) -> None:
            barrier.wait()
            try:
                with store.transaction():
                    store.create_account(
                        "addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record(),
                    )
                outcomes.append("won")
            except AccountExistsError:
                outcomes.append("lost")

        threads = [threading.Thread(target=_claim, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count("won") == 1
        assert outcomes.count("lost") == 7


class TestFilePersistence:
    def test_save_and_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = LedgerStore(storage_path=path)
        store.credit("alice", 500)
        store.create_account("addr-1", KIND_PREFIX_RECORD, ("prefix", "MYAPP"), data=_record())
        store.save()

        reloaded = LedgerStore(storage_path=path)
        assert reloaded.balance("alice") == 500
        record = reloaded.get_account("addr-1").data
        assert record.prefix == "MYAPP"
        assert record.metadata_hash == bytes([1] * 32)
        assert record.expiry_at == _now()

    def test_save_without_path_is_noop(self) -> None:
        LedgerStore().save()
