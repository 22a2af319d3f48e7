"""Tests for PrefixRegistryService — proves the facade audits and persists correctly."""

import logging

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from prefix_registry.crypto.signatures import generate_keypair, sign_message
from prefix_registry.models.registry import PrefixStatus
from prefix_registry.persistence.event_log import EventKind, EventLog
from prefix_registry.persistence.ledger_store import LedgerStore
from prefix_registry.policy.resolver import PolicyResolver
from prefix_registry.service import PrefixRegistryService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

FEE = 1_000
META_HASH = bytes([1] * 32)
REF_HASH = bytes([2] * 32)
URI = "https://example.com/myapp.json"


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(resolver: PolicyResolver) -> PrefixRegistryService:
    return PrefixRegistryService(resolver, clock=_now)


@pytest.fixture
def actors() -> dict[str, tuple[str, str]]:
    return {name: generate_keypair() for name in ("admin", "verifier", "owner")}


def _bootstrap(service: PrefixRegistryService, actors: dict[str, tuple[str, str]]) -> None:
    admin = actors["admin"][1]
    assert service.initialize(admin, FEE).success
    assert service.add_verifier(admin, actors["verifier"][1]).success
    assert service.fund(actors["owner"][1], 10 * FEE).success


def _submit(service: PrefixRegistryService, actors, prefix: str = "MYAPP"):
    owner_key, owner = actors["owner"]
    return service.submit_with_fee(
        owner, prefix, URI, META_HASH, sign_message(owner_key, META_HASH),
    )


class TestOperations:
    def test_myapp_end_to_end(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        submitted = _submit(service, actors)
        assert submitted.success
        assert submitted.data["event_kind"] == EventKind.PREFIX_SUBMITTED.value
        assert submitted.data["record"]["status"] == "pending"
        assert submitted.data["address"] == service.prefix_address("MYAPP")

        approved = service.approve(actors["verifier"][1], "MYAPP", REF_HASH)
        assert approved.success
        record = service.get_prefix("myapp")
        assert record.status == PrefixStatus.ACTIVE
        assert record.ref_hash == REF_HASH
        assert service.treasury_balance() == FEE

    def test_failure_returns_error_code(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        result = _submit(service, actors, prefix="AB")
        assert not result.success
        assert result.error_code == "InvalidPrefixFormat"
        assert result.errors[0].startswith("InvalidPrefixFormat")

    def test_fund_rejects_non_positive(self, service: PrefixRegistryService) -> None:
        result = service.fund("someone", 0)
        assert not result.success
        assert result.error_code == "InvalidAmount"

    def test_reads_before_initialize(self, service: PrefixRegistryService) -> None:
        assert service.get_fee_registry() is None
        assert service.get_verifiers() == []
        assert service.get_prefix("MYAPP") is None
        assert service.status()["initialized"] is False

    def test_get_prefix_malformed_is_none(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        assert service.get_prefix("x!") is None

    def test_list_prefixes_by_status(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors, "AAA")
        _submit(service, actors, "BBB")
        service.approve(actors["verifier"][1], "BBB", REF_HASH)
        assert [r.prefix for r in service.list_prefixes()] == ["AAA", "BBB"]
        assert [r.prefix for r in service.list_prefixes(PrefixStatus.ACTIVE)] == ["BBB"]

    def test_reads_return_copies(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors)
        service.get_fee_registry().current_fee = 1
        record = service.get_prefix("MYAPP")
        record.status = PrefixStatus.ACTIVE
        record.owner = "mallory"
        service.list_prefixes()[0].fee_paid = 0
        assert service.get_fee_registry().current_fee == FEE
        stored = service.get_prefix("MYAPP")
        assert stored.status == PrefixStatus.PENDING
        assert stored.owner == actors["owner"][1]
        assert stored.fee_paid == FEE

    def test_recovery_needs_new_owner_consent(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors)
        service.approve(actors["verifier"][1], "MYAPP", REF_HASH)
        new_key, new_owner = generate_keypair()
        service.fund(new_owner, FEE)
        admin = actors["admin"][1]

        unsigned = service.recover_owner_with_fee(admin, "MYAPP", new_owner, None)
        assert unsigned.error_code == "UnauthorizedOwnerAction"
        assert service.balance_of(new_owner) == FEE

        consent = sign_message(new_key, service.recovery_message("myapp"))
        result = service.recover_owner_with_fee(admin, "MYAPP", new_owner, consent)
        assert result.success
        assert result.data["event_kind"] == EventKind.PREFIX_OWNER_RECOVERED.value
        assert service.get_prefix("MYAPP").owner == new_owner
        assert service.balance_of(new_owner) == 0


class TestAuditTrail:
    def test_one_event_per_committed_operation(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors)
        service.reject(actors["verifier"][1], "MYAPP", "no")
        service.refund(actors["owner"][1], "MYAPP")
        kinds = [e.event_kind for e in service.event_log.events()]
        assert kinds == [
            EventKind.FEE_UPDATED,
            EventKind.VERIFIER_ADDED,
            EventKind.PREFIX_SUBMITTED,
            EventKind.PREFIX_REJECTED,
            EventKind.PREFIX_REFUNDED,
        ]

    def test_rejected_operation_emits_no_event(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        before = service.event_log.count
        assert not service.approve(actors["verifier"][1], "NOPE", REF_HASH).success
        assert service.event_log.count == before

    def test_prefix_history(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors)
        service.approve(actors["verifier"][1], "MYAPP", REF_HASH)
        history = service.prefix_history("myapp")
        assert [e.event_kind for e in history] == [
            EventKind.PREFIX_SUBMITTED, EventKind.PREFIX_APPROVED,
        ]
        assert history[1].payload["owner"] == actors["owner"][1]

    def test_event_timestamps_use_clock(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        assert service.event_log.last_event.timestamp_utc == "2026-03-01T12:00:00Z"

    def test_audit_failure_rolls_back(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)

        def _broken_append(event) -> None:
            raise OSError("disk full")

        service.event_log.append = _broken_append
        result = _submit(service, actors)
        assert not result.success
        assert "Event log failure" in result.errors[0]
        assert service.get_prefix("MYAPP") is None
        assert service.treasury_balance() == 0
        assert service.balance_of(actors["owner"][1]) == 10 * FEE

    def test_logs_commits_and_rejections(
        self, service: PrefixRegistryService, actors, caplog,
    ) -> None:
        with caplog.at_level(logging.INFO, logger="prefix_registry"):
            _bootstrap(service, actors)
            _submit(service, actors, prefix="AB")
        messages = [r.getMessage() for r in caplog.records]
        assert any("initialize committed" in m for m in messages)
        assert any("submit_with_fee rejected code=InvalidPrefixFormat" in m for m in messages)


class TestPersistence:
    def test_restart_restores_state_and_event_ids(self, resolver: PolicyResolver, actors, tmp_path: Path) -> None:
        def _make() -> PrefixRegistryService:
            return PrefixRegistryService(
                resolver,
                ledger=LedgerStore(tmp_path / "state.json"),
                event_log=EventLog(tmp_path / "events.jsonl"),
                clock=_now,
            )

        first = _make()
        _bootstrap(first, actors)
        _submit(first, actors)

        second = _make()
        record = second.get_prefix("MYAPP")
        assert record is not None and record.fee_paid == FEE
        assert second.treasury_balance() == FEE
        result = second.approve(actors["verifier"][1], "MYAPP", REF_HASH)
        assert result.success
        assert result.data["event_id"] == "EVT-00000004"

    def test_state_write_failure_degrades(self, resolver: PolicyResolver, actors, tmp_path: Path) -> None:
        ledger = LedgerStore(tmp_path / "state.json")
        service = PrefixRegistryService(resolver, ledger=ledger, clock=_now)

        def _broken_save() -> None:
            raise OSError("read-only filesystem")

        ledger.save = _broken_save
        result = service.initialize(actors["admin"][1], FEE)
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert service.status()["persistence_degraded"] is True
        assert service.get_fee_registry() is not None


class TestStatus:
    def test_status_summary(self, service: PrefixRegistryService, actors) -> None:
        _bootstrap(service, actors)
        _submit(service, actors, "AAA")
        _submit(service, actors, "BBB")
        service.reject(actors["verifier"][1], "BBB", "no")
        status = service.status()
        assert status["initialized"]
        assert status["fee"]["current_fee"] == FEE
        assert status["fee"]["paused"] is False
        assert status["treasury"]["balance"] == 2 * FEE
        assert status["verifiers"] == 1
        assert status["prefixes"]["by_status"] == {"pending": 1, "rejected": 1}
        assert status["events"]["count"] == 5
        assert status["events"]["head_digest"] == service.event_log.head_digest()


class TestExpiryScenario:
    def test_expired_pending_can_be_refunded_and_reclaimed(self, resolver: PolicyResolver, actors) -> None:
        clock = {"now": _now()}
        service = PrefixRegistryService(resolver, clock=lambda: clock["now"])
        _bootstrap(service, actors)
        _submit(service, actors)

        clock["now"] = _now() + timedelta(days=20)
        late = service.approve(actors["verifier"][1], "MYAPP", REF_HASH)
        assert late.error_code == "PrefixExpired"
        assert service.refund(actors["owner"][1], "MYAPP").success
        assert _submit(service, actors).success
