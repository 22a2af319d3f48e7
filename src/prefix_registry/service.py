"""Prefix registry service — unified facade over the registry engine.

This is the primary interface for programmatic access to the registry.
It orchestrates:
- Fee registry and treasury administration
- Verifier roster management
- Prefix lifecycle (submit, review, update, deactivate, refund, recover)
- Persistence (ledger state file, event log)

All operations produce typed results. Every committed operation appends
exactly one event to the log inside the same ledger transaction as the
state change: if the append fails, the state change is rolled back and
the operation fails closed.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from prefix_registry.crypto.signatures import SignatureProof
from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.engine.lifecycle import Outcome, PrefixLifecycleEngine
from prefix_registry.engine.validation import normalize_prefix
from prefix_registry.logger import get_logger
from prefix_registry.models.registry import FeeRegistry, PrefixRecord, PrefixStatus
from prefix_registry.persistence.event_log import EventLog, EventRecord
from prefix_registry.persistence.ledger_store import KIND_PREFIX_RECORD, LedgerStore
from prefix_registry.policy.resolver import PolicyResolver


logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


class _AuditFailure(RuntimeError):
    """The event log refused an append; the enclosing transaction aborts."""


class PrefixRegistryService:
    """Unified registry facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = PrefixRegistryService(resolver)

        service.initialize(admin, initial_fee=1_000_000)
        service.add_verifier(admin, verifier)
        service.fund(owner, 5_000_000)

        proof = sign_message(owner_key, metadata_hash)
        result = service.submit_with_fee(owner, "MYAPP", uri, metadata_hash, proof)
        result = service.approve(verifier, "MYAPP", ref_hash)

    Persistence (optional):
        service = PrefixRegistryService(
            resolver,
            ledger=LedgerStore(data_dir / "state.json"),
            event_log=EventLog(data_dir / "events.jsonl"),
        )
        # State is saved after each committed operation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[LedgerStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger if ledger is not None else LedgerStore()
        self._event_log = event_log if event_log is not None else EventLog()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._engine = PrefixLifecycleEngine(self._ledger, resolver, clock=self._clock)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

        # Set if the state file write fails after the audit event is durable.
        # The in-memory ledger matches the event log; the state file is stale.
        self._persistence_degraded: bool = False

    @property
    def engine(self) -> PrefixLifecycleEngine:
        return self._engine

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def ledger(self) -> LedgerStore:
        return self._ledger

    # ------------------------------------------------------------------
    # Fee registry and treasury
    # ------------------------------------------------------------------

    def initialize(self, admin: str, initial_fee: int) -> ServiceResult:
        """One-time setup of the fee registry, verifier roster, and treasury."""
        return self._execute(
            "initialize", lambda: self._engine.initialize(admin, initial_fee),
        )

    def update_fee(self, admin: str, new_fee: int) -> ServiceResult:
        return self._execute(
            "update_fee", lambda: self._engine.update_fee(admin, new_fee),
        )

    def set_pause(self, admin: str, paused: bool) -> ServiceResult:
        return self._execute(
            "set_pause", lambda: self._engine.set_pause(admin, paused),
        )

    def withdraw_treasury(self, admin: str, amount: int, recipient: str) -> ServiceResult:
        return self._execute(
            "withdraw_treasury",
            lambda: self._engine.withdraw_treasury(admin, amount, recipient),
        )

    def fund(self, identity: str, amount: int) -> ServiceResult:
        """Credit an identity's balance from outside the registry.

        Deposits are not registry operations and produce no event.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            return ServiceResult(
                success=False,
                errors=[f"{ErrorCode.INVALID_AMOUNT.value}: Deposit must be a positive integer"],
                error_code=ErrorCode.INVALID_AMOUNT.value,
            )
        balance = self._ledger.credit(identity, amount)
        logger.info("fund identity=%s amount=%d", identity, amount)
        data: dict[str, Any] = {"identity": identity, "balance": balance}
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Verifier roster
    # ------------------------------------------------------------------

    def add_verifier(self, admin: str, verifier: str) -> ServiceResult:
        return self._execute(
            "add_verifier", lambda: self._engine.add_verifier(admin, verifier),
        )

    def remove_verifier(self, admin: str, verifier: str) -> ServiceResult:
        return self._execute(
            "remove_verifier", lambda: self._engine.remove_verifier(admin, verifier),
        )

    # ------------------------------------------------------------------
    # Prefix lifecycle
    # ------------------------------------------------------------------

    def submit_with_fee(
        self,
        owner: str,
        prefix: str,
        metadata_uri: str,
        metadata_hash: bytes,
        owner_proof: Optional[SignatureProof],
        authority_keys: Optional[Sequence[str]] = None,
    ) -> ServiceResult:
        """Pay the current fee and claim a prefix for review."""
        return self._execute(
            "submit_with_fee",
            lambda: self._engine.submit_with_fee(
                owner, prefix, metadata_uri, metadata_hash, owner_proof, authority_keys,
            ),
        )

    def approve(self, verifier: str, prefix: str, ref_hash: bytes) -> ServiceResult:
        return self._execute(
            "approve", lambda: self._engine.approve(verifier, prefix, ref_hash),
        )

    def reject(self, verifier: str, prefix: str, reason: str) -> ServiceResult:
        return self._execute(
            "reject", lambda: self._engine.reject(verifier, prefix, reason),
        )

    def update_metadata(
        self,
        owner: str,
        prefix: str,
        new_uri: str,
        new_hash: bytes,
        owner_proof: Optional[SignatureProof],
    ) -> ServiceResult:
        return self._execute(
            "update_metadata",
            lambda: self._engine.update_metadata(owner, prefix, new_uri, new_hash, owner_proof),
        )

    def update_authority_keys(
        self,
        owner: str,
        prefix: str,
        new_keys: Sequence[str],
    ) -> ServiceResult:
        return self._execute(
            "update_authority_keys",
            lambda: self._engine.update_authority_keys(owner, prefix, new_keys),
        )

    def deactivate(self, admin: str, prefix: str) -> ServiceResult:
        return self._execute(
            "deactivate", lambda: self._engine.deactivate(admin, prefix),
        )

    def reactivate(self, admin: str, prefix: str) -> ServiceResult:
        return self._execute(
            "reactivate", lambda: self._engine.reactivate(admin, prefix),
        )

    def refund(self, owner: str, prefix: str) -> ServiceResult:
        """Return the stored fee and free the prefix."""
        return self._execute(
            "refund", lambda: self._engine.refund(owner, prefix),
        )

    def recover_owner_with_fee(
        self,
        admin: str,
        prefix: str,
        new_owner: str,
        new_owner_proof: Optional[SignatureProof],
    ) -> ServiceResult:
        """Reassign a prefix; ``new_owner_proof`` signs ``recovery_message``."""
        return self._execute(
            "recover_owner_with_fee",
            lambda: self._engine.recover_owner_with_fee(
                admin, prefix, new_owner, new_owner_proof,
            ),
        )

    def recovery_message(self, prefix: str) -> bytes:
        return self._engine.recovery_message(prefix)

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def get_prefix(self, prefix: str) -> Optional[PrefixRecord]:
        """Look up a copy of a record. None for unknown or malformed prefixes."""
        try:
            return copy.deepcopy(self._engine.find_record(prefix))
        except RegistryError as e:
            if e.code == ErrorCode.INVALID_PREFIX_FORMAT:
                return None
            raise

    def get_fee_registry(self) -> Optional[FeeRegistry]:
        if not self._engine.is_initialized():
            return None
        return copy.deepcopy(self._engine.load_state().fee_registry)

    def get_verifiers(self) -> list[str]:
        if not self._engine.is_initialized():
            return []
        return list(self._engine.load_state().roster.verifiers)

    def treasury_balance(self) -> int:
        return self._ledger.balance(self._engine.treasury_address)

    def balance_of(self, identity: str) -> int:
        return self._ledger.balance(identity)

    def prefix_address(self, prefix: str) -> str:
        """Derived account address for a prefix (case-insensitive)."""
        return self._engine.prefix_address(normalize_prefix(prefix, self._resolver))

    def prefix_history(self, prefix: str) -> list[EventRecord]:
        return self._event_log.events_for_prefix(normalize_prefix(prefix, self._resolver))

    def list_prefixes(self, status: Optional[PrefixStatus] = None) -> list[PrefixRecord]:
        records = [copy.deepcopy(a.data) for a in self._ledger.accounts(KIND_PREFIX_RECORD)]
        if status is not None:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.prefix)

    def status(self) -> dict[str, Any]:
        """Return registry-wide status summary."""
        registry = self.get_fee_registry()
        return {
            "version": "0.1.0",
            "initialized": registry is not None,
            "fee": {
                "admin": registry.admin if registry else None,
                "current_fee": registry.current_fee if registry else None,
                "paused": registry.paused if registry else None,
            },
            "treasury": {
                "address": self._engine.treasury_address,
                "balance": self.treasury_balance(),
            },
            "verifiers": len(self.get_verifiers()),
            "prefixes": {
                "total": len(self._ledger.accounts(KIND_PREFIX_RECORD)),
                "by_status": self._count_prefixes_by_status(),
            },
            "events": {
                "count": self._event_log.count,
                "head_digest": self._event_log.head_digest(),
            },
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(self, operation: str, action: Callable[[], Outcome]) -> ServiceResult:
        """Run one engine operation and its audit event as a single unit.

        Fail-closed ordering:
        1. Engine operation inside the ledger transaction (validates, then mutates).
        2. Event append inside the same transaction. If it fails, the
           ledger snapshot is restored and the operation reports failure.
        3. State file write after the event is durable. A failure here
           does NOT roll back; it marks the service degraded.
        """
        try:
            with self._ledger.transaction():
                outcome = action()
                event = self._record_event(outcome)
        except RegistryError as e:
            logger.warning("%s rejected code=%s detail=%s", operation, e.code.value, e.message)
            return ServiceResult(success=False, errors=[str(e)], error_code=e.code.value)
        except _AuditFailure as e:
            logger.error("%s aborted: %s", operation, e)
            return ServiceResult(success=False, errors=[str(e)])

        logger.info(
            "%s committed event=%s actor=%s", operation, event.event_id, event.actor_id,
        )
        data: dict[str, Any] = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            **outcome.payload,
        }
        if outcome.record is not None:
            data["record"] = outcome.record.to_dict()
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(self, outcome: Outcome) -> EventRecord:
        """Append the outcome's event. Raises _AuditFailure on any log error."""
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=outcome.event_kind,
                actor_id=outcome.actor_id,
                payload=outcome.payload,
                timestamp_utc=self._clock(),
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            self._event_counter -= 1
            raise _AuditFailure(f"Event log failure: {e}") from e
        return event

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist the ledger after the audit event has been committed.

        MUST NOT roll back in-memory state: the audit trail is already
        durable. Sets the degraded flag and returns a warning instead.
        """
        try:
            self._ledger.save()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("state file write failed: %s", e)
            return f"Persistence degraded: {e}; state committed in audit trail but state file is stale"

    def _count_prefixes_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for account in self._ledger.accounts(KIND_PREFIX_RECORD):
            key = account.data.status.value
            counts[key] = counts.get(key, 0) + 1
        return counts
