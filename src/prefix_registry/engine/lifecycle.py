"""Prefix lifecycle engine — every registry operation, start to finish.

Each operation follows the same fail-closed ordering:
1. Load the protocol singletons into an explicit ProtocolState.
2. Capability check (admin / verifier / owner) and pause gate.
3. Input validation and the status transition lookup.
4. Proof-of-control verification, where the operation carries one.
5. Fee or escrow movement, then the record mutation.

Steps 1-4 never write. Everything runs inside one ledger transaction, so
a failure at any step leaves no trace. Operations return an Outcome
describing the single event the service layer appends to the event log
inside the same transaction.

The engine takes no locks and never retries; the ledger store provides
atomicity and serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from prefix_registry.compensation import fee_registry as fees
from prefix_registry.compensation.treasury import Treasury
from prefix_registry.crypto import addressing
from prefix_registry.crypto.signatures import SignatureProof, verify_proof
from prefix_registry.engine.authorization import Role, require_role
from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.engine.state_machine import (
    DESTROYED,
    PrefixStateMachine,
    PrefixTrigger,
)
from prefix_registry.engine.validation import (
    normalize_prefix,
    validate_amount,
    validate_authority_keys,
    validate_hash,
    validate_metadata,
    validate_submitted_prefix,
)
from prefix_registry.models.registry import (
    ZERO_HASH,
    FeeRegistry,
    PrefixRecord,
    PrefixStatus,
    ProtocolState,
    VerifierRoster,
)
from prefix_registry.persistence.event_log import EventKind
from prefix_registry.persistence.ledger_store import (
    KIND_FEE_REGISTRY,
    KIND_PREFIX_RECORD,
    KIND_TREASURY,
    KIND_VERIFIER_ROSTER,
    AccountExistsError,
    LedgerStore,
    StoredAccount,
)
from prefix_registry.policy.resolver import PolicyResolver
from prefix_registry.review import verifier_roster as roster_rules


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Outcome:
    """Result of a committed operation: the event to log plus the record."""
    event_kind: EventKind
    actor_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    record: Optional[PrefixRecord] = None


class PrefixLifecycleEngine:
    """Runs registry operations against a ledger store.

    Usage:
        engine = PrefixLifecycleEngine(store, resolver)
        engine.initialize(admin, initial_fee=1_000_000)
        proof = sign_message(owner_key, metadata_hash)
        engine.submit_with_fee(owner, "MYAPP", "https://x/meta.json", metadata_hash, proof)
        engine.approve(verifier, "MYAPP", ref_hash)
    """

    def __init__(
        self,
        ledger: LedgerStore,
        resolver: PolicyResolver,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._clock = clock or _utc_now
        self._state_machine = PrefixStateMachine()
        program_id = resolver.program_id()
        self._program_id = program_id
        self._fee_registry_address = addressing.fee_registry_address(program_id)
        self._verifiers_address = addressing.verifiers_address(program_id)
        self._treasury_address = addressing.treasury_address(program_id)

    # ------------------------------------------------------------------
    # Addressing and loading
    # ------------------------------------------------------------------

    def prefix_address(self, normalized_prefix: str) -> str:
        return addressing.prefix_address(self._program_id, normalized_prefix)

    def recovery_message(self, prefix: str) -> bytes:
        """The bytes a new owner signs to consent to taking over ``prefix``.

        This is the raw 32-byte address of the prefix record, so a consent
        proof for one prefix cannot be replayed against another.
        """
        normalized = normalize_prefix(prefix, self._resolver)
        return bytes.fromhex(self.prefix_address(normalized))

    @property
    def treasury_address(self) -> str:
        return self._treasury_address

    def is_initialized(self) -> bool:
        return self._ledger.get_account(self._fee_registry_address) is not None

    def load_state(self) -> ProtocolState:
        """Load the singletons. Raises NotInitialized before initialize()."""
        registry_acct = self._checked_account(
            self._fee_registry_address, KIND_FEE_REGISTRY,
            addressing.seeds_for(addressing.FEE_REGISTRY_TAG),
        )
        roster_acct = self._checked_account(
            self._verifiers_address, KIND_VERIFIER_ROSTER,
            addressing.seeds_for(addressing.VERIFIERS_TAG),
        )
        if registry_acct is None or roster_acct is None:
            raise RegistryError(ErrorCode.NOT_INITIALIZED, "Registry has not been initialized")
        self._checked_account(
            self._treasury_address, KIND_TREASURY,
            addressing.seeds_for(addressing.TREASURY_TAG, self._fee_registry_address),
        )
        return ProtocolState(
            fee_registry=registry_acct.data,
            roster=roster_acct.data,
            treasury_address=self._treasury_address,
        )

    def find_record(self, prefix: str) -> Optional[PrefixRecord]:
        """Look up a record by prefix (case-insensitive). None if absent."""
        normalized = normalize_prefix(prefix, self._resolver)
        account = self._checked_account(
            self.prefix_address(normalized), KIND_PREFIX_RECORD,
            addressing.seeds_for(addressing.PREFIX_TAG, normalized),
        )
        return account.data if account is not None else None

    def _load_record(self, prefix: str) -> PrefixRecord:
        record = self.find_record(prefix)
        if record is None:
            raise RegistryError(ErrorCode.PREFIX_NOT_FOUND, f"No record for prefix {prefix!r}")
        return record

    def _checked_account(
        self,
        address: str,
        kind: str,
        seeds: tuple[str, str],
    ) -> Optional[StoredAccount]:
        """Fetch an account and prove it sits at the address of its seeds.

        Raises MissingBump if the stored seeds, kind, or payload do not
        re-derive to ``address``.
        """
        account = self._ledger.get_account(address)
        if account is None:
            return None
        derived = addressing.derive_address(self._program_id, *account.seeds)
        if account.kind != kind or tuple(account.seeds) != seeds or derived != address:
            raise RegistryError(
                ErrorCode.MISSING_BUMP,
                f"Account at {address} does not match its derivation seeds",
            )
        if kind == KIND_PREFIX_RECORD and (
            account.data is None or account.data.prefix != seeds[1]
        ):
            raise RegistryError(
                ErrorCode.MISSING_BUMP,
                f"Record at {address} is not keyed by its prefix",
            )
        return account

    def _treasury(self, state: ProtocolState) -> Treasury:
        return Treasury(
            self._ledger, state.treasury_address, self._resolver.treasury_reserve_minimum(),
        )

    def _gate(self, state: ProtocolState, trigger: PrefixTrigger) -> None:
        if self._state_machine.is_pause_gated(trigger):
            fees.require_not_paused(state.fee_registry)

    # ------------------------------------------------------------------
    # Fee registry and treasury (admin)
    # ------------------------------------------------------------------

    def initialize(self, admin: str, initial_fee: int) -> Outcome:
        """Create the fee registry, verifier roster, and treasury. One-time."""
        initial_fee = validate_amount(initial_fee, self._resolver, "Initial fee")
        now = self._clock()
        with self._ledger.transaction():
            try:
                self._ledger.create_account(
                    self._fee_registry_address, KIND_FEE_REGISTRY,
                    addressing.seeds_for(addressing.FEE_REGISTRY_TAG),
                    data=FeeRegistry(
                        admin=admin, current_fee=initial_fee, paused=False,
                        created_at=now, updated_at=now,
                    ),
                )
                self._ledger.create_account(
                    self._verifiers_address, KIND_VERIFIER_ROSTER,
                    addressing.seeds_for(addressing.VERIFIERS_TAG),
                    data=VerifierRoster(admin=admin, created_at=now, updated_at=now),
                )
                self._ledger.create_account(
                    self._treasury_address, KIND_TREASURY,
                    addressing.seeds_for(addressing.TREASURY_TAG, self._fee_registry_address),
                )
            except AccountExistsError as e:
                raise RegistryError(ErrorCode.ALREADY_INITIALIZED, str(e)) from e
        return Outcome(
            event_kind=EventKind.FEE_UPDATED,
            actor_id=admin,
            payload={
                "admin": admin,
                "old_fee": 0,
                "new_fee": initial_fee,
                "treasury": self._treasury_address,
                "updated_at": _iso(now),
            },
        )

    def update_fee(self, admin: str, new_fee: int) -> Outcome:
        """Change the current fee. Allowed while paused."""
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            new_fee = validate_amount(new_fee, self._resolver, "Fee")
            now = self._clock()
            old_fee = fees.update_fee(state.fee_registry, new_fee, now)
        return Outcome(
            event_kind=EventKind.FEE_UPDATED,
            actor_id=admin,
            payload={
                "admin": admin, "old_fee": old_fee, "new_fee": new_fee,
                "updated_at": _iso(now),
            },
        )

    def set_pause(self, admin: str, paused: bool) -> Outcome:
        """Set the pause flag. Idempotent."""
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            now = self._clock()
            changed = fees.set_pause(state.fee_registry, bool(paused), now)
        return Outcome(
            event_kind=EventKind.PAUSE_UPDATED,
            actor_id=admin,
            payload={
                "admin": admin, "paused": bool(paused), "changed": changed,
                "updated_at": _iso(now),
            },
        )

    def withdraw_treasury(self, admin: str, amount: int, recipient: str) -> Outcome:
        """Withdraw collected fees above the reserve minimum."""
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            fees.require_not_paused(state.fee_registry)
            amount = validate_amount(amount, self._resolver, "Withdrawal amount")
            treasury = self._treasury(state)
            treasury.pay_out(recipient, amount, respect_reserve=True)
            now = self._clock()
        return Outcome(
            event_kind=EventKind.TREASURY_WITHDRAWN,
            actor_id=admin,
            payload={
                "admin": admin, "to": recipient, "amount": amount,
                "withdrawn_at": _iso(now),
            },
        )

    # ------------------------------------------------------------------
    # Verifier roster (admin)
    # ------------------------------------------------------------------

    def add_verifier(self, admin: str, verifier: str) -> Outcome:
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            now = self._clock()
            roster_rules.add_verifier(
                state.roster, verifier, self._resolver.max_verifiers(), now,
            )
        return Outcome(
            event_kind=EventKind.VERIFIER_ADDED,
            actor_id=admin,
            payload={"admin": admin, "verifier": verifier.strip(), "added_at": _iso(now)},
        )

    def remove_verifier(self, admin: str, verifier: str) -> Outcome:
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            now = self._clock()
            roster_rules.remove_verifier(state.roster, verifier, now)
        return Outcome(
            event_kind=EventKind.VERIFIER_REMOVED,
            actor_id=admin,
            payload={"admin": admin, "verifier": verifier.strip(), "removed_at": _iso(now)},
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_with_fee(
        self,
        owner: str,
        prefix: str,
        metadata_uri: str,
        metadata_hash: bytes,
        owner_proof: Optional[SignatureProof],
        authority_keys: Optional[Sequence[str]] = None,
    ) -> Outcome:
        """Claim a prefix: pay the current fee and open a Pending record."""
        with self._ledger.transaction():
            state = self.load_state()
            self._gate(state, PrefixTrigger.SUBMIT)

            prefix = validate_submitted_prefix(prefix, self._resolver)
            metadata_hash = validate_metadata(metadata_uri, metadata_hash, self._resolver)
            keys = validate_authority_keys(authority_keys, self._resolver)
            verify_proof(owner_proof, owner, metadata_hash)

            status = self._state_machine.next_status(None, PrefixTrigger.SUBMIT)
            fee = state.fee_registry.current_fee
            if fee <= 0:
                raise RegistryError(ErrorCode.INSUFFICIENT_FEE, "Current fee is zero")

            now = self._clock()
            address = self.prefix_address(prefix)
            record = PrefixRecord(
                owner=owner,
                prefix=prefix,
                metadata_uri=metadata_uri,
                metadata_hash=metadata_hash,
                status=status,
                ref_hash=ZERO_HASH,
                authority_keys=keys,
                fee_paid=fee,
                expiry_at=now + self._resolver.pending_review_window(),
                created_at=now,
                updated_at=now,
            )
            try:
                self._ledger.create_account(
                    address, KIND_PREFIX_RECORD,
                    addressing.seeds_for(addressing.PREFIX_TAG, prefix),
                    data=record,
                )
            except AccountExistsError as e:
                raise RegistryError(
                    ErrorCode.PREFIX_ALREADY_EXISTS, f"Prefix {prefix} is already registered",
                ) from e
            self._treasury(state).collect(owner, fee)

        return Outcome(
            event_kind=EventKind.PREFIX_SUBMITTED,
            actor_id=owner,
            payload={
                "prefix": prefix,
                "owner": owner,
                "metadata_uri": metadata_uri,
                "metadata_hash": metadata_hash.hex(),
                "fee_paid": fee,
                "created_at": _iso(now),
                "expiry_at": _iso(record.expiry_at),
                "address": address,
            },
            record=record,
        )

    # ------------------------------------------------------------------
    # Review (verifier)
    # ------------------------------------------------------------------

    def approve(self, verifier: str, prefix: str, ref_hash: bytes) -> Outcome:
        """Activate a Pending record and store the verifier's reference hash."""
        with self._ledger.transaction():
            state = self.load_state()
            self._gate(state, PrefixTrigger.APPROVE)
            require_role(Role.VERIFIER, verifier, state)
            ref_hash = validate_hash(ref_hash, self._resolver, "Reference hash")
            record = self._load_record(prefix)
            target = self._state_machine.next_status(record.status, PrefixTrigger.APPROVE)

            now = self._clock()
            if self._resolver.enforce_expiry_on_approve() and record.is_expired(now):
                raise RegistryError(
                    ErrorCode.PREFIX_EXPIRED,
                    f"Review window for {record.prefix} closed at {_iso(record.expiry_at)}",
                )

            record.status = target
            record.ref_hash = ref_hash
            record.expiry_at = None
            record.updated_at = now

        return Outcome(
            event_kind=EventKind.PREFIX_APPROVED,
            actor_id=verifier,
            payload={
                "prefix": record.prefix,
                "verifier": verifier,
                "owner": record.owner,
                "ref_hash": ref_hash.hex(),
                "authority_keys_len": len(record.authority_keys),
                "approved_at": _iso(now),
            },
            record=record,
        )

    def reject(self, verifier: str, prefix: str, reason: str) -> Outcome:
        """Reject a Pending record. The owner may then claim a refund."""
        with self._ledger.transaction():
            state = self.load_state()
            self._gate(state, PrefixTrigger.REJECT)
            require_role(Role.VERIFIER, verifier, state)
            record = self._load_record(prefix)
            target = self._state_machine.next_status(record.status, PrefixTrigger.REJECT)

            now = self._clock()
            record.status = target
            record.updated_at = now

        return Outcome(
            event_kind=EventKind.PREFIX_REJECTED,
            actor_id=verifier,
            payload={
                "prefix": record.prefix,
                "verifier": verifier,
                "reason": reason,
                "rejected_at": _iso(now),
            },
            record=record,
        )

    # ------------------------------------------------------------------
    # Owner updates
    # ------------------------------------------------------------------

    def update_metadata(
        self,
        owner: str,
        prefix: str,
        new_uri: str,
        new_hash: bytes,
        owner_proof: Optional[SignatureProof],
    ) -> Outcome:
        """Replace the metadata. An Active record goes back to review."""
        with self._ledger.transaction():
            state = self.load_state()
            record = self._load_record(prefix)
            require_role(Role.OWNER, owner, state, record)
            target = self._state_machine.next_status(
                record.status, PrefixTrigger.UPDATE_METADATA,
            )
            new_hash = validate_metadata(new_uri, new_hash, self._resolver)
            verify_proof(owner_proof, owner, new_hash)

            now = self._clock()
            old_hash = record.metadata_hash
            previous = record.status
            record.metadata_uri = new_uri
            record.metadata_hash = new_hash
            if previous == PrefixStatus.ACTIVE and target == PrefixStatus.PENDING:
                record.ref_hash = ZERO_HASH
                record.expiry_at = now + self._resolver.pending_review_window()
            record.status = target
            record.updated_at = now

        return Outcome(
            event_kind=EventKind.PREFIX_METADATA_UPDATED,
            actor_id=owner,
            payload={
                "prefix": record.prefix,
                "owner": owner,
                "old_metadata_hash": old_hash.hex(),
                "new_metadata_hash": new_hash.hex(),
                "metadata_uri": new_uri,
                "previous_status": previous.value,
                "status": record.status.value,
                "updated_at": _iso(now),
            },
            record=record,
        )

    def update_authority_keys(
        self,
        owner: str,
        prefix: str,
        new_keys: Sequence[str],
    ) -> Outcome:
        """Replace the authority key set. Status is preserved."""
        with self._ledger.transaction():
            state = self.load_state()
            keys = validate_authority_keys(new_keys, self._resolver)
            record = self._load_record(prefix)
            require_role(Role.OWNER, owner, state, record)
            target = self._state_machine.next_status(
                record.status, PrefixTrigger.UPDATE_AUTHORITY,
            )

            now = self._clock()
            old_keys = list(record.authority_keys)
            record.authority_keys = keys
            record.status = target
            record.updated_at = now

        return Outcome(
            event_kind=EventKind.PREFIX_AUTHORITY_UPDATED,
            actor_id=owner,
            payload={
                "prefix": record.prefix,
                "owner": owner,
                "old_authority_keys": old_keys,
                "new_authority_keys": list(keys),
                "updated_at": _iso(now),
            },
            record=record,
        )

    # ------------------------------------------------------------------
    # Admin status control
    # ------------------------------------------------------------------

    def deactivate(self, admin: str, prefix: str) -> Outcome:
        return self._admin_transition(
            admin, prefix, PrefixTrigger.DEACTIVATE, EventKind.PREFIX_DEACTIVATED,
        )

    def reactivate(self, admin: str, prefix: str) -> Outcome:
        return self._admin_transition(
            admin, prefix, PrefixTrigger.REACTIVATE, EventKind.PREFIX_REACTIVATED,
        )

    def _admin_transition(
        self,
        admin: str,
        prefix: str,
        trigger: PrefixTrigger,
        kind: EventKind,
    ) -> Outcome:
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            self._gate(state, trigger)
            record = self._load_record(prefix)
            target = self._state_machine.next_status(record.status, trigger)

            now = self._clock()
            previous = record.status
            record.status = target
            record.updated_at = now

        return Outcome(
            event_kind=kind,
            actor_id=admin,
            payload={
                "prefix": record.prefix,
                "admin": admin,
                "previous_status": previous.value,
                "status": record.status.value,
                "at": _iso(now),
            },
            record=record,
        )

    # ------------------------------------------------------------------
    # Refund and recovery
    # ------------------------------------------------------------------

    def refund(self, owner: str, prefix: str) -> Outcome:
        """Return the stored fee and destroy the record, freeing the prefix.

        Allowed for Rejected records, and for Pending records past their
        review deadline when the policy allows expired refunds.
        """
        with self._ledger.transaction():
            state = self.load_state()
            self._gate(state, PrefixTrigger.REFUND)
            record = self._load_record(prefix)
            require_role(Role.OWNER, owner, state, record)
            target = self._state_machine.next_status(record.status, PrefixTrigger.REFUND)

            now = self._clock()
            if record.status == PrefixStatus.PENDING and not (
                self._resolver.allow_expired_pending_refund() and record.is_expired(now)
            ):
                raise RegistryError(
                    ErrorCode.REFUND_NOT_ALLOWED,
                    f"Prefix {record.prefix} is still under review",
                )
            amount = record.fee_paid
            if amount <= 0:
                raise RegistryError(ErrorCode.REFUND_NOT_ALLOWED, "No fee to refund")

            self._treasury(state).pay_out(owner, amount)
            if target is DESTROYED:
                self._ledger.close_account(self.prefix_address(record.prefix))

        return Outcome(
            event_kind=EventKind.PREFIX_REFUNDED,
            actor_id=owner,
            payload={
                "prefix": record.prefix,
                "owner": owner,
                "amount": amount,
                "previous_status": record.status.value,
                "refunded_at": _iso(now),
            },
        )

    def recover_owner_with_fee(
        self,
        admin: str,
        prefix: str,
        new_owner: str,
        new_owner_proof: Optional[SignatureProof],
    ) -> Outcome:
        """Reassign a record to ``new_owner``, who pays the current fee.

        Both parties must act: the admin authorizes the recovery and the
        new owner consents to paying by signing ``recovery_message``.
        """
        with self._ledger.transaction():
            state = self.load_state()
            require_role(Role.ADMIN, admin, state)
            self._gate(state, PrefixTrigger.RECOVER_OWNER)
            record = self._load_record(prefix)
            target = self._state_machine.next_status(
                record.status, PrefixTrigger.RECOVER_OWNER,
            )

            if new_owner_proof is None or new_owner_proof.signer != new_owner:
                raise RegistryError(
                    ErrorCode.UNAUTHORIZED_OWNER_ACTION,
                    f"New owner {new_owner} has not signed the recovery of {record.prefix}",
                )
            verify_proof(
                new_owner_proof, new_owner, bytes.fromhex(self.prefix_address(record.prefix)),
            )

            fee = state.fee_registry.current_fee
            if fee <= 0:
                raise RegistryError(ErrorCode.INSUFFICIENT_FEE, "Current fee is zero")
            self._treasury(state).collect(new_owner, fee)

            now = self._clock()
            old_owner = record.owner
            record.owner = new_owner
            record.status = target
            record.updated_at = now

        return Outcome(
            event_kind=EventKind.PREFIX_OWNER_RECOVERED,
            actor_id=admin,
            payload={
                "prefix": record.prefix,
                "admin": admin,
                "old_owner": old_owner,
                "new_owner": new_owner,
                "fee_paid": fee,
                "updated_at": _iso(now),
            },
            record=record,
        )
