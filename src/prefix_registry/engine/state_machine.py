"""Prefix state machine — the single table of legal status transitions.

Transition table (trigger applied to current status → next status):

    (none)    --SUBMIT-->            PENDING
    PENDING   --APPROVE-->           ACTIVE
    PENDING   --REJECT-->            REJECTED
    ACTIVE    --UPDATE_METADATA-->   PENDING     (re-review required)
    PENDING   --UPDATE_METADATA-->   PENDING
    INACTIVE  --UPDATE_METADATA-->   INACTIVE
    PENDING   --UPDATE_AUTHORITY-->  PENDING
    ACTIVE    --UPDATE_AUTHORITY-->  ACTIVE
    INACTIVE  --UPDATE_AUTHORITY-->  INACTIVE
    ACTIVE    --DEACTIVATE-->        INACTIVE
    INACTIVE  --REACTIVATE-->        ACTIVE
    REJECTED  --REFUND-->            (destroyed)
    PENDING   --REFUND-->            (destroyed)  only once expired
    ACTIVE    --RECOVER_OWNER-->     ACTIVE
    REJECTED  --RECOVER_OWNER-->     REJECTED

Fail-closed: anything not in the table is illegal. An illegal REFUND
raises RefundNotAllowed; every other illegal edge raises
InvalidPrefixStatus. Guards that depend on more than the status (the
expiry of a PENDING refund) are checked by the lifecycle engine.
"""

from __future__ import annotations

import enum
from typing import Optional

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.models.registry import PrefixStatus


class PrefixTrigger(str, enum.Enum):
    """Operations that move a prefix record along the state machine."""
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    UPDATE_METADATA = "update_metadata"
    UPDATE_AUTHORITY = "update_authority"
    DEACTIVATE = "deactivate"
    REACTIVATE = "reactivate"
    REFUND = "refund"
    RECOVER_OWNER = "recover_owner"


# Sentinel target for transitions that destroy the record.
DESTROYED = None

_TRANSITIONS: dict[tuple[Optional[PrefixStatus], PrefixTrigger], Optional[PrefixStatus]] = {
    (None, PrefixTrigger.SUBMIT): PrefixStatus.PENDING,
    (PrefixStatus.PENDING, PrefixTrigger.APPROVE): PrefixStatus.ACTIVE,
    (PrefixStatus.PENDING, PrefixTrigger.REJECT): PrefixStatus.REJECTED,
    (PrefixStatus.ACTIVE, PrefixTrigger.UPDATE_METADATA): PrefixStatus.PENDING,
    (PrefixStatus.PENDING, PrefixTrigger.UPDATE_METADATA): PrefixStatus.PENDING,
    (PrefixStatus.INACTIVE, PrefixTrigger.UPDATE_METADATA): PrefixStatus.INACTIVE,
    (PrefixStatus.PENDING, PrefixTrigger.UPDATE_AUTHORITY): PrefixStatus.PENDING,
    (PrefixStatus.ACTIVE, PrefixTrigger.UPDATE_AUTHORITY): PrefixStatus.ACTIVE,
    (PrefixStatus.INACTIVE, PrefixTrigger.UPDATE_AUTHORITY): PrefixStatus.INACTIVE,
    (PrefixStatus.ACTIVE, PrefixTrigger.DEACTIVATE): PrefixStatus.INACTIVE,
    (PrefixStatus.INACTIVE, PrefixTrigger.REACTIVATE): PrefixStatus.ACTIVE,
    (PrefixStatus.REJECTED, PrefixTrigger.REFUND): DESTROYED,
    (PrefixStatus.PENDING, PrefixTrigger.REFUND): DESTROYED,
    (PrefixStatus.ACTIVE, PrefixTrigger.RECOVER_OWNER): PrefixStatus.ACTIVE,
    (PrefixStatus.REJECTED, PrefixTrigger.RECOVER_OWNER): PrefixStatus.REJECTED,
}

# Triggers refused while the fee registry is paused.
PAUSE_GATED_TRIGGERS: frozenset[PrefixTrigger] = frozenset({
    PrefixTrigger.SUBMIT,
    PrefixTrigger.APPROVE,
    PrefixTrigger.REJECT,
    PrefixTrigger.DEACTIVATE,
    PrefixTrigger.REACTIVATE,
    PrefixTrigger.REFUND,
    PrefixTrigger.RECOVER_OWNER,
})


class PrefixStateMachine:
    """Validates prefix status transitions against the table.

    Pure computation: looks up transitions only. Mutation, fee movement
    and event logging are handled by the lifecycle engine.
    """

    @staticmethod
    def is_legal(current: Optional[PrefixStatus], trigger: PrefixTrigger) -> bool:
        return (current, trigger) in _TRANSITIONS

    @staticmethod
    def next_status(
        current: Optional[PrefixStatus],
        trigger: PrefixTrigger,
    ) -> Optional[PrefixStatus]:
        """Return the status after ``trigger``, or DESTROYED.

        Raises RegistryError if the transition is not in the table.
        """
        key = (current, trigger)
        if key not in _TRANSITIONS:
            current_str = current.value if current is not None else "none"
            code = (
                ErrorCode.REFUND_NOT_ALLOWED
                if trigger == PrefixTrigger.REFUND
                else ErrorCode.INVALID_PREFIX_STATUS
            )
            raise RegistryError(
                code,
                f"Cannot {trigger.value} a prefix in status {current_str}",
            )
        return _TRANSITIONS[key]

    @staticmethod
    def valid_triggers(current: Optional[PrefixStatus]) -> set[PrefixTrigger]:
        """Return the triggers accepted from the given status."""
        return {t for (s, t) in _TRANSITIONS if s == current}

    @staticmethod
    def is_pause_gated(trigger: PrefixTrigger) -> bool:
        return trigger in PAUSE_GATED_TRIGGERS
