"""Fee registry rules — current fee, pause gate.

The fee registry is a pure state holder — no side effects. Authorization
and event logging are handled by the lifecycle engine and service layer.

Pause semantics: the pause flag blocks fee operations (submission,
review, refund, recovery, deactivation, treasury withdrawal). It never
blocks fee updates or the pause switch itself, so an admin can always
adjust fees during an emergency and unpause afterwards.
"""

from __future__ import annotations

from datetime import datetime

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.models.registry import FeeRegistry


def require_not_paused(registry: FeeRegistry) -> None:
    if registry.paused:
        raise RegistryError(ErrorCode.FEE_OPERATIONS_PAUSED, "Fee operations are paused")


def update_fee(registry: FeeRegistry, new_fee: int, now: datetime) -> int:
    """Set the current fee. Returns the previous fee.

    Records already submitted keep the fee they paid.
    """
    old_fee = registry.current_fee
    registry.current_fee = new_fee
    registry.updated_at = now
    return old_fee


def set_pause(registry: FeeRegistry, paused: bool, now: datetime) -> bool:
    """Set the pause flag. Returns True if the flag changed.

    Idempotent: setting the current value leaves the registry untouched.
    """
    if registry.paused == paused:
        return False
    registry.paused = paused
    registry.updated_at = now
    return True
