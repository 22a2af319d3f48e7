"""Verifier roster rules — who may approve or reject submissions.

The roster is an ordered set: insertion order is preserved, duplicates
are refused, and its size is capped by policy. Authorization (admin
only) and event logging are handled by the caller.

Thread-safety: not thread-safe on its own; the ledger store serializes
the transactions that mutate it.
"""

from __future__ import annotations

from datetime import datetime

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.models.registry import VerifierRoster


def add_verifier(
    roster: VerifierRoster,
    verifier: str,
    max_verifiers: int,
    now: datetime,
) -> None:
    """Append a verifier.

    Raises:
        VerifierAlreadyExists if the identity is already present.
        VerifierRosterFull if the roster is at capacity.
    """
    canonical = verifier.strip()
    if not canonical:
        raise RegistryError(ErrorCode.UNAUTHORIZED_VERIFIER, "Verifier identity is blank")
    if roster.contains(canonical):
        raise RegistryError(
            ErrorCode.VERIFIER_ALREADY_EXISTS, f"Verifier already registered: {canonical}",
        )
    if len(roster.verifiers) >= max_verifiers:
        raise RegistryError(
            ErrorCode.VERIFIER_ROSTER_FULL, f"Roster is full ({max_verifiers} verifiers)",
        )
    roster.verifiers.append(canonical)
    roster.updated_at = now


def remove_verifier(roster: VerifierRoster, verifier: str, now: datetime) -> None:
    """Remove a verifier. Raises UnauthorizedVerifier if absent."""
    canonical = verifier.strip()
    if not roster.contains(canonical):
        raise RegistryError(
            ErrorCode.UNAUTHORIZED_VERIFIER, f"Verifier not registered: {canonical}",
        )
    roster.verifiers.remove(canonical)
    roster.updated_at = now
