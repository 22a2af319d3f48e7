"""Capability checks for registry operations.

Every operation names the role it requires and checks the caller
against the explicit protocol state before doing anything else. Roles
are a closed set of tags, not a class hierarchy:

- ADMIN: the fee registry's admin identity.
- VERIFIER: any identity in the verifier roster.
- OWNER: the ``owner`` field of the record being acted on.
"""

from __future__ import annotations

import enum
from typing import Optional

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.models.registry import PrefixRecord, ProtocolState


class Role(str, enum.Enum):
    ADMIN = "admin"
    VERIFIER = "verifier"
    OWNER = "owner"


def has_role(
    role: Role,
    caller: str,
    state: ProtocolState,
    record: Optional[PrefixRecord] = None,
) -> bool:
    if role == Role.ADMIN:
        return caller == state.fee_registry.admin
    if role == Role.VERIFIER:
        return state.roster.contains(caller)
    if role == Role.OWNER:
        return record is not None and caller == record.owner
    return False


_DENIAL_CODES = {
    Role.ADMIN: ErrorCode.UNAUTHORIZED_ADMIN,
    Role.VERIFIER: ErrorCode.UNAUTHORIZED_VERIFIER,
    Role.OWNER: ErrorCode.UNAUTHORIZED_OWNER_ACTION,
}


def require_role(
    role: Role,
    caller: str,
    state: ProtocolState,
    record: Optional[PrefixRecord] = None,
) -> None:
    """Raise the role's Unauthorized* error unless ``caller`` holds ``role``."""
    if not has_role(role, caller, state, record):
        raise RegistryError(
            _DENIAL_CODES[role],
            f"{caller} is not authorized as {role.value}",
        )
