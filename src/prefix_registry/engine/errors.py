"""Registry error taxonomy.

Every rejected operation raises RegistryError with exactly one
ErrorCode. Codes are surfaced verbatim to callers; their string values
are the wire names clients match on.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Classification of operation failures."""
    # Wrong caller identity
    UNAUTHORIZED_ADMIN = "UnauthorizedAdmin"
    UNAUTHORIZED_VERIFIER = "UnauthorizedVerifier"
    UNAUTHORIZED_OWNER_ACTION = "UnauthorizedOwnerAction"
    # Malformed input
    INVALID_PREFIX_FORMAT = "InvalidPrefixFormat"
    INVALID_METADATA_URI = "InvalidMetadataUri"
    INVALID_METADATA_HASH_LENGTH = "InvalidMetadataHashLength"
    AUTHORITY_KEYS_TOO_MANY = "AuthorityKeysTooMany"
    DUPLICATE_AUTHORITY_KEY = "DuplicateAuthorityKey"
    INVALID_AMOUNT = "InvalidAmount"
    # Addressing / existence
    PREFIX_ALREADY_EXISTS = "PrefixAlreadyExists"
    PREFIX_NOT_FOUND = "PrefixNotFound"
    ALREADY_INITIALIZED = "AlreadyInitialized"
    NOT_INITIALIZED = "NotInitialized"
    MISSING_BUMP = "MissingBump"
    # Lifecycle
    INVALID_PREFIX_STATUS = "InvalidPrefixStatus"
    REFUND_NOT_ALLOWED = "RefundNotAllowed"
    PREFIX_EXPIRED = "PrefixExpired"
    # Fees and escrow
    INSUFFICIENT_FEE = "InsufficientFee"
    INSUFFICIENT_TREASURY_BALANCE = "InsufficientTreasuryBalance"
    INVALID_TREASURY_ACCOUNT = "InvalidTreasuryAccount"
    FEE_OPERATIONS_PAUSED = "FeeOperationsPaused"
    # Verifier roster
    VERIFIER_ALREADY_EXISTS = "VerifierAlreadyExists"
    VERIFIER_ROSTER_FULL = "VerifierRosterFull"
    # Proof of control
    INVALID_ED25519_SIGNATURE = "InvalidEd25519Signature"


class RegistryError(ValueError):
    """An operation was rejected. Carries the error code and a message."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")
