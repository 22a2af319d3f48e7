"""Input validation for registry operations.

All checks run before any state mutation. Each failure maps to exactly
one error code so callers can tell a bad prefix from a bad URI.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.policy.resolver import PolicyResolver


_PREFIX_CHARS = re.compile(r"[A-Z0-9]+")


def normalize_prefix(raw: str, resolver: PolicyResolver) -> str:
    """Uppercase a prefix for lookup and validate its shape."""
    normalized = raw.strip().upper()
    _check_prefix_shape(normalized, resolver)
    return normalized


def validate_submitted_prefix(prefix: str, resolver: PolicyResolver) -> str:
    """Validate a prefix at submission time.

    Submissions must already be in canonical form: lowercase or padded
    input is rejected rather than silently rewritten, so the stored key
    is exactly what the owner signed up for.
    """
    _check_prefix_shape(prefix, resolver)
    return prefix


def _check_prefix_shape(prefix: str, resolver: PolicyResolver) -> None:
    min_len, max_len = resolver.prefix_length_bounds()
    if not (min_len <= len(prefix) <= max_len):
        raise RegistryError(
            ErrorCode.INVALID_PREFIX_FORMAT,
            f"Prefix must be {min_len}-{max_len} characters, got {len(prefix)}",
        )
    if not _PREFIX_CHARS.fullmatch(prefix):
        raise RegistryError(
            ErrorCode.INVALID_PREFIX_FORMAT,
            f"Prefix must be uppercase alphanumeric: {prefix!r}",
        )


def validate_metadata_uri(uri: str, resolver: PolicyResolver) -> None:
    max_len = resolver.max_uri_length()
    if len(uri) > max_len:
        raise RegistryError(
            ErrorCode.INVALID_METADATA_URI,
            f"Metadata URI exceeds {max_len} characters",
        )
    schemes = resolver.allowed_uri_schemes()
    if not uri.startswith(schemes):
        raise RegistryError(
            ErrorCode.INVALID_METADATA_URI,
            f"Metadata URI must start with one of {', '.join(schemes)}",
        )


def validate_hash(value: bytes, resolver: PolicyResolver, label: str = "Metadata hash") -> bytes:
    expected = resolver.metadata_hash_length()
    if not isinstance(value, (bytes, bytearray)) or len(value) != expected:
        length = len(value) if isinstance(value, (bytes, bytearray)) else "non-bytes"
        raise RegistryError(
            ErrorCode.INVALID_METADATA_HASH_LENGTH,
            f"{label} must be exactly {expected} bytes, got {length}",
        )
    return bytes(value)


def validate_metadata(uri: str, metadata_hash: bytes, resolver: PolicyResolver) -> bytes:
    """Validate URI then hash, in the order submission reports them."""
    validate_metadata_uri(uri, resolver)
    return validate_hash(metadata_hash, resolver)


def validate_authority_keys(keys: Optional[Sequence[str]], resolver: PolicyResolver) -> list[str]:
    """Return the keys as a list after enforcing the cap and uniqueness."""
    keys = list(keys or [])
    max_keys = resolver.max_authority_keys()
    if len(keys) > max_keys:
        raise RegistryError(
            ErrorCode.AUTHORITY_KEYS_TOO_MANY,
            f"At most {max_keys} authority keys allowed, got {len(keys)}",
        )
    seen: set[str] = set()
    for key in keys:
        if key in seen:
            raise RegistryError(
                ErrorCode.DUPLICATE_AUTHORITY_KEY, f"Duplicate authority key: {key}",
            )
        seen.add(key)
    return keys


def validate_amount(amount: int, resolver: PolicyResolver, label: str = "Amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise RegistryError(ErrorCode.INVALID_AMOUNT, f"{label} must be an integer")
    if not (0 <= amount <= resolver.max_fee()):
        raise RegistryError(
            ErrorCode.INVALID_AMOUNT,
            f"{label} must be in [0, {resolver.max_fee()}], got {amount}",
        )
    return amount
