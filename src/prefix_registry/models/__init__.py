"""Core data models for the prefix registry."""

from prefix_registry.models.registry import (
    ZERO_HASH,
    FeeRegistry,
    PrefixRecord,
    PrefixStatus,
    ProtocolState,
    VerifierRoster,
)

__all__ = [
    "ZERO_HASH",
    "FeeRegistry",
    "PrefixRecord",
    "PrefixStatus",
    "ProtocolState",
    "VerifierRoster",
]
