"""Deterministic addressing — maps a namespace tag and key to a storage address.

An address is the SHA-256 of the program id, the namespace tag and the
key, each length-prefixed so that no two (tag, key) pairs can collide by
concatenation. "Does a record exist for X" is answered by looking up the
derived address alone; uniqueness comes from the ledger store's
create-if-absent primitive, never from a separate existence check.
"""

from __future__ import annotations

import hashlib


FEE_REGISTRY_TAG = "fee_registry"
VERIFIERS_TAG = "verifiers"
TREASURY_TAG = "treasury"
PREFIX_TAG = "prefix"


def derive_address(program_id: str, namespace_tag: str, key: str = "") -> str:
    """Derive the storage address for (namespace_tag, key) under a program.

    Pure function: the same inputs always yield the same address.
    """
    h = hashlib.sha256()
    for part in (program_id, namespace_tag, key):
        raw = part.encode("utf-8")
        h.update(len(raw).to_bytes(4, "big"))
        h.update(raw)
    return h.hexdigest()


def seeds_for(namespace_tag: str, key: str = "") -> tuple[str, str]:
    """The seed tuple stored alongside an account for re-derivation."""
    return (namespace_tag, key)


def fee_registry_address(program_id: str) -> str:
    return derive_address(program_id, FEE_REGISTRY_TAG)


def verifiers_address(program_id: str) -> str:
    return derive_address(program_id, VERIFIERS_TAG)


def treasury_address(program_id: str) -> str:
    """The treasury is addressed from the fee registry it belongs to."""
    return derive_address(program_id, TREASURY_TAG, fee_registry_address(program_id))


def prefix_address(program_id: str, normalized_prefix: str) -> str:
    return derive_address(program_id, PREFIX_TAG, normalized_prefix)
