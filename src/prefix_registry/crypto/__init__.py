"""Cryptographic primitives — deterministic addressing, Ed25519 proofs, anchoring."""

from prefix_registry.crypto.addressing import derive_address
from prefix_registry.crypto.signatures import SignatureProof, sign_message, verify_proof

__all__ = ["derive_address", "SignatureProof", "sign_message", "verify_proof"]
