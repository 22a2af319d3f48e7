"""Ed25519 proofs of control and consent.

An owner proves control of their identity by signing the exact 32-byte
metadata hash; a new owner consents to a recovery by signing the prefix
record address. The proof travels as a companion artifact with the
operation that uses it and is verified inside the same transaction, so
a proof and the mutation it authorizes commit or fail together.

Identities are hex-encoded raw Ed25519 public keys (32 bytes, 64 hex
characters). Verification fails closed: a malformed identity, a
malformed signature, a proof by a different signer or over a different
message are all rejected with InvalidEd25519Signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519

from prefix_registry.engine.errors import ErrorCode, RegistryError


@dataclass(frozen=True)
class SignatureProof:
    """A companion signature: signer identity, message, and signature bytes."""
    signer: str
    message: bytes
    signature: bytes

    def to_dict(self) -> dict[str, str]:
        return {
            "signer": self.signer,
            "message": self.message.hex(),
            "signature": self.signature.hex(),
        }

    @staticmethod
    def from_dict(data: dict[str, str]) -> SignatureProof:
        return SignatureProof(
            signer=data["signer"],
            message=bytes.fromhex(data["message"]),
            signature=bytes.fromhex(data["signature"]),
        )


def generate_keypair() -> tuple[str, str]:
    """Generate a keypair. Returns (private_key_hex, identity)."""
    sk = ed25519.Ed25519PrivateKey.generate()
    return sk.private_bytes_raw().hex(), sk.public_key().public_bytes_raw().hex()


def identity_of(private_key_hex: str) -> str:
    """Derive the identity (public key hex) for a private key."""
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
    return sk.public_key().public_bytes_raw().hex()


def sign_message(private_key_hex: str, message: bytes) -> SignatureProof:
    """Sign a message and package it as a companion proof."""
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
    return SignatureProof(
        signer=sk.public_key().public_bytes_raw().hex(),
        message=bytes(message),
        signature=sk.sign(bytes(message)),
    )


def is_valid_identity(identity: str) -> bool:
    """True if the identity decodes to a 32-byte Ed25519 public key."""
    try:
        raw = bytes.fromhex(identity)
        ed25519.Ed25519PublicKey.from_public_bytes(raw)
    except ValueError:
        return False
    return len(raw) == 32


def verify_proof(proof: Optional[SignatureProof], signer: str, message: bytes) -> None:
    """Verify that ``proof`` is ``signer``'s signature over exactly ``message``.

    Raises RegistryError(InvalidEd25519Signature) on any failure.
    """
    if proof is None:
        raise RegistryError(
            ErrorCode.INVALID_ED25519_SIGNATURE, "Missing companion signature proof"
        )
    if proof.signer != signer:
        raise RegistryError(
            ErrorCode.INVALID_ED25519_SIGNATURE,
            f"Proof signed by {proof.signer}, expected {signer}",
        )
    if bytes(proof.message) != bytes(message):
        raise RegistryError(
            ErrorCode.INVALID_ED25519_SIGNATURE,
            "Proof message does not match the signed payload",
        )
    try:
        public_key = ed25519.Ed25519PublicKey.from_public_bytes(bytes.fromhex(signer))
        public_key.verify(proof.signature, proof.message)
    except (ValueError, InvalidSignature) as e:
        raise RegistryError(
            ErrorCode.INVALID_ED25519_SIGNATURE, f"Signature verification failed: {e!r}"
        ) from e
