"""Tests for Ed25519 proof of control."""

import pytest

from prefix_registry.crypto.signatures import (
    SignatureProof,
    generate_keypair,
    identity_of,
    is_valid_identity,
    sign_message,
    verify_proof,
)
from prefix_registry.engine.errors import ErrorCode, RegistryError


MESSAGE = bytes([1] * 32)


class TestKeys:
    def test_keypair_identity_matches(self) -> None:
        private_key, identity = generate_keypair()
        assert identity_of(private_key) == identity
        assert is_valid_identity(identity)

    def test_invalid_identities(self) -> None:
        assert not is_valid_identity("zz")
        assert not is_valid_identity("00" * 31)


class TestVerifyProof:
    def test_valid_proof(self) -> None:
        private_key, identity = generate_keypair()
        proof = sign_message(private_key, MESSAGE)
        verify_proof(proof, identity, MESSAGE)

    def test_missing_proof(self) -> None:
        _, identity = generate_keypair()
        with pytest.raises(RegistryError) as exc:
            verify_proof(None, identity, MESSAGE)
        assert exc.value.code == ErrorCode.INVALID_ED25519_SIGNATURE

    def test_wrong_signer(self) -> None:
        private_key, _ = generate_keypair()
        _, other = generate_keypair()
        proof = sign_message(private_key, MESSAGE)
        with pytest.raises(RegistryError) as exc:
            verify_proof(proof, other, MESSAGE)
        assert exc.value.code == ErrorCode.INVALID_ED25519_SIGNATURE

    def test_wrong_message(self) -> None:
        private_key, identity = generate_keypair()
        proof = sign_message(private_key, MESSAGE)
        with pytest.raises(RegistryError) as exc:
            verify_proof(proof, identity, bytes([2] * 32))
        assert exc.value.code == ErrorCode.INVALID_ED25519_SIGNATURE

    def test_forged_signature(self) -> None:
        private_key, identity = generate_keypair()
        other_key, _ = generate_keypair()
        forged = SignatureProof(
            signer=identity,
            message=MESSAGE,
            signature=sign_message(other_key, MESSAGE).signature,
        )
        with pytest.raises(RegistryError) as exc:
            verify_proof(forged, identity, MESSAGE)
        assert exc.value.code == ErrorCode.INVALID_ED25519_SIGNATURE

    def test_malformed_signer_identity(self) -> None:
        proof = SignatureProof(signer="not-hex", message=MESSAGE, signature=bytes(64))
        with pytest.raises(RegistryError) as exc:
            verify_proof(proof, "not-hex", MESSAGE)
        assert exc.value.code == ErrorCode.INVALID_ED25519_SIGNATURE

    def test_proof_dict_round_trip(self) -> None:
        private_key, identity = generate_keypair()
        proof = SignatureProof.from_dict(sign_message(private_key, MESSAGE).to_dict())
        verify_proof(proof, identity, MESSAGE)
