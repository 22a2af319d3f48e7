"""Tests for input validation — proves each malformed input maps to one error code."""

import pytest
from pathlib import Path

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.engine.validation import (
    normalize_prefix,
    validate_amount,
    validate_authority_keys,
    validate_hash,
    validate_metadata,
    validate_metadata_uri,
    validate_submitted_prefix,
)
from prefix_registry.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


def _code(fn, *args) -> ErrorCode:
    with pytest.raises(RegistryError) as exc:
        fn(*args)
    return exc.value.code


class TestPrefix:
    def test_valid_prefixes(self, resolver: PolicyResolver) -> None:
        for prefix in ("ABC", "MYAPP", "A1B2C3", "ABCDEFGHIJKL"):
            assert validate_submitted_prefix(prefix, resolver) == prefix

    def test_too_short_and_too_long(self, resolver: PolicyResolver) -> None:
        assert _code(validate_submitted_prefix, "AB", resolver) == ErrorCode.INVALID_PREFIX_FORMAT
        assert _code(
            validate_submitted_prefix, "ABCDEFGHIJKLM", resolver,
        ) == ErrorCode.INVALID_PREFIX_FORMAT

    def test_lowercase_submission_rejected(self, resolver: PolicyResolver) -> None:
        assert _code(validate_submitted_prefix, "myapp", resolver) == ErrorCode.INVALID_PREFIX_FORMAT

    def test_symbols_rejected(self, resolver: PolicyResolver) -> None:
        for prefix in ("MY-APP", "MY APP", "MYAPP!", "ÄBC"):
            assert _code(
                validate_submitted_prefix, prefix, resolver,
            ) == ErrorCode.INVALID_PREFIX_FORMAT

    def test_trailing_newline_rejected(self, resolver: PolicyResolver) -> None:
        for prefix in ("MYAP\n", "MYAPP\r\n", "\nMYAP"):
            assert _code(
                validate_submitted_prefix, prefix, resolver,
            ) == ErrorCode.INVALID_PREFIX_FORMAT

    def test_normalize_for_lookup(self, resolver: PolicyResolver) -> None:
        assert normalize_prefix(" myApp ", resolver) == "MYAPP"

    def test_normalize_still_validates(self, resolver: PolicyResolver) -> None:
        assert _code(normalize_prefix, "ab", resolver) == ErrorCode.INVALID_PREFIX_FORMAT


class TestMetadata:
    def test_https_and_ipfs_accepted(self, resolver: PolicyResolver) -> None:
        validate_metadata_uri("https://example.com/meta.json", resolver)
        validate_metadata_uri("ipfs://bafybeigdyrzt", resolver)

    def test_other_schemes_rejected(self, resolver: PolicyResolver) -> None:
        for uri in ("http://example.com", "ftp://x", "example.com", ""):
            assert _code(validate_metadata_uri, uri, resolver) == ErrorCode.INVALID_METADATA_URI

    def test_uri_length_cap(self, resolver: PolicyResolver) -> None:
        ok = "https://" + "a" * (255 - len("https://"))
        validate_metadata_uri(ok, resolver)
        assert _code(validate_metadata_uri, ok + "a", resolver) == ErrorCode.INVALID_METADATA_URI

    def test_hash_must_be_32_bytes(self, resolver: PolicyResolver) -> None:
        assert validate_hash(bytes(32), resolver) == bytes(32)
        for value in (bytes(31), bytes(33), b"", "00" * 32):
            assert _code(validate_hash, value, resolver) == ErrorCode.INVALID_METADATA_HASH_LENGTH

    def test_uri_checked_before_hash(self, resolver: PolicyResolver) -> None:
        assert _code(
            validate_metadata, "http://bad", bytes(3), resolver,
        ) == ErrorCode.INVALID_METADATA_URI


class TestAuthorityKeys:
    def test_ten_keys_accepted(self, resolver: PolicyResolver) -> None:
        keys = [f"key-{i}" for i in range(10)]
        assert validate_authority_keys(keys, resolver) == keys

    def test_eleven_keys_rejected(self, resolver: PolicyResolver) -> None:
        keys = [f"key-{i}" for i in range(11)]
        assert _code(validate_authority_keys, keys, resolver) == ErrorCode.AUTHORITY_KEYS_TOO_MANY

    def test_duplicates_rejected(self, resolver: PolicyResolver) -> None:
        assert _code(
            validate_authority_keys, ["a", "b", "a"], resolver,
        ) == ErrorCode.DUPLICATE_AUTHORITY_KEY

    def test_none_is_empty(self, resolver: PolicyResolver) -> None:
        assert validate_authority_keys(None, resolver) == []


class TestAmount:
    def test_bounds(self, resolver: PolicyResolver) -> None:
        assert validate_amount(0, resolver) == 0
        assert validate_amount(2**64 - 1, resolver) == 2**64 - 1
        assert _code(validate_amount, -1, resolver) == ErrorCode.INVALID_AMOUNT
        assert _code(validate_amount, 2**64, resolver) == ErrorCode.INVALID_AMOUNT

    def test_non_integers_rejected(self, resolver: PolicyResolver) -> None:
        for value in (True, 1.5, "100"):
            assert _code(validate_amount, value, resolver) == ErrorCode.INVALID_AMOUNT
