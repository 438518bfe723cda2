"""Unit tests for auth/hashing.py -- bcrypt hashing and token helpers.

Covers:
- hash() / verify() round trip and rejection of other plaintexts
- salting: two hashes of the same plaintext differ
- malformed digests and bcrypt's input limits
- compare(), constant_time_equals(), generate_token()
"""

import pytest

from auth.hashing import HashingService


@pytest.fixture(scope="module")
def hashing() -> HashingService:
    return HashingService(rounds=4)


class TestHashAndVerify:
    def test_verify_accepts_the_original_plaintext(self, hashing: HashingService) -> None:
        digest = hashing.hash("correct horse battery staple")
        assert hashing.verify("correct horse battery staple", digest) is True

    def test_verify_rejects_other_plaintexts(self, hashing: HashingService) -> None:
        digest = hashing.hash("correct horse battery staple")
        assert hashing.verify("Correct horse battery staple", digest) is False
        assert hashing.verify("", digest) is False

    def test_hash_is_salted(self, hashing: HashingService) -> None:
        """Same plaintext, two different digests -- both verify."""
        a = hashing.hash("s3cret")
        b = hashing.hash("s3cret")
        assert a != b
        assert hashing.verify("s3cret", a) and hashing.verify("s3cret", b)

    def test_hash_never_contains_plaintext(self, hashing: HashingService) -> None:
        assert "hunter2" not in hashing.hash("hunter2")

    def test_work_factor_is_encoded_in_digest(self, hashing: HashingService) -> None:
        assert hashing.hash("pw").startswith("$2b$04$")

    def test_malformed_digest_is_not_a_match(self, hashing: HashingService) -> None:
        assert hashing.verify("pw", "not-a-bcrypt-hash") is False
        assert hashing.verify("pw", "") is False

    def test_empty_plaintext_rejected(self, hashing: HashingService) -> None:
        with pytest.raises(ValueError):
            hashing.hash("")

    def test_over_long_plaintext_rejected(self, hashing: HashingService) -> None:
        """bcrypt only reads 72 bytes; longer input must not silently truncate."""
        with pytest.raises(ValueError):
            hashing.hash("x" * 73)

    def test_72_bytes_is_accepted(self, hashing: HashingService) -> None:
        digest = hashing.hash("x" * 72)
        assert hashing.verify("x" * 72, digest)


class TestCompareAndTokens:
    def test_compare_matches_value_against_its_digest(self, hashing: HashingService) -> None:
        digest = hashing.hash("material")
        assert hashing.compare("material", digest) is True
        assert hashing.compare("other", digest) is False

    def test_verify_dummy_always_false(self, hashing: HashingService) -> None:
        assert hashing.verify_dummy("credguard_timing_dummy") is False

    def test_constant_time_equals(self) -> None:
        assert HashingService.constant_time_equals("abc", "abc") is True
        assert HashingService.constant_time_equals("abc", "abd") is False
        assert HashingService.constant_time_equals(None, "abc") is False
        assert HashingService.constant_time_equals("abc", None) is False

    def test_generate_token_is_hex_and_unique(self) -> None:
        tokens = {HashingService.generate_token(1, "2026-01-01") for _ in range(50)}
        assert len(tokens) == 50
        for token in tokens:
            assert len(token) == 64
            int(token, 16)

    def test_keyed_digest_depends_on_key(self) -> None:
        assert HashingService.keyed_digest("k1", "v") != HashingService.keyed_digest("k2", "v")
        assert HashingService.keyed_digest("k1", "v") == HashingService.keyed_digest("k1", "v")
