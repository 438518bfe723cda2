"""
auth/hashing.py -- Password hashing, hash comparison, and token material.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Bcrypt is the right
       choice for low-entropy secrets because its cost factor makes offline
       brute force expensive. The cost factor comes from
       AuthenticationSettings.bcrypt_rounds so tests can run at the minimum.

  compare(): checks that a digest was produced from a value, using the salt
       embedded in the digest. The persistent login token and the password
       history check both go through it.

  Opaque tokens: hex SHA-256 over caller-supplied parts plus a 256-bit
       secrets nonce. The parts only add context; the nonce carries the
       unpredictability.

  72-byte limit: bcrypt 4.x+ raises on inputs longer than 72 bytes. hash()
       rejects them up front with ValueError so callers get one error type.

Layer rule: no imports from auth/store.py or auth/service.py.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

_BCRYPT_MAX_BYTES = 72


class HashingService:
    """One-way hashing and verification with a tunable work factor.

    Usage:
        hashing = HashingService(rounds=12)
        digest = hashing.hash("correct horse")
        hashing.verify("correct horse", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy. Computed once so that logins for unknown
        # identities pay the same bcrypt cost as logins for real ones.
        self._dummy_hash = self.hash("credguard_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext."""
        encoded = plaintext.encode("utf-8")
        if not encoded:
            raise ValueError("Cannot hash an empty value.")
        if len(encoded) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"Value is longer than {_BCRYPT_MAX_BYTES} bytes.")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if the plaintext matches the bcrypt digest."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            # Malformed digest or over-long input: not a match.
            return False

    def compare(self, value: str, digest: str) -> bool:
        """Return True if digest is a hash of value.

        bcrypt re-hashes value with the salt and cost stored in digest and
        compares the results in constant time.
        """
        return self.verify(value, digest)

    def verify_dummy(self, plaintext: str) -> bool:
        """Burn one bcrypt check against the dummy hash. Always returns False."""
        self.verify(plaintext, self._dummy_hash)
        return False

    @staticmethod
    def constant_time_equals(a: str | None, b: str | None) -> bool:
        """Compare two opaque strings without leaking the mismatch position."""
        if a is None or b is None:
            return False
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))

    @staticmethod
    def digest(value: str) -> str:
        """Unsalted SHA-256 hex digest. For binding material, never for passwords."""
        return hashlib.sha256(value.encode("utf-8")).hexdigest()

    @staticmethod
    def keyed_digest(key: str, value: str) -> str:
        """HMAC-SHA256(key, value) as hex."""
        return hmac.new(key.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def generate_token(*parts: object) -> str:
        """Return an unpredictable 64-char hex token.

        parts (e.g. a user id and a timestamp) are mixed in with a fresh
        secrets.token_hex(32) nonce and the whole is hashed.
        """
        material = ":".join(str(p) for p in parts) + ":" + secrets.token_hex(32)
        return hashlib.sha256(material.encode("utf-8")).hexdigest()
