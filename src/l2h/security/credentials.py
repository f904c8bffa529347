"""Password hashing and random tokens.

Passwords are hashed with Argon2id and serialized as a self-describing PHC
string, so digests produced by older deployments keep verifying:

    $argon2id$v=19$m=65536,t=3,p=2$<salt>$<hash>

Salt and hash are unpadded standard base64.

Usage:
    from l2h.security.credentials import hash_password, verify_password

    digest = hash_password("hunter2")
    assert verify_password("hunter2", digest)

    stored = StoredPassword.parse(row_value)
    if stored.matches(candidate) and stored.needs_upgrade:
        ...  # rehash and persist
"""

from __future__ import annotations

import base64
import binascii
import hmac
import os
import re
import secrets
from dataclasses import dataclass

from argon2.exceptions import HashingError
from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

from l2h.core.exceptions import CryptoFailure, InvalidDigestFormat

ALGORITHM_TAG = "argon2id"
HASH_PREFIX = f"${ALGORITHM_TAG}$"

_PARAMS_RE = re.compile(r"^m=(\d+),t=(\d+),p=(\d+)$")
_VERSION_RE = re.compile(r"^v=(\d+)$")


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded, validate=True)


@dataclass(frozen=True)
class Argon2Parameters:
    """Cost parameters for Argon2id."""

    memory_cost: int = 64 * 1024
    """Working set in KiB (64 MiB)."""

    time_cost: int = 3
    """Number of passes."""

    parallelism: int = 2

    salt_length: int = 16

    hash_length: int = 32


class PasswordCodec:
    """Hashes and verifies passwords with Argon2id."""

    def __init__(self, params: Argon2Parameters | None = None) -> None:
        self.params = params or Argon2Parameters()

    def hash(self, password: str) -> str:
        """Derive a new digest with a fresh random salt.

        Raises:
            CryptoFailure: If the system random source or the KDF fails.
        """
        p = self.params
        try:
            salt = os.urandom(p.salt_length)
        except (NotImplementedError, OSError) as e:
            raise CryptoFailure("random source unavailable", details=str(e)) from e

        raw = self._derive(password.encode("utf-8"), salt, p.time_cost, p.memory_cost, p.parallelism, p.hash_length)
        return (
            f"{HASH_PREFIX}v={ARGON2_VERSION}"
            f"$m={p.memory_cost},t={p.time_cost},p={p.parallelism}"
            f"${_b64encode(salt)}${_b64encode(raw)}"
        )

    def verify(self, password: str, digest: str) -> bool:
        """Check a password against a serialized digest in constant time.

        Raises:
            InvalidDigestFormat: If the digest is not a five-field argon2id string.
        """
        parts = digest.split("$")
        # Leading "$" yields an empty first element.
        if len(parts) != 6 or parts[0] != "" or parts[1] != ALGORITHM_TAG:
            raise InvalidDigestFormat("unrecognized digest format")

        version_match = _VERSION_RE.match(parts[2])
        params_match = _PARAMS_RE.match(parts[3])
        if not version_match or not params_match:
            raise InvalidDigestFormat("malformed digest parameters")

        memory_cost, time_cost, parallelism = (int(g) for g in params_match.groups())
        try:
            salt = _b64decode(parts[4])
            expected = _b64decode(parts[5])
        except (binascii.Error, ValueError) as e:
            raise InvalidDigestFormat("malformed digest encoding", details=str(e)) from e

        if not salt or not expected:
            raise InvalidDigestFormat("empty salt or hash")

        actual = self._derive(
            password.encode("utf-8"),
            salt,
            time_cost,
            memory_cost,
            parallelism,
            len(expected),
        )
        return hmac.compare_digest(actual, expected)

    @staticmethod
    def _derive(
        secret: bytes,
        salt: bytes,
        time_cost: int,
        memory_cost: int,
        parallelism: int,
        hash_length: int,
    ) -> bytes:
        try:
            return hash_secret_raw(
                secret=secret,
                salt=salt,
                time_cost=time_cost,
                memory_cost=memory_cost,
                parallelism=parallelism,
                hash_len=hash_length,
                type=Type.ID,
                version=ARGON2_VERSION,
            )
        except HashingError as e:
            raise CryptoFailure("argon2 derivation failed", details=str(e)) from e


_default_codec = PasswordCodec()


def hash_password(password: str) -> str:
    """Hash a password with the default Argon2id parameters."""
    return _default_codec.hash(password)


def verify_password(password: str, digest: str) -> bool:
    """Verify a password against a digest produced by :func:`hash_password`."""
    return _default_codec.verify(password, digest)


def is_hashed(value: str | None) -> bool:
    """Cheap check for a stored digest, without parsing it."""
    return bool(value) and value.startswith(HASH_PREFIX)


def random_token(length: int) -> str:
    """Cryptographically random URL-safe string of exactly ``length`` characters."""
    if length <= 0:
        return ""
    token = secrets.token_urlsafe(length)
    while len(token) < length:
        token += secrets.token_urlsafe(length)
    return token[:length]


@dataclass(frozen=True)
class StoredPassword:
    """A binding password as read from the store.

    Resolved once at load time into one of three forms: no password, an
    Argon2id digest, or legacy plaintext left over from older deployments.
    """

    kind: str
    value: str = ""

    NONE = "none"
    HASHED = "hashed"
    LEGACY = "legacy"

    @classmethod
    def parse(cls, raw: str | None) -> StoredPassword:
        if not raw:
            return cls(cls.NONE)
        if is_hashed(raw):
            return cls(cls.HASHED, raw)
        return cls(cls.LEGACY, raw)

    @property
    def required(self) -> bool:
        return self.kind != self.NONE

    @property
    def needs_upgrade(self) -> bool:
        return self.kind == self.LEGACY

    def matches(self, candidate: str | None, codec: PasswordCodec | None = None) -> bool:
        """Check a candidate password. A malformed digest never matches."""
        if self.kind == self.NONE:
            return True
        if not candidate:
            return False
        if self.kind == self.LEGACY:
            return hmac.compare_digest(candidate.encode("utf-8"), self.value.encode("utf-8"))
        try:
            return (codec or _default_codec).verify(candidate, self.value)
        except InvalidDigestFormat:
            return False
