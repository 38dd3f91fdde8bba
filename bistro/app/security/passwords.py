"""Password policy, hashing and verification.

Hashes are argon2id strings produced by :class:`argon2.PasswordHasher`; the
library compares digests in constant time.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ..errors import ValidationError

logger = logging.getLogger(__name__)

MIN_LENGTH = 8
MAX_LENGTH = 128

COMMON_PASSWORDS = frozenset(
    {
        "password", "password123", "123456", "12345678", "qwerty",
        "admin", "administrator", "root", "guest", "user",
        "welcome", "login", "restaurant", "kitchen", "waiter",
    }
)

WEAK_PATTERNS = [
    re.compile(r"^(.)\1+$"),  # one repeated character
    re.compile(r"^\d+$"),
    re.compile(r"^[a-zA-Z]+$"),
    re.compile(r"^password\d*[!@#$%^&*()_+={}\[\]|\\:\";'<>?,./]*$", re.I),
    re.compile(r"^\d{4,}$"),
]


def _classes(password: str) -> tuple[bool, bool, bool, bool]:
    upper = lower = digit = special = False
    for ch in password:
        cat = unicodedata.category(ch)
        if cat[0] in "PS" or ord(ch) > 127:
            special = True
        if cat == "Lu":
            upper = True
        elif cat == "Ll":
            lower = True
        elif cat[0] == "N":
            digit = True
    return upper, lower, digit, special


def is_common_password(password: str) -> bool:
    if password in COMMON_PASSWORDS:
        return True
    return any(p.search(password) for p in WEAK_PATTERNS)


def has_sequential_chars(password: str) -> bool:
    """Detect any three consecutive bytes forming an ascending or descending run."""

    data = password.encode("utf-8")
    for a, b, c in zip(data, data[1:], data[2:]):
        if a + 1 == b and b + 1 == c:
            return True
        if a - 1 == b and b - 1 == c:
            return True
    return False


def validate_password(password: str) -> None:
    """Raise :class:`ValidationError` when ``password`` breaks the policy."""

    op = "validate_password"
    size = len(password.encode("utf-8"))
    if size < MIN_LENGTH:
        raise ValidationError("password", f"must be at least {MIN_LENGTH} characters long", op=op)
    if size > MAX_LENGTH:
        raise ValidationError("password", f"must not exceed {MAX_LENGTH} characters", op=op)

    upper, lower, digit, special = _classes(password)
    if not upper:
        raise ValidationError("password", "must contain at least one uppercase letter", op=op)
    if not lower:
        raise ValidationError("password", "must contain at least one lowercase letter", op=op)
    if not digit:
        raise ValidationError("password", "must contain at least one number", op=op)
    if not special:
        raise ValidationError("password", "must contain at least one special character", op=op)
    if is_common_password(password):
        raise ValidationError("password", "is too common, please choose a different one", op=op)
    if has_sequential_chars(password):
        raise ValidationError(
            "password", "cannot contain sequential characters (e.g. '123', 'abc')", op=op
        )


def estimate_strength(password: str) -> int:
    """Score ``password`` from 0 to 100."""

    score = 0
    size = len(password.encode("utf-8"))
    for threshold, points in ((8, 20), (12, 10), (16, 10)):
        if size >= threshold:
            score += points
    score += 15 * sum(_classes(password))
    if is_common_password(password):
        score -= 30
    if has_sequential_chars(password):
        score -= 20
    return max(0, min(100, score))


class PasswordService:
    """Validate, hash and verify passwords with a configured cost."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536) -> None:
        self._hasher = PasswordHasher(time_cost=time_cost, memory_cost=memory_cost)

    def hash(self, password: str) -> str:
        validate_password(password)
        return self._hasher.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        """Check ``password`` against ``password_hash`` without applying the policy."""

        if not password or not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError:
            logger.warning("stored password hash is not a valid argon2 hash")
            return False
        except VerificationError as exc:  # pragma: no cover - unexpected
            logger.error("argon2 verification error: %s", exc)
            raise

    def needs_rehash(self, password_hash: str) -> bool:
        return self._hasher.check_needs_rehash(password_hash)
