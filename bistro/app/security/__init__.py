"""Password hashing and token helpers."""

from .passwords import PasswordService, estimate_strength, validate_password
from .tokens import TokenPair, TokenService, TokenType, fingerprint

__all__ = [
    "PasswordService",
    "TokenPair",
    "TokenService",
    "TokenType",
    "estimate_strength",
    "fingerprint",
    "validate_password",
]
