"""Signed access and refresh tokens bound to a server-side session."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import jwt

from ..errors import InvalidTokenError, TokenExpiredError
from ..ids import utcnow

ALGORITHM = "HS256"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    session_id: str
    role_id: str
    email: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    session_id: str
    token_type: str = "bearer"


def fingerprint(token: str) -> str:
    """SHA-256 hex digest stored in place of the token itself."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenService:
    """Issue and decode HS256 JWTs."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self.secret = secret
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def _encode(
        self,
        token_type: TokenType,
        *,
        user_id: str,
        session_id: str,
        role_id: str,
        email: str,
        now: datetime,
    ) -> tuple[str, datetime]:
        ttl = self.access_ttl if token_type == TokenType.ACCESS else self.refresh_ttl
        expires = now + ttl
        payload = {
            "user_id": user_id,
            "session_id": session_id,
            "role_id": role_id,
            "email": email,
            "token_type": token_type.value,
            "iss": self.issuer,
            "aud": self.audience,
            "sub": user_id,
            "iat": now,
            "nbf": now,
            "exp": expires,
            # unique per token so a rotation within the same second differs
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM), expires

    def issue_pair(
        self, *, user_id: str, session_id: str, role_id: str, email: str
    ) -> TokenPair:
        now = utcnow()
        claims = dict(user_id=user_id, session_id=session_id, role_id=role_id, email=email)
        access, access_exp = self._encode(TokenType.ACCESS, now=now, **claims)
        refresh, refresh_exp = self._encode(TokenType.REFRESH, now=now, **claims)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
            session_id=session_id,
        )

    def decode(self, token: str, expected: TokenType | None = None) -> TokenClaims:
        """Verify signature, audience, issuer and time window of ``token``."""

        if not token:
            raise InvalidTokenError("token is required")
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "nbf", "session_id", "user_id"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except jwt.PyJWTError as exc:
            raise InvalidTokenError(f"invalid token: {exc}") from exc

        try:
            token_type = TokenType(payload.get("token_type"))
        except ValueError as exc:
            raise InvalidTokenError("unknown token type") from exc
        if expected is not None and token_type != expected:
            raise InvalidTokenError(f"expected {expected.value} token")

        return TokenClaims(
            user_id=payload["user_id"],
            session_id=payload["session_id"],
            role_id=payload.get("role_id", ""),
            email=payload.get("email", ""),
            token_type=token_type,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
