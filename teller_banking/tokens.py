"""
Identity & Token Service Module

Issues and verifies signed, time-bounded bearer tokens (JWT, HS256 by
default) binding a subject id to a role. Verification is stateless: the
role in a token is trusted as of issuance and is not re-checked against
the user store.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Callable, Optional

import jwt

from .errors import InternalError, Unauthenticated
from .logging_config import get_logger
from .identity import Role


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenPurpose(Enum):
    """What a token may be used for"""
    SESSION = "session"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a token"""
    subject_id: str
    role: Optional[Role]
    purpose: TokenPurpose
    expires_at: datetime


class TokenService:
    """
    Signs and verifies bearer tokens.

    The signing secret is configuration handed in at construction; the
    service never reads it from the environment itself.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        session_ttl: timedelta = timedelta(hours=24),
        reset_ttl: timedelta = timedelta(minutes=15),
        clock: Optional[Clock] = None
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.session_ttl = session_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock or utc_now
        self.logger = get_logger("teller.tokens")

    def issue_token(self, subject_id: str, role: Role) -> str:
        """Issue a session token for a subject and role"""
        return self._sign(subject_id, TokenPurpose.SESSION, self.session_ttl, role)

    def issue_reset_token(self, subject_id: str) -> str:
        """Issue a short-lived password-reset token"""
        return self._sign(subject_id, TokenPurpose.PASSWORD_RESET, self.reset_ttl)

    def verify_token(self, token: str,
                     purpose: TokenPurpose = TokenPurpose.SESSION) -> TokenClaims:
        """
        Verify a token and return its claims.

        Raises:
            Unauthenticated: malformed token, bad signature, expired, issued
                for another purpose, or missing/unknown claims
        """
        if not token:
            raise Unauthenticated("Access denied. No token provided.")

        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp", "purpose"]}
            )
        except jwt.InvalidTokenError as e:
            self.logger.info(f"Token rejected: {e.__class__.__name__}")
            raise Unauthenticated("Invalid or expired token") from e

        try:
            token_purpose = TokenPurpose(payload["purpose"])
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            role = Role(payload["role"]) if payload.get("role") is not None else None
        except (ValueError, TypeError) as e:
            raise Unauthenticated("Invalid or expired token") from e

        if token_purpose != purpose:
            raise Unauthenticated("Invalid or expired token")
        if self._clock() >= expires_at:
            self.logger.info("Token rejected: expired")
            raise Unauthenticated("Invalid or expired token")
        if purpose == TokenPurpose.SESSION and role is None:
            raise Unauthenticated("Invalid or expired token")

        return TokenClaims(
            subject_id=str(payload["sub"]),
            role=role,
            purpose=token_purpose,
            expires_at=expires_at
        )

    def _sign(self, subject_id: str, purpose: TokenPurpose, ttl: timedelta,
              role: Optional[Role] = None) -> str:
        now = self._clock()
        payload = {
            "sub": str(subject_id),
            "purpose": purpose.value,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        if role is not None:
            payload["role"] = role.value

        try:
            return jwt.encode(payload, self._secret, algorithm=self.algorithm)
        except (jwt.PyJWTError, NotImplementedError, TypeError) as e:
            raise InternalError(f"Token signing failed: {e}") from e
