"""
Bearer token verification for billing requests.

Access tokens are issued by the PrepAcademy auth service and signed with the
shared JWT secret. The billing API only verifies them; ``create_access_token``
exists for admin tooling and tests.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
ADMIN_ROLE = "admin"

_REQUIRED_CLAIMS = ("sub", "exp", "type")


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access token."""

    user_id: str
    expires_at: datetime
    issued_at: datetime | None = None
    email: str | None = None
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessClaims":
        issued = payload.get("iat")
        return cls(
            user_id=str(payload["sub"]),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
            issued_at=datetime.fromtimestamp(issued, tz=UTC) if issued else None,
            email=payload.get("email"),
            role=payload.get("role"),
        )


class TokenService:
    """Creates and verifies access tokens signed with a shared secret."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 60,
        leeway_seconds: int = 0,
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._ttl = timedelta(minutes=access_token_expire_minutes)
        self._leeway = leeway_seconds

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
        expires_in: timedelta | None = None,
    ) -> str:
        """
        Sign an access token for *user_id*.

        Args:
            user_id: Subject of the token
            email: Optional email claim
            role: Optional role claim ("admin" grants the payout API)
            expires_in: Lifetime, defaults to the configured access token TTL

        Returns:
            Encoded JWT
        """
        now = datetime.now(UTC)
        claims: dict[str, Any] = {
            "sub": user_id,
            "iat": now,
            "exp": now + (expires_in if expires_in is not None else self._ttl),
            "type": ACCESS_TOKEN_TYPE,
        }
        if email:
            claims["email"] = email
        if role:
            claims["role"] = role
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> AccessClaims | None:
        """
        Verify signature, expiry and token type.

        Returns:
            AccessClaims if the token is a valid access token, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"leeway": self._leeway},
            )
        except JWTError as e:
            logger.debug("Rejected bearer token: %s", e)
            return None

        missing = [claim for claim in _REQUIRED_CLAIMS if claim not in payload]
        if missing:
            logger.debug("Rejected bearer token missing claims: %s", ", ".join(missing))
            return None
        if payload["type"] != ACCESS_TOKEN_TYPE:
            return None
        return AccessClaims.from_payload(payload)
