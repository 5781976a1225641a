from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from bakery.config import settings


STAFF_ROLES = {"admin", "staff"}


@dataclass(frozen=True)
class TokenUser:
    """Identity asserted by a verified access token."""
    id: str
    role: str = "customer"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def create_access_token(
    subject: str | uuid.UUID,
    role: str = "customer",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Tokens are normally issued by the identity service; this is used by
    tooling and tests that need to act as a given user.
    """
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "role": role,
        "exp": expire,
        "iat": now,
        "jti": str(uuid.uuid4()),
        "type": "access",
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[TokenUser]:
    """Verify an access token and return the identity it carries, or None."""
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != "access":
        return None

    subject = payload.get("sub")
    if not subject:
        return None

    return TokenUser(id=str(subject), role=str(payload.get("role") or "customer").lower())
