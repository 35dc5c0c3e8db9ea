from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.core.config import get_settings
from app.core.errors import NotAuthenticatedError


def create_access_token(subject: str, expires_minutes: Optional[int] = 60) -> str:
    """Sign a token for ``subject`` with the shared secret.

    Deployed clients get their tokens from the identity provider that holds the
    same ``JWT_SECRET``; this issues tokens for local development and tests.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"sub": subject, "iat": int(now.timestamp())}
    if expires_minutes is not None:
        payload["exp"] = int((now + timedelta(minutes=expires_minutes)).timestamp())
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise NotAuthenticatedError("Invalid or expired token") from exc
    if not payload.get("sub"):
        raise NotAuthenticatedError("Token has no subject")
    return payload
