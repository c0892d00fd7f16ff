"""JWT verification for tokens issued by the external auth service.

MVP NOTE: Using HS256 (symmetric HMAC). The auth service and this engine
share one JWT_SECRET. Only the `sub` claim is consumed: it is treated as an
opaque user id.

create_access_token exists for local tooling and tests; production tokens
come from the auth service.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.pm_common.errors import UnauthorizedError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_ACCESS_EXPIRE = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)


def create_access_token(user_id: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, str]:
    """Decode and validate an access token.

    Raises:
        UnauthorizedError: signature invalid, token expired, or wrong type.
    """
    try:
        payload: dict[str, str] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise UnauthorizedError("Invalid or expired token") from None

    if payload.get("type", "access") != "access":
        raise UnauthorizedError("Invalid or expired token")
    return payload
