"""FastAPI dependencies for caller identity.

Usage in any protected router:
    from src.pm_gateway.auth.dependencies import get_current_user_id

    @router.get("/protected")
    async def protected(user_id: str = Depends(get_current_user_id)):
        ...
"""

import hmac

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings
from src.pm_common.errors import ForbiddenError, UnauthorizedError
from src.pm_gateway.auth.jwt_handler import decode_token

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    """Return the authenticated user id (JWT `sub`). 401 if missing or invalid."""
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid or expired token")
    return str(user_id)


async def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    """Verify the caller is listed in ADMIN_USER_IDS."""
    if user_id not in settings.ADMIN_USER_IDS:
        raise ForbiddenError("Admin privileges required")
    return user_id


def is_valid_cron_secret(authorization: str | None, secret: str) -> bool:
    """Constant-time check of an `Authorization: Bearer <secret>` header."""
    if not secret or not authorization:
        return False
    expected = f"Bearer {secret}"
    return hmac.compare_digest(authorization.encode(), expected.encode())


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> None:
    header = f"Bearer {credentials.credentials}" if credentials else None
    if not is_valid_cron_secret(header, settings.CRON_SECRET):
        raise UnauthorizedError("Invalid cron secret")
