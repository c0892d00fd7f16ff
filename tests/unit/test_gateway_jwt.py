"""Unit tests for JWT verification and the admin / cron guards."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from config.settings import settings
from src.pm_common.errors import ForbiddenError, UnauthorizedError
from src.pm_gateway.auth.dependencies import (
    get_current_user_id,
    is_valid_cron_secret,
    require_admin,
)
from src.pm_gateway.auth.jwt_handler import create_access_token, decode_token


def test_access_token_contains_correct_claims() -> None:
    token = create_access_token("user-123")
    # Decode without verification to inspect claims
    payload = jwt.get_unverified_claims(token)
    assert payload["sub"] == "user-123"
    assert payload["type"] == "access"


def test_decode_valid_access_token() -> None:
    token = create_access_token("user-abc")
    payload = decode_token(token)
    assert payload["sub"] == "user-abc"


def test_token_without_type_claim_accepted() -> None:
    """Tokens from the auth service may carry only `sub`."""
    now = datetime.now(UTC)
    token = jwt.encode(
        {"sub": "user-abc", "exp": now + timedelta(minutes=5)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    assert decode_token(token)["sub"] == "user-abc"


def test_refresh_token_rejected() -> None:
    now = datetime.now(UTC)
    token = jwt.encode(
        {"sub": "user-abc", "type": "refresh", "exp": now + timedelta(minutes=5)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(UnauthorizedError):
        decode_token(token)


def test_expired_access_token_raises() -> None:
    with patch(
        "src.pm_gateway.auth.jwt_handler._ACCESS_EXPIRE",
        timedelta(seconds=-1),
    ):
        token = create_access_token("user-abc")
    with pytest.raises(UnauthorizedError):
        decode_token(token)


def test_wrong_secret_rejected() -> None:
    token = jwt.encode({"sub": "user-abc"}, "not-the-secret", algorithm="HS256")
    with pytest.raises(UnauthorizedError):
        decode_token(token)


async def test_current_user_from_bearer() -> None:
    creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_access_token("user-9"))
    assert await get_current_user_id(creds) == "user-9"


async def test_missing_bearer_is_unauthorized() -> None:
    with pytest.raises(UnauthorizedError):
        await get_current_user_id(None)


async def test_require_admin(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ADMIN_USER_IDS", ["admin-1"])
    assert await require_admin("admin-1") == "admin-1"
    with pytest.raises(ForbiddenError):
        await require_admin("user-1")


class TestCronSecret:
    def test_matching_secret(self) -> None:
        assert is_valid_cron_secret("Bearer s3cret", "s3cret")

    def test_wrong_secret(self) -> None:
        assert not is_valid_cron_secret("Bearer nope", "s3cret")

    def test_missing_header(self) -> None:
        assert not is_valid_cron_secret(None, "s3cret")

    def test_unset_secret_rejects_everything(self) -> None:
        assert not is_valid_cron_secret("Bearer ", "")
