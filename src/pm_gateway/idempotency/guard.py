"""Idempotency guard for money-moving requests, stored in Redis.

A client sends `X-Idempotency-Key: <uuid>` (fallback `Idempotency-Key`).
The key is scoped by user and route so the same client key can never
collide across users or endpoints:

    idem:{user_id}:{route}:{client_key}

Lifecycle of a record (24 h TTL):

    ABSENT --lock()--> LOCKED --complete()--> COMPLETED(status, body)
                       LOCKED --release()---> ABSENT   (failed before any side effect)

A handler error marked side_effects_committed (for example a disbursement
refused after the debit and refund were committed) completes the record
with the error response instead of releasing it, so a retry replays the
failure rather than moving money a second time.

A second request arriving while LOCKED is answered 409 and takes no lock.
A request arriving after COMPLETED gets the cached response replayed
verbatim, without re-running the handler.

This guard is independent of the settled_at claim on mobile payments:
the guard deduplicates client retries, the claim deduplicates settlement.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from config.settings import settings
from src.pm_common.errors import AppError, DuplicateRequestError
from src.pm_common.response import error_response

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADERS = ("x-idempotency-key", "idempotency-key")

_LOCKED_VALUE = json.dumps({"state": "locked"})

# Delete only while the record still holds the lock marker
_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class IdempotencyStatus(str, Enum):
    ABSENT = "ABSENT"
    LOCKED = "LOCKED"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class IdempotencyState:
    status: IdempotencyStatus
    http_status: int | None = None
    body: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IdempotentResult:
    http_status: int
    body: dict[str, Any]
    replayed: bool = False


def get_idempotency_key(headers: Mapping[str, str]) -> str | None:
    """Read the client key from request headers (case-insensitive mapping)."""
    for name in IDEMPOTENCY_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


class IdempotencyGuard:
    def __init__(self, redis: Redis, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS

    @staticmethod
    def scope_key(client_key: str, user_id: str, route: str) -> str:
        return f"idem:{user_id}:{route}:{client_key}"

    async def check(self, key: str) -> IdempotencyState:
        raw = await self._redis.get(key)
        if raw is None:
            return IdempotencyState(IdempotencyStatus.ABSENT)
        try:
            record = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable idempotency record %s", key)
            await self._redis.delete(key)
            return IdempotencyState(IdempotencyStatus.ABSENT)

        if record.get("state") == "completed":
            return IdempotencyState(
                IdempotencyStatus.COMPLETED,
                http_status=int(record["status"]),
                body=record.get("body") or {},
            )
        return IdempotencyState(IdempotencyStatus.LOCKED)

    async def lock(self, key: str) -> bool:
        """Atomically take the key. False means someone else holds or completed it."""
        acquired = await self._redis.set(key, _LOCKED_VALUE, nx=True, ex=self._ttl)
        return bool(acquired)

    async def complete(self, key: str, http_status: int, body: dict[str, Any]) -> None:
        record = {"state": "completed", "status": http_status, "body": body}
        await self._redis.set(key, json.dumps(record, default=str), ex=self._ttl)

    async def release(self, key: str) -> None:
        await self._redis.eval(_RELEASE_SCRIPT, 1, key, _LOCKED_VALUE)


async def run_idempotent(
    guard: IdempotencyGuard,
    client_key: str | None,
    user_id: str,
    route: str,
    handler: Callable[[], Awaitable[tuple[int, dict[str, Any]]]],
    request_id: str | None = None,
) -> IdempotentResult:
    """Run `handler` at most once per (user, route, client key).

    Without a client key the handler simply runs. If the handler raises an
    AppError with side_effects_committed, the error envelope is stored and
    returned like any other response. Any other exception releases the lock
    and propagates, so the client may retry.
    """
    if not client_key:
        status, body = await handler()
        return IdempotentResult(status, body)

    key = guard.scope_key(client_key, user_id, route)
    state = await guard.check(key)
    if state.status is IdempotencyStatus.COMPLETED:
        logger.info("Replaying idempotent response for %s", key)
        return IdempotentResult(state.http_status or 200, state.body, replayed=True)
    if state.status is IdempotencyStatus.LOCKED:
        raise DuplicateRequestError()

    if not await guard.lock(key):
        raise DuplicateRequestError()

    try:
        status, body = await handler()
    except AppError as e:
        if not e.side_effects_committed:
            await guard.release(key)
            raise
        logger.warning("Storing committed failure for %s: %s", key, e.message)
        status, body = e.http_status, _error_body(e, request_id)
    except Exception:
        await guard.release(key)
        raise

    await guard.complete(key, status, body)
    return IdempotentResult(status, body)


def _error_body(exc: AppError, request_id: str | None) -> dict[str, Any]:
    resp = error_response(exc.code, exc.message)
    if request_id:
        resp.request_id = request_id
    return resp.model_dump(mode="json")
