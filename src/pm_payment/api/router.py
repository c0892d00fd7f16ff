"""Mobile-money payment endpoints.

POST /payments/withdraw            — debit and disburse (idempotent)
POST /payments/deposit             — request a collection (idempotent)
GET  /payments/{payment_id}/status — poll, settling terminal outcomes
POST /payments/callback            — provider webhook, no user auth
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_common.database import get_db_session
from src.pm_common.redis_client import get_redis
from src.pm_common.response import ApiResponse, success_response
from src.pm_gateway.auth.dependencies import get_current_user_id
from src.pm_gateway.idempotency.guard import (
    IdempotencyGuard,
    get_idempotency_key,
    run_idempotent,
)
from src.pm_gateway.middleware.rate_limit import rate_limit
from src.pm_payment.application.schemas import DepositRequest, WithdrawRequest
from src.pm_payment.application.service import PaymentApplicationService

router = APIRouter(prefix="/payments", tags=["payments"])

_service = PaymentApplicationService()

_payment_limit = rate_limit("payment", settings.PAYMENT_RATE_LIMIT)


def _envelope(request: Request, data: dict) -> dict:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp.model_dump(mode="json")


@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    request: Request,
    user_id: Annotated[str, Depends(_payment_limit)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> JSONResponse:
    async def handler() -> tuple[int, dict]:
        view = await _service.initiate_withdrawal(
            db, user_id, body.amount_ngwee, body.phone_number, body.provider
        )
        return 200, _envelope(request, view.model_dump(mode="json"))

    guard = IdempotencyGuard(await get_redis())
    result = await run_idempotent(
        guard,
        get_idempotency_key(request.headers),
        user_id,
        "payments.withdraw",
        handler,
        getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=result.http_status, content=result.body)


@router.post("/deposit")
async def deposit(
    body: DepositRequest,
    request: Request,
    user_id: Annotated[str, Depends(_payment_limit)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> JSONResponse:
    async def handler() -> tuple[int, dict]:
        view = await _service.initiate_deposit(
            db, user_id, body.amount_ngwee, body.phone_number, body.provider
        )
        return 200, _envelope(request, view.model_dump(mode="json"))

    guard = IdempotencyGuard(await get_redis())
    result = await run_idempotent(
        guard,
        get_idempotency_key(request.headers),
        user_id,
        "payments.deposit",
        handler,
        getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=result.http_status, content=result.body)


@router.get("/{payment_id}/status")
async def payment_status(
    payment_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    view = await _service.get_payment_status(db, user_id, payment_id)
    resp = success_response(view.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/callback")
async def provider_callback(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict:
    raw_body = await request.body()
    return await _service.handle_callback(db, raw_body, request.headers)
