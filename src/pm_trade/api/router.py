"""Trade endpoint.

POST /trade — buy or sell against the market's AMM pool.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_common.database import get_db_session
from src.pm_common.response import ApiResponse, success_response
from src.pm_gateway.middleware.rate_limit import rate_limit
from src.pm_trade.application.schemas import TradeRequest
from src.pm_trade.application.service import TradeService

router = APIRouter(tags=["trade"])

_service = TradeService()


@router.post("/trade")
async def execute_trade(
    body: TradeRequest,
    request: Request,
    user_id: Annotated[str, Depends(rate_limit("trade", settings.TRADE_RATE_LIMIT))],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _service.execute_trade(db, user_id, body)
    resp = success_response(result.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
