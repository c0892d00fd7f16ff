"""pm_market REST endpoints.

GET /markets                       — list with cursor pagination
GET /markets/{market_id}           — full detail including pool state
GET /markets/{market_id}/quote     — read-only trade preview
POST /markets/{market_id}/dispute  — challenge a resolution inside the dispute window
GET  /markets/{market_id}/disputes — disputes filed on a market
"""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_common.database import get_db_session
from src.pm_common.enums import Outcome, TradeSide
from src.pm_common.response import ApiResponse, success_response
from src.pm_gateway.auth.dependencies import get_current_user_id
from src.pm_market.application.disputes import DisputeService
from src.pm_market.application.schemas import DisputeView, FileDisputeRequest
from src.pm_market.application.service import MarketApplicationService

router = APIRouter(prefix="/markets", tags=["markets"])

_service = MarketApplicationService()
_disputes = DisputeService()


@router.get("")
async def list_markets(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    status: str | None = Query(
        None, description="Filter by status. Default: ACTIVE. Use ALL for no filter."
    ),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    result = await _service.list_markets(db, status, cursor, limit)
    resp = success_response(result.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/{market_id}")
async def get_market(
    market_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _service.get_market(db, market_id)
    resp = success_response(result.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/{market_id}/quote")
async def get_quote(
    market_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    outcome: Outcome = Query(...),
    side: TradeSide = Query(TradeSide.BUY),
    amount: Decimal = Query(..., gt=0, description="BUY: ngwee to spend. SELL: shares."),
) -> ApiResponse:
    result = await _service.quote(db, market_id, outcome, side, amount)
    resp = success_response(result.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/{market_id}/dispute", status_code=http_status.HTTP_201_CREATED)
async def file_dispute(
    market_id: str,
    body: FileDisputeRequest,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    dispute = await _disputes.file_dispute(db, market_id, user_id, body.reason, body.evidence)
    resp = success_response(DisputeView.from_domain(dispute).model_dump(), "Dispute filed")
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/{market_id}/disputes")
async def list_disputes(
    market_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    disputes = await _disputes.list_disputes(db, market_id=market_id)
    resp = success_response({"items": [DisputeView.from_domain(d).model_dump() for d in disputes]})
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
