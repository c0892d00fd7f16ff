# src/pm_admin/api/router.py
"""Admin REST API: market creation, resolution and dispute rulings.

Caller must be listed in ADMIN_USER_IDS. Sports-result ingestion calls
the resolve endpoint with the outcome; finalization normally happens in
the reconciliation sweep once the dispute window closes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_common.database import get_db_session
from src.pm_common.enums import DisputeStatus
from src.pm_common.response import ApiResponse, success_response
from src.pm_gateway.auth.dependencies import require_admin
from src.pm_market.application.disputes import DisputeService
from src.pm_market.application.resolver import MarketResolver
from src.pm_market.application.schemas import (
    CreateMarketRequest,
    DecideDisputeRequest,
    DisputeView,
    MarketDetail,
    ResolveMarketRequest,
)

router = APIRouter(prefix="/admin", tags=["admin"])
_resolver = MarketResolver()
_disputes = DisputeService()


@router.post("/markets", status_code=status.HTTP_201_CREATED)
async def create_market(
    body: CreateMarketRequest,
    request: Request,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    market = await _resolver.create_market(
        db, body.title, body.liquidity_ngwee, body.initial_yes_price, body.resolve_time
    )
    resp = success_response(MarketDetail.from_domain(market).model_dump(), "Market created")
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/markets/{market_id}/resolve")
async def resolve_market(
    market_id: str,
    body: ResolveMarketRequest,
    request: Request,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _resolver.resolve_market(db, market_id, body.outcome)
    resp = success_response(
        {
            "market_id": result.market_id,
            "outcome": result.outcome,
            "dispute_deadline": result.dispute_deadline.isoformat(),
            "notified_users": result.notified_users,
        }
    )
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/markets/{market_id}/finalize")
async def finalize_market(
    market_id: str,
    request: Request,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _resolver.finalize_market(db, market_id)
    resp = success_response(
        {
            "market_id": result.market_id,
            "already_finalized": result.already_finalized,
            "winners_paid": result.winners_paid,
            "losers_closed": result.losers_closed,
            "payout_ngwee": result.payout_ngwee,
            "fees_ngwee": result.fees_ngwee,
        }
    )
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/disputes")
async def list_disputes(
    request: Request,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    dispute_status: DisputeStatus = Query(DisputeStatus.OPEN, alias="status"),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    disputes = await _disputes.list_disputes(db, status=dispute_status, limit=limit)
    resp = success_response({"items": [DisputeView.from_domain(d).model_dump() for d in disputes]})
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/disputes/{dispute_id}/decide")
async def decide_dispute(
    dispute_id: str,
    body: DecideDisputeRequest,
    request: Request,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    decision = await _disputes.decide_dispute(
        db, dispute_id, admin_id, body.action, body.admin_response, body.new_outcome
    )
    resp = success_response(
        {
            "dispute_id": decision.dispute_id,
            "market_id": decision.market_id,
            "status": decision.status,
            "market_status": decision.market_status,
            "winning_outcome": decision.winning_outcome,
            "dispute_deadline": (
                decision.dispute_deadline.isoformat() if decision.dispute_deadline else None
            ),
            "auto_rejected": decision.auto_rejected,
        }
    )
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
