"""Cron endpoint. Schedulers may send GET or POST; both run the same sweep."""

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_common.database import get_db_session
from src.pm_common.response import ApiResponse, success_response
from src.pm_gateway.auth.dependencies import require_cron_secret
from src.pm_reconciliation.application.service import ReconciliationService

router = APIRouter(prefix="/cron", tags=["cron"])

_service = ReconciliationService()


@router.api_route("/reconcile", methods=["GET", "POST"])
async def reconcile(
    request: Request,
    _: Annotated[None, Depends(require_cron_secret)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    summary = await _service.run(db)
    resp = success_response(asdict(summary))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
