"""Pydantic schemas for pm_market API responses.

Cursor format for markets (UUID PK, not sequential):
  {"ts": "<created_at ISO>", "id": "<market_id>"}
  Encoded as Base64 JSON string.
"""

import base64
import binascii
import json
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.pm_common.enums import DisputeAction, Outcome
from src.pm_common.ngwee import ngwee_to_display
from src.pm_market.domain.models import Market, MarketDispute

# ---------------------------------------------------------------------------
# Cursor utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_market: Market) -> str:
    """Encode composite cursor from last market in page."""
    payload = {
        "ts": last_market.created_at.isoformat(),
        "id": last_market.id,
    }
    return base64.b64encode(json.dumps(payload).encode()).decode()


def cursor_decode(cursor: str | None) -> tuple[str | None, str | None]:
    """Decode composite cursor -> (ts_iso, market_id), or (None, None) on error."""
    if cursor is None:
        return None, None
    try:
        data = json.loads(base64.b64decode(cursor.encode()).decode())
        return data["ts"], data["id"]
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
        return None, None


# ---------------------------------------------------------------------------
# Market
# ---------------------------------------------------------------------------


class MarketListItem(BaseModel):
    id: str
    title: str
    status: str
    yes_price: float
    no_price: float
    volume_ngwee: int
    volume_display: str
    resolve_time: str | None
    created_at: str

    @classmethod
    def from_domain(cls, m: Market) -> "MarketListItem":
        return cls(
            id=m.id,
            title=m.title,
            status=m.status,
            yes_price=float(m.yes_price),
            no_price=float(m.no_price),
            volume_ngwee=m.volume_ngwee,
            volume_display=ngwee_to_display(m.volume_ngwee),
            resolve_time=m.resolve_time.isoformat() if m.resolve_time else None,
            created_at=m.created_at.isoformat(),
        )


class MarketListResponse(BaseModel):
    items: list[MarketListItem]
    next_cursor: str | None
    has_more: bool


class MarketDetail(MarketListItem):
    pool_yes_shares: float
    pool_no_shares: float
    pool_k: float
    winning_outcome: str | None
    resolved_at: str | None
    dispute_deadline: str | None
    finalized_at: str | None

    @classmethod
    def from_domain(cls, m: Market) -> "MarketDetail":
        base = MarketListItem.from_domain(m).model_dump()
        return cls(
            **base,
            pool_yes_shares=float(m.pool_yes_shares),
            pool_no_shares=float(m.pool_no_shares),
            pool_k=float(m.pool_k),
            winning_outcome=m.winning_outcome,
            resolved_at=m.resolved_at.isoformat() if m.resolved_at else None,
            dispute_deadline=m.dispute_deadline.isoformat() if m.dispute_deadline else None,
            finalized_at=m.finalized_at.isoformat() if m.finalized_at else None,
        )


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


class FileDisputeRequest(BaseModel):
    reason: str = Field(..., max_length=2000)
    evidence: str | None = Field(None, max_length=5000)


class DisputeView(BaseModel):
    id: str
    market_id: str
    user_id: str
    reason: str
    evidence: str | None
    status: str
    admin_response: str | None
    resolved_at: str | None
    created_at: str

    @classmethod
    def from_domain(cls, d: MarketDispute) -> "DisputeView":
        return cls(
            id=d.id,
            market_id=d.market_id,
            user_id=d.user_id,
            reason=d.reason,
            evidence=d.evidence,
            status=d.status,
            admin_response=d.admin_response,
            resolved_at=d.resolved_at.isoformat() if d.resolved_at else None,
            created_at=d.created_at.isoformat(),
        )


class QuoteResponse(BaseModel):
    market_id: str
    outcome: str
    side: str
    shares: float
    avg_price: float
    amount_ngwee: int        # BUY: total debit; SELL: net credit
    fee_ngwee: int
    amount_display: str
    current_price: float
    new_yes_price: float
    new_no_price: float
    price_impact_pct: float


# ---------------------------------------------------------------------------
# Admin requests
# ---------------------------------------------------------------------------


class CreateMarketRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=500)
    liquidity_ngwee: int = Field(..., gt=0)
    initial_yes_price: Decimal = Field(Decimal("0.5"), gt=0, lt=1)
    resolve_time: datetime | None = None


class ResolveMarketRequest(BaseModel):
    outcome: Outcome


class DecideDisputeRequest(BaseModel):
    action: DisputeAction
    admin_response: str = Field(..., min_length=1, max_length=2000)
    new_outcome: Outcome | None = None
