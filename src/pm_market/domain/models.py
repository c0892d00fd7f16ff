"""Domain models for pm_market — pure dataclasses, no business logic."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from src.pm_pricing.cpmm import Pool


@dataclass
class Market:
    id: str
    title: str
    status: str                      # MarketStatus value
    pool_yes_shares: Decimal
    pool_no_shares: Decimal
    pool_k: Decimal                  # written once at creation
    yes_price: Decimal               # cached for display, clamped [0.01, 0.99]
    no_price: Decimal
    volume_ngwee: int
    winning_outcome: str | None
    resolve_time: datetime | None
    resolved_at: datetime | None
    dispute_deadline: datetime | None
    finalized_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def pool(self) -> Pool:
        return Pool(
            yes_shares=self.pool_yes_shares,
            no_shares=self.pool_no_shares,
            k=self.pool_k,
        )


@dataclass
class MarketDispute:
    id: str
    market_id: str
    user_id: str
    reason: str
    evidence: str | None
    status: str                      # DisputeStatus value
    admin_response: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime
