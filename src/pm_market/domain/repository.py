"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_market.domain.models import Market, MarketDispute
from src.pm_pricing.cpmm import Pool


class MarketRepositoryProtocol(Protocol):
    async def get_market_by_id(self, db: AsyncSession, market_id: str) -> Market | None: ...

    async def lock_market(self, db: AsyncSession, market_id: str) -> Market | None: ...

    async def list_markets(
        self,
        db: AsyncSession,
        status: str | None,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Market]: ...

    async def insert_market(
        self,
        db: AsyncSession,
        title: str,
        pool: Pool,
        yes_price: Decimal,
        no_price: Decimal,
        resolve_time: datetime | None,
    ) -> Market: ...

    async def update_pool(
        self,
        db: AsyncSession,
        market_id: str,
        pool: Pool,
        yes_price: Decimal,
        no_price: Decimal,
        volume_delta: int,
    ) -> None: ...

    async def mark_resolved(
        self,
        db: AsyncSession,
        market_id: str,
        outcome: str,
        dispute_deadline: datetime,
    ) -> bool: ...

    async def claim_finalization(self, db: AsyncSession, market_id: str) -> bool: ...

    async def mark_finalized(self, db: AsyncSession, market_id: str) -> None: ...

    async def revert_finalization(self, db: AsyncSession, market_id: str) -> None: ...

    async def list_finalizable(self, db: AsyncSession, limit: int) -> list[str]: ...

    # --- disputes ---

    async def mark_disputed(self, db: AsyncSession, market_id: str) -> bool: ...

    async def clear_disputed(self, db: AsyncSession, market_id: str) -> bool: ...

    async def overturn_resolution(
        self,
        db: AsyncSession,
        market_id: str,
        outcome: str,
        dispute_deadline: datetime,
    ) -> bool: ...

    async def insert_dispute(
        self,
        db: AsyncSession,
        market_id: str,
        user_id: str,
        reason: str,
        evidence: str | None,
    ) -> MarketDispute: ...

    async def has_open_dispute(self, db: AsyncSession, market_id: str, user_id: str) -> bool: ...

    async def count_open_disputes(self, db: AsyncSession, market_id: str) -> int: ...

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> MarketDispute | None: ...

    async def lock_dispute(self, db: AsyncSession, dispute_id: str) -> MarketDispute | None: ...

    async def list_disputes(
        self,
        db: AsyncSession,
        market_id: str | None,
        status: str | None,
        limit: int,
    ) -> list[MarketDispute]: ...

    async def close_dispute(
        self,
        db: AsyncSession,
        dispute_id: str,
        status: str,
        admin_response: str,
        resolved_by: str | None,
    ) -> bool: ...

    async def reject_open_disputes(
        self, db: AsyncSession, market_id: str, admin_response: str
    ) -> int: ...
