"""MarketApplicationService — read-only market queries and trade quotes.

All methods are read-only; no commit/rollback needed.
The caller (router) passes db session; service delegates to repository.
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_common.enums import Outcome, TradeSide
from src.pm_common.errors import MarketNotFoundError, ValidationError
from src.pm_common.ngwee import ngwee_to_display
from src.pm_market.application.schemas import (
    MarketDetail,
    MarketListItem,
    MarketListResponse,
    QuoteResponse,
    cursor_decode,
    cursor_encode,
)
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.persistence import MarketRepository
from src.pm_pricing.cpmm import get_prices
from src.pm_trade.domain.fills import quantize_shares, quote_buy, quote_sell


class MarketApplicationService:
    def __init__(self, repo: MarketRepositoryProtocol | None = None) -> None:
        self._repo: MarketRepositoryProtocol = repo or MarketRepository()

    async def list_markets(
        self,
        db: AsyncSession,
        status: str | None,
        cursor: str | None,
        limit: int,
    ) -> MarketListResponse:
        # status=None → default ACTIVE; status='ALL' → no filter
        sql_status = None if status == "ALL" else (status or "ACTIVE")
        cursor_ts, cursor_id = cursor_decode(cursor)

        # Fetch limit+1 to detect has_more without COUNT(*)
        markets = await self._repo.list_markets(db, sql_status, cursor_ts, cursor_id, limit + 1)
        has_more = len(markets) > limit
        page = markets[:limit]

        items = [MarketListItem.from_domain(m) for m in page]
        next_cursor = cursor_encode(page[-1]) if has_more and page else None
        return MarketListResponse(items=items, next_cursor=next_cursor, has_more=has_more)

    async def get_market(self, db: AsyncSession, market_id: str) -> MarketDetail:
        market = await self._repo.get_market_by_id(db, market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        return MarketDetail.from_domain(market)

    async def quote(
        self,
        db: AsyncSession,
        market_id: str,
        outcome: Outcome,
        side: TradeSide,
        amount: Decimal,
    ) -> QuoteResponse:
        """Preview a trade against the current pool without touching it."""
        market = await self._repo.get_market_by_id(db, market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        pool = market.pool
        current = get_prices(pool).for_outcome(outcome)
        if side is TradeSide.BUY:
            buy = quote_buy(pool, outcome, int(amount), settings.TRADE_FEE_BPS)
            shares, avg_price, new_pool = buy.shares, buy.avg_price, buy.new_pool
            amount_ngwee, fee = buy.gross_ngwee, buy.fee_ngwee
        else:
            sell = quote_sell(
                pool,
                outcome,
                quantize_shares(amount),
                settings.TRADE_FEE_BPS,
                Decimal(settings.MAX_SELL_FRACTION),
            )
            shares, avg_price, new_pool = sell.shares, sell.avg_price, sell.new_pool
            amount_ngwee, fee = sell.net_ngwee, sell.fee_ngwee

        new_prices = get_prices(new_pool)
        new_price = new_prices.for_outcome(outcome)
        impact = (new_price - current) / current * 100 if current > 0 else Decimal(0)
        return QuoteResponse(
            market_id=market_id,
            outcome=outcome.value,
            side=side.value,
            shares=float(shares),
            avg_price=float(avg_price),
            amount_ngwee=amount_ngwee,
            fee_ngwee=fee,
            amount_display=ngwee_to_display(amount_ngwee),
            current_price=float(current),
            new_yes_price=float(new_prices.yes_price),
            new_no_price=float(new_prices.no_price),
            price_impact_pct=float(impact),
        )
