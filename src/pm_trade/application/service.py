"""TradeService — executes one AMM trade atomically.

Every step runs in the caller's session and commits once at the end:

  1. lock market row (serialises trades on the same market)
  2. lock account row
  3. quote against the locked pool
  4. debit (BUY) or credit (SELL) the balance
  5. write the new pool, cached prices and volume (pool_k untouched)
  6. upsert the position
  7. append the TRADE transaction and TRADE_FEE revenue

Any exception rolls back all of it.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_account.domain.models import Account, Position
from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.enums import (
    FeeType,
    MarketStatus,
    TradeSide,
    TransactionStatus,
    TransactionType,
)
from src.pm_common.errors import (
    InsufficientFundsError,
    InsufficientPositionError,
    MarketNotActiveError,
    MarketNotFoundError,
    ValidationError,
)
from src.pm_common.ngwee import ngwee_to_display
from src.pm_market.domain.models import Market
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.persistence import MarketRepository
from src.pm_pricing.cpmm import display_prices
from src.pm_trade.application.schemas import TradeRequest, TradeResult
from src.pm_trade.domain.fills import quantize_shares, quote_buy, quote_sell
from src.pm_trade.domain.positions import apply_buy, apply_sell

logger = logging.getLogger(__name__)


class TradeService:
    def __init__(
        self,
        market_repo: MarketRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
    ) -> None:
        self._markets: MarketRepositoryProtocol = market_repo or MarketRepository()
        self._ledger: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()

    async def execute_trade(
        self, db: AsyncSession, user_id: str, request: TradeRequest
    ) -> TradeResult:
        try:
            market = await self._markets.lock_market(db, request.market_id)
            if market is None:
                raise MarketNotFoundError(request.market_id)
            if market.status != MarketStatus.ACTIVE:
                raise MarketNotActiveError(request.market_id)

            account = await self._ledger.lock_account(db, user_id)
            if request.side is TradeSide.BUY:
                result = await self._buy(db, user_id, market, account, request)
            else:
                result = await self._sell(db, user_id, market, request)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Trade user=%s market=%s %s %s shares=%s amount=%d fee=%d",
            user_id,
            request.market_id,
            request.side.value,
            request.outcome.value,
            result.filled_shares,
            result.amount_ngwee,
            result.fee_ngwee,
        )
        return result

    async def _buy(
        self,
        db: AsyncSession,
        user_id: str,
        market: Market,
        account: Account,
        request: TradeRequest,
    ) -> TradeResult:
        gross = _whole_ngwee(request.amount)
        if gross > settings.TRADE_MAX_NGWEE:
            raise ValidationError(
                f"Maximum trade amount is {ngwee_to_display(settings.TRADE_MAX_NGWEE)}"
            )
        if gross > account.balance:
            raise InsufficientFundsError(gross, account.balance)

        fill = quote_buy(market.pool, request.outcome, gross, settings.TRADE_FEE_BPS)
        if fill.shares <= 0:
            raise ValidationError("Amount too small to buy any shares")

        balance = await self._ledger.debit(db, user_id, gross)
        prices = display_prices(fill.new_pool)
        await self._markets.update_pool(
            db, market.id, fill.new_pool, prices.yes_price, prices.no_price, gross
        )

        position = await self._ledger.lock_position(
            db, user_id, market.id, request.outcome.value
        ) or Position(user_id=user_id, market_id=market.id, outcome=request.outcome.value)
        apply_buy(position, fill.shares, fill.avg_price)
        await self._ledger.save_position(db, position)

        tx_id = await self._ledger.insert_transaction(
            db,
            user_id,
            TransactionType.TRADE,
            -gross,
            fill.fee_ngwee,
            balance,
            TransactionStatus.COMPLETED,
            f'Bought {fill.shares} {request.outcome.value} shares in "{market.title}"',
            market_id=market.id,
            metadata={
                "side": TradeSide.BUY.value,
                "outcome": request.outcome.value,
                "shares": str(fill.shares),
                "avg_price": str(fill.avg_price),
            },
        )
        await self._record_fee(db, user_id, tx_id, fill.fee_ngwee, market.title)

        return TradeResult(
            market_id=market.id,
            outcome=request.outcome,
            side=TradeSide.BUY,
            new_yes_price=float(prices.yes_price),
            new_no_price=float(prices.no_price),
            filled_shares=float(fill.shares),
            avg_price=float(fill.avg_price),
            amount_ngwee=gross,
            fee_ngwee=fill.fee_ngwee,
            balance_ngwee=balance,
            balance_display=ngwee_to_display(balance),
            transaction_id=tx_id,
        )

    async def _sell(
        self,
        db: AsyncSession,
        user_id: str,
        market: Market,
        request: TradeRequest,
    ) -> TradeResult:
        shares = quantize_shares(request.amount)
        if shares <= 0:
            raise ValidationError("Share quantity must be at least 0.000001")

        position = await self._ledger.lock_position(
            db, user_id, market.id, request.outcome.value
        )
        held = position.size if position and not position.is_closed else Decimal(0)
        if position is None or held < shares:
            raise InsufficientPositionError(
                f"hold {held} {request.outcome.value} shares, requested {shares}"
            )

        fill = quote_sell(
            market.pool,
            request.outcome,
            shares,
            settings.TRADE_FEE_BPS,
            Decimal(settings.MAX_SELL_FRACTION),
        )
        if fill.shares <= 0 or fill.net_ngwee <= 0:
            raise ValidationError("Sale proceeds too small")

        balance = await self._ledger.credit(db, user_id, fill.net_ngwee)
        prices = display_prices(fill.new_pool)
        await self._markets.update_pool(
            db, market.id, fill.new_pool, prices.yes_price, prices.no_price, fill.gross_ngwee
        )

        apply_sell(position, fill.shares, fill.avg_price)
        await self._ledger.save_position(db, position)

        tx_id = await self._ledger.insert_transaction(
            db,
            user_id,
            TransactionType.TRADE,
            fill.net_ngwee,
            fill.fee_ngwee,
            balance,
            TransactionStatus.COMPLETED,
            f'Sold {fill.shares} {request.outcome.value} shares in "{market.title}"',
            market_id=market.id,
            metadata={
                "side": TradeSide.SELL.value,
                "outcome": request.outcome.value,
                "shares": str(fill.shares),
                "requested_shares": str(fill.requested_shares),
                "avg_price": str(fill.avg_price),
            },
        )
        await self._record_fee(db, user_id, tx_id, fill.fee_ngwee, market.title)

        return TradeResult(
            market_id=market.id,
            outcome=request.outcome,
            side=TradeSide.SELL,
            new_yes_price=float(prices.yes_price),
            new_no_price=float(prices.no_price),
            filled_shares=float(fill.shares),
            avg_price=float(fill.avg_price),
            amount_ngwee=fill.net_ngwee,
            fee_ngwee=fill.fee_ngwee,
            balance_ngwee=balance,
            balance_display=ngwee_to_display(balance),
            transaction_id=tx_id,
        )

    async def _record_fee(
        self, db: AsyncSession, user_id: str, tx_id: int, fee: int, title: str
    ) -> None:
        if fee <= 0:
            return
        await self._ledger.insert_platform_revenue(
            db,
            FeeType.TRADE_FEE,
            fee,
            "TRADE",
            str(tx_id),
            user_id,
            f"Trade fee on: {title}",
        )


def _whole_ngwee(amount: Decimal) -> int:
    if amount != amount.to_integral_value():
        raise ValidationError("Buy amount must be a whole number of ngwee")
    return int(amount)
