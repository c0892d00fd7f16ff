"""Unit tests for TradeService using mock repositories."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from config.settings import settings
from src.pm_account.domain.models import Account, Position
from src.pm_common.enums import FeeType, MarketStatus, Outcome, TradeSide, TransactionType
from src.pm_common.errors import (
    InsufficientFundsError,
    InsufficientPositionError,
    MarketNotActiveError,
    MarketNotFoundError,
    ValidationError,
)
from src.pm_common.ngwee import calculate_fee
from src.pm_market.domain.models import Market
from src.pm_pricing.cpmm import initialize_pool
from src.pm_trade.application.schemas import TradeRequest
from src.pm_trade.application.service import TradeService


def _make_market(status: str = MarketStatus.ACTIVE) -> Market:
    pool = initialize_pool(10000, Decimal("0.5"))
    now = datetime.now(UTC)
    return Market(
        id="mkt-1",
        title="Zesco United win the league?",
        status=status,
        pool_yes_shares=pool.yes_shares,
        pool_no_shares=pool.no_shares,
        pool_k=pool.k,
        yes_price=Decimal("0.5"),
        no_price=Decimal("0.5"),
        volume_ngwee=0,
        winning_outcome=None,
        resolve_time=None,
        resolved_at=None,
        dispute_deadline=None,
        finalized_at=None,
        created_at=now,
        updated_at=now,
    )


def _service(market: Market | None, balance: int = 1_000_000):
    markets = AsyncMock()
    markets.lock_market.return_value = market
    ledger = AsyncMock()
    ledger.lock_account.return_value = Account(user_id="user-1", balance=balance, version=1)
    ledger.lock_position.return_value = None
    ledger.insert_transaction.return_value = 42
    return TradeService(markets, ledger), markets, ledger


def _request(side: TradeSide, amount: str, outcome: Outcome = Outcome.YES) -> TradeRequest:
    return TradeRequest(market_id="mkt-1", outcome=outcome, side=side, amount=Decimal(amount))


class TestBuy:
    async def test_debits_gross_and_records_fee(self, db: AsyncMock) -> None:
        svc, markets, ledger = _service(_make_market())
        ledger.debit.return_value = 990_000

        result = await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "10000"))

        fee = calculate_fee(10000, settings.TRADE_FEE_BPS)
        assert result.amount_ngwee == 10000
        assert result.fee_ngwee == fee
        assert result.balance_ngwee == 990_000
        assert result.filled_shares > 0
        assert result.transaction_id == 42
        ledger.debit.assert_awaited_once_with(db, "user-1", 10000)

        tx_args = ledger.insert_transaction.await_args.args
        assert tx_args[2] == TransactionType.TRADE
        assert tx_args[3] == -10000

        ledger.insert_platform_revenue.assert_awaited_once()
        rev_args = ledger.insert_platform_revenue.await_args.args
        assert rev_args[1:5] == (FeeType.TRADE_FEE, fee, "TRADE", "42")
        db.commit.assert_awaited_once()

    async def test_pool_update_keeps_k(self, db: AsyncMock) -> None:
        market = _make_market()
        svc, markets, ledger = _service(market)
        ledger.debit.return_value = 990_000

        await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "10000", Outcome.NO))

        new_pool = markets.update_pool.await_args.args[2]
        assert new_pool.k == market.pool_k
        assert abs(new_pool.yes_shares * new_pool.no_shares - market.pool_k) < Decimal("0.000001")

    async def test_position_created(self, db: AsyncMock) -> None:
        svc, _, ledger = _service(_make_market())
        ledger.debit.return_value = 990_000

        await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "10000"))

        position = ledger.save_position.await_args.args[1]
        assert position.user_id == "user-1"
        assert position.outcome == "YES"
        assert position.size > 0

    async def test_insufficient_balance(self, db: AsyncMock) -> None:
        svc, _, ledger = _service(_make_market(), balance=5000)

        with pytest.raises(InsufficientFundsError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "10000"))

        ledger.debit.assert_not_awaited()
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    async def test_fractional_ngwee_rejected(self, db: AsyncMock) -> None:
        svc, _, _ = _service(_make_market())
        with pytest.raises(ValidationError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "100.5"))


class TestSell:
    async def test_sells_held_shares(self, db: AsyncMock) -> None:
        svc, _, ledger = _service(_make_market())
        ledger.lock_position.return_value = Position(
            user_id="user-1",
            market_id="mkt-1",
            outcome="YES",
            size=Decimal(100),
            average_price=Decimal("0.5"),
        )
        ledger.credit.return_value = 1_020_000

        result = await svc.execute_trade(db, "user-1", _request(TradeSide.SELL, "100"))

        assert result.side is TradeSide.SELL
        assert result.filled_shares == 100.0
        ledger.credit.assert_awaited_once()
        assert ledger.credit.await_args.args[2] == result.amount_ngwee
        position = ledger.save_position.await_args.args[1]
        assert position.is_closed
        assert position.size == 0

    async def test_more_than_held(self, db: AsyncMock) -> None:
        svc, _, ledger = _service(_make_market())
        ledger.lock_position.return_value = Position(
            user_id="user-1", market_id="mkt-1", outcome="YES", size=Decimal(5)
        )
        with pytest.raises(InsufficientPositionError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.SELL, "10"))
        ledger.credit.assert_not_awaited()

    async def test_no_position(self, db: AsyncMock) -> None:
        svc, _, _ = _service(_make_market())
        with pytest.raises(InsufficientPositionError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.SELL, "1"))


class TestMarketChecks:
    async def test_unknown_market(self, db: AsyncMock) -> None:
        svc, _, _ = _service(None)
        with pytest.raises(MarketNotFoundError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "1000"))
        db.rollback.assert_awaited_once()

    async def test_resolved_market(self, db: AsyncMock) -> None:
        svc, _, ledger = _service(_make_market(MarketStatus.RESOLVED))
        with pytest.raises(MarketNotActiveError):
            await svc.execute_trade(db, "user-1", _request(TradeSide.BUY, "1000"))
        ledger.lock_account.assert_not_awaited()
