"""Unit tests for ngwee fills and position bookkeeping."""

from decimal import Decimal

from src.pm_account.domain.models import Position
from src.pm_common.enums import Outcome
from src.pm_pricing.cpmm import calculate_buy_cost, initialize_pool
from src.pm_trade.domain.fills import SHARE_QUANTUM, quantize_shares, quote_buy, quote_sell
from src.pm_trade.domain.positions import apply_buy, apply_sell

POOL = initialize_pool(10000, Decimal("0.5"))


class TestQuoteBuy:
    def test_fee_taken_before_the_curve(self) -> None:
        fill = quote_buy(POOL, Outcome.YES, 10000, 200)
        assert fill.fee_ngwee == 200
        assert fill.net_ngwee == 9800

    def test_shares_truncated_to_six_places(self) -> None:
        fill = quote_buy(POOL, Outcome.YES, 10000, 200)
        assert fill.shares == fill.shares.quantize(SHARE_QUANTUM)
        cost = calculate_buy_cost(POOL, Outcome.YES, fill.shares).cost
        assert abs(cost - Decimal("98")) < Decimal("0.01")

    def test_new_pool_keeps_k(self) -> None:
        fill = quote_buy(POOL, Outcome.NO, 5000, 200)
        assert abs(fill.new_pool.yes_shares * fill.new_pool.no_shares - POOL.k) < Decimal("0.000001")


class TestQuoteSell:
    def test_unclamped_sale(self) -> None:
        fill = quote_sell(POOL, Outcome.YES, Decimal(100), 200, Decimal("0.95"))
        assert fill.shares == Decimal(100)
        assert fill.gross_ngwee > 0
        assert fill.net_ngwee == fill.gross_ngwee - fill.fee_ngwee

    def test_clamped_sale_reports_effective_quantity(self) -> None:
        fill = quote_sell(POOL, Outcome.YES, Decimal(10000), 200, Decimal("0.95"))
        assert fill.requested_shares == Decimal(10000)
        assert fill.shares == Decimal("4750.000000")

    def test_quantize_rounds_down(self) -> None:
        assert quantize_shares(Decimal("1.2345678")) == Decimal("1.234567")


class TestPositions:
    def _position(self) -> Position:
        return Position(user_id="user-1", market_id="m-1", outcome="YES")

    def test_weighted_average_on_buys(self) -> None:
        position = self._position()
        apply_buy(position, Decimal(100), Decimal("0.5"))
        apply_buy(position, Decimal(100), Decimal("0.7"))
        assert position.size == Decimal(200)
        assert position.average_price == Decimal("0.6")

    def test_sell_realizes_pnl_in_ngwee(self) -> None:
        position = self._position()
        apply_buy(position, Decimal(200), Decimal("0.6"))
        apply_sell(position, Decimal(50), Decimal("0.8"))
        assert position.realized_pnl == 1000  # (0.8 - 0.6) * 50 = K10
        assert position.size == Decimal(150)
        assert not position.is_closed

    def test_full_sale_closes(self) -> None:
        position = self._position()
        apply_buy(position, Decimal(10), Decimal("0.5"))
        apply_sell(position, Decimal(10), Decimal("0.4"))
        assert position.is_closed
        assert position.size == 0
        assert position.realized_pnl == -100

    def test_buy_reopens_closed_position(self) -> None:
        position = self._position()
        position.is_closed = True
        position.average_price = Decimal("0.9")
        apply_buy(position, Decimal(10), Decimal("0.3"))
        assert not position.is_closed
        assert position.size == Decimal(10)
        assert position.average_price == Decimal("0.3")
