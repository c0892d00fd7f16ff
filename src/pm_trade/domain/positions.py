"""Position bookkeeping for AMM fills (pure functions, mutate in place)."""

from decimal import Decimal

from src.pm_account.domain.models import Position
from src.pm_common.ngwee import kwacha_to_ngwee_floor


def apply_buy(position: Position, shares: Decimal, price: Decimal) -> Position:
    """Weighted-average cost basis; a closed position is reopened."""
    if position.is_closed or position.size <= 0:
        position.size = Decimal(0)
        position.average_price = Decimal(0)
        position.is_closed = False

    new_size = position.size + shares
    if new_size > 0:
        position.average_price = (
            position.size * position.average_price + shares * price
        ) / new_size
    position.size = new_size
    return position


def apply_sell(position: Position, shares: Decimal, price: Decimal) -> Position:
    """Realize PnL on `shares` at `price`; the position closes at size 0."""
    pnl = (price - position.average_price) * shares
    position.realized_pnl += kwacha_to_ngwee_floor(pnl)
    position.size = position.size - shares
    if position.size <= 0:
        position.size = Decimal(0)
        position.is_closed = True
    return position
