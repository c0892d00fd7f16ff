"""Trade quoting: pool quotes turned into ngwee-settled fills.

Rounding always favours the ledger:
  - buy shares are truncated to 6 dp (never more shares than paid for)
  - sell proceeds are floored to whole ngwee
  - fees are ceiling-divided in basis points
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from src.pm_common.enums import Outcome
from src.pm_common.ngwee import calculate_fee, kwacha_to_ngwee_floor, ngwee_to_kwacha
from src.pm_pricing.cpmm import (
    Pool,
    calculate_buy_cost,
    calculate_sell_proceeds,
    calculate_shares_for_amount,
)

SHARE_QUANTUM = Decimal("0.000001")


def quantize_shares(shares: Decimal) -> Decimal:
    return shares.quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class BuyFill:
    gross_ngwee: int        # debited from the balance
    fee_ngwee: int
    net_ngwee: int          # spent on the curve
    shares: Decimal
    avg_price: Decimal      # Kwacha per share, fee excluded
    new_pool: Pool


@dataclass(frozen=True)
class SellFill:
    requested_shares: Decimal
    shares: Decimal         # effective quantity after the pool clamp
    gross_ngwee: int        # curve proceeds, floored
    fee_ngwee: int
    net_ngwee: int          # credited to the balance
    avg_price: Decimal
    new_pool: Pool


def quote_buy(pool: Pool, outcome: Outcome, gross_ngwee: int, fee_bps: int) -> BuyFill:
    fee = calculate_fee(gross_ngwee, fee_bps)
    net = gross_ngwee - fee
    estimate = calculate_shares_for_amount(pool, outcome, ngwee_to_kwacha(net))
    shares = quantize_shares(estimate.shares)
    quote = calculate_buy_cost(pool, outcome, shares)
    avg_price = ngwee_to_kwacha(net) / shares if shares > 0 else Decimal(0)
    return BuyFill(
        gross_ngwee=gross_ngwee,
        fee_ngwee=fee,
        net_ngwee=net,
        shares=shares,
        avg_price=avg_price,
        new_pool=quote.new_pool,
    )


def quote_sell(
    pool: Pool,
    outcome: Outcome,
    shares: Decimal,
    fee_bps: int,
    max_sell_fraction: Decimal,
) -> SellFill:
    quote = calculate_sell_proceeds(pool, outcome, shares, max_sell_fraction)
    if quote.shares < shares:
        # Clamped by the pool: re-quote on a 6 dp quantity
        quote = calculate_sell_proceeds(
            pool, outcome, quantize_shares(quote.shares), max_sell_fraction
        )
    gross = kwacha_to_ngwee_floor(quote.proceeds)
    fee = calculate_fee(gross, fee_bps)
    return SellFill(
        requested_shares=shares,
        shares=quote.shares,
        gross_ngwee=gross,
        fee_ngwee=fee,
        net_ngwee=gross - fee,
        avg_price=quote.avg_price,
        new_pool=quote.new_pool,
    )
