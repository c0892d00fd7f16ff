"""Constant Product Market Maker (CPMM) for binary outcome markets.

Uses the invariant: yes_shares * no_shares = k
  price(YES) = no_shares  / (yes_shares + no_shares)
  price(NO)  = yes_shares / (yes_shares + no_shares)

All functions are pure: they never mutate the input pool and never touch
storage. Quantities are Decimal in Kwacha / share units; callers convert to
ngwee at the ledger boundary.

Buying s YES shares mints s YES + s NO from s Kwacha, then sells the s NO
back along the curve:  cost = s - (no - k / (yes + s)).
Selling e shares pays (new_no - no) + e, which can exceed e, so buying and
immediately selling the same shares returns more than was paid.
Note: d(cost)/ds at s=0 equals 0 rather than the quoted YES price. This is
the pricing existing positions were struck at, so it is kept as-is.
"""

from dataclasses import dataclass
from decimal import Decimal

from src.pm_common.enums import Outcome

ZERO = Decimal(0)
ONE = Decimal(1)
HALF = Decimal("0.5")

DEFAULT_MAX_SELL_FRACTION = Decimal("0.95")
BISECTION_ITERATIONS = 100
BISECTION_TOLERANCE = Decimal("0.001")
_MAX_BOUND_DOUBLINGS = 64

Number = Decimal | int | float | str


def to_decimal(value: Number) -> Decimal:
    """Coerce an external number to Decimal (floats go through str)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class Pool:
    yes_shares: Decimal
    no_shares: Decimal
    k: Decimal

    @property
    def total(self) -> Decimal:
        return self.yes_shares + self.no_shares


@dataclass(frozen=True)
class Prices:
    yes_price: Decimal
    no_price: Decimal

    def for_outcome(self, outcome: Outcome) -> Decimal:
        return self.yes_price if outcome is Outcome.YES else self.no_price


@dataclass(frozen=True)
class BuyQuote:
    cost: Decimal
    new_pool: Pool
    avg_price: Decimal


@dataclass(frozen=True)
class SharesQuote:
    shares: Decimal
    new_pool: Pool
    avg_price: Decimal


@dataclass(frozen=True)
class SellQuote:
    proceeds: Decimal
    new_pool: Pool
    avg_price: Decimal
    shares: Decimal  # effective quantity after the pool clamp


@dataclass(frozen=True)
class PriceImpact:
    price_impact_pct: Decimal
    new_yes_price: Decimal
    new_no_price: Decimal


def _clamp(value: Decimal, lo: Decimal = ZERO, hi: Decimal = ONE) -> Decimal:
    return max(lo, min(hi, value))


def initialize_pool(liquidity: Number, initial_yes_price: Number = HALF) -> Pool:
    """Seed a pool so that get_prices() returns initial_yes_price for YES."""
    liquidity = to_decimal(liquidity)
    p = to_decimal(initial_yes_price)
    if liquidity <= 0:
        raise ValueError(f"Liquidity must be positive, got {liquidity}")
    if not (ZERO < p < ONE):
        raise ValueError(f"Initial YES price must be strictly between 0 and 1, got {p}")
    no_shares = liquidity * p
    yes_shares = liquidity * (ONE - p)
    return Pool(yes_shares=yes_shares, no_shares=no_shares, k=yes_shares * no_shares)


def get_prices(pool: Pool) -> Prices:
    total = pool.total
    if total == 0:
        return Prices(yes_price=HALF, no_price=HALF)
    return Prices(yes_price=pool.no_shares / total, no_price=pool.yes_shares / total)


def calculate_buy_cost(pool: Pool, outcome: Outcome, shares: Number) -> BuyQuote:
    """Kwacha cost of buying `shares` of `outcome`, and the resulting pool."""
    shares = to_decimal(shares)
    if shares <= 0:
        return BuyQuote(cost=ZERO, new_pool=pool, avg_price=ZERO)

    if outcome is Outcome.YES:
        new_yes = pool.yes_shares + shares
        new_no = pool.k / new_yes
        cost = shares - (pool.no_shares - new_no)
    else:
        new_no = pool.no_shares + shares
        new_yes = pool.k / new_no
        cost = shares - (pool.yes_shares - new_yes)

    return BuyQuote(
        cost=max(ZERO, cost),
        new_pool=Pool(yes_shares=new_yes, no_shares=new_no, k=pool.k),
        avg_price=_clamp(cost / shares),
    )


def calculate_shares_for_amount(pool: Pool, outcome: Outcome, amount: Number) -> SharesQuote:
    """Invert calculate_buy_cost by bisection: shares purchasable for `amount`.

    Relies on cost(shares) being strictly increasing in shares.
    """
    amount = to_decimal(amount)
    if amount <= 0:
        return SharesQuote(shares=ZERO, new_pool=pool, avg_price=ZERO)

    current_price = get_prices(pool).for_outcome(outcome)
    lo = ZERO
    hi = amount / current_price * 2 if current_price > 0 else amount * 10
    # Widen until the bracket contains the answer
    for _ in range(_MAX_BOUND_DOUBLINGS):
        if calculate_buy_cost(pool, outcome, hi).cost >= amount:
            break
        lo = hi
        hi *= 2

    for _ in range(BISECTION_ITERATIONS):
        mid = (lo + hi) / 2
        cost = calculate_buy_cost(pool, outcome, mid).cost
        if abs(cost - amount) < BISECTION_TOLERANCE:
            return _shares_quote(pool, outcome, mid, amount)
        if cost < amount:
            lo = mid
        else:
            hi = mid

    return _shares_quote(pool, outcome, (lo + hi) / 2, amount)


def _shares_quote(pool: Pool, outcome: Outcome, shares: Decimal, amount: Decimal) -> SharesQuote:
    quote = calculate_buy_cost(pool, outcome, shares)
    return SharesQuote(
        shares=shares,
        new_pool=quote.new_pool,
        avg_price=amount / shares if shares > 0 else ZERO,
    )


def calculate_sell_proceeds(
    pool: Pool,
    outcome: Outcome,
    shares: Number,
    max_sell_fraction: Number = DEFAULT_MAX_SELL_FRACTION,
) -> SellQuote:
    """Kwacha proceeds of selling `shares` back into the pool.

    At most max_sell_fraction of the outcome's pool side can be redeemed in
    one call; the quote reports the effective quantity.
    """
    shares = to_decimal(shares)
    fraction = to_decimal(max_sell_fraction)
    empty = SellQuote(proceeds=ZERO, new_pool=pool, avg_price=ZERO, shares=ZERO)
    if shares <= 0:
        return empty

    side = pool.yes_shares if outcome is Outcome.YES else pool.no_shares
    effective = min(shares, side * fraction)
    if effective <= 0:
        return empty

    if outcome is Outcome.YES:
        new_yes = pool.yes_shares - effective
        new_no = pool.k / new_yes
        proceeds = (new_no - pool.no_shares) + effective
    else:
        new_no = pool.no_shares - effective
        new_yes = pool.k / new_no
        proceeds = (new_yes - pool.yes_shares) + effective

    return SellQuote(
        proceeds=max(ZERO, proceeds),
        new_pool=Pool(yes_shares=new_yes, no_shares=new_no, k=pool.k),
        avg_price=_clamp(proceeds / effective),
        shares=effective,
    )


def calculate_payout(shares: Number) -> Decimal:
    """Each winning share redeems for exactly K1."""
    return to_decimal(shares)


def estimate_price_impact(pool: Pool, outcome: Outcome, amount: Number) -> PriceImpact:
    """Percentage move of the outcome price if `amount` Kwacha were spent."""
    current = get_prices(pool).for_outcome(outcome)
    new_prices = get_prices(calculate_shares_for_amount(pool, outcome, amount).new_pool)
    new = new_prices.for_outcome(outcome)
    impact = (new - current) / current * 100 if current > 0 else ZERO
    return PriceImpact(
        price_impact_pct=impact,
        new_yes_price=new_prices.yes_price,
        new_no_price=new_prices.no_price,
    )


DISPLAY_PRICE_MIN = Decimal("0.01")
DISPLAY_PRICE_MAX = Decimal("0.99")


def display_prices(pool: Pool) -> Prices:
    """Prices cached on the market row, kept inside [0.01, 0.99]."""
    prices = get_prices(pool)
    return Prices(
        yes_price=_clamp(prices.yes_price, DISPLAY_PRICE_MIN, DISPLAY_PRICE_MAX),
        no_price=_clamp(prices.no_price, DISPLAY_PRICE_MIN, DISPLAY_PRICE_MAX),
    )
