"""Integer arithmetic utilities for ngwee-denominated money.

All balances, fees and payment amounts are int ngwee (1 Kwacha = 100 ngwee).
No float money. Share quantities and prices are Decimal and live in pm_pricing.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

NGWEE_PER_KWACHA = 100


def ngwee_to_display(ngwee: int) -> str:
    """Convert ngwee to display string: 100000 -> 'K1,000.00', -1500 -> '-K15.00'."""
    if ngwee < 0:
        abs_ngwee = -ngwee
        return f"-K{abs_ngwee // 100:,}.{abs_ngwee % 100:02d}"
    return f"K{ngwee // 100:,}.{ngwee % 100:02d}"


def ngwee_to_kwacha(ngwee: int) -> Decimal:
    return Decimal(ngwee) / NGWEE_PER_KWACHA


def kwacha_to_ngwee_ceil(kwacha: Decimal) -> int:
    """Round a Kwacha amount UP to whole ngwee (amounts the user pays)."""
    return int((kwacha * NGWEE_PER_KWACHA).to_integral_value(rounding=ROUND_CEILING))


def kwacha_to_ngwee_floor(kwacha: Decimal) -> int:
    """Round a Kwacha amount DOWN to whole ngwee (amounts the user receives)."""
    return int((kwacha * NGWEE_PER_KWACHA).to_integral_value(rounding=ROUND_FLOOR))


def calculate_fee(amount: int, fee_rate_bps: int, min_fee: int = 0) -> int:
    """Calculate fee with ceiling division (platform never loses).

    fee = max(ceil(amount * fee_rate_bps / 10000), min_fee)
    Using integer ceiling: (a + b - 1) // b
    """
    if amount == 0 or fee_rate_bps == 0:
        return min_fee if amount > 0 else 0
    return max((amount * fee_rate_bps + 9999) // 10000, min_fee)
