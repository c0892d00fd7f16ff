"""Global enums — must match DB CHECK constraints exactly.

See alembic/versions for the constraints.
"""

from enum import Enum


class MarketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    DISPUTED = "DISPUTED"            # RESOLVED with at least one OPEN dispute
    FINALIZING = "FINALIZING"
    FINALIZED = "FINALIZED"
    CANCELLED = "CANCELLED"


class Outcome(str, Enum):
    YES = "YES"
    NO = "NO"

    @property
    def opposite(self) -> "Outcome":
        return Outcome.NO if self is Outcome.YES else Outcome.YES


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRADE = "TRADE"
    WINNINGS = "WINNINGS"
    DISPUTE = "DISPUTE"
    FEE = "FEE"


class TransactionStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED)


class PaymentProviderName(str, Enum):
    AIRTEL_MONEY = "AIRTEL_MONEY"
    MTN_MOMO = "MTN_MOMO"

    @property
    def label(self) -> str:
        return "Airtel Money" if self is PaymentProviderName.AIRTEL_MONEY else "MTN MoMo"


class FeeType(str, Enum):
    TRADE_FEE = "TRADE_FEE"
    WITHDRAWAL_FEE = "WITHDRAWAL_FEE"
    WITHDRAWAL_FEE_REVERSAL = "WITHDRAWAL_FEE_REVERSAL"
    RESOLUTION_FEE = "RESOLUTION_FEE"


class NotificationType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    MARKET_RESOLVED = "MARKET_RESOLVED"
    WINNINGS = "WINNINGS"
    DISPUTE = "DISPUTE"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    UPHELD = "UPHELD"
    REJECTED = "REJECTED"


class DisputeAction(str, Enum):
    UPHOLD = "UPHOLD"
    REJECT = "REJECT"
