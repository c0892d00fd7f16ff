"""Domain models for pm_account — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass
class Account:
    user_id: str
    balance: int             # ngwee, never negative
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Position:
    user_id: str
    market_id: str
    outcome: str                              # Outcome value
    size: Decimal = Decimal(0)                # shares held
    average_price: Decimal = Decimal(0)       # Kwacha per share, weighted
    realized_pnl: int = 0                     # ngwee
    is_closed: bool = False
    id: str | None = None                     # None until first persisted

    @property
    def cost_basis(self) -> Decimal:
        """Kwacha paid for the shares still held."""
        return self.size * self.average_price


@dataclass
class Transaction:
    id: int                          # BIGSERIAL
    user_id: str
    type: str                        # TransactionType value
    amount: int                      # ngwee, positive=credit negative=debit
    fee_amount: int
    balance_after: int
    status: str                      # TransactionStatus value
    description: str | None = None
    payment_id: str | None = None
    market_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
