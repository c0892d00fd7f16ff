"""Domain models for pm_payment — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class MobilePayment:
    id: str
    user_id: str
    type: str                        # PaymentType value
    amount: int                      # ngwee, gross
    fee_amount: int
    net_amount: int                  # what moves on the rail
    provider: str                    # PaymentProviderName value
    phone_number: str
    external_ref: str                # reference we handed to the provider
    status: str                      # PaymentStatus value
    expires_at: datetime
    external_id: str | None = None   # provider's own transaction id
    status_message: str | None = None
    callback_received: bool = False
    callback_data: dict[str, Any] = field(default_factory=dict)
    completed_at: datetime | None = None
    settled_at: datetime | None = None   # exactly-once settlement guard
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None
