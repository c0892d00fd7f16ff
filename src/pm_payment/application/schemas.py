"""Pydantic schemas for the payments API."""

from pydantic import BaseModel, Field

from src.pm_common.enums import PaymentProviderName
from src.pm_common.ngwee import ngwee_to_display
from src.pm_payment.domain.models import MobilePayment


class WithdrawRequest(BaseModel):
    amount_ngwee: int = Field(..., gt=0, description="Gross amount debited, fee included")
    phone_number: str = Field(..., min_length=9, max_length=20)
    provider: PaymentProviderName


class DepositRequest(BaseModel):
    amount_ngwee: int = Field(..., gt=0)
    phone_number: str = Field(..., min_length=9, max_length=20)
    provider: PaymentProviderName


class PaymentView(BaseModel):
    payment_id: str
    type: str
    status: str
    status_message: str | None
    provider: str
    amount_ngwee: int
    fee_ngwee: int
    net_ngwee: int
    amount_display: str
    fee_display: str
    net_display: str
    expires_at: str
    completed_at: str | None
    balance_ngwee: int | None = None
    balance_display: str | None = None

    @classmethod
    def from_domain(
        cls, p: MobilePayment, balance: int | None = None, status: str | None = None
    ) -> "PaymentView":
        return cls(
            payment_id=p.id,
            type=p.type,
            status=status or p.status,
            status_message=p.status_message,
            provider=p.provider,
            amount_ngwee=p.amount,
            fee_ngwee=p.fee_amount,
            net_ngwee=p.net_amount,
            amount_display=ngwee_to_display(p.amount),
            fee_display=ngwee_to_display(p.fee_amount),
            net_display=ngwee_to_display(p.net_amount),
            expires_at=p.expires_at.isoformat(),
            completed_at=p.completed_at.isoformat() if p.completed_at else None,
            balance_ngwee=balance,
            balance_display=ngwee_to_display(balance) if balance is not None else None,
        )
