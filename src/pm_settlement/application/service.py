"""SettlementService — the only code that moves money for mobile payments.

The webhook handler, the status poller and the reconciliation sweep all
funnel terminal provider outcomes through here. Whoever wins the settled_at
claim settles; everyone else gets already_settled=True.

Per entry point:
  1. load the payment; unknown / wrong type → error, already settled → no-op
  2. claim:   UPDATE ... SET settled_at = NOW() WHERE settled_at IS NULL,
              committed on its own
  3. mutate the ledger in one transaction
  4. on failure in (3): roll back, clear settled_at so a later sweep can
     retry, log, and return the error (never raised)
"""

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.enums import (
    FeeType,
    NotificationType,
    PaymentProviderName,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
    TransactionType,
)
from src.pm_common.ngwee import ngwee_to_display
from src.pm_payment.domain.models import MobilePayment
from src.pm_payment.domain.repository import PaymentRepositoryProtocol
from src.pm_payment.infrastructure.persistence import PaymentRepository
from src.pm_settlement.domain.models import SettlementResult

logger = logging.getLogger(__name__)

Mutation = Callable[[AsyncSession, MobilePayment], Awaitable[None]]


def _provider_label(provider: str) -> str:
    try:
        return PaymentProviderName(provider).label
    except ValueError:
        return provider


class SettlementService:
    def __init__(
        self,
        payment_repo: PaymentRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
    ) -> None:
        self._payments: PaymentRepositoryProtocol = payment_repo or PaymentRepository()
        self._ledger: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()

    # --- entry points ---------------------------------------------------------

    async def settle_deposit_completed(
        self, db: AsyncSession, payment_id: str, message: str | None = None
    ) -> SettlementResult:
        return await self._settle(db, payment_id, PaymentType.DEPOSIT, self._credit_deposit)

    async def settle_deposit_failed(
        self, db: AsyncSession, payment_id: str, message: str | None = None
    ) -> SettlementResult:
        async def mutate(db: AsyncSession, payment: MobilePayment) -> None:
            await self._payments.update_status(db, payment.id, PaymentStatus.FAILED, message)
            await self._ledger.insert_notification(
                db,
                payment.user_id,
                NotificationType.DEPOSIT,
                "Deposit Failed",
                f"Your {_provider_label(payment.provider)} deposit of "
                f"{ngwee_to_display(payment.amount)} was unsuccessful. "
                f"{message or 'Please try again.'}",
                {"payment_id": payment.id},
            )

        return await self._settle(db, payment_id, PaymentType.DEPOSIT, mutate)

    async def settle_withdrawal_completed(
        self, db: AsyncSession, payment_id: str, message: str | None = None
    ) -> SettlementResult:
        async def mutate(db: AsyncSession, payment: MobilePayment) -> None:
            await self._ledger.set_payment_transaction_status(
                db, payment.id, TransactionStatus.COMPLETED
            )
            await self._payments.update_status(db, payment.id, PaymentStatus.COMPLETED, message)
            await self._ledger.insert_notification(
                db,
                payment.user_id,
                NotificationType.WITHDRAW,
                "Withdrawal Successful",
                f"{ngwee_to_display(payment.net_amount)} has been sent to your "
                f"{_provider_label(payment.provider)} ({payment.phone_number}).",
                {"payment_id": payment.id},
            )

        return await self._settle(db, payment_id, PaymentType.WITHDRAWAL, mutate)

    async def settle_withdrawal_failed(
        self, db: AsyncSession, payment_id: str, message: str | None = None
    ) -> SettlementResult:
        async def mutate(db: AsyncSession, payment: MobilePayment) -> None:
            # Refund the full debit, fee included
            await self._ledger.credit(db, payment.user_id, payment.amount)
            if payment.fee_amount > 0:
                await self._ledger.insert_platform_revenue(
                    db,
                    FeeType.WITHDRAWAL_FEE_REVERSAL,
                    -payment.fee_amount,
                    "WITHDRAWAL",
                    payment.id,
                    payment.user_id,
                    f"Reversed withdrawal fee, payment failed for {payment.phone_number}",
                )
            await self._ledger.set_payment_transaction_status(
                db, payment.id, TransactionStatus.FAILED
            )
            await self._payments.update_status(db, payment.id, PaymentStatus.FAILED, message)
            await self._ledger.insert_notification(
                db,
                payment.user_id,
                NotificationType.WITHDRAW,
                "Withdrawal Failed",
                f"Your withdrawal of {ngwee_to_display(payment.net_amount)} to "
                f"{_provider_label(payment.provider)} failed. "
                f"{ngwee_to_display(payment.amount)} has been refunded to your account.",
                {"payment_id": payment.id},
            )

        return await self._settle(db, payment_id, PaymentType.WITHDRAWAL, mutate)

    async def dispatch(
        self,
        db: AsyncSession,
        payment_id: str,
        payment_type: str,
        status: PaymentStatus,
        message: str | None = None,
    ) -> SettlementResult | None:
        """Route a provider status to its entry point. Non-terminal → None."""
        is_deposit = payment_type == PaymentType.DEPOSIT
        if status == PaymentStatus.COMPLETED:
            if is_deposit:
                return await self.settle_deposit_completed(db, payment_id, message)
            return await self.settle_withdrawal_completed(db, payment_id, message)
        if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            if is_deposit:
                return await self.settle_deposit_failed(db, payment_id, message)
            return await self.settle_withdrawal_failed(db, payment_id, message)
        return None

    # --- internals -------------------------------------------------------------

    async def _credit_deposit(self, db: AsyncSession, payment: MobilePayment) -> None:
        balance = await self._ledger.credit(db, payment.user_id, payment.net_amount)
        label = _provider_label(payment.provider)
        await self._ledger.insert_transaction(
            db,
            payment.user_id,
            TransactionType.DEPOSIT,
            payment.net_amount,
            payment.fee_amount,
            balance,
            TransactionStatus.COMPLETED,
            f"Deposit {ngwee_to_display(payment.net_amount)} via {label} ({payment.phone_number})",
            payment_id=payment.id,
            metadata={
                "provider": payment.provider,
                "phone_number": payment.phone_number,
                "external_ref": payment.external_ref,
            },
        )
        await self._payments.update_status(db, payment.id, PaymentStatus.COMPLETED)
        await self._ledger.insert_notification(
            db,
            payment.user_id,
            NotificationType.DEPOSIT,
            "Deposit Successful",
            f"{ngwee_to_display(payment.net_amount)} has been added to your account via {label}.",
            {"payment_id": payment.id},
        )

    async def _settle(
        self,
        db: AsyncSession,
        payment_id: str,
        expected_type: PaymentType,
        mutate: Mutation,
    ) -> SettlementResult:
        payment = await self._payments.get_payment(db, payment_id)
        if payment is None:
            return SettlementResult(error="Payment not found")
        if payment.is_settled:
            return SettlementResult(already_settled=True)
        if payment.type != expected_type:
            return SettlementResult(error=f"Not a {expected_type.value.lower()}")

        try:
            claimed = await self._payments.claim_settlement(db, payment_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if not claimed:
            return SettlementResult(already_settled=True)

        try:
            await mutate(db, payment)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception(
                "Settlement of %s payment %s failed, releasing claim", expected_type.value, payment_id
            )
            await self._release_claim(db, payment_id)
            return SettlementResult(error="Settlement transaction failed")

        logger.info(
            "Settled %s payment %s for user %s (%s)",
            expected_type.value,
            payment_id,
            payment.user_id,
            ngwee_to_display(payment.amount),
        )
        return SettlementResult(settled=True)

    async def _release_claim(self, db: AsyncSession, payment_id: str) -> None:
        try:
            await self._payments.release_settlement(db, payment_id)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Could not release settlement claim on payment %s", payment_id)
