"""PaymentApplicationService — mobile-money deposits and withdrawals.

Ledger work and provider calls never overlap: the ledger transaction is
committed before the provider is contacted, and every terminal outcome is
handed to SettlementService, which owns the settled_at claim.

Withdrawal:
    debit amount + WITHDRAWAL tx (PROCESSING) + WITHDRAWAL_FEE revenue
    + mobile payment (PROCESSING, expires in PAYMENT_EXPIRY_MINUTES)  → commit
    → initiate_disbursement(net)
    → provider error: settle_withdrawal_failed (refund + fee reversal)

Deposit:
    mobile payment (PENDING) → commit → initiate_collection(amount)
    → accepted: PROCESSING; provider error: settle_deposit_failed
"""

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.datetime_utils import minutes_from_now, utc_now
from src.pm_common.enums import (
    FeeType,
    PaymentProviderName,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
    TransactionType,
)
from src.pm_common.errors import (
    InsufficientFundsError,
    PaymentNotFoundError,
    ProviderConfigError,
    ProviderError,
    PaymentFailedError,
    UnauthorizedError,
    ValidationError,
)
from src.pm_common.ngwee import calculate_fee, ngwee_to_display
from src.pm_payment.application.schemas import PaymentView
from src.pm_payment.domain.models import MobilePayment
from src.pm_payment.domain.repository import PaymentRepositoryProtocol
from src.pm_payment.infrastructure.persistence import PaymentRepository
from src.pm_payment.providers.base import PaymentProvider, ProviderStatus
from src.pm_payment.providers.registry import get_provider
from src.pm_payment.providers.webhook import SIGNATURE_HEADERS, verify_webhook_signature
from src.pm_settlement.application.service import SettlementService

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Payment expired"

ProviderLookup = Callable[[PaymentProviderName], PaymentProvider]


class PaymentApplicationService:
    def __init__(
        self,
        payment_repo: PaymentRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
        settlement: SettlementService | None = None,
        provider_lookup: ProviderLookup = get_provider,
    ) -> None:
        self._payments: PaymentRepositoryProtocol = payment_repo or PaymentRepository()
        self._ledger: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()
        self._settlement = settlement or SettlementService(self._payments, self._ledger)
        self._provider = provider_lookup

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def initiate_withdrawal(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        phone: str,
        provider_name: PaymentProviderName,
    ) -> PaymentView:
        if amount < settings.WITHDRAW_MIN_NGWEE:
            raise ValidationError(
                f"Minimum withdrawal is {ngwee_to_display(settings.WITHDRAW_MIN_NGWEE)}"
            )
        if amount > settings.WITHDRAW_MAX_NGWEE:
            raise ValidationError(
                f"Maximum withdrawal is {ngwee_to_display(settings.WITHDRAW_MAX_NGWEE)}"
            )
        fee = calculate_fee(amount, settings.WITHDRAW_FEE_BPS, settings.WITHDRAW_FEE_MIN_NGWEE)
        net = amount - fee
        if net <= 0:
            raise ValidationError("Withdrawal amount does not cover the fee")

        provider = self._configured_provider(provider_name)
        msisdn = provider.normalize_phone(phone)
        reference = provider.new_reference("WDR")

        try:
            account = await self._ledger.lock_account(db, user_id)
            if account.balance < amount:
                raise InsufficientFundsError(amount, account.balance)
            balance = await self._ledger.debit(db, user_id, amount)
            payment = await self._payments.insert_payment(
                db,
                user_id,
                PaymentType.WITHDRAWAL,
                amount,
                fee,
                net,
                provider.name.value,
                msisdn,
                reference,
                PaymentStatus.PROCESSING,
                minutes_from_now(settings.PAYMENT_EXPIRY_MINUTES),
            )
            await self._ledger.insert_transaction(
                db,
                user_id,
                TransactionType.WITHDRAWAL,
                -amount,
                fee,
                balance,
                TransactionStatus.PROCESSING,
                f"Withdrawal {ngwee_to_display(net)} to {provider.label} ({msisdn}), "
                f"fee {ngwee_to_display(fee)}",
                payment_id=payment.id,
                metadata={"provider": provider.name.value, "external_ref": reference},
            )
            if fee > 0:
                await self._ledger.insert_platform_revenue(
                    db,
                    FeeType.WITHDRAWAL_FEE,
                    fee,
                    "WITHDRAWAL",
                    payment.id,
                    user_id,
                    f"Withdrawal fee on {ngwee_to_display(amount)} to {msisdn}",
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Withdrawal %s: user=%s amount=%d fee=%d via %s",
            payment.id, user_id, amount, fee, provider.name.value,
        )

        try:
            result = await provider.initiate_disbursement(msisdn, net, reference)
        except ProviderError as e:
            logger.warning("Disbursement for %s rejected: %s", payment.id, e.message)
            settled = await self._settlement.settle_withdrawal_failed(db, payment.id, e.message)
            refund_note = (
                f"{ngwee_to_display(amount)} has been refunded to your balance."
                if settled.settled or settled.already_settled
                else "Your refund is being processed."
            )
            raise PaymentFailedError(
                provider.name.value,
                f"{provider.label} withdrawal failed: {e.message} {refund_note}",
                e.provider_code,
                payment.id,
            ) from e

        return await self._after_initiation(db, payment, result, balance)

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    async def initiate_deposit(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        phone: str,
        provider_name: PaymentProviderName,
    ) -> PaymentView:
        if amount < settings.DEPOSIT_MIN_NGWEE:
            raise ValidationError(
                f"Minimum deposit is {ngwee_to_display(settings.DEPOSIT_MIN_NGWEE)}"
            )
        if amount > settings.DEPOSIT_MAX_NGWEE:
            raise ValidationError(
                f"Maximum deposit is {ngwee_to_display(settings.DEPOSIT_MAX_NGWEE)}"
            )

        provider = self._configured_provider(provider_name)
        msisdn = provider.normalize_phone(phone)
        reference = provider.new_reference("DEP")

        try:
            payment = await self._payments.insert_payment(
                db,
                user_id,
                PaymentType.DEPOSIT,
                amount,
                0,
                amount,
                provider.name.value,
                msisdn,
                reference,
                PaymentStatus.PENDING,
                minutes_from_now(settings.PAYMENT_EXPIRY_MINUTES),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        try:
            result = await provider.initiate_collection(msisdn, amount, reference)
        except ProviderError as e:
            logger.warning("Collection for %s rejected: %s", payment.id, e.message)
            await self._settlement.settle_deposit_failed(db, payment.id, e.message)
            raise PaymentFailedError(
                provider.name.value,
                f"{provider.label} deposit could not be started: {e.message} "
                "No money was taken.",
                e.provider_code,
                payment.id,
            ) from e

        return await self._after_initiation(db, payment, result, None)

    # ------------------------------------------------------------------
    # Status polling
    # ------------------------------------------------------------------

    async def get_payment_status(
        self, db: AsyncSession, user_id: str, payment_id: str
    ) -> PaymentView:
        payment = await self._payments.get_payment(db, payment_id)
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFoundError(payment_id)

        if PaymentStatus(payment.status).is_terminal:
            return await self._view(db, payment)

        if utc_now() > payment.expires_at:
            await self._settle_failed(db, payment, EXPIRED_MESSAGE)
            return await self._reload_view(db, payment)

        if payment.external_ref and not payment.callback_received:
            provider = self._provider(PaymentProviderName(payment.provider))
            if provider.is_configured():
                status = await self._check_with_provider(db, provider, payment)
                if status is not None:
                    await self.apply_provider_status(db, payment, status)
                    return await self._reload_view(db, payment)

        return await self._view(db, payment)

    @staticmethod
    async def poll_provider(provider: PaymentProvider, payment: MobilePayment) -> ProviderStatus:
        if payment.type == PaymentType.DEPOSIT:
            return await provider.check_collection_status(payment.external_ref)
        return await provider.check_disbursement_status(payment.external_ref)

    async def _check_with_provider(
        self, db: AsyncSession, provider: PaymentProvider, payment: MobilePayment
    ) -> ProviderStatus | None:
        """Ask the rail for the payment's status; None when the rail cannot answer."""
        # No open transaction across the HTTP call
        await db.commit()
        try:
            return await self.poll_provider(provider, payment)
        except ProviderError as e:
            logger.warning(
                "[%s] status check for %s failed: %s", provider.name.value, payment.id, e.message
            )
            return None

    async def apply_provider_status(
        self, db: AsyncSession, payment: MobilePayment, status: ProviderStatus
    ) -> None:
        """Terminal statuses go to settlement; others are just recorded."""
        if status.status.is_terminal:
            await self._settlement.dispatch(
                db, payment.id, payment.type, status.status, status.message
            )
            return
        if status.status.value != payment.status:
            try:
                await self._payments.update_status(
                    db, payment.id, status.status, status.message, status.external_id
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    # ------------------------------------------------------------------
    # Provider webhooks
    # ------------------------------------------------------------------

    async def handle_callback(
        self, db: AsyncSession, raw_body: bytes, headers: Mapping[str, str]
    ) -> dict[str, Any]:
        """Process a provider callback. Unknown or already-settled payments are acknowledged.

        Airtel callbacks carry an HMAC signature. MTN callbacks are unsigned, so
        they settle only on the status the MTN API itself reports.
        """
        lowered = {k.lower(): v for k, v in headers.items()}

        if lowered.get("x-reference-id"):
            provider = self._provider(PaymentProviderName.MTN_MOMO)
        else:
            signature = next((lowered[h] for h in SIGNATURE_HEADERS if lowered.get(h)), None)
            if not verify_webhook_signature(
                raw_body,
                signature,
                settings.AIRTEL_MONEY_WEBHOOK_SECRET,
                settings.is_production,
            ):
                logger.error("Airtel callback rejected: invalid signature")
                raise UnauthorizedError("Invalid signature")
            provider = self._provider(PaymentProviderName.AIRTEL_MONEY)

        try:
            body = json.loads(raw_body or b"{}")
        except ValueError:
            raise ValidationError("Callback body is not valid JSON") from None
        if not isinstance(body, dict):
            raise ValidationError("Callback body must be a JSON object")

        event = provider.parse_callback(body, lowered)
        if event is None:
            logger.warning("[%s] callback without a reference ignored", provider.name.value)
            return {"status": "ok"}

        payment = await self._payments.find_unsettled_by_reference(
            db, provider.name.value, event.references
        )
        if payment is None:
            logger.warning(
                "[%s] no unsettled payment for refs %s", provider.name.value, event.references
            )
            return {"status": "ok"}

        status = event.status
        if not provider.signs_callbacks:
            # Unsigned callbacks only prompt a status check with the rail
            confirmed = await self._check_with_provider(db, provider, payment)
            if confirmed is None or not confirmed.status.is_terminal:
                logger.info(
                    "[%s] callback for payment %s claims %s, rail reports %s; not settling",
                    provider.name.value, payment.id, event.status.raw_status,
                    confirmed.raw_status if confirmed else "nothing",
                )
                return {
                    "status": "ok",
                    "payment_id": payment.id,
                    "payment_status": payment.status,
                    "settled": False,
                }
            status = confirmed

        # Terminal statuses are written by settlement, together with the money
        recorded = PaymentStatus(payment.status) if status.status.is_terminal else status.status
        try:
            await self._payments.record_callback(
                db,
                payment.id,
                recorded,
                status.message,
                event.external_id or status.external_id,
                event.raw,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        result = await self._settlement.dispatch(
            db, payment.id, payment.type, status.status, status.message
        )
        logger.info(
            "[%s] callback for payment %s: %s", provider.name.value, payment.id, status.raw_status
        )
        return {
            "status": "ok",
            "payment_id": payment.id,
            "payment_status": status.status.value,
            "settled": bool(result and result.settled),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _configured_provider(self, name: PaymentProviderName) -> PaymentProvider:
        provider = self._provider(name)
        if not provider.is_configured():
            raise ProviderConfigError(
                name.value, f"{name.label} payments are not available right now."
            )
        return provider

    async def _after_initiation(
        self,
        db: AsyncSession,
        payment: MobilePayment,
        result: ProviderStatus,
        balance: int | None,
    ) -> PaymentView:
        if result.status.is_terminal:
            await self._settlement.dispatch(
                db, payment.id, payment.type, result.status, result.message
            )
            return await self._reload_view(db, payment)

        try:
            await self._payments.update_status(
                db, payment.id, PaymentStatus.PROCESSING, result.message, result.external_id
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return PaymentView.from_domain(payment, balance, status=PaymentStatus.PROCESSING.value)

    async def _settle_failed(self, db: AsyncSession, payment: MobilePayment, message: str) -> None:
        if payment.type == PaymentType.DEPOSIT:
            await self._settlement.settle_deposit_failed(db, payment.id, message)
        else:
            await self._settlement.settle_withdrawal_failed(db, payment.id, message)

    async def _reload_view(self, db: AsyncSession, payment: MobilePayment) -> PaymentView:
        fresh = await self._payments.get_payment(db, payment.id)
        return await self._view(db, fresh or payment)

    async def _view(self, db: AsyncSession, payment: MobilePayment) -> PaymentView:
        account = await self._ledger.get_account(db, payment.user_id)
        return PaymentView.from_domain(payment, account.balance if account else 0)
