"""ReconciliationService — periodic catch-up for money and markets.

Three sweeps, each isolated so a failure in one (or in a single item) does
not stop the rest:

  1. expired   PENDING/PROCESSING payments past expires_at → settle as failed
  2. polled    PROCESSING payments with no callback → ask the provider
  3. finalized RESOLVED markets past dispute_deadline → finalize_market

All money movement goes through SettlementService / MarketResolver, so a
sweep running twice (or racing a webhook) is a no-op the second time.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_common.enums import PaymentProviderName, PaymentType
from src.pm_common.errors import ProviderError
from src.pm_market.application.resolver import MarketResolver
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.persistence import MarketRepository
from src.pm_payment.domain.models import MobilePayment
from src.pm_payment.domain.repository import PaymentRepositoryProtocol
from src.pm_payment.infrastructure.persistence import PaymentRepository
from src.pm_payment.providers.base import PaymentProvider
from src.pm_payment.providers.registry import get_provider
from src.pm_settlement.application.service import SettlementService
from src.pm_settlement.domain.models import SettlementResult

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Payment expired"
EXPIRED_BATCH = 100
FINALIZE_BATCH = 50


@dataclass
class ReconciliationSummary:
    expired_payments: int = 0
    polled_payments: int = 0
    settled_payments: int = 0
    finalized_markets: int = 0
    errors: list[str] = field(default_factory=list)


class ReconciliationService:
    def __init__(
        self,
        payment_repo: PaymentRepositoryProtocol | None = None,
        settlement: SettlementService | None = None,
        provider_lookup: Callable[[PaymentProviderName], PaymentProvider] = get_provider,
        resolver: MarketResolver | None = None,
        market_repo: MarketRepositoryProtocol | None = None,
    ) -> None:
        self._payments: PaymentRepositoryProtocol = payment_repo or PaymentRepository()
        self._settlement = settlement or SettlementService(self._payments)
        self._provider = provider_lookup
        self._markets: MarketRepositoryProtocol = market_repo or MarketRepository()
        self._resolver = resolver or MarketResolver(self._markets)

    async def run(self, db: AsyncSession) -> ReconciliationSummary:
        summary = ReconciliationSummary()
        for name, sweep in (
            ("expired", self._sweep_expired),
            ("poll", self._sweep_pollable),
            ("finalize", self._sweep_markets),
        ):
            try:
                await sweep(db, summary)
            except Exception as e:
                await db.rollback()
                logger.exception("Reconciliation sweep %s failed", name)
                summary.errors.append(f"{name}: {e}")

        logger.info(
            "Reconciliation: expired=%d polled=%d settled=%d finalized=%d errors=%d",
            summary.expired_payments,
            summary.polled_payments,
            summary.settled_payments,
            summary.finalized_markets,
            len(summary.errors),
        )
        return summary

    # --- sweeps ---------------------------------------------------------------

    async def _sweep_expired(self, db: AsyncSession, summary: ReconciliationSummary) -> None:
        for payment in await self._payments.list_expired_unsettled(db, EXPIRED_BATCH):
            try:
                if payment.type == PaymentType.DEPOSIT:
                    result = await self._settlement.settle_deposit_failed(
                        db, payment.id, EXPIRED_MESSAGE
                    )
                else:
                    result = await self._settlement.settle_withdrawal_failed(
                        db, payment.id, EXPIRED_MESSAGE
                    )
            except Exception as e:
                await db.rollback()
                logger.exception("Expiring payment %s failed", payment.id)
                summary.errors.append(f"expire {payment.id}: {e}")
                continue
            self._count(summary, payment, result)
            if result.settled:
                summary.expired_payments += 1

    async def _sweep_pollable(self, db: AsyncSession, summary: ReconciliationSummary) -> None:
        for payment in await self._payments.list_pollable(db, settings.RECONCILE_POLL_BATCH):
            if not payment.external_ref:
                continue
            provider = self._provider(PaymentProviderName(payment.provider))
            if not provider.is_configured():
                continue
            # No open transaction across the HTTP call
            await db.commit()
            try:
                if payment.type == PaymentType.DEPOSIT:
                    status = await provider.check_collection_status(payment.external_ref)
                else:
                    status = await provider.check_disbursement_status(payment.external_ref)
            except ProviderError as e:
                logger.warning("Polling payment %s failed: %s", payment.id, e.message)
                summary.errors.append(f"poll {payment.id}: {e.message}")
                continue
            summary.polled_payments += 1

            if not status.status.is_terminal:
                continue
            try:
                result = await self._settlement.dispatch(
                    db, payment.id, payment.type, status.status, status.message
                )
            except Exception as e:
                await db.rollback()
                logger.exception("Settling polled payment %s failed", payment.id)
                summary.errors.append(f"settle {payment.id}: {e}")
                continue
            if result is not None:
                self._count(summary, payment, result)

    async def _sweep_markets(self, db: AsyncSession, summary: ReconciliationSummary) -> None:
        for market_id in await self._markets.list_finalizable(db, FINALIZE_BATCH):
            try:
                result = await self._resolver.finalize_market(db, market_id)
            except Exception as e:
                logger.exception("Finalizing market %s failed", market_id)
                summary.errors.append(f"finalize {market_id}: {e}")
                continue
            if not result.already_finalized:
                summary.finalized_markets += 1

    @staticmethod
    def _count(
        summary: ReconciliationSummary, payment: MobilePayment, result: SettlementResult
    ) -> None:
        if result.settled:
            summary.settled_payments += 1
        elif result.error:
            summary.errors.append(f"settle {payment.id}: {result.error}")
