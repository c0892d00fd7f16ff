"""MarketResolver — market creation and the two-phase resolution lifecycle.

    ACTIVE --resolve_market--> RESOLVED (dispute window open)
    RESOLVED <--> DISPUTED      (see disputes.DisputeService)
    RESOLVED --finalize_market, after dispute_deadline and with no OPEN
               dispute--> FINALIZING --> FINALIZED

finalize_market claims the market with a conditional UPDATE committed on its
own, so a cron sweep and an admin call racing on the same market pay out
exactly once. A crash mid-payout rolls the ledger work back and returns the
market to RESOLVED for the next attempt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import (
    FeeType,
    MarketStatus,
    NotificationType,
    Outcome,
    TransactionStatus,
    TransactionType,
)
from src.pm_common.errors import (
    MarketNotActiveError,
    MarketNotFoundError,
    MarketNotResolvableError,
    ValidationError,
)
from src.pm_common.ngwee import (
    calculate_fee,
    kwacha_to_ngwee_ceil,
    kwacha_to_ngwee_floor,
    ngwee_to_display,
)
from src.pm_market.domain.models import Market
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.persistence import MarketRepository
from src.pm_pricing.cpmm import calculate_payout, display_prices, initialize_pool

logger = logging.getLogger(__name__)


@dataclass
class ResolveResult:
    market_id: str
    outcome: str
    dispute_deadline: datetime
    notified_users: int


@dataclass
class FinalizeResult:
    market_id: str
    already_finalized: bool = False
    winners_paid: int = 0
    losers_closed: int = 0
    payout_ngwee: int = 0
    fees_ngwee: int = 0


class MarketResolver:
    def __init__(
        self,
        market_repo: MarketRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
    ) -> None:
        self._markets: MarketRepositoryProtocol = market_repo or MarketRepository()
        self._ledger: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()

    async def create_market(
        self,
        db: AsyncSession,
        title: str,
        liquidity_ngwee: int,
        initial_yes_price: Decimal = Decimal("0.5"),
        resolve_time: datetime | None = None,
    ) -> Market:
        """Seed a new ACTIVE market. Liquidity is expressed in ngwee."""
        if liquidity_ngwee <= 0:
            raise ValidationError("Liquidity must be positive")
        try:
            pool = initialize_pool(Decimal(liquidity_ngwee) / 100, initial_yes_price)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        prices = display_prices(pool)
        try:
            market = await self._markets.insert_market(
                db, title, pool, prices.yes_price, prices.no_price, resolve_time
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Market %s created: %s (liquidity %d ngwee)", market.id, title, liquidity_ngwee)
        return market

    async def resolve_market(
        self, db: AsyncSession, market_id: str, outcome: Outcome
    ) -> ResolveResult:
        """Phase 1: record the winning outcome and open the dispute window."""
        deadline = utc_now() + timedelta(hours=settings.DISPUTE_WINDOW_HOURS)
        try:
            market = await self._markets.lock_market(db, market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            if market.status != MarketStatus.ACTIVE:
                raise MarketNotActiveError(market_id)

            if not await self._markets.mark_resolved(db, market_id, outcome.value, deadline):
                raise MarketNotActiveError(market_id)

            holders = await self._ledger.list_open_positions(db, market_id)
            user_ids = sorted({p.user_id for p in holders})
            for user_id in user_ids:
                await self._ledger.insert_notification(
                    db,
                    user_id,
                    NotificationType.MARKET_RESOLVED,
                    "Market Resolved",
                    f'"{market.title}" resolved to {outcome.value}. Payouts will be '
                    f"processed after the dispute window ({deadline.isoformat()}).",
                    {
                        "market_id": market_id,
                        "outcome": outcome.value,
                        "dispute_deadline": deadline.isoformat(),
                    },
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Market %s resolved to %s, dispute window until %s",
            market_id, outcome.value, deadline.isoformat(),
        )
        return ResolveResult(
            market_id=market_id,
            outcome=outcome.value,
            dispute_deadline=deadline,
            notified_users=len(user_ids),
        )

    async def finalize_market(self, db: AsyncSession, market_id: str) -> FinalizeResult:
        """Phase 2: pay winners once the dispute window has passed."""
        try:
            claimed = await self._markets.claim_finalization(db, market_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if not claimed:
            return await self._explain_unclaimed(db, market_id)

        try:
            result = await self._pay_out(db, market_id)
            await self._markets.mark_finalized(db, market_id)
            await db.commit()
        except Exception:
            await db.rollback()
            await self._markets.revert_finalization(db, market_id)
            await db.commit()
            logger.exception("Finalization of market %s failed, reverted to RESOLVED", market_id)
            raise

        logger.info(
            "Market %s finalized: %d winners paid %s, fees %s",
            market_id,
            result.winners_paid,
            ngwee_to_display(result.payout_ngwee),
            ngwee_to_display(result.fees_ngwee),
        )
        return result

    async def _explain_unclaimed(self, db: AsyncSession, market_id: str) -> FinalizeResult:
        market = await self._markets.get_market_by_id(db, market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        if market.status in (MarketStatus.FINALIZING, MarketStatus.FINALIZED):
            return FinalizeResult(market_id=market_id, already_finalized=True)
        if market.status == MarketStatus.DISPUTED:
            raise MarketNotResolvableError(
                market_id, "market has open dispute(s); decide them before finalizing"
            )
        if market.status != MarketStatus.RESOLVED:
            raise MarketNotResolvableError(market_id, f"status is {market.status}, not RESOLVED")
        if market.dispute_deadline is None or utc_now() < market.dispute_deadline:
            deadline = market.dispute_deadline.isoformat() if market.dispute_deadline else "unknown"
            raise MarketNotResolvableError(market_id, f"dispute window open until {deadline}")
        open_disputes = await self._markets.count_open_disputes(db, market_id)
        raise MarketNotResolvableError(
            market_id, f"{open_disputes} open dispute(s); decide them before finalizing"
        )

    async def _pay_out(self, db: AsyncSession, market_id: str) -> FinalizeResult:
        market = await self._markets.get_market_by_id(db, market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        if market.winning_outcome is None:
            raise MarketNotResolvableError(market_id, "no winning outcome set")

        result = FinalizeResult(market_id=market_id)
        for position in await self._ledger.list_open_positions(db, market_id):
            cost_basis = kwacha_to_ngwee_ceil(position.cost_basis)

            if position.outcome != market.winning_outcome:
                position.realized_pnl -= cost_basis
                position.is_closed = True
                await self._ledger.save_position(db, position)
                result.losers_closed += 1
                continue

            gross = kwacha_to_ngwee_floor(calculate_payout(position.size))
            fee = calculate_fee(gross, settings.RESOLUTION_FEE_BPS)
            net = gross - fee

            balance = await self._ledger.credit(db, position.user_id, net)
            await self._ledger.insert_transaction(
                db,
                position.user_id,
                TransactionType.WINNINGS,
                net,
                fee,
                balance,
                TransactionStatus.COMPLETED,
                f'Payout for {market.winning_outcome} position in "{market.title}" '
                f"(resolution fee: {ngwee_to_display(fee)})",
                market_id=market_id,
                metadata={
                    "position_id": position.id,
                    "outcome": market.winning_outcome,
                    "gross_payout_ngwee": gross,
                    "fee_ngwee": fee,
                },
            )
            if fee > 0:
                await self._ledger.insert_platform_revenue(
                    db,
                    FeeType.RESOLUTION_FEE,
                    fee,
                    "RESOLUTION",
                    position.id or market_id,
                    position.user_id,
                    f"Resolution fee on {ngwee_to_display(gross)} payout for: {market.title}",
                )
            await self._ledger.insert_notification(
                db,
                position.user_id,
                NotificationType.WINNINGS,
                "Winnings Paid",
                f'You received {ngwee_to_display(net)} from "{market.title}".',
                {"market_id": market_id, "amount_ngwee": net},
            )

            position.realized_pnl += net - cost_basis
            position.is_closed = True
            await self._ledger.save_position(db, position)

            result.winners_paid += 1
            result.payout_ngwee += net
            result.fees_ngwee += fee
        return result
