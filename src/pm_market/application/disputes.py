"""DisputeService — challenges to a market's resolution.

    RESOLVED --file_dispute--> DISPUTED (one or more OPEN disputes)
    DISPUTED --decide REJECT, last open dispute--> RESOLVED (deadline unchanged)
    DISPUTED --decide UPHOLD--> RESOLVED with the new outcome and a fresh window

Only holders of a position in the market may dispute, and only before
dispute_deadline. A market is never finalized while it is DISPUTED or any
of its disputes is OPEN.

Lock order is market row, then dispute row, in both operations.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import (
    DisputeAction,
    DisputeStatus,
    MarketStatus,
    NotificationType,
    Outcome,
)
from src.pm_common.errors import (
    DisputeConflictError,
    DisputeNotFoundError,
    ForbiddenError,
    MarketNotDisputableError,
    MarketNotFoundError,
    ValidationError,
)
from src.pm_market.domain.models import Market, MarketDispute
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.persistence import MarketRepository

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 2000
EVIDENCE_MAX_LENGTH = 5000
UPHELD_ELSEWHERE_RESPONSE = "Closed: another dispute on this market was upheld"

_DISPUTABLE = (MarketStatus.RESOLVED, MarketStatus.DISPUTED)


@dataclass
class DisputeDecision:
    dispute_id: str
    market_id: str
    status: str
    market_status: str
    winning_outcome: str | None
    dispute_deadline: datetime | None
    auto_rejected: int = 0


class DisputeService:
    def __init__(
        self,
        market_repo: MarketRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
    ) -> None:
        self._markets: MarketRepositoryProtocol = market_repo or MarketRepository()
        self._ledger: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()

    async def file_dispute(
        self,
        db: AsyncSession,
        market_id: str,
        user_id: str,
        reason: str,
        evidence: str | None = None,
    ) -> MarketDispute:
        reason = (reason or "").strip()
        if len(reason) < REASON_MIN_LENGTH:
            raise ValidationError(
                f"Dispute reason must be at least {REASON_MIN_LENGTH} characters"
            )
        if len(reason) > REASON_MAX_LENGTH:
            raise ValidationError(f"Dispute reason must be under {REASON_MAX_LENGTH} characters")
        evidence = (evidence or "").strip() or None
        if evidence and len(evidence) > EVIDENCE_MAX_LENGTH:
            raise ValidationError(f"Evidence must be under {EVIDENCE_MAX_LENGTH} characters")

        try:
            market = await self._markets.lock_market(db, market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            self._check_disputable(market)

            positions = await self._ledger.list_open_positions(db, market_id)
            if not any(p.user_id == user_id for p in positions):
                raise ForbiddenError(
                    "You must hold a position in this market to file a dispute"
                )
            if await self._markets.has_open_dispute(db, market_id, user_id):
                raise DisputeConflictError("You already have an open dispute for this market")

            dispute = await self._markets.insert_dispute(db, market_id, user_id, reason, evidence)
            if not await self._markets.mark_disputed(db, market_id):
                raise MarketNotDisputableError(market_id, "resolution is no longer open")

            for admin_id in settings.ADMIN_USER_IDS:
                await self._ledger.insert_notification(
                    db,
                    admin_id,
                    NotificationType.DISPUTE,
                    "Market Dispute Filed",
                    f'A dispute was filed on "{market.title}": {reason[:100]}',
                    {"market_id": market_id, "dispute_id": dispute.id},
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Dispute %s filed on market %s by %s", dispute.id, market_id, user_id)
        return dispute

    async def list_disputes(
        self,
        db: AsyncSession,
        market_id: str | None = None,
        status: DisputeStatus | None = None,
        limit: int = 50,
    ) -> list[MarketDispute]:
        return await self._markets.list_disputes(
            db, market_id, status.value if status else None, limit
        )

    async def decide_dispute(
        self,
        db: AsyncSession,
        dispute_id: str,
        admin_id: str,
        action: DisputeAction,
        admin_response: str,
        new_outcome: Outcome | None = None,
    ) -> DisputeDecision:
        """Admin ruling. UPHOLD replaces the outcome and restarts the dispute window."""
        admin_response = (admin_response or "").strip()
        if not admin_response:
            raise ValidationError("admin_response is required")
        if action is DisputeAction.UPHOLD and new_outcome is None:
            raise ValidationError("new_outcome is required when upholding a dispute")

        try:
            found = await self._markets.get_dispute(db, dispute_id)
            if found is None:
                raise DisputeNotFoundError(dispute_id)
            market = await self._markets.lock_market(db, found.market_id)
            if market is None:
                raise MarketNotFoundError(found.market_id)
            dispute = await self._markets.lock_dispute(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if dispute.status != DisputeStatus.OPEN:
                raise DisputeConflictError(f"Dispute {dispute_id} was already {dispute.status}")
            if market.status not in _DISPUTABLE:
                raise MarketNotDisputableError(market.id, f"status is {market.status}")

            if action is DisputeAction.UPHOLD and new_outcome is not None:
                decision = await self._uphold(
                    db, market, dispute, admin_id, admin_response, new_outcome
                )
            else:
                decision = await self._reject(db, market, dispute, admin_id, admin_response)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Dispute %s on market %s %s by %s",
            dispute_id, decision.market_id, decision.status, admin_id,
        )
        return decision

    # ------------------------------------------------------------------

    @staticmethod
    def _check_disputable(market: Market) -> None:
        if market.status not in _DISPUTABLE:
            raise MarketNotDisputableError(market.id, f"status is {market.status}")
        if market.dispute_deadline is None or utc_now() > market.dispute_deadline:
            closed = market.dispute_deadline.isoformat() if market.dispute_deadline else "unknown"
            raise MarketNotDisputableError(market.id, f"dispute window closed at {closed}")

    async def _reject(
        self,
        db: AsyncSession,
        market: Market,
        dispute: MarketDispute,
        admin_id: str,
        admin_response: str,
    ) -> DisputeDecision:
        await self._close(db, dispute, DisputeStatus.REJECTED, admin_id, admin_response)
        market_status = market.status
        if await self._markets.count_open_disputes(db, market.id) == 0:
            await self._markets.clear_disputed(db, market.id)
            market_status = MarketStatus.RESOLVED

        await self._ledger.insert_notification(
            db,
            dispute.user_id,
            NotificationType.DISPUTE,
            "Dispute Rejected",
            f'Your dispute for "{market.title}" was rejected: {admin_response}',
            {"market_id": market.id, "dispute_id": dispute.id},
        )
        return DisputeDecision(
            dispute_id=dispute.id,
            market_id=market.id,
            status=DisputeStatus.REJECTED.value,
            market_status=MarketStatus(market_status).value,
            winning_outcome=market.winning_outcome,
            dispute_deadline=market.dispute_deadline,
        )

    async def _uphold(
        self,
        db: AsyncSession,
        market: Market,
        dispute: MarketDispute,
        admin_id: str,
        admin_response: str,
        new_outcome: Outcome,
    ) -> DisputeDecision:
        await self._close(db, dispute, DisputeStatus.UPHELD, admin_id, admin_response)
        auto_rejected = await self._markets.reject_open_disputes(
            db, market.id, UPHELD_ELSEWHERE_RESPONSE
        )
        deadline = utc_now() + timedelta(hours=settings.DISPUTE_WINDOW_HOURS)
        if not await self._markets.overturn_resolution(db, market.id, new_outcome.value, deadline):
            raise MarketNotDisputableError(market.id, "resolution is no longer open")

        await self._ledger.insert_notification(
            db,
            dispute.user_id,
            NotificationType.DISPUTE,
            "Dispute Upheld",
            f'Your dispute for "{market.title}" was upheld. '
            f"The outcome is now {new_outcome.value}.",
            {"market_id": market.id, "dispute_id": dispute.id, "outcome": new_outcome.value},
        )
        holders = await self._ledger.list_open_positions(db, market.id)
        for user_id in sorted({p.user_id for p in holders} - {dispute.user_id}):
            await self._ledger.insert_notification(
                db,
                user_id,
                NotificationType.MARKET_RESOLVED,
                "Resolution Changed",
                f'"{market.title}" now resolves to {new_outcome.value}. Payouts will be '
                f"processed after the new dispute window ({deadline.isoformat()}).",
                {
                    "market_id": market.id,
                    "outcome": new_outcome.value,
                    "dispute_deadline": deadline.isoformat(),
                },
            )
        return DisputeDecision(
            dispute_id=dispute.id,
            market_id=market.id,
            status=DisputeStatus.UPHELD.value,
            market_status=MarketStatus.RESOLVED.value,
            winning_outcome=new_outcome.value,
            dispute_deadline=deadline,
            auto_rejected=auto_rejected,
        )

    async def _close(
        self,
        db: AsyncSession,
        dispute: MarketDispute,
        status: DisputeStatus,
        admin_id: str,
        admin_response: str,
    ) -> None:
        if not await self._markets.close_dispute(
            db, dispute.id, status.value, admin_response, admin_id
        ):
            raise DisputeConflictError(f"Dispute {dispute.id} is no longer open")
