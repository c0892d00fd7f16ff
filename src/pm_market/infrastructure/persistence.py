"""MarketRepository — concrete implementation of MarketRepositoryProtocol.

All queries use raw text() SQL (no ORM).
asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.

Status transitions are conditional UPDATEs; a rowcount of 0 means another
caller got there first or the market is not in the expected state.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_common.errors import InternalError
from src.pm_market.domain.models import Market, MarketDispute
from src.pm_pricing.cpmm import Pool

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_MARKET_COLUMNS = """
    id, title, status,
    pool_yes_shares, pool_no_shares, pool_k,
    yes_price, no_price, volume_ngwee,
    winning_outcome, resolve_time, resolved_at, dispute_deadline, finalized_at,
    created_at, updated_at
"""

_GET_MARKET_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets
    WHERE id = :market_id
""")

_LOCK_MARKET_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets
    WHERE id = :market_id
    FOR UPDATE
""")

_LIST_MARKETS_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets
    WHERE
        (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
        AND (
            CAST(:cursor_ts AS TIMESTAMPTZ) IS NULL
            OR created_at < CAST(:cursor_ts AS TIMESTAMPTZ)
            OR (
                created_at = CAST(:cursor_ts AS TIMESTAMPTZ)
                AND CAST(id AS TEXT) < CAST(:cursor_id AS TEXT)
            )
        )
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

_INSERT_MARKET_SQL = text(f"""
    INSERT INTO markets
        (title, status, pool_yes_shares, pool_no_shares, pool_k,
         yes_price, no_price, resolve_time)
    VALUES
        (:title, 'ACTIVE', :yes_shares, :no_shares, :k,
         :yes_price, :no_price, :resolve_time)
    RETURNING {_MARKET_COLUMNS}
""")

# pool_k is deliberately absent: it never changes after creation
_UPDATE_POOL_SQL = text("""
    UPDATE markets
    SET pool_yes_shares = :yes_shares,
        pool_no_shares = :no_shares,
        yes_price = :yes_price,
        no_price = :no_price,
        volume_ngwee = volume_ngwee + :volume_delta,
        updated_at = NOW()
    WHERE id = :market_id
""")

_MARK_RESOLVED_SQL = text("""
    UPDATE markets
    SET status = 'RESOLVED',
        winning_outcome = :outcome,
        resolved_at = NOW(),
        dispute_deadline = :dispute_deadline,
        updated_at = NOW()
    WHERE id = :market_id AND status = 'ACTIVE'
""")

_NO_OPEN_DISPUTE = """
    NOT EXISTS (
        SELECT 1 FROM market_disputes d
        WHERE d.market_id = markets.id AND d.status = 'OPEN'
    )
"""

_CLAIM_FINALIZATION_SQL = text(f"""
    UPDATE markets
    SET status = 'FINALIZING', updated_at = NOW()
    WHERE id = :market_id
      AND status = 'RESOLVED'
      AND dispute_deadline <= NOW()
      AND {_NO_OPEN_DISPUTE}
""")

_MARK_FINALIZED_SQL = text("""
    UPDATE markets
    SET status = 'FINALIZED', finalized_at = NOW(), updated_at = NOW()
    WHERE id = :market_id AND status = 'FINALIZING'
""")

_REVERT_FINALIZATION_SQL = text("""
    UPDATE markets
    SET status = 'RESOLVED', updated_at = NOW()
    WHERE id = :market_id AND status = 'FINALIZING'
""")

_LIST_FINALIZABLE_SQL = text(f"""
    SELECT id
    FROM markets
    WHERE status = 'RESOLVED'
      AND dispute_deadline <= NOW()
      AND {_NO_OPEN_DISPUTE}
    ORDER BY dispute_deadline
    LIMIT :limit
""")

# DISPUTED blocks the finalization claim, which requires RESOLVED
_MARK_DISPUTED_SQL = text("""
    UPDATE markets
    SET status = 'DISPUTED', updated_at = NOW()
    WHERE id = :market_id AND status IN ('RESOLVED', 'DISPUTED')
""")

_CLEAR_DISPUTED_SQL = text("""
    UPDATE markets
    SET status = 'RESOLVED', updated_at = NOW()
    WHERE id = :market_id AND status = 'DISPUTED'
""")

_OVERTURN_RESOLUTION_SQL = text("""
    UPDATE markets
    SET status = 'RESOLVED',
        winning_outcome = :outcome,
        dispute_deadline = :dispute_deadline,
        updated_at = NOW()
    WHERE id = :market_id AND status IN ('RESOLVED', 'DISPUTED')
""")

_DISPUTE_COLUMNS = """
    id, market_id, user_id, reason, evidence, status,
    admin_response, resolved_by, resolved_at, created_at
"""

_INSERT_DISPUTE_SQL = text(f"""
    INSERT INTO market_disputes (market_id, user_id, reason, evidence)
    VALUES (:market_id, :user_id, :reason, :evidence)
    RETURNING {_DISPUTE_COLUMNS}
""")

_HAS_OPEN_DISPUTE_SQL = text("""
    SELECT 1
    FROM market_disputes
    WHERE market_id = :market_id AND user_id = :user_id AND status = 'OPEN'
    LIMIT 1
""")

_COUNT_OPEN_DISPUTES_SQL = text("""
    SELECT COUNT(*)
    FROM market_disputes
    WHERE market_id = :market_id AND status = 'OPEN'
""")

_GET_DISPUTE_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM market_disputes
    WHERE id = :dispute_id
""")

_LOCK_DISPUTE_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM market_disputes
    WHERE id = :dispute_id
    FOR UPDATE
""")

_LIST_DISPUTES_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM market_disputes
    WHERE
        (CAST(:market_id AS TEXT) IS NULL OR market_id = CAST(:market_id AS TEXT))
        AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
    ORDER BY created_at DESC
    LIMIT :limit
""")

_CLOSE_DISPUTE_SQL = text("""
    UPDATE market_disputes
    SET status = :status,
        admin_response = :admin_response,
        resolved_by = :resolved_by,
        resolved_at = NOW(),
        updated_at = NOW()
    WHERE id = :dispute_id AND status = 'OPEN'
""")

_REJECT_OPEN_DISPUTES_SQL = text("""
    UPDATE market_disputes
    SET status = 'REJECTED',
        admin_response = :admin_response,
        resolved_at = NOW(),
        updated_at = NOW()
    WHERE market_id = :market_id AND status = 'OPEN'
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_market(row: object) -> Market:
    return Market(
        id=str(row.id),  # type: ignore[attr-defined]
        title=row.title,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        pool_yes_shares=Decimal(row.pool_yes_shares),  # type: ignore[attr-defined]
        pool_no_shares=Decimal(row.pool_no_shares),  # type: ignore[attr-defined]
        pool_k=Decimal(row.pool_k),  # type: ignore[attr-defined]
        yes_price=Decimal(row.yes_price),  # type: ignore[attr-defined]
        no_price=Decimal(row.no_price),  # type: ignore[attr-defined]
        volume_ngwee=row.volume_ngwee,  # type: ignore[attr-defined]
        winning_outcome=row.winning_outcome,  # type: ignore[attr-defined]
        resolve_time=row.resolve_time,  # type: ignore[attr-defined]
        resolved_at=row.resolved_at,  # type: ignore[attr-defined]
        dispute_deadline=row.dispute_deadline,  # type: ignore[attr-defined]
        finalized_at=row.finalized_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_dispute(row: object) -> MarketDispute:
    return MarketDispute(
        id=str(row.id),  # type: ignore[attr-defined]
        market_id=str(row.market_id),  # type: ignore[attr-defined]
        user_id=str(row.user_id),  # type: ignore[attr-defined]
        reason=row.reason,  # type: ignore[attr-defined]
        evidence=row.evidence,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        admin_response=row.admin_response,  # type: ignore[attr-defined]
        resolved_by=row.resolved_by,  # type: ignore[attr-defined]
        resolved_at=row.resolved_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MarketRepository:
    async def get_market_by_id(self, db: AsyncSession, market_id: str) -> Market | None:
        result = await db.execute(_GET_MARKET_SQL, {"market_id": market_id})
        row = result.fetchone()
        return _row_to_market(row) if row else None

    async def lock_market(self, db: AsyncSession, market_id: str) -> Market | None:
        result = await db.execute(_LOCK_MARKET_SQL, {"market_id": market_id})
        row = result.fetchone()
        return _row_to_market(row) if row else None

    async def list_markets(
        self,
        db: AsyncSession,
        status: str | None,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Market]:
        result = await db.execute(
            _LIST_MARKETS_SQL,
            {
                "status": status,
                "cursor_ts": cursor_ts,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return [_row_to_market(r) for r in result.fetchall()]

    async def insert_market(
        self,
        db: AsyncSession,
        title: str,
        pool: Pool,
        yes_price: Decimal,
        no_price: Decimal,
        resolve_time: datetime | None,
    ) -> Market:
        result = await db.execute(
            _INSERT_MARKET_SQL,
            {
                "title": title,
                "yes_shares": pool.yes_shares,
                "no_shares": pool.no_shares,
                "k": pool.k,
                "yes_price": yes_price,
                "no_price": no_price,
                "resolve_time": resolve_time,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Market insert returned no rows")
        return _row_to_market(row)

    async def update_pool(
        self,
        db: AsyncSession,
        market_id: str,
        pool: Pool,
        yes_price: Decimal,
        no_price: Decimal,
        volume_delta: int,
    ) -> None:
        await db.execute(
            _UPDATE_POOL_SQL,
            {
                "market_id": market_id,
                "yes_shares": pool.yes_shares,
                "no_shares": pool.no_shares,
                "yes_price": yes_price,
                "no_price": no_price,
                "volume_delta": volume_delta,
            },
        )

    async def mark_resolved(
        self,
        db: AsyncSession,
        market_id: str,
        outcome: str,
        dispute_deadline: datetime,
    ) -> bool:
        result = await db.execute(
            _MARK_RESOLVED_SQL,
            {
                "market_id": market_id,
                "outcome": outcome,
                "dispute_deadline": dispute_deadline,
            },
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def claim_finalization(self, db: AsyncSession, market_id: str) -> bool:
        result = await db.execute(_CLAIM_FINALIZATION_SQL, {"market_id": market_id})
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_finalized(self, db: AsyncSession, market_id: str) -> None:
        await db.execute(_MARK_FINALIZED_SQL, {"market_id": market_id})

    async def revert_finalization(self, db: AsyncSession, market_id: str) -> None:
        await db.execute(_REVERT_FINALIZATION_SQL, {"market_id": market_id})

    async def list_finalizable(self, db: AsyncSession, limit: int) -> list[str]:
        result = await db.execute(_LIST_FINALIZABLE_SQL, {"limit": limit})
        return [str(r.id) for r in result.fetchall()]

    # --- disputes ---------------------------------------------------------

    async def mark_disputed(self, db: AsyncSession, market_id: str) -> bool:
        result = await db.execute(_MARK_DISPUTED_SQL, {"market_id": market_id})
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def clear_disputed(self, db: AsyncSession, market_id: str) -> bool:
        result = await db.execute(_CLEAR_DISPUTED_SQL, {"market_id": market_id})
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def overturn_resolution(
        self,
        db: AsyncSession,
        market_id: str,
        outcome: str,
        dispute_deadline: datetime,
    ) -> bool:
        result = await db.execute(
            _OVERTURN_RESOLUTION_SQL,
            {"market_id": market_id, "outcome": outcome, "dispute_deadline": dispute_deadline},
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def insert_dispute(
        self,
        db: AsyncSession,
        market_id: str,
        user_id: str,
        reason: str,
        evidence: str | None,
    ) -> MarketDispute:
        result = await db.execute(
            _INSERT_DISPUTE_SQL,
            {"market_id": market_id, "user_id": user_id, "reason": reason, "evidence": evidence},
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Dispute insert returned no rows")
        return _row_to_dispute(row)

    async def has_open_dispute(self, db: AsyncSession, market_id: str, user_id: str) -> bool:
        result = await db.execute(
            _HAS_OPEN_DISPUTE_SQL, {"market_id": market_id, "user_id": user_id}
        )
        return result.fetchone() is not None

    async def count_open_disputes(self, db: AsyncSession, market_id: str) -> int:
        result = await db.execute(_COUNT_OPEN_DISPUTES_SQL, {"market_id": market_id})
        return int(result.scalar_one())

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> MarketDispute | None:
        result = await db.execute(_GET_DISPUTE_SQL, {"dispute_id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def lock_dispute(self, db: AsyncSession, dispute_id: str) -> MarketDispute | None:
        result = await db.execute(_LOCK_DISPUTE_SQL, {"dispute_id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def list_disputes(
        self,
        db: AsyncSession,
        market_id: str | None,
        status: str | None,
        limit: int,
    ) -> list[MarketDispute]:
        result = await db.execute(
            _LIST_DISPUTES_SQL, {"market_id": market_id, "status": status, "limit": limit}
        )
        return [_row_to_dispute(r) for r in result.fetchall()]

    async def close_dispute(
        self,
        db: AsyncSession,
        dispute_id: str,
        status: str,
        admin_response: str,
        resolved_by: str | None,
    ) -> bool:
        result = await db.execute(
            _CLOSE_DISPUTE_SQL,
            {
                "dispute_id": dispute_id,
                "status": status,
                "admin_response": admin_response,
                "resolved_by": resolved_by,
            },
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def reject_open_disputes(
        self, db: AsyncSession, market_id: str, admin_response: str
    ) -> int:
        result = await db.execute(
            _REJECT_OPEN_DISPUTES_SQL, {"market_id": market_id, "admin_response": admin_response}
        )
        return int(result.rowcount)  # type: ignore[attr-defined]
