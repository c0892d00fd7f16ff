"""LedgerRepository — concrete implementation of LedgerRepositoryProtocol.

Balance mutations are single conditional UPDATE ... RETURNING statements.
A result of 0 rows means a business constraint was violated (insufficient funds).

Transaction ownership: The CALLER (application service) is responsible for
committing or rolling back. Nothing here commits.
"""

import json
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_account.domain.models import Account, Position, Transaction
from src.pm_common.errors import InsufficientFundsError, InternalError

# ---------------------------------------------------------------------------
# SQL: accounts
# ---------------------------------------------------------------------------

_ENSURE_ACCOUNT_SQL = text("""
    INSERT INTO accounts (user_id)
    VALUES (:user_id)
    ON CONFLICT (user_id) DO NOTHING
""")

_LOCK_ACCOUNT_SQL = text("""
    SELECT user_id, balance, version, created_at, updated_at
    FROM accounts
    WHERE user_id = :user_id
    FOR UPDATE
""")

_GET_ACCOUNT_SQL = text("""
    SELECT user_id, balance, version, created_at, updated_at
    FROM accounts
    WHERE user_id = :user_id
""")

_CREDIT_SQL = text("""
    UPDATE accounts
    SET balance = balance + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id
    RETURNING balance
""")

_DEBIT_SQL = text("""
    UPDATE accounts
    SET balance = balance - :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND balance >= :amount
    RETURNING balance
""")

# ---------------------------------------------------------------------------
# SQL: append-only audit tables
# ---------------------------------------------------------------------------

_INSERT_TRANSACTION_SQL = text("""
    INSERT INTO transactions
        (user_id, type, amount, fee_amount, balance_after, status,
         description, payment_id, market_id, metadata)
    VALUES
        (:user_id, :type, :amount, :fee_amount, :balance_after, :status,
         :description, :payment_id, :market_id, CAST(:metadata AS JSONB))
    RETURNING id
""")

# The only mutation a transaction row ever sees: a withdrawal leaving PROCESSING.
_SET_PAYMENT_TX_STATUS_SQL = text("""
    UPDATE transactions
    SET status = :status
    WHERE payment_id = :payment_id AND status = 'PROCESSING'
""")

_INSERT_REVENUE_SQL = text("""
    INSERT INTO platform_revenue
        (fee_type, amount, source_type, source_id, user_id, description)
    VALUES
        (:fee_type, :amount, :source_type, :source_id, :user_id, :description)
""")

_INSERT_NOTIFICATION_SQL = text("""
    INSERT INTO notifications (user_id, type, title, message, metadata)
    VALUES (:user_id, :type, :title, :message, CAST(:metadata AS JSONB))
""")

_LIST_TRANSACTIONS_SQL = text("""
    SELECT id, user_id, type, amount, fee_amount, balance_after, status,
           description, payment_id, market_id, metadata, created_at
    FROM transactions
    WHERE user_id = :user_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < CAST(:cursor_id AS BIGINT))
      AND (CAST(:tx_type AS VARCHAR) IS NULL OR type = CAST(:tx_type AS VARCHAR))
    ORDER BY id DESC
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# SQL: positions
# ---------------------------------------------------------------------------

_POSITION_COLUMNS = """
    id, user_id, market_id, outcome, size, average_price, realized_pnl_ngwee, is_closed
"""

_LOCK_POSITION_SQL = text(f"""
    SELECT {_POSITION_COLUMNS}
    FROM positions
    WHERE user_id = :user_id AND market_id = :market_id AND outcome = :outcome
    FOR UPDATE
""")

_UPSERT_POSITION_SQL = text(f"""
    INSERT INTO positions
        (user_id, market_id, outcome, size, average_price, realized_pnl_ngwee, is_closed)
    VALUES
        (:user_id, :market_id, :outcome, :size, :average_price, :realized_pnl, :is_closed)
    ON CONFLICT (user_id, market_id, outcome) DO UPDATE
        SET size = EXCLUDED.size,
            average_price = EXCLUDED.average_price,
            realized_pnl_ngwee = EXCLUDED.realized_pnl_ngwee,
            is_closed = EXCLUDED.is_closed,
            updated_at = NOW()
    RETURNING {_POSITION_COLUMNS}
""")

_LIST_OPEN_POSITIONS_SQL = text(f"""
    SELECT {_POSITION_COLUMNS}
    FROM positions
    WHERE market_id = :market_id AND is_closed = FALSE AND size > 0
    ORDER BY user_id
    FOR UPDATE
""")


def _row_to_account(row: object) -> Account:
    return Account(
        user_id=row.user_id,  # type: ignore[attr-defined]
        balance=row.balance,  # type: ignore[attr-defined]
        version=row.version,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_position(row: object) -> Position:
    return Position(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        market_id=str(row.market_id),  # type: ignore[attr-defined]
        outcome=row.outcome,  # type: ignore[attr-defined]
        size=Decimal(row.size),  # type: ignore[attr-defined]
        average_price=Decimal(row.average_price),  # type: ignore[attr-defined]
        realized_pnl=row.realized_pnl_ngwee,  # type: ignore[attr-defined]
        is_closed=row.is_closed,  # type: ignore[attr-defined]
    )


def _row_to_transaction(row: object) -> Transaction:
    return Transaction(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        fee_amount=row.fee_amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        payment_id=str(row.payment_id) if row.payment_id else None,  # type: ignore[attr-defined]
        market_id=str(row.market_id) if row.market_id else None,  # type: ignore[attr-defined]
        metadata=row.metadata or {},  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class LedgerRepository:
    """Concrete repository over accounts, positions and the audit tables."""

    async def get_account(self, db: AsyncSession, user_id: str) -> Account | None:
        result = await db.execute(_GET_ACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_account(row) if row else None

    async def lock_account(self, db: AsyncSession, user_id: str) -> Account:
        """Lock the caller's account row, creating an empty one on first use."""
        await db.execute(_ENSURE_ACCOUNT_SQL, {"user_id": user_id})
        result = await db.execute(_LOCK_ACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Account row missing after upsert for user {user_id}")
        return _row_to_account(row)

    async def debit(self, db: AsyncSession, user_id: str, amount: int) -> int:
        result = await db.execute(_DEBIT_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            account = await self.get_account(db, user_id)
            raise InsufficientFundsError(amount, account.balance if account else 0)
        return row.balance

    async def credit(self, db: AsyncSession, user_id: str, amount: int) -> int:
        await db.execute(_ENSURE_ACCOUNT_SQL, {"user_id": user_id})
        result = await db.execute(_CREDIT_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Account not found for user {user_id}")
        return row.balance

    async def insert_transaction(
        self,
        db: AsyncSession,
        user_id: str,
        tx_type: str,
        amount: int,
        fee_amount: int,
        balance_after: int,
        status: str,
        description: str,
        payment_id: str | None = None,
        market_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        result = await db.execute(
            _INSERT_TRANSACTION_SQL,
            {
                "user_id": user_id,
                "type": tx_type,
                "amount": amount,
                "fee_amount": fee_amount,
                "balance_after": balance_after,
                "status": status,
                "description": description,
                "payment_id": payment_id,
                "market_id": market_id,
                "metadata": json.dumps(metadata or {}),
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Transaction insert returned no rows")
        return row.id

    async def set_payment_transaction_status(
        self, db: AsyncSession, payment_id: str, status: str
    ) -> int:
        result = await db.execute(
            _SET_PAYMENT_TX_STATUS_SQL, {"payment_id": payment_id, "status": status}
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def insert_platform_revenue(
        self,
        db: AsyncSession,
        fee_type: str,
        amount: int,
        source_type: str,
        source_id: str,
        user_id: str | None,
        description: str,
    ) -> None:
        await db.execute(
            _INSERT_REVENUE_SQL,
            {
                "fee_type": fee_type,
                "amount": amount,
                "source_type": source_type,
                "source_id": source_id,
                "user_id": user_id,
                "description": description,
            },
        )

    async def insert_notification(
        self,
        db: AsyncSession,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await db.execute(
            _INSERT_NOTIFICATION_SQL,
            {
                "user_id": user_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "metadata": json.dumps(metadata or {}),
            },
        )

    async def lock_position(
        self, db: AsyncSession, user_id: str, market_id: str, outcome: str
    ) -> Position | None:
        result = await db.execute(
            _LOCK_POSITION_SQL,
            {"user_id": user_id, "market_id": market_id, "outcome": outcome},
        )
        row = result.fetchone()
        return _row_to_position(row) if row else None

    async def save_position(self, db: AsyncSession, position: Position) -> Position:
        result = await db.execute(
            _UPSERT_POSITION_SQL,
            {
                "user_id": position.user_id,
                "market_id": position.market_id,
                "outcome": position.outcome,
                "size": position.size,
                "average_price": position.average_price,
                "realized_pnl": position.realized_pnl,
                "is_closed": position.is_closed,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Position upsert returned no rows")
        return _row_to_position(row)

    async def list_open_positions(
        self, db: AsyncSession, market_id: str
    ) -> list[Position]:
        result = await db.execute(_LIST_OPEN_POSITIONS_SQL, {"market_id": market_id})
        return [_row_to_position(r) for r in result.fetchall()]

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        tx_type: str | None,
    ) -> list[Transaction]:
        result = await db.execute(
            _LIST_TRANSACTIONS_SQL,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "limit": limit,
                "tx_type": tx_type,
            },
        )
        return [_row_to_transaction(r) for r in result.fetchall()]
