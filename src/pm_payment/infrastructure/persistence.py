"""PaymentRepository — concrete implementation of PaymentRepositoryProtocol.

mobile_payments rows are never deleted. settled_at is the exactly-once
guard: claim_settlement is a single conditional UPDATE and only the caller
that sees rowcount 1 may move money.

Transaction ownership: The CALLER commits. claim_settlement in particular
must be committed on its own before any ledger work starts.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_common.errors import InternalError
from src.pm_payment.domain.models import MobilePayment

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_PAYMENT_COLUMNS = """
    id, user_id, type, amount, fee_amount, net_amount, provider, phone_number,
    external_ref, external_id, status, status_message, expires_at,
    callback_received, callback_data, completed_at, settled_at,
    created_at, updated_at
"""

_INSERT_PAYMENT_SQL = text(f"""
    INSERT INTO mobile_payments
        (user_id, type, amount, fee_amount, net_amount, provider, phone_number,
         external_ref, status, expires_at)
    VALUES
        (:user_id, :type, :amount, :fee_amount, :net_amount, :provider, :phone_number,
         :external_ref, :status, :expires_at)
    RETURNING {_PAYMENT_COLUMNS}
""")

_GET_PAYMENT_SQL = text(f"""
    SELECT {_PAYMENT_COLUMNS}
    FROM mobile_payments
    WHERE id = :payment_id
""")

_UPDATE_STATUS_SQL = text("""
    UPDATE mobile_payments
    SET status = CAST(:status AS VARCHAR),
        status_message = COALESCE(CAST(:status_message AS TEXT), status_message),
        external_id = COALESCE(CAST(:external_id AS TEXT), external_id),
        completed_at = CASE WHEN CAST(:status AS VARCHAR) = 'COMPLETED' THEN NOW() ELSE completed_at END,
        updated_at = NOW()
    WHERE id = :payment_id
""")

_RECORD_CALLBACK_SQL = text("""
    UPDATE mobile_payments
    SET status = CAST(:status AS VARCHAR),
        status_message = COALESCE(CAST(:status_message AS TEXT), status_message),
        external_id = COALESCE(CAST(:external_id AS TEXT), external_id),
        callback_received = TRUE,
        callback_data = CAST(:callback_data AS JSONB),
        completed_at = CASE WHEN CAST(:status AS VARCHAR) = 'COMPLETED' THEN NOW() ELSE completed_at END,
        updated_at = NOW()
    WHERE id = :payment_id
""")

_CLAIM_SETTLEMENT_SQL = text("""
    UPDATE mobile_payments
    SET settled_at = NOW(), updated_at = NOW()
    WHERE id = :payment_id AND settled_at IS NULL
""")

_RELEASE_SETTLEMENT_SQL = text("""
    UPDATE mobile_payments
    SET settled_at = NULL, updated_at = NOW()
    WHERE id = :payment_id
""")

# Late callbacks are still honoured: match on settlement, not on status
_FIND_UNSETTLED_BY_REF_SQL = text(f"""
    SELECT {_PAYMENT_COLUMNS}
    FROM mobile_payments
    WHERE provider = :provider
      AND (external_ref = ANY(:refs) OR external_id = ANY(:refs))
      AND settled_at IS NULL
    ORDER BY created_at DESC
    LIMIT 1
""")

_LIST_EXPIRED_SQL = text(f"""
    SELECT {_PAYMENT_COLUMNS}
    FROM mobile_payments
    WHERE status IN ('PENDING', 'PROCESSING')
      AND settled_at IS NULL
      AND expires_at < NOW()
    ORDER BY expires_at
    LIMIT :limit
""")

_LIST_POLLABLE_SQL = text(f"""
    SELECT {_PAYMENT_COLUMNS}
    FROM mobile_payments
    WHERE status = 'PROCESSING'
      AND settled_at IS NULL
      AND callback_received = FALSE
      AND expires_at >= NOW()
    ORDER BY created_at
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_payment(row: object) -> MobilePayment:
    return MobilePayment(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        fee_amount=row.fee_amount,  # type: ignore[attr-defined]
        net_amount=row.net_amount,  # type: ignore[attr-defined]
        provider=row.provider,  # type: ignore[attr-defined]
        phone_number=row.phone_number,  # type: ignore[attr-defined]
        external_ref=row.external_ref,  # type: ignore[attr-defined]
        external_id=row.external_id,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        status_message=row.status_message,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
        callback_received=row.callback_received,  # type: ignore[attr-defined]
        callback_data=row.callback_data or {},  # type: ignore[attr-defined]
        completed_at=row.completed_at,  # type: ignore[attr-defined]
        settled_at=row.settled_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PaymentRepository:
    async def insert_payment(
        self,
        db: AsyncSession,
        user_id: str,
        payment_type: str,
        amount: int,
        fee_amount: int,
        net_amount: int,
        provider: str,
        phone_number: str,
        external_ref: str,
        status: str,
        expires_at: datetime,
    ) -> MobilePayment:
        result = await db.execute(
            _INSERT_PAYMENT_SQL,
            {
                "user_id": user_id,
                "type": payment_type,
                "amount": amount,
                "fee_amount": fee_amount,
                "net_amount": net_amount,
                "provider": provider,
                "phone_number": phone_number,
                "external_ref": external_ref,
                "status": status,
                "expires_at": expires_at,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Payment insert returned no rows")
        return _row_to_payment(row)

    async def get_payment(self, db: AsyncSession, payment_id: str) -> MobilePayment | None:
        result = await db.execute(_GET_PAYMENT_SQL, {"payment_id": payment_id})
        row = result.fetchone()
        return _row_to_payment(row) if row else None

    async def update_status(
        self,
        db: AsyncSession,
        payment_id: str,
        status: str,
        status_message: str | None = None,
        external_id: str | None = None,
    ) -> None:
        await db.execute(
            _UPDATE_STATUS_SQL,
            {
                "payment_id": payment_id,
                "status": status,
                "status_message": status_message,
                "external_id": external_id,
            },
        )

    async def record_callback(
        self,
        db: AsyncSession,
        payment_id: str,
        status: str,
        status_message: str | None,
        external_id: str | None,
        callback_data: dict[str, Any],
    ) -> None:
        await db.execute(
            _RECORD_CALLBACK_SQL,
            {
                "payment_id": payment_id,
                "status": status,
                "status_message": status_message,
                "external_id": external_id,
                "callback_data": json.dumps(callback_data, default=str),
            },
        )

    async def claim_settlement(self, db: AsyncSession, payment_id: str) -> bool:
        result = await db.execute(_CLAIM_SETTLEMENT_SQL, {"payment_id": payment_id})
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def release_settlement(self, db: AsyncSession, payment_id: str) -> None:
        await db.execute(_RELEASE_SETTLEMENT_SQL, {"payment_id": payment_id})

    async def find_unsettled_by_reference(
        self, db: AsyncSession, provider: str, references: list[str]
    ) -> MobilePayment | None:
        if not references:
            return None
        result = await db.execute(
            _FIND_UNSETTLED_BY_REF_SQL, {"provider": provider, "refs": references}
        )
        row = result.fetchone()
        return _row_to_payment(row) if row else None

    async def list_expired_unsettled(self, db: AsyncSession, limit: int) -> list[MobilePayment]:
        result = await db.execute(_LIST_EXPIRED_SQL, {"limit": limit})
        return [_row_to_payment(r) for r in result.fetchall()]

    async def list_pollable(self, db: AsyncSession, limit: int) -> list[MobilePayment]:
        result = await db.execute(_LIST_POLLABLE_SQL, {"limit": limit})
        return [_row_to_payment(r) for r in result.fetchall()]
