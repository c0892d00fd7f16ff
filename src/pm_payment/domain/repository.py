"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock (or an in-memory fake) that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_payment.domain.models import MobilePayment


class PaymentRepositoryProtocol(Protocol):
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
    ) -> MobilePayment: ...

    async def get_payment(self, db: AsyncSession, payment_id: str) -> MobilePayment | None: ...

    async def update_status(
        self,
        db: AsyncSession,
        payment_id: str,
        status: str,
        status_message: str | None = None,
        external_id: str | None = None,
    ) -> None: ...

    async def record_callback(
        self,
        db: AsyncSession,
        payment_id: str,
        status: str,
        status_message: str | None,
        external_id: str | None,
        callback_data: dict[str, Any],
    ) -> None: ...

    async def claim_settlement(self, db: AsyncSession, payment_id: str) -> bool: ...

    async def release_settlement(self, db: AsyncSession, payment_id: str) -> None: ...

    async def find_unsettled_by_reference(
        self, db: AsyncSession, provider: str, references: list[str]
    ) -> MobilePayment | None: ...

    async def list_expired_unsettled(self, db: AsyncSession, limit: int) -> list[MobilePayment]: ...

    async def list_pollable(self, db: AsyncSession, limit: int) -> list[MobilePayment]: ...
