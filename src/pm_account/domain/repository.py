"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_account.domain.models import Account, Position, Transaction


class LedgerRepositoryProtocol(Protocol):
    async def get_account(self, db: AsyncSession, user_id: str) -> Account | None: ...

    async def lock_account(self, db: AsyncSession, user_id: str) -> Account: ...

    async def debit(self, db: AsyncSession, user_id: str, amount: int) -> int: ...

    async def credit(self, db: AsyncSession, user_id: str, amount: int) -> int: ...

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
    ) -> int: ...

    async def set_payment_transaction_status(
        self, db: AsyncSession, payment_id: str, status: str
    ) -> int: ...

    async def insert_platform_revenue(
        self,
        db: AsyncSession,
        fee_type: str,
        amount: int,
        source_type: str,
        source_id: str,
        user_id: str | None,
        description: str,
    ) -> None: ...

    async def insert_notification(
        self,
        db: AsyncSession,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def lock_position(
        self, db: AsyncSession, user_id: str, market_id: str, outcome: str
    ) -> Position | None: ...

    async def save_position(self, db: AsyncSession, position: Position) -> Position: ...

    async def list_open_positions(
        self, db: AsyncSession, market_id: str
    ) -> list[Position]: ...

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        tx_type: str | None,
    ) -> list[Transaction]: ...
