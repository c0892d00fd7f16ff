"""AccountApplicationService — read-only views over the ledger.

Balance changes only ever happen inside trade, payment settlement and
market finalization; this service never writes.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.pm_account.application.schemas import (
    BalanceResponse,
    TransactionItem,
    TransactionListResponse,
    cursor_decode,
    cursor_encode,
)
from src.pm_account.domain.repository import LedgerRepositoryProtocol
from src.pm_account.infrastructure.persistence import LedgerRepository
from src.pm_common.ngwee import ngwee_to_display


class AccountApplicationService:
    def __init__(self, repo: LedgerRepositoryProtocol | None = None) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()

    async def get_balance(self, db: AsyncSession, user_id: str) -> BalanceResponse:
        account = await self._repo.get_account(db, user_id)
        # No account row yet means the user has never been credited
        return BalanceResponse.from_ngwee(user_id, account.balance if account else 0)

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: str | None,
        limit: int,
        tx_type: str | None,
    ) -> TransactionListResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        rows = await self._repo.list_transactions(db, user_id, cursor_id, limit + 1, tx_type)
        has_more = len(rows) > limit
        page = rows[:limit]

        items = [
            TransactionItem(
                id=t.id,
                type=t.type,
                status=t.status,
                amount_ngwee=t.amount,
                amount_display=ngwee_to_display(t.amount),
                fee_ngwee=t.fee_amount,
                balance_after_ngwee=t.balance_after,
                balance_after_display=ngwee_to_display(t.balance_after),
                description=t.description,
                payment_id=t.payment_id,
                market_id=t.market_id,
                metadata=t.metadata,
                created_at=t.created_at.isoformat() if t.created_at else "",
            )
            for t in page
        ]

        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return TransactionListResponse(items=items, next_cursor=next_cursor, has_more=has_more)
