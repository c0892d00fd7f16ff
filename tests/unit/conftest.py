"""In-memory repositories for service-level tests.

They mirror the conditional-UPDATE semantics of the SQL repositories
(debit only when funds suffice, settlement claim only when settled_at is
NULL) and yield to the event loop on reads so concurrent callers interleave.
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.pm_account.domain.models import Account
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import PaymentStatus
from src.pm_common.errors import InsufficientFundsError
from src.pm_payment.domain.models import MobilePayment


class InMemoryLedger:
    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.transactions: list[dict[str, Any]] = []
        self.revenue: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.credits: list[tuple[str, int]] = []
        self._tx_ids = itertools.count(1)

    async def get_account(self, db, user_id):
        if user_id not in self.balances:
            return None
        return Account(user_id=user_id, balance=self.balances[user_id], version=0)

    async def lock_account(self, db, user_id):
        self.balances.setdefault(user_id, 0)
        return Account(user_id=user_id, balance=self.balances[user_id], version=0)

    async def debit(self, db, user_id, amount):
        balance = self.balances.get(user_id, 0)
        if balance < amount:
            raise InsufficientFundsError(amount, balance)
        self.balances[user_id] = balance - amount
        return self.balances[user_id]

    async def credit(self, db, user_id, amount):
        await asyncio.sleep(0)
        self.credits.append((user_id, amount))
        self.balances[user_id] = self.balances.get(user_id, 0) + amount
        return self.balances[user_id]

    async def insert_transaction(
        self, db, user_id, tx_type, amount, fee_amount, balance_after, status, description,
        payment_id=None, market_id=None, metadata=None,
    ):
        tx_id = next(self._tx_ids)
        self.transactions.append(
            {
                "id": tx_id,
                "user_id": user_id,
                "type": tx_type,
                "amount": amount,
                "fee_amount": fee_amount,
                "balance_after": balance_after,
                "status": status,
                "payment_id": payment_id,
            }
        )
        return tx_id

    async def set_payment_transaction_status(self, db, payment_id, status):
        for tx in self.transactions:
            if tx["payment_id"] == payment_id and tx["status"] == "PROCESSING":
                tx["status"] = status

    async def insert_platform_revenue(
        self, db, fee_type, amount, source_type, source_id, user_id, description
    ):
        self.revenue.append(
            {"fee_type": fee_type, "amount": amount, "source_id": source_id, "user_id": user_id}
        )

    async def insert_notification(self, db, user_id, notification_type, title, message, metadata=None):
        self.notifications.append({"user_id": user_id, "type": notification_type, "title": title})


class InMemoryPayments:
    def __init__(self) -> None:
        self.payments: dict[str, MobilePayment] = {}
        self._ids = itertools.count(1)

    def add(self, **overrides: Any) -> MobilePayment:
        payment_id = overrides.pop("id", f"pay-{next(self._ids)}")
        payment = MobilePayment(
            id=payment_id,
            user_id=overrides.pop("user_id", "user-1"),
            type=overrides.pop("type", "WITHDRAWAL"),
            amount=overrides.pop("amount", 100_000),
            fee_amount=overrides.pop("fee_amount", 1_500),
            net_amount=overrides.pop("net_amount", 98_500),
            provider=overrides.pop("provider", "AIRTEL_MONEY"),
            phone_number=overrides.pop("phone_number", "971234567"),
            external_ref=overrides.pop("external_ref", f"BP-WDR-{payment_id}"),
            status=overrides.pop("status", "PROCESSING"),
            expires_at=overrides.pop("expires_at", utc_now() + timedelta(minutes=5)),
            **overrides,
        )
        self.payments[payment.id] = payment
        return payment

    async def insert_payment(
        self, db, user_id, payment_type, amount, fee_amount, net_amount, provider,
        phone_number, external_ref, status, expires_at,
    ):
        return replace(
            self.add(
                user_id=user_id,
                type=payment_type,
                amount=amount,
                fee_amount=fee_amount,
                net_amount=net_amount,
                provider=provider,
                phone_number=phone_number,
                external_ref=external_ref,
                status=status,
                expires_at=expires_at,
            )
        )

    async def get_payment(self, db, payment_id):
        await asyncio.sleep(0)
        payment = self.payments.get(payment_id)
        return replace(payment) if payment else None

    async def update_status(self, db, payment_id, status, status_message=None, external_id=None):
        payment = self.payments[payment_id]
        payment.status = status
        payment.status_message = status_message or payment.status_message
        payment.external_id = external_id or payment.external_id
        if status == PaymentStatus.COMPLETED:
            payment.completed_at = utc_now()

    async def record_callback(self, db, payment_id, status, status_message, external_id, callback_data):
        await self.update_status(db, payment_id, status, status_message, external_id)
        self.payments[payment_id].callback_received = True
        self.payments[payment_id].callback_data = callback_data

    async def claim_settlement(self, db, payment_id):
        payment = self.payments[payment_id]
        if payment.settled_at is not None:
            return False
        payment.settled_at = utc_now()
        return True

    async def release_settlement(self, db, payment_id):
        self.payments[payment_id].settled_at = None

    async def find_unsettled_by_reference(self, db, provider, references):
        for payment in self.payments.values():
            if payment.provider != provider or payment.settled_at is not None:
                continue
            if payment.external_ref in references or payment.external_id in references:
                return replace(payment)
        return None

    async def list_expired_unsettled(self, db, limit):
        now = utc_now()
        return [
            replace(p)
            for p in self.payments.values()
            if p.status in ("PENDING", "PROCESSING") and p.settled_at is None and p.expires_at < now
        ][:limit]

    async def list_pollable(self, db, limit):
        now = utc_now()
        return [
            replace(p)
            for p in self.payments.values()
            if p.status == "PROCESSING"
            and p.settled_at is None
            and not p.callback_received
            and p.expires_at >= now
        ][:limit]


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def payments() -> InMemoryPayments:
    return InMemoryPayments()


@pytest.fixture
def db() -> AsyncMock:
    """Session double: services only await commit / rollback on it."""
    return AsyncMock()


class DictRedis:
    """The Redis calls the idempotency guard makes, over a dict."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    async def eval(self, script: str, numkeys: int, key: str, expected: str) -> int:
        if self.store.get(key) == expected:
            del self.store[key]
            return 1
        return 0


@pytest.fixture
def redis() -> DictRedis:
    return DictRedis()
