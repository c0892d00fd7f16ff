"""Unit tests for SettlementService against in-memory repositories."""

import asyncio
from datetime import UTC, datetime

from src.pm_common.enums import FeeType, PaymentStatus, TransactionStatus
from src.pm_settlement.application.service import SettlementService


def _withdrawal(payments, ledger, **overrides):
    """A K1,000 withdrawal already debited: 1.5% fee, K985 on the rail."""
    payment = payments.add(**overrides)
    ledger.balances[payment.user_id] = 0
    ledger.transactions.append(
        {
            "id": 0,
            "user_id": payment.user_id,
            "type": "WITHDRAWAL",
            "amount": -payment.amount,
            "fee_amount": payment.fee_amount,
            "balance_after": 0,
            "status": "PROCESSING",
            "payment_id": payment.id,
        }
    )
    return payment


class TestWithdrawalFailed:
    async def test_refund_and_fee_reversal(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        result = await svc.settle_withdrawal_failed(db, payment.id, "Subscriber not found")

        assert result.settled
        assert ledger.balances["user-1"] == 100_000
        assert ledger.revenue == [
            {
                "fee_type": FeeType.WITHDRAWAL_FEE_REVERSAL,
                "amount": -1_500,
                "source_id": payment.id,
                "user_id": "user-1",
            }
        ]
        assert ledger.transactions[0]["status"] == TransactionStatus.FAILED
        assert payments.payments[payment.id].status == PaymentStatus.FAILED
        assert payments.payments[payment.id].settled_at is not None
        assert ledger.notifications[0]["title"] == "Withdrawal Failed"

    async def test_concurrent_calls_settle_exactly_once(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        results = await asyncio.gather(
            *(svc.settle_withdrawal_failed(db, payment.id, "timeout") for _ in range(5))
        )

        assert sum(r.settled for r in results) == 1
        assert sum(r.already_settled for r in results) == 4
        assert ledger.credits == [("user-1", 100_000)]
        assert len(ledger.revenue) == 1

    async def test_webhook_and_poller_race(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        webhook, poller = await asyncio.gather(
            svc.dispatch(db, payment.id, "WITHDRAWAL", PaymentStatus.FAILED, "TF"),
            svc.settle_withdrawal_failed(db, payment.id, "expired"),
        )

        assert webhook.settled != poller.settled
        assert ledger.credits == [("user-1", 100_000)]

    async def test_already_settled_is_noop(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger, settled_at=datetime.now(UTC))
        svc = SettlementService(payments, ledger)

        result = await svc.settle_withdrawal_failed(db, payment.id)

        assert result.already_settled
        assert ledger.credits == []

    async def test_mutation_failure_releases_claim(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)

        async def broken_credit(*args, **kwargs):
            raise RuntimeError("connection lost")

        ledger.credit = broken_credit
        svc = SettlementService(payments, ledger)

        result = await svc.settle_withdrawal_failed(db, payment.id)

        assert not result.settled
        assert result.error
        assert payments.payments[payment.id].settled_at is None
        db.rollback.assert_awaited()


class TestWithdrawalCompleted:
    async def test_completes_without_moving_money(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        result = await svc.settle_withdrawal_completed(db, payment.id)

        assert result.settled
        assert ledger.credits == []
        assert ledger.transactions[0]["status"] == TransactionStatus.COMPLETED
        assert payments.payments[payment.id].status == PaymentStatus.COMPLETED


class TestDeposit:
    async def test_completed_credits_net_amount(self, db, payments, ledger) -> None:
        payment = payments.add(type="DEPOSIT", amount=50_000, fee_amount=0, net_amount=50_000)
        svc = SettlementService(payments, ledger)

        result = await svc.settle_deposit_completed(db, payment.id)

        assert result.settled
        assert ledger.balances["user-1"] == 50_000
        assert ledger.transactions[-1]["amount"] == 50_000
        assert ledger.transactions[-1]["payment_id"] == payment.id
        assert payments.payments[payment.id].status == PaymentStatus.COMPLETED

    async def test_failed_moves_no_money(self, db, payments, ledger) -> None:
        payment = payments.add(type="DEPOSIT", amount=50_000, fee_amount=0, net_amount=50_000)
        svc = SettlementService(payments, ledger)

        result = await svc.settle_deposit_failed(db, payment.id, "Insufficient funds")

        assert result.settled
        assert ledger.credits == []
        assert payments.payments[payment.id].status == PaymentStatus.FAILED

    async def test_wrong_type_is_reported(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        result = await svc.settle_deposit_completed(db, payment.id)

        assert result.error
        assert payments.payments[payment.id].settled_at is None


class TestDispatch:
    async def test_non_terminal_status_is_ignored(self, db, payments, ledger) -> None:
        payment = _withdrawal(payments, ledger)
        svc = SettlementService(payments, ledger)

        assert await svc.dispatch(db, payment.id, "WITHDRAWAL", PaymentStatus.PROCESSING) is None
        assert payments.payments[payment.id].settled_at is None

    async def test_unknown_payment(self, db, payments, ledger) -> None:
        svc = SettlementService(payments, ledger)
        result = await svc.settle_withdrawal_failed(db, "missing")
        assert result.error == "Payment not found"
