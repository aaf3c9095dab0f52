"""
Tests for interrupted operations and concurrent writers.

Each crash test interrupts an operation at one write, "restarts" with a
fresh ledger on the same storage and checks that recovery ends in the same
state as an uninterrupted run.
"""

import pytest
from decimal import Decimal

from allocation_ledger.config import LedgerSettings
from allocation_ledger.ledger import (
    AllocationLedger,
    ConcurrencyConflictError,
    LedgerOperationError,
)
from allocation_ledger.services.storage import Collection

from conftest import seed
from helpers import ConcurrentWriterGateway, balances, run


def restart(gateway, settings):
    return AllocationLedger(gateway, settings=settings)


def row_amounts(gateway):
    rows = run(gateway.get(Collection.TRANSACTIONS, order_by=["seq"]))
    return sorted(row.amount for row in rows)


CRASH_POINTS = [
    ("update", Collection.BANKS, 0),
    ("update", Collection.ALLOCATIONS, 0),
    # Progress record lost after a step landed: the step is replayed
    ("update", Collection.WRITE_INTENTS, 0),
    ("update", Collection.WRITE_INTENTS, 1),
]


class TestCrashRecovery:
    """Roll-forward of pending write intents."""

    @pytest.mark.parametrize("method, collection, skip", CRASH_POINTS)
    def test_withdraw_crash_then_recover(
        self, gateway, ledger_settings, seeded, method, collection, skip
    ):
        """Test that a recovered withdrawal matches an uninterrupted one."""
        ledger = AllocationLedger(gateway, settings=ledger_settings)
        gateway.fail(method, collection, skip=skip)

        with pytest.raises(LedgerOperationError):
            run(ledger.withdraw(seeded.goal.id, seeded.bank.id, Decimal("150")))

        report = run(restart(gateway, ledger_settings).recover_pending())

        assert report.is_clean
        assert len(report.recovered) == 1
        assert balances(gateway, seeded.bank.id, seeded.goal.id) == (
            Decimal("850.00"), Decimal("250.00")
        )
        assert row_amounts(gateway) == [Decimal("-150.00")]
        assert run(gateway.count(Collection.WRITE_INTENTS)) == 0

    @pytest.mark.parametrize("method, collection, skip", CRASH_POINTS + [
        ("insert", Collection.TRANSACTIONS, 0),
    ])
    def test_partial_return_crash_then_recover(
        self, gateway, ledger_settings, seeded, method, collection, skip
    ):
        """Test that a recovered partial return matches an uninterrupted one."""
        ledger = AllocationLedger(gateway, settings=ledger_settings)
        txn = run(ledger.withdraw(seeded.goal.id, seeded.bank.id, Decimal("150")))
        gateway.fail(method, collection, skip=skip)

        with pytest.raises(LedgerOperationError):
            run(ledger.return_money(txn, Decimal("50")))

        report = run(restart(gateway, ledger_settings).recover_pending())

        assert report.is_clean
        assert balances(gateway, seeded.bank.id, seeded.goal.id) == (
            Decimal("900.00"), Decimal("300.00")
        )
        assert row_amounts(gateway) == [Decimal("-100.00")]

    def test_split_withdraw_crash_then_recover(self, gateway, ledger_settings, seeded):
        """Test recovery of a multi-goal withdrawal interrupted late."""
        ledger = AllocationLedger(gateway, settings=ledger_settings)
        # Fail the second allocation decrement
        gateway.fail("update", Collection.ALLOCATIONS, skip=1)

        with pytest.raises(LedgerOperationError):
            run(ledger.withdraw_split(
                seeded.bank.id,
                {seeded.goal.id: Decimal("100"), seeded.other_goal.id: Decimal("50")},
            ))

        run(restart(gateway, ledger_settings).recover_pending())

        assert balances(gateway, seeded.bank.id, seeded.goal.id) == (
            Decimal("850.00"), Decimal("300.00")
        )
        _, laptop = balances(gateway, seeded.bank.id, seeded.other_goal.id)
        assert laptop == Decimal("250.00")
        assert row_amounts(gateway) == [Decimal("-100.00"), Decimal("-50.00")]

    def test_recover_twice_is_harmless(self, gateway, ledger_settings, seeded):
        """Test that running recovery again does nothing."""
        ledger = AllocationLedger(gateway, settings=ledger_settings)
        gateway.fail("update", Collection.ALLOCATIONS)
        with pytest.raises(LedgerOperationError):
            run(ledger.withdraw(seeded.goal.id, seeded.bank.id, Decimal("150")))

        run(ledger.recover_pending())
        report = run(ledger.recover_pending())

        assert report.recovered == []
        assert balances(gateway, seeded.bank.id, seeded.goal.id) == (
            Decimal("850.00"), Decimal("250.00")
        )

    def test_recovery_failure_is_reported(self, gateway, ledger_settings, seeded):
        """Test that an intent that keeps failing stays pending."""
        ledger = AllocationLedger(gateway, settings=ledger_settings)
        gateway.fail("update", Collection.ALLOCATIONS, times=2)
        with pytest.raises(LedgerOperationError) as info:
            run(ledger.withdraw(seeded.goal.id, seeded.bank.id, Decimal("150")))

        report = run(ledger.recover_pending())

        assert not report.is_clean
        assert str(info.value.intent_id) in report.failed
        assert len(run(ledger.pending_intents())) == 1

        # Storage healed: the next recovery finishes it
        report = run(ledger.recover_pending())
        assert report.recovered == [info.value.intent_id]

    def test_no_pending_intents(self, ledger, seeded):
        """Test recovery with nothing to do."""
        report = run(ledger.recover_pending())
        assert report.is_clean
        assert report.recovered == []


class TestCompareAndSwap:
    """Lost-update protection on bank and allocation rows."""

    def test_stale_write_is_retried(self, ledger_settings):
        """Test that both a concurrent deposit and the withdrawal survive."""
        gateway = ConcurrentWriterGateway(races=1, delta=Decimal("100.00"))
        data = seed(gateway)
        ledger = AllocationLedger(gateway, settings=ledger_settings)

        run(ledger.withdraw(data.goal.id, data.bank.id, Decimal("150")))

        bank, allocation = balances(gateway, data.bank.id, data.goal.id)
        assert bank == Decimal("950.00")
        assert allocation == Decimal("250.00")

    def test_retries_exhausted_raise_conflict(self, ledger_settings):
        """Test that a row that never settles fails the operation, recoverably."""
        gateway = ConcurrentWriterGateway(races=3, delta=Decimal("100.00"))
        data = seed(gateway)
        ledger = AllocationLedger(gateway, settings=ledger_settings)

        with pytest.raises(ConcurrencyConflictError) as info:
            run(ledger.withdraw(data.goal.id, data.bank.id, Decimal("150")))

        assert info.value.completed_steps == 1
        assert info.value.intent_id is not None

        run(ledger.recover_pending())
        bank, allocation = balances(gateway, data.bank.id, data.goal.id)
        assert bank == Decimal("1150.00")
        assert allocation == Decimal("250.00")

    def test_retry_limit_follows_settings(self):
        """Test that LEDGER_MAX_WRITE_RETRIES bounds the attempts."""
        gateway = ConcurrentWriterGateway(races=3, delta=Decimal("1.00"))
        data = seed(gateway)
        ledger = AllocationLedger(gateway, settings=LedgerSettings(max_write_retries=4))

        run(ledger.withdraw(data.goal.id, data.bank.id, Decimal("10")))

        bank, _ = balances(gateway, data.bank.id, data.goal.id)
        assert bank == Decimal("993.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
