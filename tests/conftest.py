"""Shared fixtures: settings, gateways and a seeded ledger."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from allocation_ledger.audit import AuditLogger
from allocation_ledger.config import LedgerSettings
from allocation_ledger.ledger import AllocationLedger
from allocation_ledger.models import Allocation, Bank, Goal
from allocation_ledger.services.storage import Collection, GatewayAuditStorage, InMemoryGateway

from helpers import FlakyGateway, RecordingShell, run


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        currency="MAD",
        page_size=15,
        max_write_retries=3,
        write_intent_log=True,
        preserve_partial_remainder=True,
    )


@pytest.fixture
def gateway():
    return FlakyGateway()


def seed(gateway: InMemoryGateway) -> SimpleNamespace:
    """
    Main Bank (1000) holds Travel 400 and Laptop 300.
    Savings Bank (500) holds Travel 200.
    """
    data = SimpleNamespace(
        bank=Bank(name="Main Bank", owner_id="alice", balance=Decimal("1000.00")),
        other_bank=Bank(name="Savings Bank", owner_id="alice", balance=Decimal("500.00")),
        goal=Goal(name="Travel", owner_id="alice"),
        other_goal=Goal(name="Laptop", owner_id="alice"),
    )
    data.allocation = Allocation(
        goal_id=data.goal.id, bank_id=data.bank.id, amount=Decimal("400.00")
    )
    data.other_allocation = Allocation(
        goal_id=data.other_goal.id, bank_id=data.bank.id, amount=Decimal("300.00")
    )
    data.savings_allocation = Allocation(
        goal_id=data.goal.id, bank_id=data.other_bank.id, amount=Decimal("200.00")
    )

    async def _insert():
        await gateway.insert(Collection.BANKS, data.bank)
        await gateway.insert(Collection.BANKS, data.other_bank)
        await gateway.insert(Collection.GOALS, data.goal)
        await gateway.insert(Collection.GOALS, data.other_goal)
        await gateway.insert(Collection.ALLOCATIONS, data.allocation)
        await gateway.insert(Collection.ALLOCATIONS, data.other_allocation)
        await gateway.insert(Collection.ALLOCATIONS, data.savings_allocation)

    run(_insert())
    return data


@pytest.fixture
def seeded(gateway):
    return seed(gateway)


@pytest.fixture
def ledger(gateway, ledger_settings):
    return AllocationLedger(gateway, settings=ledger_settings)


@pytest.fixture
def shell():
    return RecordingShell(answer=True)


@pytest.fixture
def audit_logger(gateway):
    return AuditLogger(GatewayAuditStorage(gateway))
