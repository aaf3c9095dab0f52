"""
Test doubles shared by the test modules.

- run(): drive a coroutine from a plain (sync) test
- FlakyGateway: in-memory gateway with injectable write failures
- ConcurrentWriterGateway: bumps a row just before the ledger's update
- RecordingShell: scripted confirmations, recorded notifications
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from allocation_ledger.services.shell import InteractionShell
from allocation_ledger.services.storage import (
    Collection,
    Filters,
    InMemoryGateway,
    StorageError,
)


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


def balances(gateway: InMemoryGateway, bank_id: UUID, goal_id: UUID) -> tuple[Decimal, Decimal]:
    """(bank balance, allocation amount) of a pair."""
    async def _read():
        bank = await gateway.get_by_id(Collection.BANKS, bank_id)
        allocation = await gateway.get_one(
            Collection.ALLOCATIONS, {"bank_id": bank_id, "goal_id": goal_id}
        )
        return bank.balance, allocation.amount

    return run(_read())


class FlakyGateway(InMemoryGateway):
    """
    Raises StorageError on selected calls.

    fail("update", Collection.BANKS, skip=1) lets the first bank update
    through and fails the second one.
    """

    def __init__(self):
        super().__init__()
        self._faults: list[dict] = []
        self.calls: list[tuple[str, Collection]] = []

    def fail(self, method: str, collection: Collection, skip: int = 0, times: int = 1):
        self._faults.append({
            "method": method,
            "collection": collection,
            "skip": skip,
            "times": times,
        })

    def _maybe_fail(self, method: str, collection: Collection):
        self.calls.append((method, collection))
        for fault in self._faults:
            if fault["method"] != method or fault["collection"] != collection:
                continue
            if fault["times"] <= 0:
                continue
            if fault["skip"] > 0:
                fault["skip"] -= 1
                continue
            fault["times"] -= 1
            raise StorageError(f"injected {method} failure on {collection.value}")

    def writes(self) -> list[tuple[str, Collection]]:
        return [call for call in self.calls if call[0] != "get" and call[0] != "count"]

    async def get(self, collection, filters=None, **kwargs):
        self._maybe_fail("get", collection)
        return await super().get(collection, filters, **kwargs)

    async def count(self, collection, filters=None):
        self._maybe_fail("count", collection)
        return await super().count(collection, filters)

    async def insert(self, collection, record):
        self._maybe_fail("insert", collection)
        return await super().insert(collection, record)

    async def update(self, collection, filters, patch):
        self._maybe_fail("update", collection)
        return await super().update(collection, filters, patch)

    async def delete(self, collection, filters):
        self._maybe_fail("delete", collection)
        return await super().delete(collection, filters)


class ConcurrentWriterGateway(InMemoryGateway):
    """
    Simulates another writer: before the next `races` bank updates, adds
    `delta` to the bank's balance and bumps its version.
    """

    def __init__(self, races: int = 1, delta: Decimal = Decimal("100.00")):
        super().__init__()
        self.races = races
        self.delta = delta

    async def update(self, collection: Collection, filters: Filters, patch: dict[str, Any]) -> int:
        if collection == Collection.BANKS and self.races > 0 and "version" in filters:
            self.races -= 1
            bank = await self.get_by_id(Collection.BANKS, filters["id"])
            await super().update(
                Collection.BANKS,
                {"id": bank.id},
                {"balance": bank.balance + self.delta, "version": bank.version + 1},
            )
        return await super().update(collection, filters, patch)


class RecordingShell(InteractionShell):
    """Answers confirmations with a fixed decision and records everything."""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.confirmations: list[tuple[str, str]] = []
        self.successes: list[tuple[str, str]] = []
        self.errors: list[tuple[str, str]] = []

    async def confirm(self, title: str, message: str) -> bool:
        self.confirmations.append((title, message))
        return self.answer

    async def notify_success(self, title: str, message: str) -> None:
        self.successes.append((title, message))

    async def notify_error(self, title: str, message: str) -> None:
        self.errors.append((title, message))

    @property
    def last_error_title(self) -> Optional[str]:
        return self.errors[-1][0] if self.errors else None
