"""
In-Memory Storage Implementation

Used by the test suite and as the fallback backend when no spreadsheet
is configured. Records are copied on the way in and on the way out so
callers can never mutate stored state behind the gateway's back.
"""

import itertools
import threading
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from allocation_ledger.services.storage.filters import (
    apply_patch,
    matches,
    paginate,
    require_filters,
    sort_records,
)
from allocation_ledger.services.storage.interface import (
    COLLECTION_MODELS,
    Collection,
    DuplicateError,
    Filters,
    PersistenceGateway,
    StorageError,
    primary_key,
)


class InMemoryGateway(PersistenceGateway):
    """Dictionary-backed gateway. Insertion order is preserved per collection."""

    def __init__(self):
        self._tables: dict[Collection, dict[str, BaseModel]] = {
            collection: {} for collection in Collection
        }
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()

    def _check_type(self, collection: Collection, record: BaseModel) -> None:
        expected = COLLECTION_MODELS[collection]
        if not isinstance(record, expected):
            raise StorageError(
                f"{collection.value} expects {expected.__name__}, got {type(record).__name__}"
            )

    async def get(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        with self._lock:
            rows = [
                record for record in self._tables[collection].values()
                if matches(record, filters)
            ]
            rows = paginate(sort_records(rows, order_by), limit, offset)
            return [record.model_copy(deep=True) for record in rows]

    async def count(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
    ) -> int:
        with self._lock:
            return sum(
                1 for record in self._tables[collection].values()
                if matches(record, filters)
            )

    async def insert(
        self,
        collection: Collection,
        record: BaseModel,
    ) -> BaseModel:
        self._check_type(collection, record)
        key = str(getattr(record, primary_key(collection)))

        with self._lock:
            table = self._tables[collection]
            if key in table:
                raise DuplicateError(f"{collection.value} record already exists: {key}")

            stored = record.model_copy(deep=True)
            if "seq" in type(stored).model_fields and stored.seq is None:
                stored.seq = next(self._sequence)
            table[key] = stored
            return stored.model_copy(deep=True)

    async def update(
        self,
        collection: Collection,
        filters: Filters,
        patch: dict[str, Any],
    ) -> int:
        require_filters(filters, "update")

        with self._lock:
            table = self._tables[collection]
            # Validate every patched row before writing any of them
            updated = {
                key: apply_patch(record, patch)
                for key, record in table.items()
                if matches(record, filters)
            }
            table.update(updated)
            return len(updated)

    async def delete(
        self,
        collection: Collection,
        filters: Filters,
    ) -> int:
        require_filters(filters, "delete")

        with self._lock:
            table = self._tables[collection]
            doomed = [key for key, record in table.items() if matches(record, filters)]
            for key in doomed:
                del table[key]
            return len(doomed)
