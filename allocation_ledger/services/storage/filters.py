"""
Row filtering shared by the storage backends.

Backends without a query language (memory, Google Sheets) load rows and
filter them in Python with these helpers, so every backend agrees on what
a filter means.
"""

import operator
from enum import Enum
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ValidationError

from allocation_ledger.services.storage.interface import Filters, StorageError


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "in": lambda value, options: value in options,
}


def parse_key(key: str) -> tuple[str, str]:
    """Split 'amount__lt' into ('amount', 'lt')."""
    field, sep, op = key.rpartition("__")
    if sep and op in OPERATORS:
        return field, op
    return key, "eq"


def _normalize(value: Any) -> Any:
    # Ids arrive as UUID or str depending on the caller
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def matches(record: BaseModel, filters: Optional[Filters]) -> bool:
    """True when the record satisfies every filter."""
    if not filters:
        return True

    for key, expected in filters.items():
        field, op = parse_key(key)
        if field not in type(record).model_fields:
            raise StorageError(f"Unknown filter field: {field}")

        actual = _normalize(getattr(record, field))
        if op == "in":
            expected = [_normalize(item) for item in expected]
        else:
            expected = _normalize(expected)

        if op not in ("eq", "ne", "in") and (actual is None or expected is None):
            return False
        if not OPERATORS[op](actual, expected):
            return False

    return True


def sort_records(
    records: list[BaseModel],
    order_by: Optional[Sequence[str]],
) -> list[BaseModel]:
    """Stable multi-key sort; '-field' sorts descending, None sorts last."""
    if not order_by:
        return list(records)

    result = list(records)
    for spec in reversed(order_by):
        descending = spec.startswith("-")
        field = spec.lstrip("-")
        present = [r for r in result if getattr(r, field) is not None]
        missing = [r for r in result if getattr(r, field) is None]
        present.sort(key=lambda r: getattr(r, field), reverse=descending)
        result = present + missing
    return result


def paginate(
    records: list[BaseModel],
    limit: Optional[int],
    offset: int,
) -> list[BaseModel]:
    if offset < 0:
        raise StorageError("Offset cannot be negative")
    if limit is None:
        return records[offset:]
    return records[offset:offset + limit]


def require_filters(filters: Optional[Filters], action: str) -> Filters:
    """Refuse update/delete calls that would touch every row."""
    if not filters:
        raise StorageError(f"Refusing unfiltered {action}")
    return filters


def apply_patch(record: BaseModel, patch: dict[str, Any]) -> BaseModel:
    """Return a validated copy of the record with the patch applied."""
    model = type(record)
    unknown = set(patch) - set(model.model_fields)
    if unknown:
        raise StorageError(f"Unknown fields in update: {sorted(unknown)}")

    try:
        return model.model_validate({**record.model_dump(), **patch})
    except ValidationError as e:
        raise StorageError(f"Update rejected: {e}") from e
