"""
Transaction History Queries

Read side of the ledger: paginated history joined with bank and goal
names, per-goal history, and the selection arithmetic behind batch return.

Ordering is always newest first (`created_at` descending) with the
gateway's insertion sequence breaking ties, so the same snapshot always
produces the same pages.

Rows whose bank or goal has disappeared are still shown, labelled
"Unknown Bank" / "Unknown Objective".
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from allocation_ledger.config import LedgerSettings, get_settings
from allocation_ledger.models.ledger import (
    UNKNOWN_BANK,
    UNKNOWN_GOAL,
    GoalHistory,
    SelectionSummary,
    Transaction,
    TransactionPage,
    TransactionView,
)
from allocation_ledger.services.storage import (
    Collection,
    Filters,
    PersistenceGateway,
    StorageError,
)


logger = structlog.get_logger(__name__)

HISTORY_ORDER = ["-created_at", "-seq"]


class QueryError(Exception):
    """Raised when a history query is invalid or storage cannot answer it."""
    pass


class TransactionQuery:
    """Read-only access to transaction history."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        settings: Optional[LedgerSettings] = None,
    ):
        self._gateway = gateway
        self._settings = settings or get_settings().ledger

    async def _names(
        self,
        collection: Collection,
        ids: set[UUID],
    ) -> dict[UUID, str]:
        if not ids:
            return {}
        records = await self._gateway.get(collection, {"id__in": list(ids)})
        return {record.id: record.name for record in records}

    async def _join(self, rows: list[Transaction]) -> list[TransactionView]:
        bank_names = await self._names(Collection.BANKS, {row.bank_id for row in rows})
        goal_names = await self._names(Collection.GOALS, {row.goal_id for row in rows})
        return [
            TransactionView(
                **row.model_dump(),
                bank_name=bank_names.get(row.bank_id, UNKNOWN_BANK),
                goal_name=goal_names.get(row.goal_id, UNKNOWN_GOAL),
            )
            for row in rows
        ]

    async def fetch(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        withdrawn_only: bool = False,
        owner_id: Optional[str] = None,
    ) -> TransactionPage:
        """
        Load one page of transaction history.

        Args:
            page: 1-based page number
            page_size: Rows per page (defaults to LEDGER_PAGE_SIZE)
            withdrawn_only: Only rows with a negative amount
            owner_id: Restrict to one owner's rows

        Returns:
            The page window plus the total row count for the filter

        Raises:
            QueryError: On an invalid page request or storage failure
        """
        if page_size is None:
            page_size = self._settings.page_size
        if page < 1:
            raise QueryError(f"Page must be at least 1, got {page}")
        if page_size < 1:
            raise QueryError(f"Page size must be at least 1, got {page_size}")

        filters: Filters = {}
        if withdrawn_only:
            filters["amount__lt"] = 0
        if owner_id:
            filters["owner_id"] = owner_id

        try:
            total_count = await self._gateway.count(Collection.TRANSACTIONS, filters)
            rows = await self._gateway.get(
                Collection.TRANSACTIONS,
                filters,
                order_by=HISTORY_ORDER,
                limit=page_size,
                offset=(page - 1) * page_size,
            )
            items = await self._join(rows)
        except StorageError as e:
            logger.error("history_query_failed", page=page, error=str(e))
            raise QueryError(str(e)) from e

        return TransactionPage(
            items=items,
            total_count=total_count,
            page=page,
            page_size=page_size,
            withdrawn_only=withdrawn_only,
        )

    async def list_for_goal(self, goal_id: UUID) -> GoalHistory:
        """All transactions of one goal, newest first, with their signed total."""
        try:
            goal = await self._gateway.get_by_id(Collection.GOALS, goal_id)
            rows = await self._gateway.get(
                Collection.TRANSACTIONS,
                {"goal_id": goal_id},
                order_by=HISTORY_ORDER,
            )
            items = await self._join(rows)
        except StorageError as e:
            raise QueryError(str(e)) from e

        return GoalHistory(
            goal_id=goal_id,
            goal_name=goal.name if goal else UNKNOWN_GOAL,
            items=items,
            total_amount=sum((row.amount for row in rows), Decimal("0")),
        )


# =============================================================================
# SELECTION
# =============================================================================

def _selectable(rows: Iterable[Transaction]) -> list[Transaction]:
    return [row for row in rows if row.is_withdrawal]


def selected_rows(
    selected_ids: Iterable[UUID],
    rows: Iterable[Transaction],
) -> list[Transaction]:
    """Selected withdrawals in display order. Credits are never selectable."""
    chosen = set(selected_ids)
    return [row for row in _selectable(rows) if row.id in chosen]


def summarize_selection(
    selected_ids: Iterable[UUID],
    rows: Iterable[Transaction],
) -> SelectionSummary:
    """
    Selection state of the loaded rows.

    `all_selected` is true only when there is at least one withdrawal and
    every withdrawal is selected. `selected_total` sums absolute amounts.
    """
    rows = list(rows)
    selectable = _selectable(rows)
    chosen = selected_rows(selected_ids, rows)
    return SelectionSummary(
        selected_count=len(chosen),
        selectable_count=len(selectable),
        all_selected=bool(selectable) and len(chosen) == len(selectable),
        selected_total=sum((row.magnitude for row in chosen), Decimal("0")),
    )


def toggle_select_all(
    selected_ids: Iterable[UUID],
    rows: Iterable[Transaction],
) -> set[UUID]:
    """Select every loaded withdrawal, or clear them if all are selected."""
    rows = list(rows)
    current = set(selected_ids)
    page_ids = {row.id for row in _selectable(rows)}
    if summarize_selection(current, rows).all_selected:
        return current - page_ids
    return current | page_ids


def last_valid_page(page: TransactionPage) -> int:
    """
    The page to show instead of `page` when its window ran past the end
    (e.g. after returning the last row of the final page).
    """
    return min(page.page, max(page.total_pages, 1))
