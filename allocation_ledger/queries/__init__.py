"""Transaction history queries and selection helpers."""

from allocation_ledger.queries.transactions import (
    QueryError,
    TransactionQuery,
    last_valid_page,
    selected_rows,
    summarize_selection,
    toggle_select_all,
)

__all__ = [
    "QueryError",
    "TransactionQuery",
    "last_valid_page",
    "selected_rows",
    "summarize_selection",
    "toggle_select_all",
]
