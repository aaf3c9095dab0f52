"""Tests for transaction history queries and selection helpers."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from allocation_ledger.models import Transaction, TransactionView
from allocation_ledger.queries import (
    QueryError,
    TransactionQuery,
    last_valid_page,
    selected_rows,
    summarize_selection,
    toggle_select_all,
)
from allocation_ledger.services.storage import Collection

from helpers import run


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def query(gateway, ledger_settings):
    return TransactionQuery(gateway, settings=ledger_settings)


def add(gateway, seeded, amount, minutes_ago=0, **kwargs):
    txn = Transaction(
        owner_id=kwargs.pop("owner_id", "alice"),
        goal_id=kwargs.pop("goal_id", seeded.goal.id),
        bank_id=kwargs.pop("bank_id", seeded.bank.id),
        amount=Decimal(amount),
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
        **kwargs,
    )
    return run(gateway.insert(Collection.TRANSACTIONS, txn))


class TestFetch:
    """Tests for paginated history."""

    def test_newest_first_with_names(self, query, gateway, seeded):
        """Test ordering and the bank/goal join."""
        old = add(gateway, seeded, "-10.00", minutes_ago=30)
        new = add(gateway, seeded, "-20.00", minutes_ago=0)

        page = run(query.fetch())

        assert [row.id for row in page.items] == [new.id, old.id]
        assert page.items[0].bank_name == "Main Bank"
        assert page.items[0].goal_name == "Travel"
        assert page.total_count == 2

    def test_ties_broken_by_insertion_order(self, query, gateway, seeded):
        """Test that rows with equal timestamps come out newest insert first."""
        rows = [add(gateway, seeded, "-1.00", minutes_ago=5) for _ in range(3)]

        page = run(query.fetch())
        assert [row.id for row in page.items] == [r.id for r in reversed(rows)]

    def test_withdrawn_only(self, query, gateway, seeded):
        """Test the filter keeps exactly the negative rows."""
        add(gateway, seeded, "-10.00")
        add(gateway, seeded, "25.00")
        add(gateway, seeded, "-5.00")

        page = run(query.fetch(withdrawn_only=True))

        assert page.total_count == 2
        assert all(row.amount < 0 for row in page.items)
        assert run(query.fetch()).total_count == 3

    def test_pagination_is_a_partition(self, query, gateway, seeded):
        """Test that pages are disjoint and cover every row in order."""
        for minute in range(7):
            add(gateway, seeded, "-1.00", minutes_ago=minute % 3)

        full = run(query.fetch(page_size=100))
        pages = [run(query.fetch(page=n, page_size=3)) for n in (1, 2, 3)]

        stitched = [row.id for page in pages for row in page.items]
        assert stitched == [row.id for row in full.items]
        assert [len(page.items) for page in pages] == [3, 3, 1]
        assert pages[0].has_more and not pages[2].has_more
        assert pages[0].total_pages == 3

    def test_page_past_the_end(self, query, gateway, seeded):
        """Test that a page beyond the data is empty, not an error."""
        add(gateway, seeded, "-1.00")
        page = run(query.fetch(page=5, page_size=15))
        assert page.items == []
        assert page.total_count == 1

    def test_emptied_last_page_steps_back(self, query, gateway, seeded):
        """Test the page to fall back to after the last row of a page is returned."""
        rows = [add(gateway, seeded, "-1.00", minutes_ago=m) for m in range(4)]
        assert last_valid_page(run(query.fetch(page=2, page_size=3))) == 2

        run(gateway.delete(Collection.TRANSACTIONS, {"id": rows[-1].id}))
        emptied = run(query.fetch(page=2, page_size=3))

        assert emptied.items == []
        assert last_valid_page(emptied) == 1

    def test_no_rows_left_falls_back_to_first_page(self, query):
        """Test that an empty history always lands on page 1."""
        assert last_valid_page(run(query.fetch(page=4))) == 1

    def test_default_page_size(self, query, gateway, seeded):
        """Test the configured page size of 15."""
        for minute in range(20):
            add(gateway, seeded, "-1.00", minutes_ago=minute)
        page = run(query.fetch())
        assert len(page.items) == 15
        assert page.page_size == 15

    @pytest.mark.parametrize("page, page_size", [(0, 15), (1, 0), (-1, 5)])
    def test_invalid_page_request(self, query, page, page_size):
        """Test that non-positive page numbers and sizes are rejected."""
        with pytest.raises(QueryError):
            run(query.fetch(page=page, page_size=page_size))

    def test_unknown_labels(self, query, gateway, seeded):
        """Test placeholders for missing banks and goals."""
        add(gateway, seeded, "-1.00", bank_id=uuid4(), goal_id=uuid4())

        row = run(query.fetch()).items[0]
        assert row.bank_name == "Unknown Bank"
        assert row.goal_name == "Unknown Objective"

    def test_owner_filter(self, query, gateway, seeded):
        """Test row-level scoping by owner."""
        add(gateway, seeded, "-1.00", owner_id="alice")
        add(gateway, seeded, "-2.00", owner_id="bob")

        page = run(query.fetch(owner_id="bob"))
        assert [row.amount for row in page.items] == [Decimal("-2.00")]

    def test_storage_failure_becomes_query_error(self, query, gateway, seeded):
        """Test that gateway errors surface as QueryError."""
        gateway.fail("count", Collection.TRANSACTIONS)
        with pytest.raises(QueryError):
            run(query.fetch())


class TestGoalHistory:
    """Tests for per-goal history."""

    def test_list_for_goal(self, query, gateway, seeded):
        """Test rows and signed total of one goal."""
        add(gateway, seeded, "-30.00", minutes_ago=10)
        add(gateway, seeded, "5.00", minutes_ago=0)
        add(gateway, seeded, "-99.00", goal_id=seeded.other_goal.id)

        history = run(query.list_for_goal(seeded.goal.id))

        assert history.goal_name == "Travel"
        assert [row.amount for row in history.items] == [Decimal("5.00"), Decimal("-30.00")]
        assert history.total_amount == Decimal("-25.00")

    def test_unknown_goal(self, query):
        """Test a goal that does not exist."""
        history = run(query.list_for_goal(uuid4()))
        assert history.goal_name == "Unknown Objective"
        assert history.items == []


def view(amount: str) -> TransactionView:
    return TransactionView(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal(amount))


class TestSelection:
    """Tests for selection aggregation."""

    def test_summary_counts_only_withdrawals(self):
        """Test that credits are never selectable."""
        rows = [view("-10.00"), view("-5.50"), view("20.00")]
        summary = summarize_selection({rows[0].id, rows[2].id}, rows)

        assert summary.selectable_count == 2
        assert summary.selected_count == 1
        assert summary.selected_total == Decimal("10.00")
        assert not summary.all_selected

    def test_all_selected(self):
        """Test the all-selected flag and total."""
        rows = [view("-10.00"), view("-5.50")]
        summary = summarize_selection({r.id for r in rows}, rows)
        assert summary.all_selected
        assert summary.selected_total == Decimal("15.50")

    def test_nothing_selectable_is_not_all_selected(self):
        """Test that an empty page never shows 'all selected'."""
        summary = summarize_selection(set(), [view("3.00")])
        assert not summary.all_selected

    def test_toggle_select_all(self):
        """Test select all, then deselect all, keeping other pages' picks."""
        rows = [view("-1.00"), view("-2.00"), view("4.00")]
        elsewhere = uuid4()

        selected = toggle_select_all({elsewhere}, rows)
        assert selected == {elsewhere, rows[0].id, rows[1].id}

        selected = toggle_select_all(selected, rows)
        assert selected == {elsewhere}

    def test_selected_rows_in_display_order(self):
        """Test resolving ids back to rows for a batch return."""
        rows = [view("-1.00"), view("-2.00"), view("-3.00")]
        chosen = selected_rows({rows[2].id, rows[0].id}, rows)
        assert chosen == [rows[0], rows[2]]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
