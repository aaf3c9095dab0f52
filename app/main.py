"""
Streamlit Frontend for Allocation Ledger

This is the screen users open to take money out of a goal and to put it
back when plans change.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit confirmation before any money moves
3. Clear error messages in simple language
4. Visual feedback for all operations
5. No hidden actions

Streamlit reruns the script on every click, so the confirmation dialog
works in two passes: the first click stores the pending action, the
"Yes" button sets the decision and replays the action. StreamlitShell
hands that decision to the flow when it asks for confirmation.
"""

import asyncio
import logging
from decimal import Decimal

import streamlit as st

from allocation_ledger.config import get_settings, validate_all_settings
from allocation_ledger.models.ledger import Allocation, Bank, Goal, format_amount
from allocation_ledger.orchestrator import HistoryFlow, LedgerFlow, create_app_components
from allocation_ledger.queries import (
    last_valid_page,
    selected_rows,
    summarize_selection,
    toggle_select_all,
)
from allocation_ledger.services.shell import InteractionShell
from allocation_ledger.services.storage import (
    Collection,
    GatewayAuditStorage,
    InMemoryGateway,
    PersistenceGateway,
)


# Page configuration
st.set_page_config(
    page_title="Allocation Ledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .confirm-box {
        padding: 20px;
        background-color: #fff3cd;
        border-radius: 10px;
        border-left: 5px solid #ffc107;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


class StreamlitShell(InteractionShell):
    """
    Interaction shell backed by session state.

    `confirm` answers with the decision the user made in the dialog
    (consumed once); notifications are queued and shown on the next render.
    """

    async def confirm(self, title: str, message: str) -> bool:
        return bool(st.session_state.pop("confirmed", False))

    async def notify_success(self, title: str, message: str) -> None:
        st.session_state.setdefault("notices", []).append(("success", title, message))

    async def notify_error(self, title: str, message: str) -> None:
        st.session_state.setdefault("notices", []).append(("error", title, message))


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached), finishing interrupted work."""
    logging.basicConfig(level=get_settings().app.log_level, format="%(message)s")
    ledger_flow, history_flow, gateway = create_app_components(
        use_storage=True,
        shell=StreamlitShell(),
    )
    report = run_async(ledger_flow.recover_pending())
    return ledger_flow, history_flow, gateway, report


def fmt(amount: Decimal) -> str:
    return format_amount(amount, get_settings().ledger.currency)


def show_notices():
    """Render queued success/error banners once."""
    for kind, title, message in st.session_state.pop("notices", []):
        if kind == "success":
            st.success(f"**{title}** {message}")
        else:
            # Validation summaries span several lines
            st.error(f"**{title}**  \n" + message.replace("\n", "  \n"))


def request_confirmation(action: dict):
    """Park an action until the user answers the confirmation dialog."""
    st.session_state.pending_action = action
    st.rerun()


def render_confirmation(run_action) -> bool:
    """
    Show the pending confirmation dialog, if any.

    Returns True while a dialog is open so the page can hide its forms.
    """
    action = st.session_state.get("pending_action")
    if not action:
        return False

    st.markdown(f"""
    <div class="confirm-box">
        <h4>{action["title"]}</h4>
        <p>{action["message"]}</p>
    </div>
    """, unsafe_allow_html=True)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Yes, continue", type="primary"):
            st.session_state.confirmed = True
            st.session_state.pending_action = None
            run_action(action)
            st.rerun()
    with col2:
        if st.button("❌ Cancel"):
            st.session_state.confirmed = False
            st.session_state.pending_action = None
            run_action(action)
            st.rerun()
    return True


def load_reference_data(gateway: PersistenceGateway):
    """Banks, goals and allocations for the forms."""
    owner_id = get_settings().app.default_owner_id
    bank_filters = {"owner_id": owner_id} if owner_id else None
    banks = run_async(gateway.get(Collection.BANKS, bank_filters, order_by=["name"]))
    goals = run_async(gateway.get(Collection.GOALS, order_by=["name"]))
    allocations = run_async(gateway.get(Collection.ALLOCATIONS))
    return banks, goals, allocations


def seed_demo_data(gateway: PersistenceGateway):
    """Populate an empty in-memory ledger so the screens have something to show."""
    bank = Bank(name="Main Bank", balance=Decimal("1000.00"))
    savings = Bank(name="Savings Bank", balance=Decimal("2500.00"))
    travel = Goal(name="Travel", target_amount=Decimal("3000.00"))
    laptop = Goal(name="New Laptop", target_amount=Decimal("1500.00"))

    async def _seed():
        for record, collection in (
            (bank, Collection.BANKS),
            (savings, Collection.BANKS),
            (travel, Collection.GOALS),
            (laptop, Collection.GOALS),
        ):
            await gateway.insert(collection, record)
        for goal, owner, amount in (
            (travel, bank, "400.00"),
            (laptop, bank, "300.00"),
            (travel, savings, "1200.00"),
        ):
            await gateway.insert(
                Collection.ALLOCATIONS,
                Allocation(goal_id=goal.id, bank_id=owner.id, amount=Decimal(amount)),
            )

    run_async(_seed())


def main():
    """Main application entry point."""
    ledger_flow, history_flow, gateway, report = get_components()

    # Sidebar navigation
    st.sidebar.title("💰 Allocation Ledger")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["💸 Withdraw", "📜 Transaction History", "🎯 Goal History", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How to use:**
        1. Pick a bank and a goal
        2. Enter the amount you spent
        3. Confirm to record it

        Changed your mind? Return the money from the history page.
        """
    )

    if isinstance(gateway, InMemoryGateway):
        st.sidebar.warning("Running without Google Sheets. Data is kept in memory only.")
        if st.sidebar.button("Load demo data"):
            seed_demo_data(gateway)
            st.rerun()

    if report.failed:
        st.sidebar.error(
            f"{len(report.failed)} interrupted operation(s) could not be finished yet."
        )

    show_notices()

    # Route to appropriate page
    if page == "💸 Withdraw":
        render_withdraw_page(ledger_flow, gateway)
    elif page == "📜 Transaction History":
        render_history_page(ledger_flow, history_flow)
    elif page == "🎯 Goal History":
        render_goal_history_page(history_flow, gateway)
    elif page == "⚙️ Settings":
        render_settings_page(report, gateway)


def render_withdraw_page(ledger_flow: LedgerFlow, gateway: PersistenceGateway):
    """Render the withdrawal form."""
    st.title("💸 Record Withdrawal")
    st.markdown("Take money out of a goal. The bank balance goes down by the same amount.")

    def run_action(action: dict):
        if action["kind"] == "withdraw":
            run_async(ledger_flow.withdraw(
                goal_id=action["goal_id"],
                bank_id=action["bank_id"],
                amount=action["amount"],
                description=action["description"],
            ))
        elif action["kind"] == "split_withdraw":
            run_async(ledger_flow.withdraw_split(
                bank_id=action["bank_id"],
                shares=action["shares"],
                description=action["description"],
            ))

    if render_confirmation(run_action):
        return

    try:
        banks, goals, allocations = load_reference_data(gateway)
    except Exception as e:
        st.error(f"Could not load your banks: {e}")
        return

    if not banks:
        st.info("No banks yet. Add a bank and allocate money to a goal first.")
        return

    goal_names = {goal.id: goal.name for goal in goals}

    bank = st.selectbox(
        "Bank",
        options=banks,
        format_func=lambda b: f"{b.name} ({fmt(b.balance)})",
    )
    bank_allocations = [a for a in allocations if a.bank_id == bank.id]
    if not bank_allocations:
        st.info("This bank has no money allocated to a goal.")
        return

    split = st.toggle("Split across several goals")
    description = st.text_input("Description", max_chars=500)

    if not split:
        allocation = st.selectbox(
            "Goal",
            options=bank_allocations,
            format_func=lambda a: f"{goal_names.get(a.goal_id, 'Unknown Objective')} "
                                  f"(available {fmt(a.amount)})",
        )
        amount = st.number_input(
            f"Withdrawal Amount ({get_settings().ledger.currency})",
            min_value=0.0,
            step=10.0,
            format="%.2f",
        )
        if st.button("Record Withdrawal", type="primary"):
            request_confirmation({
                "kind": "withdraw",
                "title": "Record Withdrawal?",
                "message": f"Withdraw {fmt(Decimal(str(amount)))} "
                           f"from {goal_names.get(allocation.goal_id, 'this goal')}?",
                "goal_id": allocation.goal_id,
                "bank_id": bank.id,
                "amount": Decimal(str(amount)),
                "description": description,
            })
        return

    shares = {}
    for allocation in bank_allocations:
        value = st.number_input(
            f"{goal_names.get(allocation.goal_id, 'Unknown Objective')} "
            f"(available {fmt(allocation.amount)})",
            min_value=0.0,
            step=10.0,
            format="%.2f",
            key=f"share_{allocation.id}",
        )
        if value > 0:
            shares[allocation.goal_id] = Decimal(str(value))

    total = sum(shares.values(), Decimal("0"))
    st.markdown(f"**Total Withdrawal:** {fmt(total)}")

    if st.button("Record Withdrawal", type="primary"):
        request_confirmation({
            "kind": "split_withdraw",
            "title": "Record Withdrawal?",
            "message": f"Withdraw {fmt(total)} across {len(shares)} goal(s)?",
            "bank_id": bank.id,
            "shares": shares,
            "description": description,
        })


def render_history_page(ledger_flow: LedgerFlow, history_flow: HistoryFlow):
    """Render the paginated transaction history with return actions."""
    st.title("📜 Transaction History")

    if "history_page" not in st.session_state:
        st.session_state.history_page = 1
    if "selected_ids" not in st.session_state:
        st.session_state.selected_ids = set()

    def run_action(action: dict):
        if action["kind"] == "return":
            returned = run_async(ledger_flow.return_money(
                action["transaction"],
                return_amount=action["amount"],
            ))
            if returned:
                st.session_state.selected_ids.discard(action["transaction"].id)
        elif action["kind"] == "batch_return":
            result = run_async(ledger_flow.return_selected(action["transactions"]))
            if result:
                for group in result.completed:
                    st.session_state.selected_ids.difference_update(group.transaction_ids)

    if render_confirmation(run_action):
        return

    withdrawn_only = st.toggle("Withdrawals only", key="withdrawn_only")
    if st.session_state.get("last_withdrawn_only") != withdrawn_only:
        # Filter changed: back to the first page with a fresh selection
        st.session_state.last_withdrawn_only = withdrawn_only
        st.session_state.history_page = 1
        st.session_state.selected_ids = set()

    result = run_async(history_flow.load_history(
        page=st.session_state.history_page,
        withdrawn_only=withdrawn_only,
        owner_id=get_settings().app.default_owner_id,
    ))
    show_notices()
    if result is None:
        return

    if not result.items:
        if result.page > 1:
            # Page emptied by a return: step back to the last page with rows
            st.session_state.history_page = last_valid_page(result)
            st.rerun()
        st.info("No transactions yet.")
        return

    rows = result.items
    summary = summarize_selection(st.session_state.selected_ids, rows)

    # Selection bar
    col1, col2, col3 = st.columns([1, 2, 1])
    with col1:
        label = "Deselect All" if summary.all_selected else "Select All"
        if st.button(label, disabled=summary.selectable_count == 0):
            st.session_state.selected_ids = toggle_select_all(
                st.session_state.selected_ids, rows
            )
            st.rerun()
    with col2:
        st.markdown(
            f"**{summary.selected_count}** selected · "
            f"total **{fmt(summary.selected_total)}**"
        )
    with col3:
        if st.button("Return Selected", type="primary", disabled=summary.selected_count == 0):
            chosen = selected_rows(st.session_state.selected_ids, rows)
            request_confirmation({
                "kind": "batch_return",
                "title": "Return Money?",
                "message": f"Are you sure you want to return {fmt(summary.selected_total)} "
                           f"from {len(chosen)} transaction(s)?",
                "transactions": chosen,
            })

    st.markdown("---")

    for row in rows:
        cols = st.columns([0.5, 2, 2, 2, 2, 2])
        with cols[0]:
            if row.is_withdrawal:
                checked = st.checkbox(
                    "select",
                    value=row.id in st.session_state.selected_ids,
                    key=f"select_{row.id}",
                    label_visibility="collapsed",
                )
                if checked:
                    st.session_state.selected_ids.add(row.id)
                else:
                    st.session_state.selected_ids.discard(row.id)
        cols[1].write(row.created_at.strftime("%Y-%m-%d %H:%M"))
        cols[2].write(f"{row.goal_name} · {row.bank_name}")
        cols[3].write(row.description or "—")
        cols[4].markdown(f"**{fmt(row.amount)}**")
        with cols[5]:
            if row.is_withdrawal:
                with st.popover("↩️ Return"):
                    partial = st.number_input(
                        "Amount to return",
                        min_value=0.01,
                        max_value=float(row.magnitude),
                        value=float(row.magnitude),
                        step=10.0,
                        format="%.2f",
                        key=f"return_amount_{row.id}",
                    )
                    if st.button("Return", key=f"return_{row.id}"):
                        amount = Decimal(str(partial))
                        request_confirmation({
                            "kind": "return",
                            "title": "Return Money?",
                            "message": f"Are you sure you want to return {fmt(amount)} "
                                       f"to {row.bank_name}?",
                            "transaction": row,
                            "amount": amount,
                        })

    # Pagination
    st.markdown("---")
    st.caption(
        f"Showing {result.first_index} to {result.last_index} "
        f"of {result.total_count} transactions"
    )
    col1, col2, col3 = st.columns([1, 2, 1])
    with col1:
        if st.button("← Previous", disabled=result.page <= 1):
            st.session_state.history_page -= 1
            st.rerun()
    with col2:
        st.markdown(f"Page {result.page} of {max(result.total_pages, 1)}")
    with col3:
        if st.button("Next →", disabled=not result.has_more):
            st.session_state.history_page += 1
            st.rerun()


def render_goal_history_page(history_flow: HistoryFlow, gateway: PersistenceGateway):
    """Render every transaction of one goal."""
    st.title("🎯 Goal History")

    try:
        goals = run_async(gateway.get(Collection.GOALS, order_by=["name"]))
    except Exception as e:
        st.error(f"Could not load your goals: {e}")
        return

    if not goals:
        st.info("No goals yet.")
        return

    goal = st.selectbox("Goal", options=goals, format_func=lambda g: g.name)
    history = run_async(history_flow.load_goal_history(goal.id))
    show_notices()
    if history is None:
        return

    st.markdown(f'<p class="big-number">{fmt(history.total_amount)}</p>', unsafe_allow_html=True)
    st.caption("Net movement recorded for this goal")

    if not history.items:
        st.info("No transactions for this goal.")
        return

    st.dataframe(
        [
            {
                "Date": row.created_at.strftime("%Y-%m-%d %H:%M"),
                "Bank": row.bank_name,
                "Description": row.description,
                "Amount": f"{row.amount:.2f}",
            }
            for row in history.items
        ],
        use_container_width=True,
    )


def render_settings_page(report, gateway: PersistenceGateway):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    sections = [
        ("Ledger", "ledger"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    app_settings = get_settings().app
    st.caption(
        f"Environment: {app_settings.app_environment} · "
        f"debug {'on' if app_settings.debug_mode else 'off'} · "
        f"log level {app_settings.log_level}"
    )

    st.markdown("### Startup Recovery")
    if report.is_clean and not report.recovered:
        st.success("No interrupted operations were found.")
    else:
        if report.recovered:
            st.success(f"Finished {len(report.recovered)} interrupted operation(s).")
        for intent_id, message in report.failed.items():
            st.error(f"Operation {intent_id} is still pending: {message}")

    st.markdown("### Recent Activity")
    try:
        events = run_async(GatewayAuditStorage(gateway).get_recent_events(limit=20))
    except Exception as e:
        st.error(f"Could not load the audit log: {e}")
        events = []
    if events:
        st.dataframe(
            [
                {
                    "Time": event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    "Event": event.event_type.value,
                    "Severity": event.severity.value,
                    "Details": ", ".join(f"{k}={v}" for k, v in event.details.items()),
                }
                for event in events
            ],
            use_container_width=True,
        )
    else:
        st.info("No activity recorded yet.")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your settings. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
