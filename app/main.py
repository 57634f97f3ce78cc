"""
Streamlit Frontend for DebtFlow

Track debt and how it is being paid off: from savings, from trading, and
from betting profit banked automatically each time a target is hit.

DESIGN PRINCIPLES:
1. Every figure on screen is recomputed from the current ledger snapshot
2. Every widget action is one LedgerService call, then a rerun
3. Clear error messages when a change cannot be saved
4. No hidden actions, except auto bank, which is always listed in Recent
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import streamlit as st

from debtflow.config import get_settings, validate_all_settings
from debtflow.engine import effective_return
from debtflow.models.ledger import BetStatus, PaymentSource, Sport
from debtflow.orchestrator import LedgerError, LedgerService, create_app_components
from debtflow.services.storage import StorageError


RECENT_PAYMENTS_SHOWN = 6
ACTIVITY_EVENTS_SHOWN = 20
NO_CARD = "none"


# Page configuration
st.set_page_config(
    page_title="DebtFlow",
    page_icon="💷",
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
    .muted {
        color: #8a8a8a;
        font-size: 0.85em;
    }
    .gain {
        color: #34d399;
    }
    .loss {
        color: #fb7185;
    }
</style>
""", unsafe_allow_html=True)


def clean_number(value: str) -> Decimal:
    """
    Parse a typed amount. A comma is accepted as the decimal separator.

    Anything unparseable is 0.
    """
    if not value:
        return Decimal("0")
    try:
        number = Decimal(value.strip().replace(",", "."))
    except InvalidOperation:
        return Decimal("0")
    return number if number.is_finite() else Decimal("0")


def format_money(amount: Optional[Decimal]) -> str:
    if amount is None:
        return "N/A"
    symbol = get_settings().app.currency_symbol
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


@st.cache_resource
def get_service() -> LedgerService:
    """Get or create the ledger service (cached)."""
    return create_app_components()


def run_action(action, *args, **kwargs):
    """Apply one ledger change and redraw, or explain why it failed."""
    try:
        result = action(*args, **kwargs)
    except StorageError as e:
        st.error(f"Your change could not be saved: {e}")
        return None
    except (LedgerError, ValueError) as e:
        st.error(str(e))
        return None
    st.rerun()
    return result


def card_options(service: LedgerService, empty_label: str) -> dict[str, str]:
    options = {NO_CARD: empty_label}
    options.update({card.id: card.name or "Card" for card in service.snapshot.cards})
    return options


def main():
    """Main application entry point."""
    service = get_service()

    st.sidebar.title("💷 DebtFlow")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Ledger", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.caption(date.today().strftime("%d %b %Y"))

    if page == "📊 Ledger":
        render_ledger_page(service)
    elif page == "⚙️ Settings":
        render_settings_page(service)


def render_ledger_page(service: LedgerService):
    st.title("DebtFlow")
    st.markdown("Track your debt and how you're paying it off")

    overview = service.overview()

    render_overview(overview)
    render_quick_bank(service, overview)
    render_cards(service, overview)
    render_betting(service, overview)
    render_recent(service)
    render_bet_log(service, overview)


def render_overview(overview):
    debt = overview.debt
    with st.expander(f"Overview · {debt.progress_pct}% to zero", expanded=True):
        st.markdown(f"**Progress to zero** · {debt.progress_pct}%")
        st.progress(debt.progress_pct / 100)

        col1, col2, col3 = st.columns(3)
        col1.metric("Total", format_money(debt.total_debt))
        col2.metric("Paid", format_money(debt.paid_shown))
        col3.metric("Remaining", format_money(debt.remaining_debt))


def render_quick_bank(service: LedgerService, overview):
    with st.expander(f"Quick bank · Avail {format_money(overview.available_profit)}", expanded=True):
        col1, col2, col3 = st.columns([3, 3, 4])
        with col1:
            amount_text = st.text_input("Amount", key="quick_amount", placeholder="0.00")
        with col2:
            source = st.selectbox(
                "Source",
                options=[PaymentSource.SAVINGS, PaymentSource.TRADING, PaymentSource.BETTING],
                format_func=lambda s: s.value,
                key="quick_source",
            )
        with col3:
            options = card_options(service, "Unassigned")
            card_id = st.selectbox(
                "Target card",
                options=list(options),
                format_func=options.get,
                key="quick_card",
            )

        note = None
        if source == PaymentSource.TRADING:
            note = st.text_input(
                "Note, stock or crypto",
                placeholder="eg, TSLA swing, BTC scalp",
                key="quick_note",
            )
        elif source == PaymentSource.BETTING:
            st.markdown(
                f'<span class="muted">Available from betting, '
                f'{format_money(overview.available_profit)}</span>',
                unsafe_allow_html=True,
            )

        if st.button("Bank", key="quick_bank", type="primary"):
            amount = clean_number(amount_text)
            if amount <= 0:
                st.warning("Enter an amount to bank")
            elif source == PaymentSource.BETTING and amount > overview.available_profit:
                st.warning("That is more than the betting profit available to bank")
            else:
                run_action(
                    service.bank_payment,
                    amount,
                    source,
                    note=note,
                    card_id=None if card_id == NO_CARD else card_id,
                )


def render_cards(service: LedgerService, overview):
    title = f"Cards · {len(overview.cards)} listed, Rem {format_money(overview.debt.remaining_debt)}"
    with st.expander(title):
        for card in overview.cards:
            col1, col2, col3, col4, col5 = st.columns([4, 3, 2, 2, 1])
            with col1:
                name = st.text_input("Name", value=card.name, key=f"card_name_{card.card_id}")
            with col2:
                balance_text = st.text_input(
                    "Balance",
                    value=f"{card.balance:.2f}",
                    key=f"card_balance_{card.card_id}",
                )
            col3.metric("Paid", format_money(card.paid))
            col4.metric("Remaining", format_money(card.remaining))
            with col5:
                if st.button("✕", key=f"card_remove_{card.card_id}", help="Remove card"):
                    run_action(service.remove_card, card.card_id)

            balance = clean_number(balance_text)
            if name != card.name or balance != card.balance:
                run_action(service.update_card, card.card_id, name=name, balance=balance)

        st.markdown("---")
        col1, col2, col3 = st.columns([4, 3, 2])
        with col1:
            new_name = st.text_input("Card name", key="new_card_name")
        with col2:
            new_balance = st.text_input("Balance", key="new_card_balance", placeholder="0.00")
        with col3:
            if st.button("Add card", key="add_card"):
                if service.add_card(new_name, clean_number(new_balance)) is None:
                    st.warning("Enter a card name and a balance above zero")
                else:
                    st.rerun()


def render_betting(service: LedgerService, overview):
    settings = service.settings
    auto = "on" if settings.auto_bank_enabled else "off"
    with st.expander(f"Betting · Profit {format_money(overview.stats.profit)}, Auto {auto}"):
        col1, col2, col3 = st.columns(3)
        col1.metric("Profit", format_money(overview.stats.profit))
        col2.metric("Available", format_money(overview.available_profit))
        col3.metric("Per milestone", format_money(overview.amount_per_milestone))

        col1, col2, col3 = st.columns(3)
        with col1:
            options = card_options(service, "Unassigned")
            current = settings.auto_bank_card_id if settings.auto_bank_card_id in options else NO_CARD
            auto_card = st.selectbox(
                "Auto bank to",
                options=list(options),
                index=list(options).index(current),
                format_func=options.get,
                key="auto_bank_card",
            )
            if auto_card != current:
                run_action(
                    service.update_settings,
                    auto_bank_card_id=None if auto_card == NO_CARD else auto_card,
                )
        with col2:
            if st.button("Bank now", key="bank_now"):
                if service.bank_from_betting_now(settings.auto_bank_card_id) is None:
                    st.warning(
                        f"Not enough available profit to bank {format_money(overview.amount_per_milestone)}"
                    )
                else:
                    st.rerun()
        with col3:
            enabled = st.checkbox(
                "Auto bank on target hit",
                value=settings.auto_bank_enabled,
                key="auto_bank_enabled",
            )
            if enabled != settings.auto_bank_enabled:
                run_action(service.update_settings, auto_bank_enabled=enabled)

        st.caption(f"Milestones banked: {overview.banked_milestones}")

        with st.form("betting_settings"):
            st.markdown("**Settings**")
            cols = st.columns(6)
            target = cols[0].text_input("Target profit", value=f"{settings.target_amount}")
            percent = cols[1].text_input("Bank percent", value=f"{settings.bank_percent_on_target}")
            bankroll = cols[2].text_input("Starting bankroll", value=f"{settings.starting_bankroll}")
            run_start = cols[3].text_input("Run start", value=f"{settings.run_start_stake}")
            run_target = cols[4].text_input("Run target", value=f"{settings.run_target_stake}")
            debt_total = cols[5].text_input(
                "Debt total",
                value=f"{settings.debt_total}",
                help="Only used while no cards are listed",
            )

            if st.form_submit_button("Save settings"):
                run_action(
                    service.update_settings,
                    target_amount=clean_number(target),
                    bank_percent_on_target=clean_number(percent),
                    starting_bankroll=clean_number(bankroll),
                    run_start_stake=clean_number(run_start),
                    run_target_stake=clean_number(run_target),
                    debt_total=clean_number(debt_total),
                )


def render_recent(service: LedgerService):
    payments = service.snapshot.payments
    with st.expander(f"Recent · {len(payments)} items"):
        if not payments:
            st.markdown('<span class="muted">No contributions yet</span>', unsafe_allow_html=True)
            return

        for payment in payments[:RECENT_PAYMENTS_SHOWN]:
            card = service.snapshot.find_card(payment.card_id)
            col1, col2, col3, col4 = st.columns([2, 2, 5, 1])
            col1.markdown(f"**{payment.source.value}**")
            col2.markdown(payment.payment_date.isoformat())

            details = []
            if payment.card_id:
                details.append(card.name if card and card.name else "Card")
            if payment.note:
                details.append(payment.note)
            col3.markdown(f"{format_money(payment.amount)} · {' · '.join(details)}" if details
                          else format_money(payment.amount))

            with col4:
                if st.button("✕", key=f"payment_remove_{payment.id}", help="Remove"):
                    run_action(service.remove_payment, payment.id)


def render_bet_log(service: LedgerService, overview):
    bets = service.snapshot.bets
    run_target = service.settings.run_target_stake
    title = f"Bet log · {len(bets)} bets, {overview.challenge_progress_pct}% of {format_money(run_target)}"

    with st.expander(title):
        st.markdown(
            f"{format_money(overview.current_bankroll)} of {format_money(run_target)}"
            f" · **{overview.challenge_progress_pct}%**"
        )
        st.progress(overview.challenge_progress_pct / 100)

        if not bets:
            st.info("No bets yet. Add your first bet below to start tracking the run.")

        statuses = list(BetStatus)
        for bet in bets:
            ret = effective_return(bet)
            col1, col2, col3, col4, col5, col6 = st.columns([2, 4, 2, 2, 3, 1])
            col1.markdown(bet.bet_date.isoformat())
            col2.markdown(f"{bet.description}  \n"
                          f'<span class="muted">{bet.sport.value} · '
                          f'{format_money(bet.stake)} @ {bet.odds_decimal:.2f}</span>',
                          unsafe_allow_html=True)

            with col3:
                status = st.selectbox(
                    "Status",
                    options=statuses,
                    index=statuses.index(bet.status),
                    format_func=lambda s: s.value,
                    key=f"bet_status_{bet.id}",
                    label_visibility="collapsed",
                )
                if status != bet.status:
                    run_action(service.update_bet, bet.id, status=status)

            with col4:
                if ret is None:
                    st.markdown('<span class="muted">Pending</span>', unsafe_allow_html=True)
                else:
                    profit = ret - bet.stake
                    css = "gain" if profit >= 0 else "loss"
                    plus = "+" if profit >= 0 else ""
                    st.markdown(
                        f'{format_money(ret)}<br><span class="{css}">{plus}{format_money(profit)}</span>',
                        unsafe_allow_html=True,
                    )

            with col5:
                current = "" if bet.return_override is None else f"{bet.return_override:.2f}"
                override_text = st.text_input(
                    "Return override",
                    value=current,
                    placeholder="0.00",
                    key=f"bet_override_{bet.id}",
                    label_visibility="collapsed",
                    help="Leave empty to use the computed return",
                )
                if override_text.strip() != current:
                    value = None if not override_text.strip() else clean_number(override_text)
                    run_action(service.set_return_override, bet.id, value)

            with col6:
                if st.button("🗑", key=f"bet_remove_{bet.id}", help="Delete"):
                    run_action(service.remove_bet, bet.id)

        st.markdown("---")
        render_add_bet_form(service)


def render_add_bet_form(service: LedgerService):
    st.subheader("Add a bet")

    with st.form("add_bet", clear_on_submit=True):
        col1, col2, col3 = st.columns([2, 4, 2])
        bet_date = col1.date_input("Date", value=date.today())
        description = col2.text_input("Description", placeholder="Villa v Palace, over 9 corners")
        sport = col3.selectbox("Sport", options=list(Sport), format_func=lambda s: s.value)

        col1, col2, col3, col4 = st.columns(4)
        stake = col1.text_input("Stake", placeholder="0.00")
        odds = col2.text_input("Odds", value="1")
        status = col3.selectbox("Status", options=list(BetStatus), format_func=lambda s: s.value)
        override = col4.text_input("Return override", placeholder="optional")

        if st.form_submit_button("Add bet", type="primary"):
            run_action(
                service.add_bet,
                stake=clean_number(stake),
                odds_decimal=clean_number(odds),
                description=description,
                sport=sport,
                status=status,
                return_override=(clean_number(override) or None) if override.strip() else None,
                bet_date=bet_date,
            )


def render_settings_page(service: LedgerService):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    app_settings = get_settings().app
    status = validate_all_settings()

    st.markdown(f"**Storage backend:** `{app_settings.storage_backend}`")
    if app_settings.storage_backend == "json":
        st.markdown(f"**Ledger file:** `{app_settings.data_file_path}`")
        st.markdown(f"**Audit log:** `{app_settings.audit_log_path}`")

    services = [
        ("Application", "app"),
        ("Data directory", "data_dir"),
        ("Google Sheets (Storage)", "google_sheets"),
    ]

    for name, key in services:
        if key not in status:
            continue
        if status[key]:
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )

    st.markdown("---")
    render_activity(service)


def render_activity(service: LedgerService):
    st.markdown("### Recent Activity")

    events = service.recent_activity(limit=ACTIVITY_EVENTS_SHOWN)
    if not events:
        st.markdown('<span class="muted">Nothing logged yet</span>', unsafe_allow_html=True)
        return

    for event in events:
        col1, col2 = st.columns([2, 5])
        col1.markdown(event.timestamp.strftime("%d %b %Y %H:%M"))
        line = event.description
        if event.error_message:
            line += f" · {event.error_message}"
        if event.severity.value in ("error", "critical"):
            col2.error(line)
        else:
            col2.markdown(line)


if __name__ == "__main__":
    main()
