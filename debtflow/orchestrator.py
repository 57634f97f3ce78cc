"""
Main Orchestrator for DebtFlow

This module owns the ledger state and defines every mutation the
presentation layer can make:
1. Bets (add, edit, settle, remove)
2. Payments (quick bank, bank from betting, remove)
3. Cards (add, edit, remove)
4. Settings

DESIGN DECISION: The engine has no subscriptions. After every mutation the
orchestrator explicitly:
1. Builds the next snapshot
2. Re-aggregates it and runs the milestone engine on that same revision
3. Applies any milestone payment together with the new counter in ONE
   snapshot transition (never one without the other)
4. Saves the result

Snapshots are treated as immutable values; the current one is only ever
swapped for a complete new one.
"""

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import structlog

from debtflow.audit import LedgerAuditLogger
from debtflow.config import get_settings
from debtflow.engine import (
    amount_per_milestone,
    available_profit,
    bank_now,
    card_progress,
    challenge_progress,
    compute_stats,
    current_bankroll,
    evaluate,
    summarize_debt,
    sum_payments,
)
from debtflow.engine.rounding import Number, clamp_percent, round_money, round_percent, to_decimal
from debtflow.models.audit import AuditEvent, AuditEventBuilder
from debtflow.models.ledger import (
    Bet,
    BetStatus,
    DebtCard,
    LedgerSettings,
    LedgerSnapshot,
    Payment,
    PaymentSource,
    Sport,
    utc_now,
)
from debtflow.models.summary import LedgerOverview, MilestoneOutcome
from debtflow.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    JsonFileLedgerStorage,
    JsonLinesAuditStorage,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)

EDITABLE_BET_FIELDS = frozenset({
    "bet_date",
    "description",
    "sport",
    "stake",
    "odds_decimal",
    "status",
    "return_override",
})

EDITABLE_SETTINGS_FIELDS = frozenset(LedgerSettings.model_fields)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class RecordNotFoundError(LedgerError):
    """A bet, payment or card id did not match any record."""
    pass


class LedgerService:
    """
    Owns the current ledger snapshot and applies mutations to it.

    Single writer, synchronous. Every public mutation commits a complete new
    snapshot and saves it before returning.
    """

    def __init__(
        self,
        storage: Optional[LedgerStorageInterface] = None,
        audit_logger: Optional[LedgerAuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or LedgerAuditLogger()
        self._clock = clock or utc_now

        snapshot = storage.load() if storage else LedgerSnapshot()
        self._snapshot = snapshot
        self._audit_logger.log(AuditEventBuilder.snapshot_loaded(
            bets=len(snapshot.bets),
            payments=len(snapshot.payments),
            cards=len(snapshot.cards),
            counter=snapshot.banked_milestones,
        ))

        # Profit may already sit past a milestone the stored counter has not seen
        self._commit(snapshot, save_if_unchanged=False)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot

    @property
    def settings(self) -> LedgerSettings:
        return self._snapshot.settings

    def overview(self) -> LedgerOverview:
        """Recompute every displayed figure from the current snapshot."""
        return build_overview(self._snapshot)

    def recent_activity(self, limit: int = 20) -> list[AuditEvent]:
        """Latest audit events, newest first."""
        return self._audit_logger.history(limit)

    # -------------------------------------------------------------------------
    # Bets
    # -------------------------------------------------------------------------

    def add_bet(
        self,
        stake: Number,
        odds_decimal: Number,
        description: str = "",
        sport: Sport = Sport.FOOTBALL,
        status: BetStatus = BetStatus.PENDING,
        return_override: Optional[Number] = None,
        bet_date: Optional[date] = None,
    ) -> Bet:
        """Record a new bet. Bets entered already settled get settled_at now."""
        now = self._clock()
        bet = Bet(
            bet_date=bet_date or now.date(),
            description=description,
            sport=sport,
            stake=to_decimal(stake),
            odds_decimal=to_decimal(odds_decimal),
            status=status,
            return_override=None if return_override is None else to_decimal(return_override),
            settled_at=None if status == BetStatus.PENDING else now,
            created_at=now,
            updated_at=now,
        )

        self._commit(
            self._snapshot.model_copy(update={"bets": [bet, *self._snapshot.bets]}),
            events=[AuditEventBuilder.bet_added(bet.id, bet.description, str(bet.stake))],
        )
        return bet

    def update_bet(self, bet_id: str, **changes: Any) -> Bet:
        """
        Edit a bet.

        settled_at follows status: cleared on a return to Pending, stamped
        when the bet moves into a different settled status, otherwise kept.
        """
        unknown = set(changes) - EDITABLE_BET_FIELDS
        if unknown:
            raise LedgerError(f"Cannot edit bet field(s): {', '.join(sorted(unknown))}")

        bet = self._find(self._snapshot.bets, bet_id, "Bet")
        now = self._clock()

        new_status = BetStatus(changes.get("status", bet.status))
        if new_status == BetStatus.PENDING:
            settled_at = None
        elif new_status != bet.status or bet.settled_at is None:
            settled_at = now
        else:
            settled_at = bet.settled_at

        updated = Bet.model_validate({
            **bet.model_dump(),
            **changes,
            "settled_at": settled_at,
            "updated_at": now,
        })

        events: list[AuditEvent] = [AuditEventBuilder.bet_updated(bet.id, sorted(changes))]
        if new_status != bet.status and new_status != BetStatus.PENDING:
            events.append(AuditEventBuilder.bet_settled(bet.id, new_status.value))

        self._commit(
            self._snapshot.model_copy(update={
                "bets": [updated if b.id == bet_id else b for b in self._snapshot.bets],
            }),
            events=events,
        )
        return updated

    def set_return_override(self, bet_id: str, value: Optional[Number]) -> Bet:
        """Set or clear (None) a bet's manual return."""
        return self.update_bet(
            bet_id,
            return_override=None if value is None else to_decimal(value),
        )

    def remove_bet(self, bet_id: str) -> None:
        self._find(self._snapshot.bets, bet_id, "Bet")
        self._commit(
            self._snapshot.model_copy(update={
                "bets": [b for b in self._snapshot.bets if b.id != bet_id],
            }),
            events=[AuditEventBuilder.bet_removed(bet_id)],
        )

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def bank_payment(
        self,
        amount: Number,
        source: PaymentSource,
        note: Optional[str] = None,
        card_id: Optional[str] = None,
    ) -> Optional[Payment]:
        """
        Quick bank: record money moved into the payoff pool.

        Non-positive amounts are ignored and return None.
        """
        amount = round_money(amount)
        if amount <= 0:
            return None

        payment = Payment(
            payment_date=self._clock().date(),
            amount=amount,
            source=source,
            note=note or None,
            card_id=card_id,
        )
        self._commit(
            self._with_payment(payment),
            events=[AuditEventBuilder.payment_banked(
                payment.id, str(payment.amount), payment.source.value, payment.card_id,
            )],
        )
        return payment

    def bank_from_betting_now(self, card_id: Optional[str] = None) -> Optional[Payment]:
        """
        Manually bank one milestone's worth of available betting profit.

        Independent of the auto-bank counter. Returns None when there is not
        enough available profit.
        """
        overview = self.overview()
        payment = bank_now(
            self.settings,
            overview.available_profit,
            card_id=card_id,
            today=self._clock().date(),
        )
        if payment is None:
            self._audit_logger.log(AuditEventBuilder.manual_bank_skipped(
                available=str(overview.available_profit),
                required=str(overview.amount_per_milestone),
            ))
            return None

        self._commit(
            self._with_payment(payment),
            events=[AuditEventBuilder.manual_bank(payment.id, str(payment.amount), payment.card_id)],
        )
        return payment

    def remove_payment(self, payment_id: str) -> None:
        """
        Delete a payment.

        The milestone counter is left alone: deleting an auto-banked payment
        does not un-fire its milestone.
        """
        payment = self._find(self._snapshot.payments, payment_id, "Payment")
        self._commit(
            self._snapshot.model_copy(update={
                "payments": [p for p in self._snapshot.payments if p.id != payment_id],
            }),
            events=[AuditEventBuilder.payment_removed(payment_id, str(payment.amount))],
        )

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    def add_card(self, name: str, balance: Number) -> Optional[DebtCard]:
        """Add a debt card. Blank names and non-positive balances are ignored."""
        balance = round_money(balance)
        if not name.strip() or balance <= 0:
            return None

        card = DebtCard(name=name, balance=balance)
        self._commit(
            self._snapshot.model_copy(update={"cards": [*self._snapshot.cards, card]}),
            events=[AuditEventBuilder.card_added(card.id, card.name, str(card.balance))],
        )
        return card

    def update_card(
        self,
        card_id: str,
        name: Optional[str] = None,
        balance: Optional[Number] = None,
    ) -> DebtCard:
        card = self._find(self._snapshot.cards, card_id, "Card")
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if balance is not None:
            changes["balance"] = round_money(balance)

        updated = DebtCard.model_validate({**card.model_dump(), **changes})
        self._commit(
            self._snapshot.model_copy(update={
                "cards": [updated if c.id == card_id else c for c in self._snapshot.cards],
            }),
            events=[AuditEventBuilder.card_updated(card_id, sorted(changes))],
        )
        return updated

    def remove_card(self, card_id: str) -> None:
        """
        Remove a card.

        Payments earmarked to it keep their (now dangling) card_id, and so does
        the auto-bank default. Nothing cascades.
        """
        self._find(self._snapshot.cards, card_id, "Card")
        orphaned = sum(1 for p in self._snapshot.payments if p.card_id == card_id)
        self._commit(
            self._snapshot.model_copy(update={
                "cards": [c for c in self._snapshot.cards if c.id != card_id],
            }),
            events=[AuditEventBuilder.card_removed(card_id, orphaned)],
        )

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def update_settings(self, **changes: Any) -> LedgerSettings:
        """
        Edit ledger settings.

        bank_percent_on_target is rounded to a whole percent and clamped to
        0-100 rather than rejected.
        """
        unknown = set(changes) - EDITABLE_SETTINGS_FIELDS
        if unknown:
            raise LedgerError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        if "bank_percent_on_target" in changes:
            percent = round_percent(changes["bank_percent_on_target"])
            changes["bank_percent_on_target"] = Decimal(clamp_percent(percent))

        settings = LedgerSettings.model_validate({**self.settings.model_dump(), **changes})
        self._commit(
            self._snapshot.model_copy(update={"settings": settings}),
            events=[AuditEventBuilder.settings_updated(sorted(changes))],
        )
        return settings

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _with_payment(self, payment: Payment) -> LedgerSnapshot:
        # Newest first
        return self._snapshot.model_copy(update={
            "payments": [payment, *self._snapshot.payments],
        })

    @staticmethod
    def _find(records: list, record_id: str, kind: str):
        for record in records:
            if record.id == record_id:
                return record
        raise RecordNotFoundError(f"{kind} not found: {record_id}")

    def _apply_milestones(
        self,
        snapshot: LedgerSnapshot,
    ) -> tuple[LedgerSnapshot, MilestoneOutcome]:
        """Run the milestone engine on exactly this snapshot revision."""
        stats = compute_stats(snapshot.bets, snapshot.settings.target_amount)
        outcome = evaluate(
            snapshot.settings,
            available_profit(stats.profit, snapshot.payments),
            snapshot.banked_milestones,
            snapshot.cards,
            today=self._clock().date(),
        )
        if not outcome.fired:
            return snapshot, outcome

        # Payment and counter land together or not at all
        return snapshot.model_copy(update={
            "payments": [outcome.payment, *snapshot.payments],
            "banked_milestones": outcome.counter,
        }), outcome

    def _commit(
        self,
        snapshot: LedgerSnapshot,
        events: Optional[list[AuditEvent]] = None,
        save_if_unchanged: bool = True,
    ) -> None:
        previous_counter = snapshot.banked_milestones
        snapshot, outcome = self._apply_milestones(snapshot)
        self._snapshot = snapshot

        for event in events or []:
            self._audit_logger.log(event)
        if outcome.fired:
            self._audit_logger.log_auto_bank(
                payment_id=outcome.payment.id,
                amount=str(outcome.payment.amount),
                previous_counter=previous_counter,
                new_counter=outcome.counter,
            )

        if save_if_unchanged or outcome.fired:
            self._persist()

    def _persist(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save(self._snapshot)
        except StorageError as e:
            self._audit_logger.log_save_failed(str(e))
            raise


def build_overview(snapshot: LedgerSnapshot) -> LedgerOverview:
    """Derive every displayed figure from one snapshot revision."""
    settings = snapshot.settings
    stats = compute_stats(snapshot.bets, settings.target_amount)
    bankroll = current_bankroll(settings, stats)

    return LedgerOverview(
        stats=stats,
        debt=summarize_debt(snapshot.cards, snapshot.payments, settings.debt_total),
        cards=card_progress(snapshot.cards, snapshot.payments),
        banked_from_betting=sum_payments(snapshot.payments, PaymentSource.BETTING),
        available_profit=available_profit(stats.profit, snapshot.payments),
        amount_per_milestone=amount_per_milestone(settings),
        current_bankroll=bankroll,
        challenge_progress_pct=challenge_progress(
            bankroll,
            settings.run_start_stake,
            settings.run_target_stake,
        ),
        banked_milestones=snapshot.banked_milestones,
    )


def create_app_components(
    backend: Optional[str] = None,
) -> LedgerService:
    """
    Factory function to create the ledger service with its storage.

    Args:
        backend: "json" or "google_sheets". Defaults to the configured
                 storage backend. Falls back to the JSON file if Google
                 Sheets cannot be reached.

    Returns:
        A LedgerService holding the last committed snapshot
    """
    app_settings = get_settings().app
    backend = backend or app_settings.storage_backend

    fallback_error = None
    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            audit_logger = LedgerAuditLogger(GoogleSheetsAuditStorage(sheets_client))
            return LedgerService(
                storage=GoogleSheetsLedgerStorage(sheets_client),
                audit_logger=audit_logger,
            )
        except Exception as e:
            # Storage not configured - continue with the local file
            logger.warning("google_sheets_unavailable", error=str(e))
            fallback_error = str(e)

    audit_logger = LedgerAuditLogger(JsonLinesAuditStorage(app_settings.audit_log_path))
    if fallback_error is not None:
        audit_logger.log_error(
            error_type="google_sheets_unavailable",
            error_message=fallback_error,
            details={"fallback": "json"},
        )
    return LedgerService(
        storage=JsonFileLedgerStorage(app_settings.data_file_path),
        audit_logger=audit_logger,
    )
