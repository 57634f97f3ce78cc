"""
Tests for the LedgerService orchestrator

Test strategy:
1. In-memory storage that round-trips through the persisted document shape
2. A controllable clock so settlement timestamps are predictable
3. Auto bank is checked end to end: bets in, payments and counter out
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from debtflow.audit import LedgerAuditLogger
from debtflow.audit.logger import RECENT_EVENT_LIMIT
from debtflow.config import get_settings
from debtflow.engine import AUTO_BANK_NOTE, MANUAL_BANK_NOTE
from debtflow.models.audit import AuditEventBuilder, AuditEventType
from debtflow.models.ledger import BetStatus, LedgerSnapshot, PaymentSource
from debtflow.orchestrator import (
    LedgerError,
    LedgerService,
    RecordNotFoundError,
    build_overview,
    create_app_components,
)
from debtflow.services.storage import JsonLinesAuditStorage, LedgerStorageInterface, StorageError


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Keeps the last saved document in memory."""

    def __init__(self, document=None):
        self.document = document
        self.saves = 0
        self.fail = False

    def load(self) -> LedgerSnapshot:
        if self.document is None:
            return LedgerSnapshot()
        return LedgerSnapshot.from_storage(self.document)

    def save(self, snapshot: LedgerSnapshot) -> bool:
        if self.fail:
            raise StorageError("disk full")
        self.document = snapshot.to_storage_dict()
        self.saves += 1
        return True


class Clock:
    """Callable clock that only moves when told to."""

    def __init__(self):
        self.now = datetime(2024, 12, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 1) -> datetime:
        self.now += timedelta(minutes=minutes)
        return self.now


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def audit():
    return LedgerAuditLogger()


@pytest.fixture
def service(storage, audit, clock):
    return LedgerService(storage=storage, audit_logger=audit, clock=clock)


def event_types(audit: LedgerAuditLogger) -> list[AuditEventType]:
    return [event.event_type for event in audit.recent_events]


class TestServiceStartup:
    """Tests for loading the ledger."""

    def test_empty_ledger_is_not_saved(self, service, storage, audit):
        """Test startup with nothing to bank does not write."""
        assert storage.saves == 0
        assert service.snapshot.bets == []
        assert event_types(audit) == [AuditEventType.SNAPSHOT_LOADED]

    def test_startup_fires_pending_milestone(self, audit, clock):
        """Test profit already past a milestone is banked on load."""
        storage = InMemoryLedgerStorage({
            "bets": [{
                "id": "b1",
                "date": "2024-12-01",
                "stake": 50,
                "oddsDecimal": 3,
                "status": "Won",
                "settledAt": "2024-12-01T20:00:00+00:00",
            }],
            "bankedMilestones": 0,
        })
        service = LedgerService(storage=storage, audit_logger=audit, clock=clock)

        assert service.snapshot.banked_milestones == 1
        assert service.snapshot.payments[0].amount == Decimal("50")
        assert storage.saves == 1
        assert storage.document["bankedMilestones"] == 1
        assert AuditEventType.AUTO_BANK_TRIGGERED in event_types(audit)

    def test_startup_respects_stored_counter(self, audit, clock):
        """Test a milestone already counted is not banked again on load."""
        storage = InMemoryLedgerStorage({
            "bets": [{"id": "b1", "stake": 50, "oddsDecimal": 3, "status": "Won"}],
            "bankedMilestones": 1,
        })
        service = LedgerService(storage=storage, audit_logger=audit, clock=clock)
        assert service.snapshot.payments == []
        assert storage.saves == 0

    def test_without_storage(self, clock):
        """Test the service works purely in memory."""
        service = LedgerService(clock=clock)
        service.add_bet(stake=10, odds_decimal=2, status=BetStatus.WON)
        assert service.overview().stats.profit == Decimal("10.00")


class TestBets:
    """Tests for bet mutations."""

    def test_add_pending_bet(self, service, storage, clock):
        """Test a new pending bet is saved without a settlement time."""
        bet = service.add_bet(stake="5", odds_decimal="1.9", description="Villa v Palace")
        assert bet.status == BetStatus.PENDING
        assert bet.settled_at is None
        assert bet.bet_date == date(2024, 12, 15)
        assert bet.created_at == clock.now
        assert storage.saves == 1
        assert storage.document["bets"][0]["description"] == "Villa v Palace"

    def test_long_description_is_kept(self, service, storage, audit):
        """Test long free text is saved in full and shortened in the audit log."""
        text = "Acca: " + ", ".join(["Villa v Palace"] * 40)
        service.add_bet(stake=5, odds_decimal=2, description=text)
        assert storage.document["bets"][0]["description"] == text
        assert len(audit.recent_events[-1].description) < len(text)

    def test_add_settled_bet_is_stamped(self, service, clock):
        """Test a bet entered as won is settled now."""
        bet = service.add_bet(stake=10, odds_decimal=2, status=BetStatus.WON)
        assert bet.settled_at == clock.now

    def test_newest_bet_first(self, service):
        """Test bets are listed newest first."""
        first = service.add_bet(stake=1, odds_decimal=2)
        second = service.add_bet(stake=1, odds_decimal=2)
        assert [b.id for b in service.snapshot.bets] == [second.id, first.id]

    def test_settle_then_reopen(self, service, clock):
        """Test settled_at follows the status."""
        bet = service.add_bet(stake=10, odds_decimal=2)

        settled_time = clock.advance()
        won = service.update_bet(bet.id, status=BetStatus.WON)
        assert won.settled_at == settled_time
        assert won.updated_at == settled_time

        clock.advance()
        edited = service.update_bet(bet.id, description="Renamed")
        assert edited.settled_at == settled_time

        lost_time = clock.advance()
        lost = service.update_bet(bet.id, status=BetStatus.LOST)
        assert lost.settled_at == lost_time

        reopened = service.update_bet(bet.id, status=BetStatus.PENDING)
        assert reopened.settled_at is None

    def test_settling_logs_settled_event(self, service, audit):
        """Test settling a bet records a dedicated audit event."""
        bet = service.add_bet(stake=10, odds_decimal=2)
        service.update_bet(bet.id, status=BetStatus.WON)
        assert event_types(audit)[-2:] == [
            AuditEventType.BET_UPDATED,
            AuditEventType.BET_SETTLED,
        ]

    def test_update_rejects_unknown_field(self, service):
        """Test only editable fields can be changed."""
        bet = service.add_bet(stake=10, odds_decimal=2)
        with pytest.raises(LedgerError, match="created_at"):
            service.update_bet(bet.id, created_at=datetime.now(timezone.utc))

    def test_update_rejects_invalid_value(self, service):
        """Test model validation still applies to edits."""
        bet = service.add_bet(stake=10, odds_decimal=2)
        with pytest.raises(ValueError):
            service.update_bet(bet.id, odds_decimal=Decimal("0.5"))
        assert service.snapshot.bets[0].odds_decimal == Decimal("2")

    def test_update_missing_bet(self, service):
        """Test editing an unknown id raises."""
        with pytest.raises(RecordNotFoundError):
            service.update_bet("nope", status=BetStatus.WON)

    def test_return_override_set_and_cleared(self, service):
        """Test a cash out replaces and then restores the computed return."""
        bet = service.add_bet(stake=10, odds_decimal=5, status=BetStatus.WON)
        service.set_return_override(bet.id, "12.50")
        assert service.overview().stats.total_returns == Decimal("12.50")

        service.set_return_override(bet.id, None)
        assert service.overview().stats.total_returns == Decimal("50.00")

    def test_remove_bet(self, service, audit):
        """Test removing a bet."""
        bet = service.add_bet(stake=10, odds_decimal=2)
        service.remove_bet(bet.id)
        assert service.snapshot.bets == []
        assert event_types(audit)[-1] == AuditEventType.BET_REMOVED


class TestAutoBank:
    """Tests for automatic milestone banking through bet changes."""

    def test_winning_past_target_banks(self, service, storage, audit):
        """Test hitting the target banks half of it."""
        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)

        payment = service.snapshot.payments[0]
        assert payment.amount == Decimal("50")
        assert payment.source == PaymentSource.BETTING
        assert payment.note == AUTO_BANK_NOTE
        assert service.snapshot.banked_milestones == 1
        assert storage.document["bankedMilestones"] == 1
        assert storage.document["payments"][0]["note"] == AUTO_BANK_NOTE
        assert event_types(audit)[-2:] == [
            AuditEventType.BET_ADDED,
            AuditEventType.AUTO_BANK_TRIGGERED,
        ]

    def test_does_not_fire_twice(self, service):
        """Test later changes do not re-bank a counted milestone."""
        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)
        service.add_bet(stake=10, odds_decimal=2)
        service.add_bet(stake=5, odds_decimal=2, status=BetStatus.LOST)
        assert len(service.snapshot.payments) == 1
        assert service.snapshot.banked_milestones == 1

    def test_fires_again_on_next_milestone(self, service):
        """Test the next milestone fires once enough new profit accrues."""
        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)
        service.add_bet(stake=100, odds_decimal=3, status=BetStatus.WON)

        overview = service.overview()
        assert overview.stats.profit == Decimal("300.00")
        assert service.snapshot.banked_milestones == 2
        assert [p.amount for p in service.snapshot.payments] == [Decimal("50"), Decimal("50")]
        assert overview.available_profit == Decimal("200.00")

    def test_earmarks_first_card(self, service):
        """Test the auto bank goes to the first card when none is configured."""
        card = service.add_card("Amex", 1000)
        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)
        assert service.snapshot.payments[0].card_id == card.id
        assert service.overview().debt.remaining_debt == Decimal("950.00")

    def test_deleting_banked_payment_does_not_unfire(self, service):
        """Test the counter is authoritative over payment history."""
        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)
        payment = service.snapshot.payments[0]

        service.remove_payment(payment.id)

        assert service.snapshot.payments == []
        assert service.snapshot.banked_milestones == 1

    def test_disabled_auto_bank(self, service):
        """Test nothing is banked while auto bank is off."""
        service.update_settings(auto_bank_enabled=False)
        service.add_bet(stake=50, odds_decimal=5, status=BetStatus.WON)
        assert service.snapshot.payments == []
        assert service.snapshot.banked_milestones == 0


class TestPayments:
    """Tests for quick bank and manual bank."""

    def test_quick_bank(self, service, storage):
        """Test a quick bank payment is prepended and saved."""
        service.bank_payment(20, PaymentSource.SAVINGS)
        payment = service.bank_payment("12.345", PaymentSource.TRADING, note="TSLA swing")
        assert service.snapshot.payments[0].id == payment.id
        assert payment.amount == Decimal("12.35")
        assert payment.note == "TSLA swing"
        assert payment.payment_date == date(2024, 12, 15)
        assert storage.saves == 2

    @pytest.mark.parametrize("amount", [0, -5, "0.001"])
    def test_quick_bank_ignores_non_positive(self, service, storage, amount):
        """Test zero and negative amounts are ignored."""
        assert service.bank_payment(amount, PaymentSource.SAVINGS) is None
        assert service.snapshot.payments == []
        assert storage.saves == 0

    def test_bank_now(self, service):
        """Test manual bank moves one milestone without touching the counter."""
        service.update_settings(auto_bank_enabled=False)
        service.add_bet(stake=30, odds_decimal=3, status=BetStatus.WON)

        payment = service.bank_from_betting_now()

        assert payment.amount == Decimal("50")
        assert payment.note == MANUAL_BANK_NOTE
        assert service.snapshot.banked_milestones == 0
        assert service.overview().available_profit == Decimal("10.00")

    def test_bank_now_uses_auto_bank_card(self, service):
        """Test manual bank falls back to the auto-bank card."""
        card = service.add_card("Visa", 500)
        service.update_settings(auto_bank_enabled=False, auto_bank_card_id=card.id)
        service.add_bet(stake=30, odds_decimal=3, status=BetStatus.WON)
        assert service.bank_from_betting_now().card_id == card.id

    def test_bank_now_refused(self, service, audit):
        """Test manual bank does nothing without enough profit."""
        service.add_bet(stake=10, odds_decimal=3, status=BetStatus.WON)
        assert service.bank_from_betting_now() is None
        assert service.snapshot.payments == []
        assert event_types(audit)[-1] == AuditEventType.MANUAL_BANK_SKIPPED

    def test_auto_bank_still_fires_after_manual(self, service):
        """Test manual and automatic banking keep separate books."""
        service.update_settings(auto_bank_enabled=False)
        service.add_bet(stake=30, odds_decimal=3, status=BetStatus.WON)
        service.bank_from_betting_now()
        service.update_settings(auto_bank_enabled=True)

        # 60 profit, 50 banked by hand: 10 available, no milestone yet
        assert service.snapshot.banked_milestones == 0

        service.add_bet(stake=50, odds_decimal=3, status=BetStatus.WON)
        # 160 profit, 110 available: first milestone fires
        assert service.snapshot.banked_milestones == 1
        assert service.snapshot.payments[0].note == AUTO_BANK_NOTE

    def test_remove_missing_payment(self, service):
        """Test removing an unknown payment raises."""
        with pytest.raises(RecordNotFoundError):
            service.remove_payment("nope")


class TestCards:
    """Tests for debt card mutations."""

    def test_add_card(self, service, storage):
        """Test cards are appended and saved."""
        service.add_card("Amex", 1000)
        service.add_card("Visa", "500.5")
        assert [c.name for c in service.snapshot.cards] == ["Amex", "Visa"]
        assert storage.document["cards"][1]["balance"] == 500.5

    @pytest.mark.parametrize("name,balance", [("", 100), ("   ", 100), ("Amex", 0)])
    def test_add_card_ignores_blank(self, service, name, balance):
        """Test a blank name or zero balance adds nothing."""
        assert service.add_card(name, balance) is None
        assert service.snapshot.cards == []

    def test_update_card(self, service, audit):
        """Test renaming and rebalancing a card."""
        card = service.add_card("Amex", 1000)
        updated = service.update_card(card.id, name="Amex Gold", balance=1200)
        assert updated.name == "Amex Gold"
        assert updated.balance == Decimal("1200.00")
        assert audit.recent_events[-1].details["fields"] == ["balance", "name"]

    def test_remove_card_orphans_payments(self, service, audit):
        """Test removing a card leaves its payments in place."""
        card = service.add_card("Amex", 1000)
        other = service.add_card("Visa", 500)
        service.bank_payment(200, PaymentSource.SAVINGS, card_id=card.id)

        service.remove_card(card.id)

        assert service.snapshot.payments[0].card_id == card.id
        overview = service.overview()
        assert overview.debt.total_debt == Decimal("500.00")
        assert overview.debt.remaining_debt == Decimal("500.00")
        assert overview.debt.paid_total == Decimal("200.00")
        assert [c.card_id for c in overview.cards] == [other.id]
        assert audit.recent_events[-1].details["orphaned_payments"] == 1

    def test_remove_card_keeps_auto_bank_reference(self, service):
        """Test the auto-bank default is not cleared with its card."""
        card = service.add_card("Amex", 1000)
        service.update_settings(auto_bank_card_id=card.id)
        service.remove_card(card.id)
        assert service.settings.auto_bank_card_id == card.id


class TestSettings:
    """Tests for settings edits."""

    @pytest.mark.parametrize("percent,expected", [
        (150, Decimal("100")),
        (-5, Decimal("0")),
        ("33.6", Decimal("34")),
        (Decimal("49.5"), Decimal("50")),
    ])
    def test_bank_percent_clamped_and_rounded(self, service, percent, expected):
        """Test bank percent is forced into 0-100 whole percent."""
        settings = service.update_settings(bank_percent_on_target=percent)
        assert settings.bank_percent_on_target == expected

    def test_unknown_setting(self, service):
        """Test unknown settings raise."""
        with pytest.raises(LedgerError):
            service.update_settings(currency="EUR")

    def test_settings_persisted(self, service, storage, audit):
        """Test settings are saved in the stored shape."""
        service.update_settings(target_amount=200, starting_bankroll=10)
        assert storage.document["settings"]["targetAmount"] == 200.0
        assert storage.document["settings"]["startingBankroll"] == 10.0
        assert audit.recent_events[-1].event_type == AuditEventType.SETTINGS_UPDATED

    def test_lower_target_fires_immediately(self, service):
        """Test lowering the target can cross milestones on its own."""
        service.update_settings(auto_bank_enabled=False)
        service.add_bet(stake=30, odds_decimal=3, status=BetStatus.WON)
        service.update_settings(auto_bank_enabled=True, target_amount=20)
        # 60 available over a 20 target: three milestones of 10
        assert service.snapshot.banked_milestones == 3
        assert service.snapshot.payments[0].amount == Decimal("30")


class TestOverview:
    """Tests for the derived overview."""

    def test_legacy_debt_mode(self, service):
        """Test the single debt total is used while there are no cards."""
        service.update_settings(debt_total=800)
        service.bank_payment(300, PaymentSource.SAVINGS)
        debt = service.overview().debt
        assert debt.total_debt == Decimal("800.00")
        assert debt.remaining_debt == Decimal("500.00")
        assert debt.progress_pct == 38

    def test_challenge_progress(self, service):
        """Test bankroll challenge figures."""
        service.add_bet(stake="5", odds_decimal="10.5", status=BetStatus.WON)
        overview = service.overview()
        assert overview.current_bankroll == Decimal("52.50")
        assert overview.challenge_progress_pct == 50

    def test_overview_matches_after_reload(self, service, storage, audit, clock):
        """Test reloading the saved document gives identical figures."""
        card = service.add_card("Amex", 1000)
        service.add_bet(stake="12.5", odds_decimal="2.37", status=BetStatus.WON)
        service.add_bet(stake="3.33", odds_decimal="1.91", status=BetStatus.LOST)
        service.add_bet(stake="80", odds_decimal="2.1", status=BetStatus.WON)
        service.bank_payment("19.99", PaymentSource.TRADING, card_id=card.id)

        reloaded = LedgerService(storage=storage, audit_logger=audit, clock=clock)

        assert reloaded.overview() == service.overview()
        assert build_overview(reloaded.snapshot) == service.overview()


class TestSaveFailure:
    """Tests for storage failures."""

    def test_save_failure_is_raised_and_audited(self, service, storage, audit):
        """Test a failed save raises and is logged as an error."""
        storage.fail = True
        with pytest.raises(StorageError):
            service.bank_payment(10, PaymentSource.SAVINGS)
        assert event_types(audit)[-1] == AuditEventType.SAVE_FAILED


class TestAuditHistory:
    """Tests for reading back audit events."""

    def test_recent_activity_newest_first(self, service):
        """Test the service lists its own events newest first."""
        service.add_card("Amex", 1000)
        activity = service.recent_activity(limit=5)
        assert [e.event_type for e in activity] == [
            AuditEventType.CARD_ADDED,
            AuditEventType.SNAPSHOT_LOADED,
        ]

    def test_recent_events_are_bounded(self):
        """Test the in-memory tail never grows past its limit."""
        audit = LedgerAuditLogger()
        for i in range(RECENT_EVENT_LIMIT + 5):
            audit.log(AuditEventBuilder.bet_removed(f"b{i}"))
        assert len(audit.recent_events) == RECENT_EVENT_LIMIT
        assert audit.recent_events[-1].entity_id == f"b{RECENT_EVENT_LIMIT + 4}"

    def test_history_reads_storage(self, tmp_path):
        """Test history includes events logged by an earlier session."""
        path = tmp_path / "audit.jsonl"
        LedgerAuditLogger(JsonLinesAuditStorage(path)).log(AuditEventBuilder.bet_removed("b1"))

        later = LedgerAuditLogger(JsonLinesAuditStorage(path))
        assert [e.entity_id for e in later.history()] == ["b1"]


class UnreachableSheetsClient:
    def __init__(self):
        raise ConnectionError("service account key not found")


class TestAppComponents:
    """Tests for wiring the service to its storage."""

    @pytest.fixture(autouse=True)
    def local_settings(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ("STORAGE_BACKEND", "DATA_FILE_PATH", "AUDIT_LOG_PATH"):
            monkeypatch.delenv(name, raising=False)
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_json_backend(self, tmp_path):
        """Test the default backend writes to the local data file."""
        service = create_app_components()
        service.add_card("Amex", 1000)
        assert (tmp_path / "data" / "debtflow_state.json").exists()

    def test_sheets_unavailable_falls_back(self, monkeypatch, tmp_path):
        """Test an unreachable Sheets backend falls back and logs a system error."""
        monkeypatch.setattr("debtflow.orchestrator.GoogleSheetsClient", UnreachableSheetsClient)
        service = create_app_components("google_sheets")

        errors = [
            e for e in service.recent_activity()
            if e.event_type == AuditEventType.SYSTEM_ERROR
        ]
        assert len(errors) == 1
        assert errors[0].error_message == "service account key not found"
        assert errors[0].details == {"fallback": "json"}
        assert (tmp_path / "data" / "audit.jsonl").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
