"""
Core Ledger Models for DebtFlow

These models define the records the ledger engine works on:
1. Bets - wagered events whose settled returns drive betting profit
2. Payments - money moved into the debt payoff pool
3. Debt cards - named debts with a fixed starting balance
4. Settings - process-wide, user-editable configuration
5. The snapshot - everything above plus the milestone counter

DESIGN DECISION: Field names are snake_case in Python but every field carries
the camelCase alias used by the persisted state format. Existing state files
load unchanged and are written back in the same shape.

DESIGN DECISION: Money is a Decimal. It is written to storage as a plain JSON
number so that the persisted format stays numeric.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, ClassVar, Optional
from uuid import uuid4

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    model_validator,
)

logger = structlog.get_logger(__name__)


JsonDecimal = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]
Money = JsonDecimal


def new_record_id() -> str:
    """Generate an identifier for a new bet, payment or card."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Sport(str, Enum):
    """Sport a bet was placed on."""
    FOOTBALL = "Football"
    CRICKET = "Cricket"
    TENNIS = "Tennis"
    OTHER = "Other"


class BetStatus(str, Enum):
    """
    Bet lifecycle status.

    PENDING bets are unresolved and never count towards profit.
    WON and LOST bets are "settled".
    """
    PENDING = "Pending"
    WON = "Won"
    LOST = "Lost"


class PaymentSource(str, Enum):
    """Income stream a payment was funded from."""
    BETTING = "Betting"
    TRADING = "Trading"
    SAVINGS = "Savings"


# =============================================================================
# RECORDS
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Base for persisted ledger records.

    Optional fields listed in ``omit_when_unset`` keep the distinction
    between "stored as null" and "not stored at all" across a round trip.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
    )

    omit_when_unset: ClassVar[tuple[str, ...]] = ()

    def to_storage_dict(self) -> dict[str, Any]:
        """Serialize to the persisted (camelCase, JSON-safe) shape."""
        data = self.model_dump(mode="json", by_alias=True)
        for name in self.omit_when_unset:
            if name not in self.model_fields_set:
                data.pop(type(self).model_fields[name].alias or name, None)
        return data


class Bet(LedgerRecord):
    """
    A single wagered event.

    INVARIANT: a Pending bet has no settled_at timestamp.
    """

    omit_when_unset: ClassVar[tuple[str, ...]] = ("return_override", "settled_at")

    id: str = Field(default_factory=new_record_id)
    bet_date: date = Field(
        default_factory=date.today,
        alias="date",
        description="Date the bet was placed",
    )
    description: str = Field(
        default="",
        description="Free text, e.g. the fixture and market",
    )
    sport: Sport = Sport.FOOTBALL
    stake: Money = Field(..., ge=0, description="Amount wagered")
    odds_decimal: JsonDecimal = Field(
        ...,
        ge=1,
        alias="oddsDecimal",
        description="Decimal odds (total return multiplier)",
    )
    status: BetStatus = BetStatus.PENDING
    return_override: Optional[Money] = Field(
        default=None,
        ge=0,
        alias="returnOverride",
        description="Manual return, e.g. a cash out; wins over computed return",
    )
    settled_at: Optional[datetime] = Field(
        default=None,
        alias="settledAt",
        description="When the bet left Pending",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        alias="createdAt",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        alias="updatedAt",
    )

    @model_validator(mode="after")
    def validate_settlement(self) -> "Bet":
        """A pending bet cannot carry a settlement time."""
        if self.status == BetStatus.PENDING and self.settled_at is not None:
            raise ValueError("Pending bet cannot have a settled_at timestamp")
        return self

    @property
    def is_settled(self) -> bool:
        return self.status != BetStatus.PENDING


class Payment(LedgerRecord):
    """
    Money moved into the debt payoff pool.

    Payments are immutable once created; they can only be deleted.
    card_id is a weak reference: it may point at a card that no longer exists.
    """

    id: str = Field(default_factory=new_record_id)
    payment_date: date = Field(
        default_factory=date.today,
        alias="date",
    )
    amount: Money = Field(..., gt=0)
    source: PaymentSource
    note: Optional[str] = None
    card_id: Optional[str] = Field(
        default=None,
        alias="cardId",
        description="Card this payment is earmarked to, if any",
    )


class DebtCard(LedgerRecord):
    """
    A named debt account.

    balance is the starting snapshot. It is never reduced in place;
    remaining balance is always derived from earmarked payments.
    """

    id: str = Field(default_factory=new_record_id)
    name: str = ""
    balance: Money = Field(default=Decimal("0"), ge=0)


class LedgerSettings(LedgerRecord):
    """
    User-editable ledger configuration.

    The defaults below are the documented substitutes used whenever a
    persisted snapshot is missing a setting.
    """

    debt_total: Money = Field(
        default=Decimal("0"),
        alias="debtTotal",
        description="Legacy single debt figure, used only when there are no cards",
    )
    starting_bankroll: Money = Field(
        default=Decimal("5"),
        alias="startingBankroll",
    )
    target_amount: Money = Field(
        default=Decimal("100"),
        alias="targetAmount",
        description="Profit per betting run that counts as one milestone",
    )
    bank_percent_on_target: JsonDecimal = Field(
        default=Decimal("50"),
        ge=0,
        le=100,
        alias="bankPercentOnTarget",
        description="Percent of the target banked per milestone",
    )
    auto_bank_enabled: bool = Field(
        default=True,
        alias="autoBankEnabled",
    )
    auto_bank_card_id: Optional[str] = Field(
        default=None,
        alias="autoBankCardId",
        description="Default card for banked betting profit (weak reference)",
    )
    run_start_stake: Money = Field(
        default=Decimal("5"),
        alias="runStartStake",
    )
    run_target_stake: Money = Field(
        default=Decimal("100"),
        alias="runTargetStake",
    )


# =============================================================================
# SNAPSHOT
# =============================================================================

class LedgerSnapshot(BaseModel):
    """
    Everything the ledger persists, as one unit.

    banked_milestones is the milestone counter. It is authoritative and is
    never recomputed from payment history: deleting an auto-banked payment
    does not un-fire its milestone.
    """
    model_config = ConfigDict(populate_by_name=True)

    bets: list[Bet] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    cards: list[DebtCard] = Field(default_factory=list)
    settings: LedgerSettings = Field(default_factory=LedgerSettings)
    banked_milestones: int = Field(
        default=0,
        ge=0,
        alias="bankedMilestones",
    )

    def find_card(self, card_id: Optional[str]) -> Optional[DebtCard]:
        if card_id is None:
            return None
        return next((c for c in self.cards if c.id == card_id), None)

    def to_storage_dict(self) -> dict[str, Any]:
        """Serialize to the persisted document shape."""
        return {
            "bets": [bet.to_storage_dict() for bet in self.bets],
            "settings": self.settings.to_storage_dict(),
            "payments": [p.to_storage_dict() for p in self.payments],
            "bankedMilestones": self.banked_milestones,
            "cards": [card.to_storage_dict() for card in self.cards],
        }

    @classmethod
    def from_storage(cls, raw: Any) -> "LedgerSnapshot":
        """
        Build a snapshot from a persisted document, leniently.

        Malformed input never raises. Each field falls back to its documented
        default when missing or of the wrong shape, settings are merged over
        the defaults, and individual records that fail validation are skipped
        with a warning.
        """
        if not isinstance(raw, dict):
            logger.warning("snapshot_not_a_mapping", got=type(raw).__name__)
            return cls()

        counter = raw.get("bankedMilestones")
        if isinstance(counter, bool) or not isinstance(counter, (int, float)):
            counter = 0
        elif not math.isfinite(counter):
            counter = 0

        return cls(
            bets=_parse_records(Bet, raw.get("bets"), _repair_bet),
            payments=_parse_records(Payment, raw.get("payments")),
            cards=_parse_records(DebtCard, raw.get("cards")),
            settings=_parse_settings(raw.get("settings")),
            banked_milestones=max(0, int(counter)),
        )


def _repair_bet(item: dict) -> dict:
    # Older state could hold a settledAt on a bet edited back to Pending
    if item.get("status") == BetStatus.PENDING.value and item.get("settledAt"):
        logger.warning("pending_bet_settled_at_cleared", bet_id=item.get("id"))
        item = {**item, "settledAt": None}
    return item


def _parse_records(model, items: Any, repair=None) -> list:
    if not isinstance(items, list):
        return []

    records = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("record_skipped", model=model.__name__, reason="not a mapping")
            continue
        if repair is not None:
            item = repair(item)
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "record_skipped",
                model=model.__name__,
                record_id=item.get("id"),
                error_count=e.error_count(),
            )
    return records


def _parse_settings(raw: Any) -> LedgerSettings:
    if not isinstance(raw, dict):
        return LedgerSettings()

    defaults = LedgerSettings().to_storage_dict()
    merged = {**defaults, **raw}

    # Same bounds the settings editor clamps to
    percent = merged.get("bankPercentOnTarget")
    if isinstance(percent, (int, float)) and not isinstance(percent, bool) and math.isfinite(percent):
        merged["bankPercentOnTarget"] = max(0, min(100, percent))

    try:
        return LedgerSettings.model_validate(merged)
    except ValidationError as e:
        # Keep every setting that validates on its own
        bad_fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        logger.warning("settings_fields_reset", fields=sorted(bad_fields))
        cleaned = {k: v for k, v in merged.items() if k not in bad_fields}
        return LedgerSettings.model_validate({**defaults, **cleaned})
