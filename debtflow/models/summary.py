"""
Derived Figures

Outputs of the ledger engine. None of these are persisted; they are
recomputed from a LedgerSnapshot after every committed mutation.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from debtflow.models.ledger import Payment


class ReturnKind(str, Enum):
    """How a bet's return was determined."""
    OVERRIDE = "override"      # Manual value, e.g. a cash out
    COMPUTED = "computed"      # Derived from stake, odds and status
    UNRESOLVED = "unresolved"  # Pending bet, no return yet


class ReturnResolution(BaseModel):
    """
    Tagged result of resolving a bet's return.

    Collapse to a plain optional with ``as_optional()`` only at the boundary.
    """

    kind: ReturnKind
    value: Optional[Decimal] = None

    @classmethod
    def override(cls, value: Decimal) -> "ReturnResolution":
        return cls(kind=ReturnKind.OVERRIDE, value=value)

    @classmethod
    def computed(cls, value: Decimal) -> "ReturnResolution":
        return cls(kind=ReturnKind.COMPUTED, value=value)

    @classmethod
    def unresolved(cls) -> "ReturnResolution":
        return cls(kind=ReturnKind.UNRESOLVED)

    def as_optional(self) -> Optional[Decimal]:
        return self.value


class BettingStats(BaseModel):
    """Aggregate performance over settled bets."""

    settled_count: int = 0
    won_count: int = 0
    hit_rate_pct: int = Field(default=0, ge=0, le=100)
    total_staked: Decimal = Decimal("0.00")
    total_returns: Decimal = Decimal("0.00")
    profit: Decimal = Decimal("0.00")
    progress_pct: int = Field(default=0, ge=0, le=100)


class DebtSummary(BaseModel):
    """
    Debt totals.

    paid_total is every payment ever banked. paid_shown is what has actually
    reduced the debt (total minus remaining) and is what the overview shows.
    """

    total_debt: Decimal
    paid_total: Decimal
    remaining_debt: Decimal
    paid_shown: Decimal
    progress_pct: int = Field(ge=0, le=100)


class CardProgress(BaseModel):
    """Per-card paid and remaining figures."""

    card_id: str
    name: str
    balance: Decimal
    paid: Decimal
    remaining: Decimal


class MilestoneOutcome(BaseModel):
    """
    Result of evaluating the auto-bank milestones.

    payment and counter must be committed together.
    """

    payment: Optional[Payment] = None
    counter: int = Field(ge=0)

    @property
    def fired(self) -> bool:
        return self.payment is not None


class LedgerOverview(BaseModel):
    """Everything the presentation layer displays, for one snapshot revision."""

    stats: BettingStats
    debt: DebtSummary
    cards: list[CardProgress] = Field(default_factory=list)
    banked_from_betting: Decimal
    available_profit: Decimal
    amount_per_milestone: Decimal
    current_bankroll: Decimal
    challenge_progress_pct: int = Field(ge=0, le=100)
    banked_milestones: int = Field(ge=0)
