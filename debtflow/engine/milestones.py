"""
Auto-Bank Milestone Engine

Turns betting profit into debt payments once it crosses whole multiples of
the target profit ("milestones").

CRITICAL: evaluate() runs after every committed change to the ledger. It must
be idempotent: re-running it on the same inputs must never bank twice.
The milestone counter is the sole gate. It only ever grows, it is persisted
with the payments, and it is NEVER recomputed from payment history (deleting
an auto-banked payment does not un-fire its milestone).

Two banking paths share the per-milestone amount but nothing else:
- AUTO (evaluate): fires on newly crossed milestones and advances the counter
- MANUAL (bank_now): one-shot transfer, ignores and never touches the counter
"""

import math
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Optional

from debtflow.engine.debt import sum_payments
from debtflow.engine.rounding import ZERO, Number, round_money, to_decimal
from debtflow.models.ledger import (
    DebtCard,
    LedgerSettings,
    Payment,
    PaymentSource,
)
from debtflow.models.summary import MilestoneOutcome

AUTO_BANK_NOTE = "Auto bank on target"
MANUAL_BANK_NOTE = "Manual bank"


def available_profit(betting_profit: Number, payments: Sequence[Payment]) -> Decimal:
    """
    Betting profit not yet converted into a payment.

    Everything already banked from the betting stream, automatically or by
    hand, is subtracted so the same money is never banked twice.
    """
    banked = sum_payments(payments, PaymentSource.BETTING)
    return round_money(to_decimal(betting_profit) - banked)


def amount_per_milestone(settings: LedgerSettings) -> Decimal:
    return round_money(settings.target_amount * settings.bank_percent_on_target / 100)


def evaluate(
    settings: LedgerSettings,
    available: Number,
    counter: int,
    cards: Sequence[DebtCard] = (),
    today: Optional[date] = None,
) -> MilestoneOutcome:
    """
    Check for newly crossed milestones.

    Returns the unchanged counter and no payment unless at least one new
    milestone was crossed. Several milestones crossed at once are banked as a
    single payment.

    The payment is earmarked to the configured auto-bank card, else the first
    card, else left unearmarked.
    """
    unchanged = MilestoneOutcome(payment=None, counter=counter)

    if (
        not settings.auto_bank_enabled
        or settings.target_amount <= 0
        or settings.bank_percent_on_target <= 0
    ):
        return unchanged

    multiples = math.floor(to_decimal(available) / settings.target_amount)
    if multiples <= counter:
        return unchanged

    newly_crossed = multiples - counter
    total_to_bank = round_money(amount_per_milestone(settings) * newly_crossed)
    if total_to_bank <= ZERO:
        return unchanged

    card_id = settings.auto_bank_card_id or (cards[0].id if cards else None)
    payment = Payment(
        payment_date=today or date.today(),
        amount=total_to_bank,
        source=PaymentSource.BETTING,
        note=AUTO_BANK_NOTE,
        card_id=card_id,
    )
    return MilestoneOutcome(payment=payment, counter=multiples)


def bank_now(
    settings: LedgerSettings,
    available: Number,
    card_id: Optional[str] = None,
    today: Optional[date] = None,
) -> Optional[Payment]:
    """
    Manually bank one milestone's worth of betting profit.

    Only banks when the per-milestone amount is positive and fully covered by
    available profit. Does not consult or change the milestone counter.
    """
    per_milestone = amount_per_milestone(settings)
    if per_milestone <= ZERO:
        return None
    if to_decimal(available) < per_milestone:
        return None

    return Payment(
        payment_date=today or date.today(),
        amount=per_milestone,
        source=PaymentSource.BETTING,
        note=MANUAL_BANK_NOTE,
        card_id=card_id or settings.auto_bank_card_id or None,
    )
