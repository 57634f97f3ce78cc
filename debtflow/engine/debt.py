"""
Debt Aggregator

Folds debt cards and payments into total, paid and remaining figures.

Two modes:
- LEGACY (no cards): the single configured debt total is the whole debt and
  every payment reduces it. This is how state written before cards existed
  behaves, and it must keep behaving that way.
- CARDS: total is the sum of card balances. Only payments earmarked to a card
  reduce that card, and never below zero. Unearmarked payments reduce no card.
"""

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Optional

from debtflow.engine.rounding import ZERO, Number, round_money, round_percent, to_decimal
from debtflow.models.ledger import DebtCard, Payment, PaymentSource
from debtflow.models.summary import CardProgress, DebtSummary


def sum_payments(
    payments: Iterable[Payment],
    source: Optional[PaymentSource] = None,
) -> Decimal:
    """Total of all payments, or of one income stream's payments."""
    return round_money(
        sum((p.amount for p in payments if source is None or p.source == source), ZERO)
    )


def paid_to_card(payments: Iterable[Payment], card_id: str) -> Decimal:
    """Total of payments earmarked to one card."""
    return round_money(sum((p.amount for p in payments if p.card_id == card_id), ZERO))


def card_remaining(card: DebtCard, payments: Iterable[Payment]) -> Decimal:
    """Remaining balance on a card. Overpayment clamps at zero, no roll over."""
    return max(ZERO, round_money(card.balance - paid_to_card(payments, card.id)))


def total_debt(cards: Sequence[DebtCard], legacy_total: Number) -> Decimal:
    if not cards:
        return round_money(legacy_total)
    return round_money(sum((card.balance for card in cards), ZERO))


def remaining_debt(
    cards: Sequence[DebtCard],
    payments: Sequence[Payment],
    legacy_total: Number = ZERO,
) -> Decimal:
    if not cards:
        return max(ZERO, round_money(to_decimal(legacy_total) - sum_payments(payments)))
    return round_money(sum((card_remaining(card, payments) for card in cards), ZERO))


def card_progress(
    cards: Sequence[DebtCard],
    payments: Sequence[Payment],
) -> list[CardProgress]:
    return [
        CardProgress(
            card_id=card.id,
            name=card.name,
            balance=round_money(card.balance),
            paid=paid_to_card(payments, card.id),
            remaining=card_remaining(card, payments),
        )
        for card in cards
    ]


def summarize_debt(
    cards: Sequence[DebtCard],
    payments: Sequence[Payment],
    legacy_total: Number,
) -> DebtSummary:
    """
    Compute the debt overview.

    progress_pct is how much of the total has been paid down, capped at 100
    and 0 when there is no debt to pay.
    """
    total = total_debt(cards, legacy_total)
    remaining = remaining_debt(cards, payments, legacy_total)
    paid_shown = round_money(total - remaining)

    progress = min(100, round_percent(paid_shown / total * 100)) if total > 0 else 0

    return DebtSummary(
        total_debt=total,
        paid_total=sum_payments(payments),
        remaining_debt=remaining,
        paid_shown=paid_shown,
        progress_pct=max(0, progress),
    )
