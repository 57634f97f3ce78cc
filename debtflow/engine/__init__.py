"""
Ledger & Progress Engine

Pure calculations over ledger records, plus the auto-bank milestone engine.
Nothing in this package performs I/O or holds state: pass a snapshot's
records in, get fresh figures out.
"""

from debtflow.engine.challenge import challenge_progress, current_bankroll
from debtflow.engine.debt import (
    card_progress,
    paid_to_card,
    remaining_debt,
    summarize_debt,
    sum_payments,
    total_debt,
)
from debtflow.engine.milestones import (
    AUTO_BANK_NOTE,
    MANUAL_BANK_NOTE,
    amount_per_milestone,
    available_profit,
    bank_now,
    evaluate,
)
from debtflow.engine.returns import default_return, effective_return, resolve
from debtflow.engine.stats import compute_stats

__all__ = [
    # Return resolver
    "default_return",
    "effective_return",
    "resolve",
    # Statistics
    "compute_stats",
    # Debt
    "card_progress",
    "paid_to_card",
    "remaining_debt",
    "summarize_debt",
    "sum_payments",
    "total_debt",
    # Milestones
    "AUTO_BANK_NOTE",
    "MANUAL_BANK_NOTE",
    "amount_per_milestone",
    "available_profit",
    "bank_now",
    "evaluate",
    # Challenge
    "challenge_progress",
    "current_bankroll",
]
