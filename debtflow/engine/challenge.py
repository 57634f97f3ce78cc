"""
Challenge Progress Calculator

Progress of the bankroll "roller" challenge: how far the bankroll has moved
from the run's start stake towards its target stake.
"""

from decimal import Decimal

from debtflow.engine.rounding import Number, clamp_percent, round_money, round_percent, to_decimal
from debtflow.models.ledger import LedgerSettings
from debtflow.models.summary import BettingStats


def current_bankroll(settings: LedgerSettings, stats: BettingStats) -> Decimal:
    return round_money(settings.starting_bankroll + stats.profit)


def challenge_progress(
    bankroll: Number,
    start_stake: Number,
    target_stake: Number,
) -> int:
    """
    Percent of the start-to-target range covered, 0-100.

    A degenerate range (target not above start) is 0%.
    """
    start = to_decimal(start_stake)
    span = to_decimal(target_stake) - start
    if span <= 0:
        return 0
    return clamp_percent(round_percent((to_decimal(bankroll) - start) / span * 100))
