"""
Statistics Aggregator

Folds bets into aggregate betting performance. Pure and order independent:
only sums and counts are involved.
"""

from collections.abc import Iterable
from decimal import Decimal

from debtflow.engine.returns import effective_return
from debtflow.engine.rounding import (
    ZERO,
    Number,
    clamp_percent,
    round_money,
    round_percent,
    to_decimal,
)
from debtflow.models.ledger import Bet, BetStatus
from debtflow.models.summary import BettingStats


def compute_stats(bets: Iterable[Bet], target_amount: Number) -> BettingStats:
    """
    Aggregate settled bets.

    Pending bets are ignored entirely. Hit rate is 0 when nothing has
    settled, and progress is 0 when the target is not positive. Progress is
    clamped to 0-100: a loss shows 0, beating the target shows 100.
    """
    settled = [bet for bet in bets if bet.status != BetStatus.PENDING]
    won_count = sum(1 for bet in settled if bet.status == BetStatus.WON)

    total_staked = round_money(sum((bet.stake for bet in settled), ZERO))
    # Settled bets always resolve, the `or ZERO` only guards the type
    total_returns = round_money(
        sum(((effective_return(bet) or ZERO) for bet in settled), ZERO)
    )
    profit = round_money(total_returns - total_staked)

    hit_rate = round_percent(Decimal(won_count * 100) / len(settled)) if settled else 0

    target = to_decimal(target_amount)
    progress = clamp_percent(round_percent(profit / target * 100)) if target > 0 else 0

    return BettingStats(
        settled_count=len(settled),
        won_count=won_count,
        hit_rate_pct=hit_rate,
        total_staked=total_staked,
        total_returns=total_returns,
        profit=profit,
        progress_pct=progress,
    )
