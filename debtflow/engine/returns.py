"""
Return Resolver

Works out what a single bet paid back.

Precedence, highest first:
1. A manual return override (cash outs, corrections), whatever the status
2. Won: stake x decimal odds
3. Lost: zero
4. Pending: unresolved, which is NOT the same as zero
"""

from decimal import Decimal
from typing import Optional

from debtflow.engine.rounding import ZERO, round_money
from debtflow.models.ledger import Bet, BetStatus
from debtflow.models.summary import ReturnResolution


def default_return(
    stake: Decimal,
    odds_decimal: Decimal,
    status: BetStatus,
) -> Optional[Decimal]:
    """Return implied by stake, odds and status alone, ignoring overrides."""
    if status == BetStatus.WON:
        return round_money(stake * odds_decimal)
    if status == BetStatus.LOST:
        return ZERO
    return None


def resolve(bet: Bet) -> ReturnResolution:
    """Resolve a bet's return as a tagged result."""
    if bet.return_override is not None:
        return ReturnResolution.override(bet.return_override)

    computed = default_return(bet.stake, bet.odds_decimal, bet.status)
    if computed is None:
        return ReturnResolution.unresolved()
    return ReturnResolution.computed(computed)


def effective_return(bet: Bet) -> Optional[Decimal]:
    """Resolved return collapsed to a plain optional (None = pending)."""
    return resolve(bet).as_optional()
