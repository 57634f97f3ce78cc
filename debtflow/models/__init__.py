"""
Data Models Package

This package contains all Pydantic models used by DebtFlow.
All records flowing through the ledger must conform to these schemas.
"""

from debtflow.models.ledger import (
    Bet,
    BetStatus,
    DebtCard,
    LedgerSettings,
    LedgerSnapshot,
    Payment,
    PaymentSource,
    Sport,
)
from debtflow.models.summary import (
    BettingStats,
    CardProgress,
    DebtSummary,
    LedgerOverview,
    MilestoneOutcome,
    ReturnKind,
    ReturnResolution,
)
from debtflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Bet",
    "BetStatus",
    "DebtCard",
    "LedgerSettings",
    "LedgerSnapshot",
    "Payment",
    "PaymentSource",
    "Sport",
    # Derived figures
    "BettingStats",
    "CardProgress",
    "DebtSummary",
    "LedgerOverview",
    "MilestoneOutcome",
    "ReturnKind",
    "ReturnResolution",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
