"""
Audit Models for DebtFlow

Every change to the ledger is logged for audit purposes.
This provides:
1. Complete traceability of bets, payments and cards
2. A record of every milestone the auto-bank engine fired
3. Debugging information when a snapshot fails to load or save

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from debtflow.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger mutation has its own event type.
    """
    # Bets
    BET_ADDED = "bet_added"
    BET_UPDATED = "bet_updated"
    BET_SETTLED = "bet_settled"
    BET_REMOVED = "bet_removed"

    # Payments
    PAYMENT_BANKED = "payment_banked"
    PAYMENT_REMOVED = "payment_removed"
    AUTO_BANK_TRIGGERED = "auto_bank_triggered"
    MANUAL_BANK = "manual_bank"
    MANUAL_BANK_SKIPPED = "manual_bank_skipped"

    # Cards
    CARD_ADDED = "card_added"
    CARD_UPDATED = "card_updated"
    CARD_REMOVED = "card_removed"

    # Settings
    SETTINGS_UPDATED = "settings_updated"

    # Persistence
    SNAPSHOT_LOADED = "snapshot_loaded"
    SAVE_FAILED = "save_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what record is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of record (e.g., 'bet', 'payment', 'card')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the record this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


def _excerpt(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit - 3] + "..."


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.bet_added(bet_id, "Villa v Palace", "5.00")
        event = AuditEventBuilder.auto_bank_triggered(payment_id, "100.00", 2, 4)
    """

    @staticmethod
    def bet_added(bet_id: str, description: str, stake: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BET_ADDED,
            entity_type="bet",
            entity_id=bet_id,
            description=f"Bet added: {_excerpt(description) or 'untitled'}",
            details={"stake": stake},
            is_user_action=True,
        )

    @staticmethod
    def bet_updated(bet_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BET_UPDATED,
            entity_type="bet",
            entity_id=bet_id,
            description=f"Bet updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def bet_settled(bet_id: str, status: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BET_SETTLED,
            entity_type="bet",
            entity_id=bet_id,
            description=f"Bet settled as {status}",
            details={"status": status},
            is_user_action=True,
        )

    @staticmethod
    def bet_removed(bet_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BET_REMOVED,
            entity_type="bet",
            entity_id=bet_id,
            description="Bet removed",
            is_user_action=True,
        )

    @staticmethod
    def payment_banked(
        payment_id: str,
        amount: str,
        source: str,
        card_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_BANKED,
            entity_type="payment",
            entity_id=payment_id,
            description=f"Payment banked: {amount} from {source}",
            details={
                "amount": amount,
                "source": source,
                "card_id": card_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def payment_removed(payment_id: str, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_REMOVED,
            entity_type="payment",
            entity_id=payment_id,
            description=f"Payment removed: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def auto_bank_triggered(
        payment_id: str,
        amount: str,
        previous_counter: int,
        new_counter: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_BANK_TRIGGERED,
            entity_type="payment",
            entity_id=payment_id,
            description=(
                f"Auto bank fired for {new_counter - previous_counter} "
                f"milestone(s): {amount}"
            ),
            details={
                "amount": amount,
                "previous_counter": previous_counter,
                "new_counter": new_counter,
            },
        )

    @staticmethod
    def manual_bank(payment_id: str, amount: str, card_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_BANK,
            entity_type="payment",
            entity_id=payment_id,
            description=f"Manual bank from betting: {amount}",
            details={"amount": amount, "card_id": card_id},
            is_user_action=True,
        )

    @staticmethod
    def manual_bank_skipped(available: str, required: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_BANK_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="payment",
            description="Manual bank skipped: not enough available profit",
            details={"available": available, "required": required},
            is_user_action=True,
        )

    @staticmethod
    def card_added(card_id: str, name: str, balance: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_ADDED,
            entity_type="card",
            entity_id=card_id,
            description=f"Card added: {_excerpt(name)}",
            details={"balance": balance},
            is_user_action=True,
        )

    @staticmethod
    def card_updated(card_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_UPDATED,
            entity_type="card",
            entity_id=card_id,
            description=f"Card updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def card_removed(card_id: str, orphaned_payments: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_REMOVED,
            entity_type="card",
            entity_id=card_id,
            description="Card removed",
            details={"orphaned_payments": orphaned_payments},
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            entity_type="settings",
            description=f"Settings updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def snapshot_loaded(bets: int, payments: int, cards: int, counter: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_LOADED,
            entity_type="snapshot",
            description="Ledger snapshot loaded",
            details={
                "bets": bets,
                "payments": payments,
                "cards": cards,
                "banked_milestones": counter,
            },
        )

    @staticmethod
    def save_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="snapshot",
            description="Failed to save ledger snapshot",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
