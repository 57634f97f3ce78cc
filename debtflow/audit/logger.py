"""
Audit Logger

DESIGN DECISION: Every change to the ledger is logged.
This provides:
1. Complete traceability of what was banked and why
2. Debugging capability when a figure looks wrong
3. User can see history of their changes

The audit logger:
- Always logs locally as structured JSON
- Gracefully handles storage failures (doesn't crash the app if logging fails)
"""

from collections import deque
from typing import Optional

import structlog

from debtflow.models.audit import AuditEvent, AuditEventBuilder
from debtflow.services.storage import AuditStorageInterface


# In-memory tail kept for the current process
RECENT_EVENT_LIMIT = 200

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class LedgerAuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, if configured (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("debtflow.audit")
        self._recent: deque[AuditEvent] = deque(maxlen=RECENT_EVENT_LIMIT)

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Events logged by this instance, oldest first (bounded)."""
        return list(self._recent)

    def history(self, limit: int = 20) -> list[AuditEvent]:
        """
        Most recent audit events, newest first.

        Read from audit storage when configured, so events from earlier
        sessions are included. Falls back to this instance's events if the
        storage cannot be read.
        """
        if self._storage:
            try:
                return self._storage.get_recent_events(limit=limit)
            except Exception as e:
                self._logger.error("audit_history_failed", error=str(e))
        return list(reversed(self._recent))[:limit]

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        self._recent.append(event)
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_auto_bank(
        self,
        payment_id: str,
        amount: str,
        previous_counter: int,
        new_counter: int,
    ) -> None:
        """Log an auto-bank milestone firing."""
        self.log(AuditEventBuilder.auto_bank_triggered(
            payment_id=payment_id,
            amount=amount,
            previous_counter=previous_counter,
            new_counter=new_counter,
        ))

    def log_save_failed(self, error_message: str) -> None:
        self.log(AuditEventBuilder.save_failed(error_message))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        ))
