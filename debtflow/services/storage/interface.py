"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the JSON file for Google Sheets (or a real database) later
2. Use in-memory storage for testing
3. Keep the ledger engine unaware of the storage medium

The interface is intentionally simple - the ledger is small and is always
loaded and saved as one snapshot.
"""

from abc import ABC, abstractmethod

from debtflow.models.audit import AuditEvent
from debtflow.models.ledger import LedgerSnapshot


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger snapshot storage.

    Any storage implementation must round-trip every field losslessly,
    including the difference between a null and an absent returnOverride
    or settledAt.
    """

    @abstractmethod
    def load(self) -> LedgerSnapshot:
        """
        Load the last committed snapshot.

        Returns:
            The stored snapshot, or an empty default snapshot if nothing
            has been stored yet or the stored data is malformed.

        Raises:
            StorageError: If the backend cannot be read at all
        """
        pass

    @abstractmethod
    def save(self, snapshot: LedgerSnapshot) -> bool:
        """
        Persist a snapshot, replacing the previous one.

        Args:
            snapshot: The snapshot to save

        Returns:
            True if saved successfully

        Raises:
            StorageError: If save fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
