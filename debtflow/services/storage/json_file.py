"""
JSON File Storage Implementation

DESIGN DECISION: A single JSON document on local disk is the default backend:
1. Zero setup for a single-user ledger
2. The document keeps the original persisted state shape
   ({bets, settings, payments, bankedMilestones, cards}), so existing state
   carries over unchanged
3. The whole snapshot, including the milestone counter, is written in one
   file replace, so a save never leaves payments and counter out of step

Audit events go to a separate JSON-lines file, one event per line.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Union

import structlog

from debtflow.models.audit import AuditEvent
from debtflow.models.ledger import LedgerSnapshot
from debtflow.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


class JsonFileLedgerStorage(LedgerStorageInterface):
    """
    Ledger snapshot stored as one JSON document.

    Saves go through a temporary file in the same directory followed by an
    atomic replace.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> LedgerSnapshot:
        """Load the snapshot, substituting defaults for anything malformed."""
        if not self._path.exists():
            return LedgerSnapshot()

        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read ledger file {self._path}: {e}")

        if not text.strip():
            return LedgerSnapshot()

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(
                "ledger_file_unparseable",
                path=str(self._path),
                error=str(e),
            )
            return LedgerSnapshot()

        return LedgerSnapshot.from_storage(raw)

    def save(self, snapshot: LedgerSnapshot) -> bool:
        """Write the snapshot atomically."""
        payload = json.dumps(snapshot.to_storage_dict(), indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to save ledger file {self._path}: {e}")

        return True


class JsonLinesAuditStorage(AuditStorageInterface):
    """
    Audit events appended to a JSON-lines file.

    Audit events are append-only.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(event.model_dump_json() + "\n")
            return True
        except OSError as e:
            # Audit logging should not break the main flow
            logger.error("audit_append_failed", path=str(self._path), error=str(e))
            return False

    def _read_events(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []

        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StorageError(f"Failed to read audit log {self._path}: {e}")

        events = []
        for line in lines:
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line))
            except ValueError:
                continue  # Skip malformed lines
        return events

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
