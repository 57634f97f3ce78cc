"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as an alternative backend because:
1. The user can view their bets, payments and cards directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Layout: one worksheet per record set (Bets, Payments, Cards) with the
persisted camelCase keys as the header row, plus a key/value State sheet
holding the settings (as JSON) and the milestone counter.

TRADEOFFS:
- No transactions. A save rewrites State first, then Bets, Cards and Payments.
  The counter is written before the payments: if a save fails in between, a
  milestone can be left un-banked but is never banked twice.
- Cells cannot tell "null" from "empty", so null is written as NULL_CELL and
  an absent optional field as an empty cell.
"""

import json
from typing import Any, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from debtflow.config import get_settings
from debtflow.models.audit import AuditEvent, AuditEventType, AuditSeverity
from debtflow.models.ledger import LedgerSnapshot
from debtflow.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)

NULL_CELL = "<null>"

BET_COLUMNS = [
    "id",
    "date",
    "description",
    "sport",
    "stake",
    "oddsDecimal",
    "status",
    "returnOverride",
    "settledAt",
    "createdAt",
    "updatedAt",
]

PAYMENT_COLUMNS = [
    "id",
    "date",
    "amount",
    "source",
    "note",
    "cardId",
]

CARD_COLUMNS = [
    "id",
    "name",
    "balance",
]

STATE_COLUMNS = ["key", "value"]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


def encode_cell(record: dict[str, Any], column: str) -> str:
    """Encode one field of a storage dict as a cell value."""
    if column not in record:
        return ""
    value = record[column]
    if value is None:
        return NULL_CELL
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def record_to_row(record: dict[str, Any], columns: list[str]) -> list[str]:
    return [encode_cell(record, column) for column in columns]


def row_to_record(header: list[str], row: list[str]) -> dict[str, Any]:
    """
    Decode a sheet row into a storage dict.

    Empty cells become absent keys, NULL_CELL becomes None. Values stay
    strings; model validation parses numbers and dates.
    """
    record: dict[str, Any] = {}
    for column, cell in zip(header, row):
        if not column or cell == "":
            continue
        record[column] = None if cell == NULL_CELL else cell
    return record


def _parse_counter(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        logger.warning("state_counter_unparseable", value=value)
        return 0


def _parse_settings(value: Optional[str]) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("state_settings_unparseable")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Each record is one row; settings and the milestone counter live in the
    State sheet.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheets(self) -> dict[str, tuple[gspread.Worksheet, list[str]]]:
        settings = self._client.settings
        layout = {
            "bets": (settings.bets_sheet_name, BET_COLUMNS),
            "cards": (settings.cards_sheet_name, CARD_COLUMNS),
            "payments": (settings.payments_sheet_name, PAYMENT_COLUMNS),
            "state": (settings.state_sheet_name, STATE_COLUMNS),
        }
        return {
            key: (self._client.get_worksheet(title, columns), columns)
            for key, (title, columns) in layout.items()
        }

    @staticmethod
    def _read_records(sheet: gspread.Worksheet) -> list[dict[str, Any]]:
        rows = sheet.get_all_values()
        if not rows:
            return []
        header = rows[0]
        return [
            row_to_record(header, row)
            for row in rows[1:]
            if any(cell for cell in row)
        ]

    def load(self) -> LedgerSnapshot:
        """Load the snapshot from all ledger sheets."""
        try:
            sheets = self._sheets()
            bets = self._read_records(sheets["bets"][0])
            cards = self._read_records(sheets["cards"][0])
            payments = self._read_records(sheets["payments"][0])
            state_rows = sheets["state"][0].get_all_values()[1:]
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load ledger: {e}")

        state = {row[0]: row[1] for row in state_rows if len(row) >= 2 and row[0]}

        return LedgerSnapshot.from_storage({
            "bets": bets,
            "payments": payments,
            "cards": cards,
            "settings": _parse_settings(state.get("settings")),
            "bankedMilestones": _parse_counter(state.get("bankedMilestones")),
        })

    def snapshot_to_rows(self, snapshot: LedgerSnapshot) -> dict[str, list[list[str]]]:
        """Convert a snapshot to sheet rows (header row included)."""
        stored = snapshot.to_storage_dict()
        return {
            "bets": [BET_COLUMNS] + [record_to_row(b, BET_COLUMNS) for b in stored["bets"]],
            "cards": [CARD_COLUMNS] + [record_to_row(c, CARD_COLUMNS) for c in stored["cards"]],
            "payments": [PAYMENT_COLUMNS] + [
                record_to_row(p, PAYMENT_COLUMNS) for p in stored["payments"]
            ],
            "state": [
                STATE_COLUMNS,
                ["settings", json.dumps(stored["settings"])],
                ["bankedMilestones", str(stored["bankedMilestones"])],
            ],
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def save(self, snapshot: LedgerSnapshot) -> bool:
        """Rewrite every ledger sheet from the snapshot."""
        rows = self.snapshot_to_rows(snapshot)
        try:
            sheets = self._sheets()
            # Order matters: the counter in State before the payments
            for key in ("state", "bets", "cards", "payments"):
                sheet = sheets[key][0]
                sheet.clear()
                sheet.append_rows(rows[key], value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save ledger: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _get_sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=safe_get(0),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            description=safe_get(6),
            details=json.loads(safe_get(7)) if safe_get(7) else {},
            error_message=safe_get(8) or None,
            is_user_action=safe_get(9).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._get_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.error("audit_append_failed", error=str(e))
            return False

    def _read_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._get_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._read_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
