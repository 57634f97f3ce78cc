"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
A local JSON file is the default backend; Google Sheets is the alternative.
"""

from debtflow.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
)
from debtflow.services.storage.json_file import (
    JsonFileLedgerStorage,
    JsonLinesAuditStorage,
)
from debtflow.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # JSON file implementation
    "JsonFileLedgerStorage",
    "JsonLinesAuditStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
