"""
Configuration Management for DebtFlow

Process configuration comes from environment variables (and a .env file)
through pydantic-settings.

DESIGN DECISION: Only process-level configuration lives here: which storage
backend to use and where it is. Ledger settings (target profit, bank
percent, ...) are user-editable and persisted with the ledger snapshot.
"""

import warnings
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file (JSON)"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Key of the spreadsheet holding the ledger"
    )

    # One worksheet per record set
    bets_sheet_name: str = Field(default="Bets")
    payments_sheet_name: str = Field(default="Payments")
    cards_sheet_name: str = Field(default="Cards")
    state_sheet_name: str = Field(
        default="State",
        description="Key/value sheet holding settings and the milestone counter"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Append-only audit event sheet"
    )

    @field_validator("credentials_path")
    @classmethod
    def warn_missing_credentials(cls, v: str) -> str:
        """Missing key file is a warning only; it may be mounted later."""
        if not Path(v).exists():
            warnings.warn(
                f"Google service account key not found at {v}. "
                "The Google Sheets backend will fail to connect until it exists."
            )
        return v


class AppSettings(BaseSettings):
    """
    Application settings.

    Read from the environment, falling back to .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Deployment environment name"
    )
    debug_mode: bool = Field(
        default=False,
        description="Verbose logging and error details in the UI"
    )

    # Storage
    storage_backend: Literal["json", "google_sheets"] = Field(
        default="json",
        description="Where the ledger snapshot is persisted"
    )
    data_file_path: str = Field(
        default="data/debtflow_state.json",
        description="Ledger snapshot file (json backend)"
    )
    audit_log_path: str = Field(
        default="data/audit.jsonl",
        description="Audit log file (json backend)"
    )

    # Presentation
    currency_symbol: str = Field(
        default="£",
        max_length=3,
        description="Currency symbol shown in the UI"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Sub-settings are built on access, so a missing Google Sheets
    configuration only matters when that backend is used.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Settings singleton.

    Call get_settings.cache_clear() after changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Check the configuration needed by the selected backend.

    Returns {name: ok} with a "<name>_error" message for each failure.
    Google Sheets is only required when it is the configured backend.
    """
    results = {}
    settings = get_settings()

    try:
        app = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)
        return results

    if app.storage_backend == "json":
        data_dir = Path(app.data_file_path).parent
        results["data_dir"] = not data_dir.exists() or data_dir.is_dir()
        if not results["data_dir"]:
            results["data_dir_error"] = f"{data_dir} is not a directory"

    try:
        _ = settings.google_sheets
        results["google_sheets"] = True
    except Exception as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = (
            str(e) if app.storage_backend == "google_sheets" else "Not configured (not in use)"
        )

    return results
