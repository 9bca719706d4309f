"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration."""

    host: str
    username: str
    password: str
    port: int = 993


@dataclass(frozen=True, kw_only=True)
class PipelineConfig:
    """Settings shared by the ingest and export runs."""

    label: str
    max_per_run: int
    page_size: int
    sender_filter: str
    subject_keyword: str = "ordered"
    timezone: tzinfo | None = None


@dataclass(frozen=True, kw_only=True)
class IngestConfig(PipelineConfig):
    """Purchase ledger ingestion settings."""

    sheet_name: str


@dataclass(frozen=True, kw_only=True)
class ExportConfig(PipelineConfig):
    """PDF export settings."""

    folder_path: str
    log_sheet: str


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_store_path() -> Path:
    """Return the ORDER_LEDGER_STORE_PATH, defaulting to ./data/documents.

    Always resolves to an absolute path to avoid issues if the
    working directory changes during execution.
    """
    return Path(
        os.environ.get("ORDER_LEDGER_STORE_PATH", "./data/documents")
    ).resolve()


def get_timezone() -> tzinfo | None:
    """Return the zone used for order dates and filenames.

    None means the host's local time zone.
    """
    name = os.environ.get("ORDER_LEDGER_TIMEZONE", "").strip()
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"ORDER_LEDGER_TIMEZONE is not a known time zone: {name!r}"
        raise ValueError(msg) from exc


def get_log_level() -> str:
    """Return the LOG_LEVEL, defaulting to INFO."""
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993)
    """
    host = os.environ.get("IMAP_HOST")
    username = os.environ.get("IMAP_USERNAME")
    password = os.environ.get("IMAP_PASSWORD")

    missing = []
    if not host:
        missing.append("IMAP_HOST")
    if not username:
        missing.append("IMAP_USERNAME")
    if not password:
        missing.append("IMAP_PASSWORD")

    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)

    return ImapConfig(
        host=host,  # type: ignore[arg-type]
        username=username,  # type: ignore[arg-type]
        password=password,  # type: ignore[arg-type]
        port=_get_int("IMAP_PORT", 993),
    )


def get_ingest_config() -> IngestConfig:
    """Build the ingestion run configuration.

    All INGEST_* variables are optional; defaults target Amazon.com
    order confirmations filed under an "Amazon Orders" label.
    """
    return IngestConfig(
        label=os.environ.get("INGEST_LABEL", "Amazon Orders"),
        sheet_name=os.environ.get("INGEST_SHEET", "Amazon Orders"),
        max_per_run=_get_int("INGEST_MAX_PER_RUN", 250),
        page_size=_get_int("INGEST_PAGE_SIZE", 125),
        sender_filter=os.environ.get(
            "INGEST_SENDER_FILTER", "auto-confirm@amazon.com"
        ),
        subject_keyword=os.environ.get("INGEST_SUBJECT_KEYWORD", "ordered"),
        timezone=get_timezone(),
    )


def get_export_config() -> ExportConfig:
    """Build the PDF export run configuration."""
    return ExportConfig(
        label=os.environ.get("EXPORT_LABEL", "Amazon Orders"),
        folder_path=os.environ.get(
            "EXPORT_FOLDER_PATH", "Purchases/Amazon/Extracted PDFs"
        ),
        log_sheet=os.environ.get("EXPORT_LOG_SHEET", "Amazon PDFs"),
        max_per_run=_get_int("EXPORT_MAX_PER_RUN", 100),
        page_size=_get_int("EXPORT_PAGE_SIZE", 50),
        sender_filter=os.environ.get("EXPORT_SENDER_FILTER", "amazon.com"),
        subject_keyword=os.environ.get("EXPORT_SUBJECT_KEYWORD", "ordered"),
        timezone=get_timezone(),
    )


def _get_int(name: str, default: int) -> int:
    """Read a positive integer variable."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from exc
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ValueError(msg)
    return value
