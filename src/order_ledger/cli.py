"""CLI entry point for order-ledger."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TypeVar

import click
import psycopg

from order_ledger.adapters.imap import ImapMailbox
from order_ledger.config import (
    ExportConfig,
    IngestConfig,
    get_export_config,
    get_imap_config,
    get_ingest_config,
    get_log_level,
    get_store_path,
)
from order_ledger.db import get_connection
from order_ledger.export import export_pdfs
from order_ledger.images import ImageFetcher
from order_ledger.ingest import ingest_purchases
from order_ledger.ledger import PostgresWorkbook
from order_ledger.models import LEDGER_HEADER
from order_ledger.pipeline import SetupError
from order_ledger.store import LocalFileStore

_ConfigT = TypeVar("_ConfigT", IngestConfig, ExportConfig)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Logging level (default: LOG_LEVEL or INFO).",
)
def cli(log_level: str | None) -> None:
    """Order Ledger: file order confirmation emails as rows and PDFs."""
    configure_logging(log_level or get_log_level())


@cli.command()
def init() -> None:
    """Create the ledger tables and the purchase sheet."""
    try:
        config = get_ingest_config()
        with get_connection() as conn:
            workbook = PostgresWorkbook(conn)
            workbook.ensure_schema()
            workbook.find_or_create_sheet(config.sheet_name, LEDGER_HEADER)
    except (psycopg.Error, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f'Ledger ready; purchases go to sheet "{config.sheet_name}".')


@cli.command()
@click.option("--max-per-run", type=click.IntRange(min=1), default=None)
@click.option("--label", default=None, help="Mailbox label to scan.")
def ingest(max_per_run: int | None, label: str | None) -> None:
    """Append new order confirmations to the purchase ledger."""
    try:
        config = get_ingest_config()
        imap_config = get_imap_config()
        config = _override(config, max_per_run=max_per_run, label=label)
        with ImapMailbox(imap_config) as mailbox, get_connection() as conn:
            summary = ingest_purchases(config, mailbox, PostgresWorkbook(conn))
    except (SetupError, psycopg.Error, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.secho(summary.message, fg="green")


@cli.command()
@click.option("--max-per-run", type=click.IntRange(min=1), default=None)
@click.option("--label", default=None, help="Mailbox label to scan.")
@click.option("--folder", default=None, help="Folder path under the store root.")
def export(max_per_run: int | None, label: str | None, folder: str | None) -> None:
    """Render new order confirmations to PDF files."""
    try:
        config = get_export_config()
        imap_config = get_imap_config()
        config = _override(
            config, max_per_run=max_per_run, label=label, folder_path=folder
        )
        store = LocalFileStore(get_store_path())
        with ImapMailbox(imap_config) as mailbox, get_connection() as conn:
            summary = export_pdfs(
                config, mailbox, PostgresWorkbook(conn), store, ImageFetcher()
            )
    except (SetupError, psycopg.Error, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.secho(summary.message, fg="green")


def _override(config: _ConfigT, **overrides: object) -> _ConfigT:
    """Return ``config`` with the non-None command-line overrides applied."""
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, **changes) if changes else config
