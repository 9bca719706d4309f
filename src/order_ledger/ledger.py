"""Tabular ledger: named sheets of text rows, stored in PostgreSQL.

A sheet has a fixed header (kept with the sheet definition) and data
rows numbered from 1 in insertion order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from psycopg import errors

from order_ledger.pipeline import SetupError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    import psycopg

logger = logging.getLogger(__name__)

MISSING_TABLES = "Ledger tables missing; run `order-ledger init` first."

SCHEMA = """\
CREATE TABLE IF NOT EXISTS ledger_sheets (
    name text PRIMARY KEY,
    header text[] NOT NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS ledger_rows (
    sheet_name text NOT NULL REFERENCES ledger_sheets (name) ON DELETE CASCADE,
    row_number integer NOT NULL,
    cells text[] NOT NULL,
    PRIMARY KEY (sheet_name, row_number)
);
"""


class Sheet(Protocol):
    """A table of rows below a fixed header."""

    name: str

    def read_column(self, index: int) -> list[str]: ...

    def append_row(self, values: Sequence[object]) -> None: ...

    def clear_and_rewrite(self, rows: Iterable[Sequence[object]]) -> None: ...


class Workbook(Protocol):
    """A collection of named sheets."""

    def find_sheet(self, name: str) -> Sheet | None: ...

    def find_or_create_sheet(self, name: str, header: Sequence[str]) -> Sheet: ...


def _cells(values: Sequence[object]) -> list[str]:
    return ["" if value is None else str(value) for value in values]


class PostgresWorkbook:
    """Workbook backed by the ledger_sheets / ledger_rows tables."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn

    def ensure_schema(self) -> None:
        """Create the ledger tables if they do not exist."""
        with self.conn.transaction():
            self.conn.execute(SCHEMA)

    def find_sheet(self, name: str) -> PostgresSheet | None:
        try:
            row = self.conn.execute(
                "SELECT name FROM ledger_sheets WHERE name = %s", (name,)
            ).fetchone()
        except errors.UndefinedTable as exc:
            raise SetupError(MISSING_TABLES) from exc
        if row is None:
            return None
        return PostgresSheet(self.conn, name)

    def find_or_create_sheet(self, name: str, header: Sequence[str]) -> PostgresSheet:
        try:
            with self.conn.transaction():
                created = self.conn.execute(
                    "INSERT INTO ledger_sheets (name, header) VALUES (%s, %s) "
                    "ON CONFLICT (name) DO NOTHING RETURNING name",
                    (name, list(header)),
                ).fetchone()
        except errors.UndefinedTable as exc:
            raise SetupError(MISSING_TABLES) from exc
        if created is not None:
            logger.info("Created sheet %r", name)
        return PostgresSheet(self.conn, name)


class PostgresSheet:
    """One named sheet in a PostgresWorkbook."""

    def __init__(self, conn: psycopg.Connection[Any], name: str) -> None:
        self.conn = conn
        self.name = name

    def read_column(self, index: int) -> list[str]:
        """Return the non-blank values of a 0-based column, in row order."""
        rows = self.conn.execute(
            "SELECT cells[%s] AS value FROM ledger_rows "
            "WHERE sheet_name = %s ORDER BY row_number",
            (index + 1, self.name),
        ).fetchall()
        values = (str(row["value"]).strip() for row in rows if row["value"])
        return [value for value in values if value]

    def append_row(self, values: Sequence[object]) -> None:
        with self.conn.transaction():
            self.conn.execute(
                "INSERT INTO ledger_rows (sheet_name, row_number, cells) "
                "SELECT %s, COALESCE(MAX(row_number), 0) + 1, %s "
                "FROM ledger_rows WHERE sheet_name = %s",
                (self.name, _cells(values), self.name),
            )

    def clear_and_rewrite(self, rows: Iterable[Sequence[object]]) -> None:
        """Replace every data row; the header is kept."""
        params = [
            (self.name, number, _cells(values))
            for number, values in enumerate(rows, start=1)
        ]
        with self.conn.transaction():
            self.conn.execute(
                "DELETE FROM ledger_rows WHERE sheet_name = %s", (self.name,)
            )
            if params:
                with self.conn.cursor() as cur:
                    cur.executemany(
                        "INSERT INTO ledger_rows (sheet_name, row_number, cells) "
                        "VALUES (%s, %s, %s)",
                        params,
                    )
        logger.debug("Rewrote sheet %r with %d rows", self.name, len(params))
