"""Database connection helper."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from order_ledger.config import get_database_url


def get_connection() -> psycopg.Connection[dict[str, object]]:
    """Create and return a new autocommit database connection.

    Ledger writes group their statements with ``conn.transaction()``.
    """
    return psycopg.connect(get_database_url(), row_factory=dict_row, autocommit=True)
