"""Persisted sets of processed message ids."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from order_ledger.models import LEDGER_HEADER

if TYPE_CHECKING:
    from collections.abc import Set

    from order_ledger.ledger import Sheet

logger = logging.getLogger(__name__)

PROCESSED_LOG_HEADER = ["messageId"]


class DedupStore(Protocol):
    """Load and persist the set of already-handled message ids."""

    def load(self) -> set[str]: ...

    def save(self, ids: Set[str]) -> None: ...


class ProcessedLog:
    """Single-column sheet of message ids, rewritten in full on save.

    Two runs saving to the same sheet at once will lose ids; runs are
    expected to be serialized.
    """

    def __init__(self, sheet: Sheet) -> None:
        self.sheet = sheet

    def load(self) -> set[str]:
        ids = set(self.sheet.read_column(0))
        logger.info(
            "Loaded %d processed message ids from sheet %r", len(ids), self.sheet.name
        )
        return ids

    def save(self, ids: Set[str]) -> None:
        logger.info("Saving %d processed message ids to %r", len(ids), self.sheet.name)
        self.sheet.clear_and_rewrite([[message_id] for message_id in sorted(ids)])


class LedgerColumnIds:
    """Message ids read from the purchase ledger's own messageId column.

    Each appended purchase row already records its id, so ``save`` has
    nothing to write.
    """

    def __init__(
        self, sheet: Sheet, column: int = LEDGER_HEADER.index("messageId")
    ) -> None:
        self.sheet = sheet
        self.column = column

    def load(self) -> set[str]:
        ids = set(self.sheet.read_column(self.column))
        logger.info("Found %d existing message ids in %r", len(ids), self.sheet.name)
        return ids

    def save(self, ids: Set[str]) -> None:
        logger.debug("Ledger rows carry their ids; %d ids already persisted", len(ids))
