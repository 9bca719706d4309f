"""Paginated, capped scan over a label's threads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from order_ledger.models import RunSummary

if TYPE_CHECKING:
    from collections.abc import Callable

    from order_ledger.adapters.base import Label
    from order_ledger.filters import MessageFilter
    from order_ledger.models import MailMessage

logger = logging.getLogger(__name__)


class SetupError(RuntimeError):
    """A run cannot start: missing label, sheet, or folder path."""


def run_batches(
    label: Label,
    *,
    page_size: int,
    max_per_run: int,
    message_filter: MessageFilter,
    processed: set[str],
    handle: Callable[[MailMessage], bool],
) -> RunSummary:
    """Feed qualifying messages to ``handle`` until the cap or the label runs out.

    ``handle`` returns True when the message produced output; its id is
    then added to ``processed`` and counts toward ``max_per_run``. A
    False return or an exception leaves the message unmarked so a later
    run picks it up again. Pages are fetched ``page_size`` threads at a
    time; a short or empty page ends the scan.
    """
    scanned = 0
    emitted = 0
    offset = 0

    while emitted < max_per_run:
        logger.info("Fetching up to %d threads from offset %d", page_size, offset)
        threads = label.list_threads(offset, page_size)
        if not threads:
            logger.info("No more threads in this label")
            break
        logger.debug("Got %d threads", len(threads))

        for thread in threads:
            for message in thread.messages:
                if emitted >= max_per_run:
                    break
                scanned += 1
                logger.debug(
                    "Checking %s | From: %r | Subject: %r",
                    message.message_id,
                    message.sender,
                    message.subject,
                )
                if not message_filter.qualifies(message, processed):
                    continue
                try:
                    handled = handle(message)
                except Exception:
                    logger.warning(
                        "Failed to handle message %s", message.message_id, exc_info=True
                    )
                    continue
                if not handled:
                    logger.info("Skipped %s: nothing extracted", message.message_id)
                    continue
                processed.add(message.message_id)
                emitted += 1
            if emitted >= max_per_run:
                # The rest of this page stays unmarked for the next run.
                logger.info("Hit the limit of %d items for this run", max_per_run)
                break

        if len(threads) < page_size:
            logger.debug("Short page; all threads visited")
            break
        offset += page_size

    return RunSummary(scanned=scanned, emitted=emitted)
