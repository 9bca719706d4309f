"""Append one purchase ledger row per new order confirmation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from order_ledger.filters import MessageFilter
from order_ledger.parsing import parse_purchase
from order_ledger.pipeline import SetupError, run_batches
from order_ledger.state import LedgerColumnIds

if TYPE_CHECKING:
    from order_ledger.adapters.base import Mailbox
    from order_ledger.config import IngestConfig
    from order_ledger.ledger import Workbook
    from order_ledger.models import MailMessage, RunSummary

logger = logging.getLogger(__name__)


def ingest_purchases(
    config: IngestConfig, mailbox: Mailbox, workbook: Workbook
) -> RunSummary:
    """Parse qualifying messages under the label into ledger rows.

    Raises SetupError if the ledger sheet or the label does not exist.
    """
    sheet = workbook.find_sheet(config.sheet_name)
    if sheet is None:
        msg = f'Missing sheet named "{config.sheet_name}"'
        logger.error(msg)
        raise SetupError(msg)

    ids = LedgerColumnIds(sheet)
    processed = ids.load()

    label = mailbox.find_label(config.label)
    if label is None:
        msg = f'Label "{config.label}" not found'
        logger.error(msg)
        raise SetupError(msg)

    def append_purchase(message: MailMessage) -> bool:
        record = parse_purchase(message, config.timezone)
        if record is None:
            return False
        sheet.append_row(record.as_row())
        logger.info(
            "Appended order %s (%s) from %s",
            record.order_number,
            record.order_total,
            message.message_id,
        )
        return True

    summary = run_batches(
        label,
        page_size=config.page_size,
        max_per_run=config.max_per_run,
        message_filter=MessageFilter(config.sender_filter, config.subject_keyword),
        processed=processed,
        handle=append_purchase,
    )
    ids.save(processed)

    summary.message = f"Processed and appended {summary.emitted} new Amazon purchases."
    logger.info("%s Scanned %d messages.", summary.message, summary.scanned)
    return summary
