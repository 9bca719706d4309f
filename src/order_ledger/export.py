"""Render new order confirmations to PDFs filed under a folder path."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from order_ledger.filenames import build_filename
from order_ledger.filters import MessageFilter
from order_ledger.pipeline import SetupError, run_batches
from order_ledger.renderer import render_message
from order_ledger.state import PROCESSED_LOG_HEADER, ProcessedLog

if TYPE_CHECKING:
    from order_ledger.adapters.base import Mailbox
    from order_ledger.config import ExportConfig
    from order_ledger.images import ImageFetcher
    from order_ledger.ledger import Workbook
    from order_ledger.models import MailMessage, RunSummary
    from order_ledger.store import FolderStore

logger = logging.getLogger(__name__)


def export_pdfs(
    config: ExportConfig,
    mailbox: Mailbox,
    workbook: Workbook,
    store: FolderStore,
    fetcher: ImageFetcher,
) -> RunSummary:
    """Export qualifying messages as PDFs and record them in the log sheet.

    Raises SetupError if the label does not exist or the folder path
    is empty. The processed-id log is written once, after the scan.
    """
    label = mailbox.find_label(config.label)
    if label is None:
        msg = (
            f'Label not found: "{config.label}". '
            "Check for typos or create the label first."
        )
        logger.error(msg)
        raise SetupError(msg)

    try:
        folder = store.resolve_folder(config.folder_path)
    except ValueError as exc:
        logger.error("Cannot resolve folder: %s", exc)
        raise SetupError(str(exc)) from exc
    logger.info("Exporting into folder %r", config.folder_path)

    sheet = workbook.find_or_create_sheet(config.log_sheet, PROCESSED_LOG_HEADER)
    log = ProcessedLog(sheet)
    processed = log.load()

    def export_message(message: MailMessage) -> bool:
        pdf = render_message(message, fetcher=fetcher, tz=config.timezone)
        filename = build_filename(message, config.timezone)
        path = folder.create_file(pdf, filename)
        logger.info("Created %s for %s", path, message.message_id)
        return True

    summary = run_batches(
        label,
        page_size=config.page_size,
        max_per_run=config.max_per_run,
        message_filter=MessageFilter(config.sender_filter, config.subject_keyword),
        processed=processed,
        handle=export_message,
    )
    log.save(processed)

    summary.message = (
        f"Exported {summary.emitted} Amazon PDFs to: {config.folder_path}"
    )
    logger.info("%s Scanned %d messages.", summary.message, summary.scanned)
    return summary
