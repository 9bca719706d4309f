"""Deterministic names for exported order PDFs."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from order_ledger.parsing import find_order_number, order_date, plain_text

if TYPE_CHECKING:
    from datetime import tzinfo

    from order_ledger.models import MailMessage

MAX_SUBJECT_LENGTH = 120

_ILLEGAL_CHARS_RE = re.compile(r'[\\/:*?"<>|#]+')
_WHITESPACE_RE = re.compile(r"\s+")


def clean_subject(subject: str) -> str:
    """Make a subject safe for use in a filename, at most 120 characters."""
    cleaned = _ILLEGAL_CHARS_RE.sub(" ", subject)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned[:MAX_SUBJECT_LENGTH]


def build_filename(message: MailMessage, tz: tzinfo | None = None) -> str:
    """``<date> - Amazon Order <number>.pdf``, or ``<date> - <subject>.pdf``."""
    day = order_date(message, tz).isoformat()
    order_number = find_order_number(plain_text(message))
    if order_number:
        return f"{day} - Amazon Order {order_number}.pdf"
    return f"{day} - {clean_subject(message.subject or 'No Subject')}.pdf"
