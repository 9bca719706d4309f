"""Pattern-based purchase extraction for Amazon order confirmations.

Every extractor is a pure function over raw text so it can be tested
without a mailbox. The heuristics are tuned to Amazon.com templates.
"""

from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, localcontext
from html.parser import HTMLParser
from typing import TYPE_CHECKING

from order_ledger.models import ORDER_NUMBER_NOT_FOUND, PurchaseRecord

if TYPE_CHECKING:
    from datetime import date, tzinfo

    from order_ledger.models import MailMessage

logger = logging.getLogger(__name__)

ORDER_NUMBER_RE = re.compile(r"Order #\s*(\d{3}-\d{7}-\d{7})", re.IGNORECASE)
TOTAL_LINE_RE = re.compile(r"^Total", re.IGNORECASE | re.MULTILINE)
AMOUNT_RE = re.compile(r"[$£€]?\s?(\d[\d,]*(?:\.\d+)?|\.\d+)")

_ORDER_OF_PREFIXES = (
    'Your Amazon.com order of "',
    'Your Amazon.com order for "',
)
_ORDERED_SUBJECT_RE = re.compile(r'^Ordered:\s*"(.+)"', re.IGNORECASE)

CENTS = Decimal("0.01")

_BLOCK_TAGS = frozenset(
    {"br", "p", "div", "tr", "td", "th", "li", "table", "h1", "h2", "h3", "h4"}
)


def extract_order_number(text: str) -> str:
    """Return the first ``ddd-ddddddd-ddddddd`` order number after "Order #"."""
    match = ORDER_NUMBER_RE.search(text)
    return match.group(1) if match else ORDER_NUMBER_NOT_FOUND


def find_order_number(text: str) -> str | None:
    """Like extract_order_number, but None instead of the sentinel."""
    match = ORDER_NUMBER_RE.search(text)
    return match.group(1) if match else None


def extract_order_total(text: str) -> Decimal | None:
    """Return the first amount at or after the first line starting with "Total".

    No "Total" line, or no number after it, yields None. The first
    number is taken even if the line is a subtotal or item count.
    """
    anchor = TOTAL_LINE_RE.search(text)
    if anchor is None:
        return None
    amount = AMOUNT_RE.search(text, anchor.start())
    if amount is None:
        return None
    return round2(amount.group(1).replace(",", ""))


def round2(value: Decimal | float | str) -> Decimal:
    """Round half-up to cents.

    Floats go through their shortest repr first, so 19.999999999998
    rounds to 20.00 and 1.005 to 1.01 instead of 1.00.
    """
    if isinstance(value, float):
        value = repr(value)
    amount = Decimal(value)
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the cents.
        ctx.prec = max(ctx.prec, len(amount.as_tuple().digits) + 3)
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def extract_item_title(subject: str) -> str:
    """Pull the quoted item name out of an order subject line."""
    for prefix in _ORDER_OF_PREFIXES:
        if prefix in subject:
            remainder = subject.split(prefix)[1]
            return remainder.replace('".', "", 1).strip()
    match = _ORDERED_SUBJECT_RE.match(subject.strip())
    if match:
        return match.group(1).strip()
    return subject.strip()


def order_date(message: MailMessage, tz: tzinfo | None = None) -> date:
    """Calendar date of the message in ``tz`` (host local zone if None)."""
    return message.date.astimezone(tz).date()


def plain_text(message: MailMessage) -> str:
    """Plain-text body, derived from the HTML body when there is no text part."""
    if message.text_body:
        return message.text_body
    if message.html_body:
        return _strip_html_tags(message.html_body)
    return ""


def parse_purchase(
    message: MailMessage, tz: tzinfo | None = None
) -> PurchaseRecord | None:
    """Build a PurchaseRecord, or None if anything goes wrong while parsing."""
    try:
        body = plain_text(message)
        logger.debug(
            "Parsing %s (body length %d)", message.message_id, len(body)
        )
        record = PurchaseRecord(
            order_date=order_date(message, tz),
            order_number=extract_order_number(body),
            item_title=extract_item_title(message.subject or ""),
            order_total=extract_order_total(body),
            message_id=message.message_id,
        )
    except Exception:
        logger.warning(
            "Failed to parse message %s", message.message_id, exc_info=True
        )
        return None
    logger.debug("Parsed %s", record.model_dump_json())
    return record


def _strip_html_tags(html: str) -> str:
    """Remove HTML tags, keeping one line per block element."""
    stripper = _HTMLTagStripper()
    stripper.feed(html)
    stripper.close()
    return stripper.get_text()


class _HTMLTagStripper(HTMLParser):
    """HTMLParser subclass that strips tags and returns text."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in ("script", "style"):
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style") and self._skip_depth:
            self._skip_depth -= 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._parts.append(data)

    def get_text(self) -> str:
        lines = (line.strip() for line in "".join(self._parts).splitlines())
        return "\n".join(line for line in lines if line)
