"""Mail and purchase models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

ORDER_NUMBER_NOT_FOUND = "Not Found"

LEDGER_HEADER = ["orderDate", "orderNumber", "itemTitle", "orderTotal", "messageId"]


@dataclass
class InlineAttachment:
    """An image or other part referenced from the HTML body by Content-ID."""

    content_id: str
    content_type: str
    data: bytes


@dataclass
class MailMessage:
    """A single message as delivered by a mailbox adapter."""

    message_id: str
    subject: str
    sender: str
    date: datetime
    to: str = ""
    cc: str = ""
    html_body: str | None = None
    text_body: str | None = None
    inline_attachments: list[InlineAttachment] = field(default_factory=list)


@dataclass
class MailThread:
    """A conversation; messages are kept in mailbox order."""

    thread_id: str
    messages: list[MailMessage] = field(default_factory=list)


class PurchaseRecord(BaseModel):
    """One ledger row extracted from an order confirmation."""

    order_date: date
    order_number: str = Field(min_length=1)
    item_title: str
    order_total: Decimal | None = Field(default=None, decimal_places=2)
    message_id: str = Field(min_length=1)

    def as_row(self) -> list[str]:
        """Return the cells in ledger column order."""
        return [
            self.order_date.isoformat(),
            self.order_number,
            self.item_title,
            "" if self.order_total is None else str(self.order_total),
            self.message_id,
        ]


class RunSummary(BaseModel):
    """Counters for a finished run."""

    scanned: int = Field(default=0, ge=0)
    emitted: int = Field(default=0, ge=0)
    message: str = ""
