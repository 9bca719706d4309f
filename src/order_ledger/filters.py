"""Sender/subject predicates that pick order confirmations out of a label."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Set

    from order_ledger.models import MailMessage

logger = logging.getLogger(__name__)


class MessageFilter:
    """Decide whether a message should be handled in this run."""

    def __init__(self, sender_contains: str, subject_contains: str) -> None:
        self.sender_contains = sender_contains.lower()
        self.subject_contains = subject_contains.lower()

    def rejection_reason(
        self, message: MailMessage, processed: Set[str]
    ) -> str | None:
        """Return why the message is skipped, or None if it qualifies.

        Checks run cheapest first: already processed, then sender,
        then subject.
        """
        if message.message_id in processed:
            return "already processed"
        if self.sender_contains not in (message.sender or "").lower():
            return f"sender does not contain {self.sender_contains!r}"
        if self.subject_contains not in (message.subject or "").lower():
            return f"subject does not contain {self.subject_contains!r}"
        return None

    def qualifies(self, message: MailMessage, processed: Set[str]) -> bool:
        reason = self.rejection_reason(message, processed)
        if reason is not None:
            logger.debug("Skipping %s: %s", message.message_id, reason)
            return False
        return True
