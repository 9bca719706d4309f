"""Mailbox adapter protocols."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from order_ledger.models import MailThread


@runtime_checkable
class Label(Protocol):
    """A label (folder) whose threads can be listed page by page."""

    def list_threads(self, offset: int, limit: int) -> list[MailThread]: ...


@runtime_checkable
class Mailbox(Protocol):
    """Protocol for mailbox adapters."""

    def find_label(self, name: str) -> Label | None: ...
