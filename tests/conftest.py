"""Shared test fixtures and in-memory stand-ins for the external stores."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from order_ledger.config import ExportConfig, ImapConfig, IngestConfig
from order_ledger.models import LEDGER_HEADER, MailMessage, MailThread

AMAZON_BODY = """\
Hello,

Thank you for shopping with us.

Order # 123-4567890-1234567
Placed on Wednesday, May 1, 2024

Python Cookbook
Sold by: Amazon.com Services LLC
$39.99

Total
$45.67
"""


class FakeLabel:
    """Label over a fixed list of threads; records every page request."""

    def __init__(self, threads: list[MailThread]) -> None:
        self.threads = threads
        self.calls: list[tuple[int, int]] = []

    def list_threads(self, offset: int, limit: int) -> list[MailThread]:
        self.calls.append((offset, limit))
        return self.threads[offset : offset + limit]


class FakeMailbox:
    def __init__(self, labels: dict[str, FakeLabel]) -> None:
        self.labels = labels

    def find_label(self, name: str) -> FakeLabel | None:
        return self.labels.get(name)


class FakeSheet:
    def __init__(self, name: str, header: Sequence[str]) -> None:
        self.name = name
        self.header = list(header)
        self.rows: list[list[str]] = []
        self.rewrites = 0

    def read_column(self, index: int) -> list[str]:
        values = (row[index].strip() for row in self.rows if len(row) > index)
        return [value for value in values if value]

    def append_row(self, values: Sequence[object]) -> None:
        self.rows.append(["" if v is None else str(v) for v in values])

    def clear_and_rewrite(self, rows: Iterable[Sequence[object]]) -> None:
        self.rows = [[str(v) for v in row] for row in rows]
        self.rewrites += 1


class FakeWorkbook:
    def __init__(self) -> None:
        self.sheets: dict[str, FakeSheet] = {}

    def add_sheet(self, name: str, header: Sequence[str]) -> FakeSheet:
        sheet = FakeSheet(name, header)
        self.sheets[name] = sheet
        return sheet

    def find_sheet(self, name: str) -> FakeSheet | None:
        return self.sheets.get(name)

    def find_or_create_sheet(self, name: str, header: Sequence[str]) -> FakeSheet:
        return self.sheets.get(name) or self.add_sheet(name, header)


class FakeFolder:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}

    def create_file(self, data: bytes, name: str) -> Path:
        self.files[name] = data
        return Path(name)


class FakeFolderStore:
    def __init__(self) -> None:
        self.folder = FakeFolder()
        self.paths: list[str] = []

    def resolve_folder(self, path: str) -> FakeFolder:
        if not path.strip():
            msg = "Folder path is empty"
            raise ValueError(msg)
        self.paths.append(path)
        return self.folder


@pytest.fixture
def make_message() -> Callable[..., MailMessage]:
    """Factory for Amazon-like messages; keyword arguments override fields."""
    counter = iter(range(1, 10_000))

    def factory(**overrides: Any) -> MailMessage:
        fields: dict[str, Any] = {
            "message_id": f"<msg-{next(counter)}@amazon.com>",
            "subject": 'Ordered: "Python Cookbook"',
            "sender": "Amazon.com <auto-confirm@amazon.com>",
            "to": "buyer@example.com",
            "date": datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
            "text_body": AMAZON_BODY,
        }
        fields.update(overrides)
        return MailMessage(**fields)

    return factory


@pytest.fixture
def make_label() -> Callable[..., FakeLabel]:
    """Build a FakeLabel from lists of messages, one list per thread."""

    def factory(*threads: list[MailMessage]) -> FakeLabel:
        return FakeLabel(
            [
                MailThread(thread_id=f"t{i}", messages=list(messages))
                for i, messages in enumerate(threads)
            ]
        )

    return factory


@pytest.fixture
def make_mailbox() -> Callable[..., FakeMailbox]:
    """Wrap a label in a mailbox that knows it as "Amazon Orders"."""

    def factory(label: FakeLabel, name: str = "Amazon Orders") -> FakeMailbox:
        return FakeMailbox({name: label})

    return factory


@pytest.fixture
def workbook() -> FakeWorkbook:
    return FakeWorkbook()


@pytest.fixture
def ledger_sheet(workbook: FakeWorkbook) -> FakeSheet:
    """The purchase ledger sheet, already created with its header."""
    return workbook.add_sheet("Amazon Orders", LEDGER_HEADER)


@pytest.fixture
def folder_store() -> FakeFolderStore:
    return FakeFolderStore()


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """Provide a temporary directory as the file store root."""
    root = tmp_path / "documents"
    root.mkdir()
    return root


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="test@example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
    )


@pytest.fixture
def ingest_config() -> IngestConfig:
    return IngestConfig(
        label="Amazon Orders",
        sheet_name="Amazon Orders",
        max_per_run=250,
        page_size=125,
        sender_filter="auto-confirm@amazon.com",
        subject_keyword="ordered",
        timezone=UTC,
    )


@pytest.fixture
def export_config() -> ExportConfig:
    return ExportConfig(
        label="Amazon Orders",
        folder_path="Purchases/Amazon/Extracted PDFs",
        log_sheet="Amazon PDFs",
        max_per_run=100,
        page_size=50,
        sender_filter="amazon.com",
        subject_keyword="ordered",
        timezone=UTC,
    )
