"""Tests for order_ledger.adapters.imap."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from email import message_from_bytes
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest

from order_ledger.adapters.base import Label, Mailbox
from order_ledger.adapters.imap import (
    ImapLabel,
    ImapMailbox,
    _decode_header_value,
    _extract_body_and_inline_parts,
    _get_message_id,
    _quote,
    parse_message,
)

if TYPE_CHECKING:
    from order_ledger.config import ImapConfig


def _make_simple_email(
    *,
    subject: str = "Test Subject",
    sender: str = "sender@example.com",
    date: str = "Sat, 15 Jun 2025 10:30:00 +0000",
    message_id: str | None = "<test-1@example.com>",
    body: str = "Hello, World!",
    html: bool = False,
) -> bytes:
    """Build a simple email message as bytes."""
    subtype = "html" if html else "plain"
    msg = MIMEText(body, subtype)
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = "buyer@example.com"
    msg["Date"] = date
    if message_id:
        msg["Message-ID"] = message_id
    return msg.as_bytes()


def _make_multipart_email(
    *,
    text_body: str | None = "Plain text body",
    html_body: str | None = None,
    attachments: list[tuple[str, bytes]] | None = None,
    inline_images: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with optional attachments and inline images."""
    msg = MIMEMultipart("related")
    msg["Subject"] = 'Ordered: "Desk Lamp"'
    msg["From"] = "auto-confirm@amazon.com"
    msg["Date"] = "Sat, 15 Jun 2025 10:30:00 +0000"
    msg["Message-ID"] = "<test-multi@example.com>"

    if text_body or html_body:
        alt = MIMEMultipart("alternative")
        if text_body:
            alt.attach(MIMEText(text_body, "plain"))
        if html_body:
            alt.attach(MIMEText(html_body, "html"))
        msg.attach(alt)

    for filename, data in attachments or []:
        att = MIMEApplication(data, "pdf")
        att.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(att)

    for content_id, subtype, data in inline_images or []:
        img = MIMEImage(data, subtype)
        img.add_header("Content-ID", f"<{content_id}>")
        img.add_header("Content-Disposition", "inline")
        msg.attach(img)

    return msg.as_bytes()


def _mock_connection(
    messages: dict[str, bytes],
    *,
    thread_ids: dict[str, str] | None = None,
    capabilities: tuple[str, ...] = ("IMAP4REV1",),
) -> MagicMock:
    """Create a mock IMAP4_SSL serving ``messages`` keyed by UID."""
    conn = MagicMock()
    conn.select.return_value = ("OK", [str(len(messages)).encode()])
    conn.capabilities = capabilities

    def fake_uid(command: str, *args: object) -> tuple[str, list[object]]:
        if command == "SEARCH":
            return ("OK", [" ".join(messages).encode()])
        uid_set, fmt = str(args[0]), args[1]
        if fmt == "(X-GM-THRID)":
            lines: list[object] = [
                f"{n} (X-GM-THRID {(thread_ids or {})[uid]} UID {uid})".encode()
                for n, uid in enumerate(uid_set.split(","), start=1)
            ]
            return ("OK", lines)
        data = messages.get(uid_set)
        if data is None:
            return ("OK", [None])
        return ("OK", [(f"1 (UID {uid_set} RFC822 {{100}})".encode(), data)])

    conn.uid.side_effect = fake_uid
    return conn


def _email(uid: str) -> bytes:
    return _make_simple_email(message_id=f"<msg-{uid}@example.com>")


class TestGetMessageId:
    """Tests for _get_message_id."""

    def test_extracts_message_id_header(self) -> None:
        msg = message_from_bytes(_make_simple_email(message_id="<unique-123@mail.com>"))
        assert _get_message_id(msg) == "<unique-123@mail.com>"

    def test_fallback_hash_when_no_message_id(self) -> None:
        msg = message_from_bytes(_make_simple_email(message_id=None))
        result = _get_message_id(msg)

        # Should be a SHA-256 hex digest
        assert len(result) == 64
        expected_key = f"{msg['Subject']}|{msg['Date']}|{msg['From']}"
        assert result == hashlib.sha256(expected_key.encode()).hexdigest()


class TestDecodeHeaderValue:
    """Tests for _decode_header_value."""

    def test_simple_ascii(self) -> None:
        assert _decode_header_value("Hello World") == "Hello World"

    def test_rfc2047_encoded(self) -> None:
        assert _decode_header_value("=?utf-8?B?SMOpbGzDqA==?=") == "Héllè"

    def test_none_returns_empty(self) -> None:
        assert _decode_header_value(None) == ""


class TestQuote:
    """Tests for _quote."""

    def test_wraps_in_quotes(self) -> None:
        assert _quote("Amazon Orders") == '"Amazon Orders"'

    def test_escapes_quotes_and_backslashes(self) -> None:
        assert _quote('a"b\\c') == '"a\\"b\\\\c"'


class TestExtractBodyAndInlineParts:
    """Tests for _extract_body_and_inline_parts."""

    def test_plain_text_only(self) -> None:
        msg = message_from_bytes(_make_simple_email(body="Just text"))
        html_body, text_body, inline = _extract_body_and_inline_parts(msg)
        assert text_body == "Just text"
        assert html_body is None
        assert inline == []

    def test_multipart_with_text_and_html(self) -> None:
        raw = _make_multipart_email(
            text_body="Plain version", html_body="<p>HTML version</p>"
        )
        html_body, text_body, _inline = _extract_body_and_inline_parts(
            message_from_bytes(raw)
        )
        assert text_body == "Plain version"
        assert html_body == "<p>HTML version</p>"

    def test_inline_image_keeps_content_id(self) -> None:
        img_data = b"\x89PNG\r\n\x1a\n"
        raw = _make_multipart_email(
            html_body='<img src="cid:logo123">',
            inline_images=[("logo123", "png", img_data)],
        )

        _html, _text, inline = _extract_body_and_inline_parts(message_from_bytes(raw))

        assert len(inline) == 1
        assert inline[0].content_id == "<logo123>"
        assert inline[0].content_type == "image/png"
        assert inline[0].data == img_data

    def test_attachments_ignored(self) -> None:
        raw = _make_multipart_email(attachments=[("invoice.pdf", b"%PDF-1.4")])
        _html, text_body, inline = _extract_body_and_inline_parts(
            message_from_bytes(raw)
        )
        assert text_body == "Plain text body"
        assert inline == []


class TestParseMessage:
    """Tests for parse_message."""

    def test_parses_fields(self) -> None:
        raw = _make_simple_email(
            subject='Ordered: "Desk Lamp"',
            sender="Amazon.com <auto-confirm@amazon.com>",
            message_id="<order-1@amazon.com>",
            body="Order # 123-4567890-1234567",
        )

        message = parse_message(message_from_bytes(raw))

        assert message.message_id == "<order-1@amazon.com>"
        assert message.subject == 'Ordered: "Desk Lamp"'
        assert message.sender == "Amazon.com <auto-confirm@amazon.com>"
        assert message.to == "buyer@example.com"
        assert message.cc == ""
        assert message.date == datetime(2025, 6, 15, 10, 30, tzinfo=UTC)
        assert message.text_body == "Order # 123-4567890-1234567"

    def test_naive_date_treated_as_utc(self) -> None:
        raw = _make_simple_email(date="Sat, 15 Jun 2025 10:30:00 -0000")
        message = parse_message(message_from_bytes(raw))
        assert message.date == datetime(2025, 6, 15, 10, 30, tzinfo=UTC)

    def test_unparseable_date_falls_back_to_now(self) -> None:
        raw = _make_simple_email(date="not a date")
        message = parse_message(message_from_bytes(raw))
        assert message.date.tzinfo is not None


class TestImapMailbox:
    """Tests for connecting and finding labels."""

    @patch("order_ledger.adapters.imap.imaplib.IMAP4_SSL")
    def test_connection_uses_config(
        self, mock_ssl: MagicMock, imap_config: ImapConfig
    ) -> None:
        conn = _mock_connection({})
        mock_ssl.return_value = conn

        with ImapMailbox(imap_config) as mailbox:
            label = mailbox.find_label("Amazon Orders")

        assert isinstance(mailbox, Mailbox)
        assert isinstance(label, Label)
        mock_ssl.assert_called_once_with("imap.example.com", 993)
        conn.login.assert_called_once_with("test@example.com", "secret")
        conn.select.assert_called_once_with('"Amazon Orders"', readonly=True)
        conn.logout.assert_called_once()

    @patch("order_ledger.adapters.imap.imaplib.IMAP4_SSL")
    def test_missing_label_returns_none(
        self, mock_ssl: MagicMock, imap_config: ImapConfig
    ) -> None:
        conn = _mock_connection({})
        conn.select.return_value = ("NO", [b"[NONEXISTENT] Unknown Mailbox"])
        mock_ssl.return_value = conn

        with ImapMailbox(imap_config) as mailbox:
            assert mailbox.find_label("Typo") is None

    @patch("order_ledger.adapters.imap.imaplib.IMAP4_SSL")
    def test_logout_called_on_error(
        self, mock_ssl: MagicMock, imap_config: ImapConfig
    ) -> None:
        conn = MagicMock()
        conn.select.side_effect = Exception("Connection lost")
        mock_ssl.return_value = conn

        with pytest.raises(Exception, match="Connection lost"):
            with ImapMailbox(imap_config) as mailbox:
                mailbox.find_label("Amazon Orders")

        conn.logout.assert_called_once()

    def test_requires_context_manager(self, imap_config: ImapConfig) -> None:
        with pytest.raises(RuntimeError, match="context manager"):
            ImapMailbox(imap_config).find_label("Amazon Orders")

    @patch("order_ledger.adapters.imap.imaplib.IMAP4_SSL")
    def test_gmail_threads_enabled_by_capability(
        self, mock_ssl: MagicMock, imap_config: ImapConfig
    ) -> None:
        mock_ssl.return_value = _mock_connection(
            {}, capabilities=("IMAP4REV1", "X-GM-EXT-1")
        )

        with ImapMailbox(imap_config) as mailbox:
            label = mailbox.find_label("Amazon Orders")

        assert isinstance(label, ImapLabel)
        assert label.use_gmail_threads is True


class TestImapLabel:
    """Tests for ImapLabel.list_threads."""

    def test_one_thread_per_message_newest_first(self) -> None:
        conn = _mock_connection({uid: _email(uid) for uid in ("1", "2", "3")})
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=False)

        threads = label.list_threads(0, 10)

        assert [t.thread_id for t in threads] == ["3", "2", "1"]
        assert threads[0].messages[0].message_id == "<msg-3@example.com>"

    def test_pagination_window(self) -> None:
        conn = _mock_connection({uid: _email(uid) for uid in ("1", "2", "3")})
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=False)

        first = label.list_threads(0, 2)
        second = label.list_threads(2, 2)
        third = label.list_threads(4, 2)

        assert [t.thread_id for t in first] == ["3", "2"]
        assert [t.thread_id for t in second] == ["1"]
        assert third == []

    def test_index_built_once(self) -> None:
        conn = _mock_connection({"1": _email("1")})
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=False)

        label.list_threads(0, 1)
        label.list_threads(1, 1)

        searches = [c for c in conn.uid.call_args_list if c.args[0] == "SEARCH"]
        assert len(searches) == 1

    def test_empty_folder(self) -> None:
        conn = _mock_connection({})
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=False)
        assert label.list_threads(0, 10) == []

    def test_gmail_threads_grouped(self) -> None:
        conn = _mock_connection(
            {uid: _email(uid) for uid in ("10", "11", "12")},
            thread_ids={"10": "555", "11": "777", "12": "555"},
        )
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=True)

        threads = label.list_threads(0, 10)

        assert [t.thread_id for t in threads] == ["555", "777"]
        assert [m.message_id for m in threads[0].messages] == [
            "<msg-10@example.com>",
            "<msg-12@example.com>",
        ]

    def test_missing_payload_skipped(self) -> None:
        conn = _mock_connection({"1": _email("1")})
        label = ImapLabel(conn, "Amazon Orders", use_gmail_threads=False)
        label._index = [("1", ["1", "99"])]

        threads = label.list_threads(0, 1)

        assert len(threads[0].messages) == 1
