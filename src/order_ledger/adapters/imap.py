"""IMAP mailbox adapter.

Gmail exposes labels as IMAP folders and, through the X-GM-EXT-1
extension, the thread each message belongs to. Other servers get one
thread per message.
"""

from __future__ import annotations

import hashlib
import imaplib
import logging
import re
from datetime import UTC, datetime
from email import message_from_bytes
from email.header import decode_header
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, cast

from order_ledger.models import InlineAttachment, MailMessage, MailThread

if TYPE_CHECKING:
    from email.message import Message
    from types import TracebackType

    from order_ledger.config import ImapConfig

logger = logging.getLogger(__name__)

GMAIL_EXTENSION = "X-GM-EXT-1"

_THREAD_ID_RE = re.compile(rb"X-GM-THRID (\d+)")
_UID_RE = re.compile(rb"UID (\d+)")


class ImapMailbox:
    """Mailbox backed by an IMAP4_SSL connection.

    Use as a context manager; the connection is opened on enter and
    logged out on exit.
    """

    def __init__(self, config: ImapConfig) -> None:
        self.config = config
        self._conn: imaplib.IMAP4_SSL | None = None

    def __enter__(self) -> ImapMailbox:
        self._conn = self._connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._conn is not None:
            try:
                self._conn.logout()
            except Exception:
                logger.debug("Error during IMAP logout", exc_info=True)
            self._conn = None

    @property
    def conn(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            msg = "ImapMailbox must be used as a context manager"
            raise RuntimeError(msg)
        return self._conn

    def find_label(self, name: str) -> ImapLabel | None:
        """Select the label's folder read-only, or return None if it is missing."""
        status, data = self.conn.select(_quote(name), readonly=True)
        if status != "OK":
            logger.debug("IMAP select of %r failed: %s", name, data)
            return None
        use_threads = GMAIL_EXTENSION in self.conn.capabilities
        return ImapLabel(self.conn, name, use_gmail_threads=use_threads)

    def _connect(self) -> imaplib.IMAP4_SSL:
        """Establish an IMAP4_SSL connection and authenticate."""
        conn = imaplib.IMAP4_SSL(self.config.host, self.config.port)
        conn.login(self.config.username, self.config.password)
        return conn


class ImapLabel:
    """Threads of one selected IMAP folder, newest thread first."""

    def __init__(
        self, conn: imaplib.IMAP4_SSL, name: str, *, use_gmail_threads: bool
    ) -> None:
        self.conn = conn
        self.name = name
        self.use_gmail_threads = use_gmail_threads
        self._index: list[tuple[str, list[str]]] | None = None

    def list_threads(self, offset: int, limit: int) -> list[MailThread]:
        """Return up to ``limit`` threads starting at ``offset``."""
        if self._index is None:
            self._index = self._build_thread_index()
        window = self._index[offset : offset + limit]
        return [self._load_thread(thread_id, uids) for thread_id, uids in window]

    def _build_thread_index(self) -> list[tuple[str, list[str]]]:
        """Group message UIDs into threads, newest thread first.

        The index is built once per label so that successive pages
        come from the same snapshot of the folder.
        """
        uids = self._search_uids()
        if not uids:
            return []
        if not self.use_gmail_threads:
            return [(uid, [uid]) for uid in reversed(uids)]

        threads: dict[str, list[str]] = {}
        for uid, thread_id in self._fetch_thread_ids(uids):
            threads.setdefault(thread_id, []).append(uid)
        for members in threads.values():
            members.sort(key=int)
        ordered = sorted(
            threads.items(), key=lambda item: int(item[1][-1]), reverse=True
        )
        logger.debug(
            "Indexed %d messages into %d threads in %r",
            len(uids),
            len(ordered),
            self.name,
        )
        return ordered

    def _search_uids(self) -> list[str]:
        _status, data = self.conn.uid("SEARCH", None, "ALL")
        raw = data[0] if data else None
        if not raw:
            return []
        return [uid.decode() for uid in cast("bytes", raw).split()]

    def _fetch_thread_ids(self, uids: list[str]) -> list[tuple[str, str]]:
        """Return (uid, X-GM-THRID) pairs for the given UIDs."""
        _status, data = self.conn.uid("FETCH", ",".join(uids), "(X-GM-THRID)")
        pairs: list[tuple[str, str]] = []
        for item in data or []:
            # Lines arrive as bytes or as (header, literal) tuples.
            line = item[0] if isinstance(item, tuple) else item
            if not isinstance(line, bytes):
                continue
            uid_match = _UID_RE.search(line)
            thread_match = _THREAD_ID_RE.search(line)
            if uid_match and thread_match:
                uid = uid_match.group(1).decode()
                pairs.append((uid, thread_match.group(1).decode()))
        return pairs

    def _load_thread(self, thread_id: str, uids: list[str]) -> MailThread:
        messages: list[MailMessage] = []
        for uid in uids:
            raw_email = self._fetch_message(uid)
            if raw_email is None:
                logger.debug("No RFC822 payload for UID %s", uid)
                continue
            messages.append(parse_message(message_from_bytes(raw_email)))
        return MailThread(thread_id=thread_id, messages=messages)

    def _fetch_message(self, uid: str) -> bytes | None:
        """Fetch a single message by UID."""
        _status, data = self.conn.uid("FETCH", uid, "(RFC822)")
        if not data or data[0] is None:
            return None
        part = data[0]
        if isinstance(part, tuple):
            return part[1]
        return None


def parse_message(msg: Message) -> MailMessage:
    """Convert an email Message to a MailMessage."""
    html_body, text_body, inline = _extract_body_and_inline_parts(msg)

    date_str = msg.get("Date")
    email_date: datetime | None = None
    if date_str:
        try:
            email_date = parsedate_to_datetime(date_str)
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header %r", date_str)
    if email_date is None:
        email_date = datetime.now(tz=UTC)
    elif email_date.tzinfo is None:
        email_date = email_date.replace(tzinfo=UTC)

    return MailMessage(
        message_id=_get_message_id(msg),
        subject=_decode_header_value(msg.get("Subject", "")),
        sender=_decode_header_value(msg.get("From", "")),
        to=_decode_header_value(msg.get("To", "")),
        cc=_decode_header_value(msg.get("Cc", "")),
        date=email_date,
        html_body=html_body,
        text_body=text_body,
        inline_attachments=inline,
    )


def _quote(name: str) -> str:
    """Quote a folder name for the IMAP SELECT command."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _get_message_id(msg: Message) -> str:
    """Extract a unique identifier for the message.

    Uses the Message-ID header if present; falls back to a hash
    of subject + date + sender.
    """
    message_id = msg.get("Message-ID")
    if message_id:
        return message_id.strip()

    subject = msg.get("Subject", "")
    date = msg.get("Date", "")
    sender = msg.get("From", "")
    key = f"{subject}|{date}|{sender}"
    return hashlib.sha256(key.encode()).hexdigest()


def _decode_header_value(value: str | None) -> str:
    """Decode an RFC 2047 encoded header value."""
    if not value:
        return ""
    parts = decode_header(value)
    decoded_parts: list[str] = []
    for data, charset in parts:
        if isinstance(data, bytes):
            decoded_parts.append(data.decode(charset or "utf-8", errors="replace"))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def _extract_body_and_inline_parts(
    msg: Message,
) -> tuple[str | None, str | None, list[InlineAttachment]]:
    """Walk the MIME tree for the first HTML and text bodies and Content-ID parts."""
    html_body: str | None = None
    text_body: str | None = None
    inline: list[InlineAttachment] = []

    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue

        raw_payload = part.get_payload(decode=True)
        if raw_payload is None:
            continue
        payload = cast("bytes", raw_payload)

        content_type = part.get_content_type()
        content_id = part.get("Content-ID")
        disposition = str(part.get("Content-Disposition", "")).lower()

        if content_id and not content_type.startswith("text/"):
            inline.append(
                InlineAttachment(
                    content_id=content_id.strip(),
                    content_type=content_type,
                    data=payload,
                )
            )
        elif "attachment" in disposition:
            continue
        elif content_type == "text/html" and html_body is None:
            charset = part.get_content_charset() or "utf-8"
            html_body = payload.decode(charset, errors="replace")
        elif content_type == "text/plain" and text_body is None:
            charset = part.get_content_charset() or "utf-8"
            text_body = payload.decode(charset, errors="replace")

    return html_body, text_body, inline
