"""Email-to-PDF rendering."""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING

from order_ledger.images import embed_cid_images, embed_remote_images

if TYPE_CHECKING:
    from datetime import tzinfo

    from order_ledger.images import ImageFetcher
    from order_ledger.models import MailMessage

logger = logging.getLogger(__name__)

PAGE_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  @page {{ size: A4; margin: 18mm; }}
  body {{ font-family: Arial, sans-serif; font-size: 12px; color: #222; }}
  .meta {{ border-bottom: 1px solid #ddd; margin-bottom: 12px; padding-bottom: 8px; }}
  .meta div {{ margin: 2px 0; }}
  .subject {{ font-size: 16px; font-weight: 700; margin-bottom: 6px; }}
  img {{ max-width: 100%; height: auto; }}
  a {{ color: #1155cc; text-decoration: none; }}
  table {{ border-collapse: collapse; }}
  td, th {{ border: 1px solid #e5e5e5; padding: 4px 6px; vertical-align: top; }}
  pre {{ white-space: pre-wrap; word-wrap: break-word; }}
  .email-body, p, table, div {{ page-break-inside: avoid; }}
</style>
</head>
<body>
{header}
<div class="email-body">{body}</div>
</body>
</html>
"""


def render_message(
    message: MailMessage,
    *,
    fetcher: ImageFetcher,
    tz: tzinfo | None = None,
) -> bytes:
    """Render a message with its images inlined to A4 PDF bytes."""
    return _html_to_pdf_bytes(build_document(message, fetcher=fetcher, tz=tz))


def build_document(
    message: MailMessage,
    *,
    fetcher: ImageFetcher,
    tz: tzinfo | None = None,
) -> str:
    """Return the complete, self-contained HTML page for a message."""
    if message.html_body:
        body = embed_cid_images(message.html_body, message.inline_attachments)
        body = embed_remote_images(body, fetcher)
    else:
        body = f"<pre>{html.escape(message.text_body or '(no body content)')}</pre>"
    return PAGE_TEMPLATE.format(header=build_header(message, tz), body=body)


def build_header(message: MailMessage, tz: tzinfo | None = None) -> str:
    """Escaped metadata block shown above the message body."""
    sent = message.date.astimezone(tz).strftime("%Y-%m-%d %H:%M")
    lines = [
        f'<div class="subject">{_escape(message.subject)}</div>',
        f"<div><b>From:</b> {_escape(message.sender)}</div>",
        f"<div><b>To:</b> {_escape(message.to)}</div>",
    ]
    if message.cc:
        lines.append(f"<div><b>CC:</b> {_escape(message.cc)}</div>")
    lines.append(f"<div><b>Date:</b> {_escape(sent)}</div>")
    lines.append(f"<div><b>Message ID:</b> {_escape(message.message_id)}</div>")
    return '<div class="meta">' + "".join(lines) + "</div>"


def _escape(value: str | None) -> str:
    return html.escape(value or "", quote=False)


def _html_to_pdf_bytes(html_content: str) -> bytes:
    """Convert HTML string to PDF bytes via weasyprint."""
    import weasyprint

    doc = weasyprint.HTML(string=html_content)
    return doc.write_pdf()  # type: ignore[no-any-return]
