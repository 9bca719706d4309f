"""Make an email's HTML self-contained by inlining its images as data: URIs."""

from __future__ import annotations

import base64
import html
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import requests

if TYPE_CHECKING:
    from collections.abc import Iterable

    from order_ledger.models import InlineAttachment

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; order-ledger PDF embedder)"
MAX_URL_LENGTH = 2000
MAX_IMAGE_BYTES = 5 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_CID_RE = re.compile(r"cid:([^\s\"'>)]+)", re.IGNORECASE)
_LAZY_SRC_RE = re.compile(
    r"\s(data-src|data-original)\s*=\s*(['\"])(.*?)\2", re.IGNORECASE
)
_IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_PLAIN_SRC_RE = re.compile(r"\ssrc\s*=\s*(?:(['\"]).*?\1|[^\s>]+)", re.IGNORECASE)
_SRCSET_RE = re.compile(r"\ssrcset\s*=\s*(['\"])[\s\S]*?\1", re.IGNORECASE)
_REMOTE_SRC_RE = re.compile(r"src\s*=\s*(['\"])(https?://[^'\"]+)\1", re.IGNORECASE)
_GOOGLE_PROXY_RE = re.compile(r"googleusercontent\.com/proxy/", re.IGNORECASE)

_EXTENSION_TYPES = (
    (re.compile(r"\.png(\?|$)", re.IGNORECASE), "image/png"),
    (re.compile(r"\.jpe?g(\?|$)", re.IGNORECASE), "image/jpeg"),
    (re.compile(r"\.gif(\?|$)", re.IGNORECASE), "image/gif"),
    (re.compile(r"\.webp(\?|$)", re.IGNORECASE), "image/webp"),
)


@dataclass(frozen=True)
class Inlined:
    """The image was fetched; ``data_uri`` replaces the reference."""

    data_uri: str


@dataclass(frozen=True)
class Unresolved:
    """The image could not be inlined; the original reference is kept."""

    url: str
    reason: str


FetchResult = Inlined | Unresolved


def to_data_uri(content_type: str, data: bytes) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{b64}"


def embed_cid_images(html_content: str, attachments: Iterable[InlineAttachment]) -> str:
    """Replace cid: references with data: URIs from inline attachments.

    Content-IDs are compared case-insensitively without angle brackets.
    References with no matching attachment are left as they are.
    """
    cid_map: dict[str, str] = {}
    for att in attachments:
        key = _normalize_cid(att.content_id)
        if not key:
            continue
        cid_map[key] = to_data_uri(att.content_type or DEFAULT_CONTENT_TYPE, att.data)

    if not cid_map:
        return html_content

    def replace_cid(match: re.Match[str]) -> str:
        data_uri = cid_map.get(_normalize_cid(match.group(1)))
        if data_uri is None:
            logger.debug("No inline attachment for %s", match.group(0))
            return match.group(0)
        return data_uri

    return _CID_RE.sub(replace_cid, html_content)


def promote_lazy_sources(html_content: str) -> str:
    """Turn data-src / data-original attributes into src.

    A placeholder src on the same tag is dropped so the promoted value
    is the only reference left.
    """

    def promote(tag: re.Match[str]) -> str:
        lazy = _LAZY_SRC_RE.search(tag.group(0))
        if lazy is None:
            return tag.group(0)
        text = _PLAIN_SRC_RE.sub("", tag.group(0))
        return _LAZY_SRC_RE.sub(
            lambda m: f" src={m.group(2)}{m.group(3)}{m.group(2)}", text, count=1
        )

    return _IMG_TAG_RE.sub(promote, html_content)


def strip_srcsets(html_content: str) -> str:
    """Drop srcset attributes; the renderer only follows src."""
    return _SRCSET_RE.sub("", html_content)


def normalize_proxy_url(url: str) -> str:
    """Unwrap Google image-proxy URLs that carry the real URL in the fragment."""
    if _GOOGLE_PROXY_RE.search(url):
        _base, sep, target = url.partition("#")
        if sep and target:
            return target
    return url


def guess_content_type(url: str) -> str:
    for pattern, content_type in _EXTENSION_TYPES:
        if pattern.search(url):
            return content_type
    return DEFAULT_CONTENT_TYPE


class ImageFetcher:
    """Download remote images for inlining.

    Redirects are followed and every failure (transport error, non-200
    status, oversized body, overlong URL) is reported as Unresolved
    rather than raised.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: float = 30.0,
        max_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_bytes = max_bytes

    def fetch(self, url: str) -> FetchResult:
        if len(url) > MAX_URL_LENGTH:
            return Unresolved(url, f"URL longer than {MAX_URL_LENGTH} characters")
        try:
            response = self.session.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
                allow_redirects=True,
                stream=True,
            )
        except requests.RequestException as exc:
            return Unresolved(url, f"request failed: {exc}")

        try:
            if response.status_code != 200:
                return Unresolved(url, f"HTTP {response.status_code}")
            data = self._read_limited(response)
            if data is None:
                return Unresolved(url, f"larger than {self.max_bytes} bytes")
            content_type = (response.headers.get("Content-Type") or "").split(";")[0]
        except requests.RequestException as exc:
            return Unresolved(url, f"download failed: {exc}")
        finally:
            response.close()

        content_type = content_type.strip() or guess_content_type(url)
        return Inlined(to_data_uri(content_type, data))

    def _read_limited(self, response: requests.Response) -> bytes | None:
        """Read the body, or return None once it exceeds max_bytes."""
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            return None
        chunks: list[bytes] = []
        size = 0
        for chunk in response.iter_content(chunk_size=64 * 1024):
            size += len(chunk)
            if size > self.max_bytes:
                return None
            chunks.append(chunk)
        return b"".join(chunks)


def embed_remote_images(html_content: str, fetcher: ImageFetcher) -> str:
    """Inline every absolute http(s) src; unresolved ones keep their URL."""
    html_content = promote_lazy_sources(html_content)
    html_content = strip_srcsets(html_content)

    results: dict[str, FetchResult] = {}

    def replace_src(match: re.Match[str]) -> str:
        quote, raw_url = match.group(1), match.group(2)
        url = normalize_proxy_url(html.unescape(raw_url))
        if url not in results:
            results[url] = fetcher.fetch(url)
        result = results[url]
        if isinstance(result, Unresolved):
            logger.debug("Leaving %s unresolved: %s", result.url, result.reason)
            return match.group(0)
        return f"src={quote}{result.data_uri}{quote}"

    rewritten = _REMOTE_SRC_RE.sub(replace_src, html_content)
    inlined = sum(isinstance(r, Inlined) for r in results.values())
    if results:
        logger.debug("Inlined %d of %d remote images", inlined, len(results))
    return rewritten


def _normalize_cid(value: str) -> str:
    return value.replace("<", "").replace(">", "").strip().lower()
