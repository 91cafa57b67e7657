from __future__ import annotations

import re
import time
import warnings
from dataclasses import asdict, dataclass
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from shelfmark.services.common import favicon_url
from shelfmark.services.errors import InvalidInput, UpstreamError

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BYTES = 2_500_000
DESCRIPTION_LIMIT = 500

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; BookmarkBot/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

TITLE_SELECTORS = (
    'meta[property="og:title"]',
    'meta[name="twitter:title"]',
)
DESCRIPTION_SELECTORS = (
    'meta[property="og:description"]',
    'meta[name="twitter:description"]',
    'meta[name="description"]',
)
THUMBNAIL_SELECTORS = (
    'meta[property="og:image"]',
    'meta[name="twitter:image"]',
    'meta[name="thumbnail"]',
)
FAVICON_SELECTORS = (
    'link[rel="icon"]',
    'link[rel="shortcut icon"]',
)
AUTHOR_SELECTORS = (
    'meta[name="author"]',
    'meta[property="article:author"]',
)
PUBLISHED_SELECTORS = (
    'meta[property="article:published_time"]',
    'meta[name="publish_date"]',
    'meta[name="date"]',
)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PageMetadata:
    url: str
    domain: str
    title: str
    description: str
    thumbnail_url: str
    favicon: str
    author: str
    published_at: str

    def as_dict(self) -> dict:
        return asdict(self)


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def _build_soup(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def _first_attr(soup: BeautifulSoup, selectors, attr: str) -> str:
    for selector in selectors:
        node = soup.select_one(selector)
        if node is None:
            continue
        value = node.get(attr)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _first_text(soup: BeautifulSoup, selector: str) -> str:
    node = soup.select_one(selector)
    if node is None:
        return ""
    return node.get_text().strip()


def _absolutize(value: str, origin: str) -> str:
    if value and not value.startswith("http"):
        return urljoin(origin, value)
    return value


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def validate_url(url) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidInput("URL is required")
    url = url.strip()
    try:
        parsed = urlparse(url)
        parsed.port
    except ValueError as exc:
        raise InvalidInput("Invalid URL") from exc
    if not parsed.scheme or not parsed.hostname:
        raise InvalidInput("Invalid URL")
    return url


def _read_body(response: httpx.Response, deadline: float, max_bytes: int) -> str:
    chunks = []
    total = 0
    for chunk in response.iter_bytes():
        if time.monotonic() > deadline:
            raise UpstreamError(
                "Failed to fetch metadata",
                details="response did not complete within the timeout",
            )
        chunks.append(chunk[: max_bytes - total])
        total += len(chunk)
        if total >= max_bytes:
            break
    encoding = response.encoding or "utf-8"
    return b"".join(chunks).decode(encoding, errors="ignore")


def fetch_page(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = DEFAULT_MAX_BYTES,
    transport: httpx.BaseTransport | None = None,
) -> str:
    """GET ``url`` and return at most ``max_bytes`` of its body, all within ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    try:
        with httpx.Client(
            follow_redirects=True,
            timeout=timeout,
            headers=DEFAULT_HEADERS,
            transport=transport,
        ) as client:
            with client.stream("GET", url) as response:
                if not response.is_success:
                    raise UpstreamError(
                        f"Failed to fetch URL: {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                return _read_body(response, deadline, max_bytes)
    except httpx.HTTPError as exc:
        raise UpstreamError(
            "Failed to fetch metadata", details=_normalize_error(exc)
        ) from exc


def extract_from_html(html: str, url: str) -> PageMetadata:
    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    origin = f"{parsed.scheme}://{parsed.netloc}"
    soup = _build_soup(html)

    title = (
        _first_attr(soup, TITLE_SELECTORS, "content")
        or _first_text(soup, "title")
        or _first_text(soup, "h1")
        or hostname
    )
    description = _first_attr(soup, DESCRIPTION_SELECTORS, "content")
    thumbnail = _first_attr(soup, THUMBNAIL_SELECTORS, "content")
    favicon = _first_attr(soup, FAVICON_SELECTORS, "href") or favicon_url(hostname)

    return PageMetadata(
        url=url,
        domain=hostname,
        title=_WHITESPACE_RE.sub(" ", title).strip(),
        description=_truncate(description, DESCRIPTION_LIMIT),
        thumbnail_url=_absolutize(thumbnail, origin),
        favicon=_absolutize(favicon, origin),
        author=_first_attr(soup, AUTHOR_SELECTORS, "content"),
        published_at=_first_attr(soup, PUBLISHED_SELECTORS, "content"),
    )


def extract(
    url,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = DEFAULT_MAX_BYTES,
    transport: httpx.BaseTransport | None = None,
) -> PageMetadata:
    """
    Fetch ``url`` once and pull display metadata out of the returned HTML.

    ``timeout`` bounds the whole fetch, body included, and only the first
    ``max_bytes`` of the body are parsed. Raises InvalidInput for a URL
    without scheme or host and UpstreamError for transport failures, an
    overrun deadline or non-2xx responses. Nothing is retried or persisted.
    """
    url = validate_url(url)
    html = fetch_page(url, timeout=timeout, max_bytes=max_bytes, transport=transport)
    return extract_from_html(html, url)
