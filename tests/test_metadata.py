import time

import httpx
import pytest

from shelfmark.api import routes as api_routes
from shelfmark.services.errors import InvalidInput, UpstreamError
from shelfmark.services.metadata import PageMetadata, extract, extract_from_html

PAGE_URL = "https://example.com/articles/one"


def _transport(status_code=200, html="", exc=None):
    def handler(request):
        if exc is not None:
            raise exc
        return httpx.Response(status_code, text=html, request=request)

    return httpx.MockTransport(handler)


def test_extract_prefers_open_graph_values():
    html = """
<html><head>
  <title>Plain Title</title>
  <meta property="og:title" content="OG Title">
  <meta name="twitter:title" content="Twitter Title">
  <meta name="twitter:description" content="Twitter description">
  <meta name="description" content="Plain description">
  <meta property="og:image" content="https://cdn.example.com/cover.png">
  <link rel="icon" href="https://cdn.example.com/icon.png">
  <meta name="author" content="Ada">
  <meta property="article:published_time" content="2024-05-01T10:00:00Z">
</head><body><h1>Heading</h1></body></html>
"""

    metadata = extract_from_html(html, PAGE_URL)

    assert metadata.title == "OG Title"
    assert metadata.description == "Twitter description"
    assert metadata.thumbnail_url == "https://cdn.example.com/cover.png"
    assert metadata.favicon == "https://cdn.example.com/icon.png"
    assert metadata.author == "Ada"
    assert metadata.published_at == "2024-05-01T10:00:00Z"
    assert metadata.domain == "example.com"
    assert metadata.url == PAGE_URL


def test_extract_falls_back_through_title_sources():
    from_title = extract_from_html(
        "<html><head><title>  Hello \n   World </title></head></html>", PAGE_URL
    )
    from_heading = extract_from_html("<html><body><h1>Only Heading</h1></body></html>", PAGE_URL)
    from_host = extract_from_html("<html><body><p>text</p></body></html>", PAGE_URL)

    assert from_title.title == "Hello World"
    assert from_heading.title == "Only Heading"
    assert from_host.title == "example.com"


def test_extract_resolves_relative_assets_against_origin():
    html = """
<head>
  <meta name="thumbnail" content="/images/thumb.jpg">
  <link rel="shortcut icon" href="/favicon.ico">
</head>
"""

    metadata = extract_from_html(html, PAGE_URL)

    assert metadata.thumbnail_url == "https://example.com/images/thumb.jpg"
    assert metadata.favicon == "https://example.com/favicon.ico"


def test_extract_uses_favicon_service_when_page_has_no_icon():
    metadata = extract_from_html("<html></html>", PAGE_URL)

    assert metadata.favicon == "https://www.google.com/s2/favicons?domain=example.com&sz=64"
    assert metadata.description == ""
    assert metadata.thumbnail_url == ""
    assert metadata.author == ""
    assert metadata.published_at == ""


def test_extract_truncates_long_descriptions():
    description = "x" * 600
    html = f'<meta name="description" content="{description}">'

    metadata = extract_from_html(html, PAGE_URL)

    assert len(metadata.description) == 500
    assert metadata.description == "x" * 497 + "..."

    exact = extract_from_html(f'<meta name="description" content="{"y" * 500}">', PAGE_URL)
    assert exact.description == "y" * 500


def test_extract_fetches_page_through_transport():
    html = "<html><head><title>Fetched</title></head></html>"

    metadata = extract(PAGE_URL, transport=_transport(html=html))

    assert metadata.title == "Fetched"


def test_extract_reports_upstream_status():
    with pytest.raises(UpstreamError) as excinfo:
        extract(PAGE_URL, transport=_transport(status_code=404))

    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Failed to fetch URL: Not Found"


def test_extract_clamps_unusual_upstream_status():
    with pytest.raises(UpstreamError) as excinfo:
        extract(PAGE_URL, transport=_transport(status_code=999))

    assert excinfo.value.status_code == 500


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("connection refused"),
        httpx.ConnectTimeout("timed out"),
    ],
)
def test_extract_wraps_transport_failures(exc):
    with pytest.raises(UpstreamError) as excinfo:
        extract(PAGE_URL, transport=_transport(exc=exc))

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Failed to fetch metadata"
    assert excinfo.value.details


def _dripping_transport(chunks, delay):
    def body():
        for chunk in chunks:
            time.sleep(delay)
            yield chunk

    def handler(request):
        return httpx.Response(200, content=body(), request=request)

    return httpx.MockTransport(handler)


def test_extract_gives_up_on_slow_body_at_the_deadline():
    transport = _dripping_transport([b"<"] * 40, delay=0.05)

    started = time.monotonic()
    with pytest.raises(UpstreamError) as excinfo:
        extract(PAGE_URL, timeout=0.3, transport=transport)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Failed to fetch metadata"


def test_extract_reads_at_most_max_bytes():
    head = b"<html><head><title>Kept</title>"
    tail = b'<meta property="og:title" content="Beyond the cap"></head></html>'
    transport = _dripping_transport([head, b" " * 200, tail], delay=0)

    metadata = extract(PAGE_URL, max_bytes=len(head) + 50, transport=transport)

    assert metadata.title == "Kept"


@pytest.mark.parametrize("url", [None, "", "   ", "not a url", "https://", "http://host:99999/"])
def test_extract_rejects_unusable_urls(url):
    with pytest.raises(InvalidInput):
        extract(url, transport=_transport(html="<html></html>"))


def test_metadata_endpoint_returns_extracted_fields(client, monkeypatch):
    captured = {}

    def fake_extract(url, timeout, max_bytes):
        captured["url"] = url
        captured["timeout"] = timeout
        captured["max_bytes"] = max_bytes
        return PageMetadata(
            url=url,
            domain="example.com",
            title="Example",
            description="About",
            thumbnail_url="",
            favicon="https://example.com/favicon.ico",
            author="",
            published_at="",
        )

    monkeypatch.setattr(api_routes, "extract", fake_extract)

    response = client.post("/api/v1/metadata/fetch", json={"url": PAGE_URL})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["title"] == "Example"
    assert payload["description"] == "About"
    assert payload["domain"] == "example.com"
    assert captured == {"url": PAGE_URL, "timeout": 10, "max_bytes": 2_500_000}


def test_metadata_endpoint_validates_url(client):
    missing = client.post("/api/v1/metadata/fetch", json={})
    invalid = client.post("/api/v1/metadata/fetch", json={"url": "not a url"})

    assert missing.status_code == 400
    assert missing.get_json() == {"error": "URL is required"}
    assert invalid.status_code == 400
    assert invalid.get_json() == {"error": "Invalid URL"}


def test_metadata_endpoint_forwards_upstream_errors(client, monkeypatch):
    def fake_extract(url, timeout, max_bytes):
        raise UpstreamError("Failed to fetch URL: Forbidden", status_code=403)

    monkeypatch.setattr(api_routes, "extract", fake_extract)

    response = client.post("/api/v1/metadata/fetch", json={"url": PAGE_URL})

    assert response.status_code == 403
    assert response.get_json() == {"error": "Failed to fetch URL: Forbidden"}


def test_metadata_endpoint_hides_unexpected_errors(client, monkeypatch):
    def fake_extract(url, timeout, max_bytes):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(api_routes, "extract", fake_extract)

    response = client.post("/api/v1/metadata/fetch", json={"url": PAGE_URL})

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to fetch metadata"}
