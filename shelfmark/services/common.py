from urllib.parse import urlparse

FAVICON_SERVICE = "https://www.google.com/s2/favicons"

COLLECTION_PALETTE = (
    "hsl(220, 70%, 50%)",
    "hsl(150, 60%, 40%)",
    "hsl(340, 70%, 50%)",
    "hsl(38, 92%, 50%)",
    "hsl(270, 60%, 55%)",
    "hsl(180, 55%, 42%)",
)


def palette_color(index: int) -> str:
    return COLLECTION_PALETTE[index % len(COLLECTION_PALETTE)]


def favicon_url(hostname: str, size: int = 64) -> str:
    return f"{FAVICON_SERVICE}?domain={hostname}&sz={size}"


def http_hostname(url: str) -> str | None:
    """Return the hostname of an absolute http(s) URL, or None if it is not one."""
    if not url:
        return None
    try:
        parsed = urlparse(url)
        # .port raises ValueError for out-of-range or non-numeric ports
        parsed.port
    except ValueError:
        return None
    if parsed.scheme.lower() not in {"http", "https"}:
        return None
    return parsed.hostname or None


def parse_tags(raw) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        raw = ",".join(str(item) for item in raw if item is not None)
    tokens = [t.strip().lower() for t in str(raw).replace(";", ",").split(",")]
    return sorted({t for t in tokens if t})
