from __future__ import annotations

from urllib.parse import ParseResult, urldefrag, urljoin, urlparse


def parse_url(url: str) -> tuple[ParseResult, str, int, str]:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Only http and https schemes are supported: {url!r}")
    host = parsed.hostname or ""
    if not host:
        raise ValueError(f"URL has no host: {url!r}")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return parsed, host, port, path


def strip_fragment(url: str) -> str:
    return urldefrag(url)[0]


def resolve_location(base: str, location: str) -> str:
    """Resolve a redirect Location against the URL that produced it."""
    return urljoin(base, location)


def authority(parsed: ParseResult) -> str:
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parsed.port is not None:
        return f"{host}:{parsed.port}"
    return host
