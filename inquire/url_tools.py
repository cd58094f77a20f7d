"""URL utility functions for canonicalization and validation.

Every URL that reaches the recorder or the scheduler goes through
``canonicalize`` first, so the canonical string is the node identity and the
schedule key.
"""

import posixpath
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}
SUPPORTED_SCHEMES = ("http", "https")


def _normalize_path(path: str) -> str:
    if not path:
        return "/"
    # Remove duplicate slashes
    while "//" in path:
        path = path.replace("//", "/")
    if not path.startswith("/"):
        path = "/" + path
    # Resolve "." and ".." segments; this also drops the trailing slash
    return posixpath.normpath(path)


def canonicalize(url: str, keep_query: bool = False) -> str:
    """Canonicalize a URL for consistent comparison and deduplication.

    Steps:
    1. Lower-case scheme and host, drop the default port
    2. Remove fragment
    3. Remove query parameters (unless ``keep_query``, then sort them)
    4. Normalize path (dot segments, duplicate and trailing slashes)

    Args:
        url: URL to canonicalize
        keep_query: Keep the query string (sorted) instead of dropping it

    Returns:
        Canonical form of the URL
    """
    try:
        parts = urlsplit(url.strip())
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        # Return input unchanged on parse error (e.g. bad port)
        return url

    netloc = f"[{host}]" if ":" in host else host
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo += ":" + parts.password
        netloc = f"{userinfo}@{netloc}"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = _normalize_path(parts.path)

    if keep_query and parts.query:
        params = parse_qsl(parts.query, keep_blank_values=True)
        query = urlencode(sorted(params))
    else:
        query = ""

    return urlunsplit((scheme, netloc, path, query, ""))


def host_of(url: str) -> str:
    """Return the lower-cased network location of ``url`` ("" if unparsable)."""
    try:
        return urlsplit(url).netloc.lower()
    except ValueError:
        return ""


def is_valid_url(url: str) -> bool:
    """Check if URL is an absolute http(s) URL.

    Args:
        url: URL to validate

    Returns:
        True if URL can be parsed and has scheme and host
    """
    try:
        parts = urlsplit(url)
        return parts.scheme.lower() in SUPPORTED_SCHEMES and bool(parts.hostname)
    except ValueError:
        return False
