"""
Helper utilities for signed URLs.

Signed object-storage URLs carry their credentials in the query string, so
anything that ends up in a log line or a response goes through these helpers
first.
"""

from urllib.parse import urlsplit, urlunsplit

URL_PARSE_ERROR = "[URL_PARSE_ERROR]"


def sanitize_url(url: str) -> str:
    """Reduce a URL to scheme, host and path for logging."""
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        return f"{parts.scheme}://{host}{parts.path}"
    except (ValueError, TypeError, AttributeError):
        return URL_PARSE_ERROR


def strip_query_params(url: str) -> str:
    """Remove the query string and fragment from a URL."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def append_to_path(base_url: str, filename: str) -> str:
    """
    Append ``filename`` to the path of ``base_url``, keeping its query string.

    The base path is normalised to end in exactly one slash, so
    ``https://host/out?sig`` and ``https://host/out/?sig`` both give
    ``https://host/out/<filename>?sig``.
    """
    parts = urlsplit(base_url)
    path = parts.path.rstrip("/") + "/"
    return urlunsplit((parts.scheme, parts.netloc, path + filename, parts.query, ""))
