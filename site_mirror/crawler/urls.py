# site_mirror/crawler/urls.py
"""
URL normalization and link filtering utilities for SiteMirror.
"""
from __future__ import annotations

import posixpath
from typing import Optional
from urllib.parse import parse_qsl, quote, unquote, urldefrag, urlencode, urljoin, urlparse, urlunparse

_DEFAULT_PORTS = {"http": 80, "https": 443}
_SKIP_PREFIXES = ("mailto:", "javascript:", "tel:", "data:", "#")


def normalize_url(url: str) -> str:
    """
    Canonical form used as page identity.

    Lowercases scheme and host, drops the default port, the fragment and any
    trailing slash (except for the root path), resolves dot segments and
    sorts query parameters.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    port = parsed.port
    netloc = host
    if parsed.username:
        netloc = f"{parsed.username}@{host}"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"

    path = unquote(parsed.path or "/")
    norm = posixpath.normpath(path)
    if not norm.startswith("/"):
        norm = "/" + norm
    # normpath keeps a leading double slash
    if norm.startswith("//"):
        norm = "/" + norm.lstrip("/")
    if norm != "/":
        norm = norm.rstrip("/")
    norm = quote(norm, safe="/:@!$&'()*+,;=-._~")

    qs = parse_qsl(parsed.query, keep_blank_values=True)
    qs.sort()
    query = urlencode(qs, doseq=True)
    return urlunparse((scheme, netloc, norm, "", query, ""))


def absolutize(base_url: str, href: str) -> Optional[str]:
    """
    Resolve *href* against *base_url*, dropping the fragment.

    Returns None for non-HTTP(S) targets (mailto:, javascript:, fragments...)
    and for URLs that cannot be parsed.
    """
    raw = href.strip()
    if not raw or raw.lower().startswith(_SKIP_PREFIXES):
        return None
    try:
        absolute, _ = urldefrag(urljoin(base_url, raw))
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return None
        parsed.port  # raises ValueError for a malformed port
    except ValueError:
        return None
    return absolute


def url_host(url: str) -> str:
    """Lower-cased host name, scheme and port ignored."""
    return (urlparse(url).hostname or "").lower()


def url_path(url: str) -> str:
    """Path plus query, as robots.txt rules expect it."""
    parsed = urlparse(url)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return path
