"""
Link discovery and URL hygiene for the crawl loop.

Enumerates anchors in rendered HTML, resolves them against the page URL, and
provides the same-origin and skip checks the orchestrator applies before a
URL enters the frontier or is fetched.
"""

from __future__ import annotations

import re
from typing import List, Optional, Set, Tuple
from urllib.parse import parse_qsl, urljoin, urlparse, urlunparse

from selectolax.parser import HTMLParser


NON_HTML_EXTENSIONS = (
    ".pdf", ".zip", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp",
    ".mp4", ".mp3", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".ics",
)
_SKIP_PATH_RE = re.compile(r"/(?:api|admin|wp-admin|wp-json)(?:/|$)", re.IGNORECASE)
_IGNORED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "sms:", "data:")
MAX_QUERY_PARAMS = 3


def normalize_url(url: str) -> str:
    """Visited-set key: no fragment, no trailing slash except root.

    HTTP(S) URLs are keyed on the same canonical host as ``origin_key``, so
    ``http://www.rink.org/`` and ``https://rink.org/`` are one page.
    """
    p = urlparse(url.strip())
    scheme = (p.scheme or "").lower()
    netloc = (p.netloc or "").lower()
    if scheme in ("http", "https"):
        host, port = origin_key(url.strip())
        scheme = "https"
        netloc = host if port is None else f"{host}:{port}"
    path = p.path or "/"
    if path.endswith("/") and path != "/":
        path = path.rstrip("/") or "/"
    return urlunparse((scheme, netloc, path, p.params, p.query, ""))


def origin_key(url: str) -> Tuple[str, Optional[int]]:
    """Host without ``www.`` plus explicit port; http and https count as one origin."""
    p = urlparse(url)
    host = (p.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    try:
        port = p.port
    except ValueError:
        port = None
    if (p.scheme == "http" and port == 80) or (p.scheme == "https" and port == 443):
        port = None
    return host, port


def same_origin(seed_url: str, url: str) -> bool:
    p = urlparse(url)
    if p.scheme not in ("http", "https"):
        return False
    seed_host, seed_port = origin_key(seed_url)
    return bool(seed_host) and origin_key(url) == (seed_host, seed_port)


def should_skip_url(url: str) -> Optional[str]:
    """Reason a URL must not be fetched, or None."""
    p = urlparse(url)
    if p.scheme not in ("http", "https"):
        return "non-http"
    path = (p.path or "").lower()
    if path.endswith(NON_HTML_EXTENSIONS):
        return "non-html"
    if "format=json" in (p.query or "").lower():
        return "non-html"
    if _SKIP_PATH_RE.search(path):
        return "api-or-admin"
    if len(parse_qsl(p.query, keep_blank_values=True)) > MAX_QUERY_PARAMS:
        return "too-many-params"
    return None


def discover_links(html: str, base_url: str) -> List[Tuple[str, str]]:
    """Absolute ``(url, anchor_text)`` pairs in document order, fragments dropped."""
    if not html:
        return []
    parser = HTMLParser(html)
    out: List[Tuple[str, str]] = []
    seen: Set[str] = set()
    for a in parser.css("a[href]"):
        href = (a.attrs.get("href") or "").strip()
        if not href or href.lower().startswith(_IGNORED_HREF_PREFIXES):
            continue
        abs_url = urljoin(base_url, href).split("#", 1)[0]
        if not abs_url or abs_url in seen:
            continue
        seen.add(abs_url)
        text = " ".join((a.text() or "").split())
        out.append((abs_url, text))
    return out
