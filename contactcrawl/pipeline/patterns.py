"""
Email/Phone Pattern Library

Pure, regex-based recognizers for emails and phone numbers found in rendered
HTML, with the false-positive filters needed on real club/rink sites:

- Image/asset filenames that look like emails (``logo@2x.png``)
- Tracking, monitoring, no-reply and placeholder domains
- Package versions and long hex tracking ids (``lodash@4.17.21``)
- Library author addresses embedded in bundled scripts
- Form placeholder/example values

Also decodes the three obfuscation schemes sites use to hide addresses from
naive scrapers, and looks up a name/title/phone next to a located email.
"""

from __future__ import annotations

import base64
import codecs
import html as html_lib
import logging
import re
from typing import Callable, List, Optional, Set, Tuple

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# Half-width of the context window opened around an email
WINDOW_RADIUS = 225

_ASSET_EXT_RE = re.compile(
    r"\.(?:png|jpe?g|gif|svg|webp|bmp|ico|tiff?|avif|css|js|map|woff2?|ttf|otf|eot|mp4|webm|mp3|wav)$",
    re.IGNORECASE,
)
_RETINA_RE = re.compile(r"@\d+(?:\.\d+)?x\b", re.IGNORECASE)
_VERSION_EMAIL_RE = re.compile(r"^[\w.-]+@v?\d+(?:\.\d+)+(?:[-.+][\w.]+)?$")
_NUMERIC_LOCAL_RE = re.compile(r"^\d+(?:\.\d+)+@")
_HEX_ID_RE = re.compile(r"[a-f0-9]{24,}@")

NON_CONTACT_DOMAINS = (
    # Error monitoring / site builders
    "sentry.io", "sentry-next.wixpress.com", "sentry.wixpress.com", "wixpress.com", "wix.com",
    # Analytics and tracking
    "doubleclick.net", "google-analytics.com", "googletagmanager.com", "hotjar.com",
    "newrelic.com", "segment.io", "mixpanel.com", "clarity.ms",
    # CDNs, fonts, script hosts
    "googleapis.com", "googleusercontent.com", "gstatic.com", "jsdelivr.net", "unpkg.com",
    "cloudflare.com", "fontawesome.com", "jquery.com", "github.io", "w3.org", "schema.org",
    # Placeholders
    "domain.com", "yourdomain.com", "yoursite.com", "mysite.com", "website.com",
)

_NO_REPLY_LOCAL_RE = re.compile(
    r"^(?:no[-_.]?reply|do[-_.]?not[-_.]?reply|mailer[-_.]?daemon|postmaster|hostmaster|bounces?)(?:[+._-].*)?$"
)

PLACEHOLDER_LOCAL_PARTS = frozenset({
    "your.email", "youremail", "your-email", "your_email", "yourname", "your.name",
    "your-name", "your_name", "you", "user", "username", "name", "email", "someone",
    "firstname.lastname", "first.last", "firstname", "test",
})

LIBRARY_LOCAL_MARKERS = (
    "-js@", "-bundle@", "-polyfill@", "react@", "react-dom@", "lodash@", "jquery@",
    "core-js@", "webpack@", "babel@",
)

KNOWN_LIBRARY_AUTHOR_EMAILS = frozenset({
    "feross@feross.org",
    "sindresorhus@gmail.com",
    "i@izs.me",
    "mathias@qiwi.be",
    "tj@vision-media.ca",
})

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)
_SCRIPT_AUTHOR_RE = re.compile(
    r"(?:@author|@license|@copyright|\(c\)|copyright|author:)[^\n]{0,120}?"
    r"([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})",
    re.IGNORECASE,
)
_PLACEHOLDER_ATTR_RE = re.compile(
    r"""\b(?:placeholder|data-placeholder|aria-placeholder)\s*=\s*["']([^"']*)["']""",
    re.IGNORECASE,
)

_CFEMAIL_ATTR_RE = re.compile(r"""data-cfemail\s*=\s*["']([0-9a-fA-F]+)["']""")
_CFEMAIL_HREF_RE = re.compile(r"/cdn-cgi/l/email-protection#([0-9a-fA-F]+)")
_ENTITY_RUN_RE = re.compile(
    r"(?:[A-Za-z0-9._%+@-]*&#(?:\d{2,3}|[xX][0-9a-fA-F]{2});)+[A-Za-z0-9._%+@-]*"
)
_ENCODED_ATTR_RE = re.compile(
    r"""\bdata-(?:enc-email|encoded-email)\s*=\s*["']([^"']+)["']""",
    re.IGNORECASE,
)

PHONE_RE = re.compile(
    r"(?<!\d)(?:\+?\d{1,3}[-.\s]?)?(?:\(\d{3}\)|\d{3})[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"
)
STRICT_PHONE_RE = re.compile(
    r"^(?:\+?1[-.\s]?)?(?:\([2-9]\d{2}\)\s?|[2-9]\d{2}[-.\s])[2-9]\d{2}[-.\s]\d{4}$"
)
VERSION_MARKERS = "vV@#"
_COMPACT_DATE_RE = re.compile(r"^(?:19|20)\d{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12]\d|3[01])")
_SEPARATED_DATE_RE = re.compile(
    r"(?:19|20)\d{2}[-./](?:0?[1-9]|1[0-2])[-./](?:0?[1-9]|[12]\d|3[01])"
    r"|(?:0?[1-9]|1[0-2])[-./](?:0?[1-9]|[12]\d|3[01])[-./](?:19|20)\d{2}"
)
_ASCENDING = "01234567890123456789"
_DESCENDING = "98765432109876543210"

_NAME_TOKEN = r"[A-Z][a-z]+(?:['’-][A-Z]?[a-z]+)*"
NAME = rf"{_NAME_TOKEN}(?: (?:[A-Z]\.|{_NAME_TOKEN})){{1,2}}"
TITLE = (
    r"(?:(?:Head|Assistant|Associate|Lead|Senior|Junior|Volunteer|Program|Figure Skating|Skating"
    r"|Hockey|Athletic|Executive|Technical|Artistic|Synchro|Managing) )?"
    r"(?:Coach|Director|Instructor|Manager|Coordinator|Vice President|President|Secretary"
    r"|Treasurer|Registrar|Administrator|Owner|Founder|Chair|Trainer)"
)

_NAME_DASH_TITLE_RE = re.compile(rf"({NAME}) ?[-–—|,] ?({TITLE})\b")
_TITLE_COLON_NAME_RE = re.compile(rf"\b({TITLE}|Contact|Name) ?: ?({NAME})")
_NAME_BEFORE_RE = re.compile(rf"({NAME})[\s\-–—:,|(\[<]*$")
_NAME_AFTER_RE = re.compile(rf"^[\s\-–—:,|)\]>]*({NAME})")
_NAME_BRACKETED_RE = re.compile(rf"[(\[] ?({NAME}) ?[)\]]")
_NAME_EMPHASIS_RE = re.compile(rf"<(strong|b|h[1-6])\b[^>]*>\s*({NAME})\s*</\1>", re.IGNORECASE)
_LOCAL_PART_NAME_RE = re.compile(r"^([a-z]{2,})[._-]([a-z]{2,})@")
_LABELLED_TITLE_RE = re.compile(r"(?:Title|Position|Role) ?: ?([^\n,|<]{3,60})")
_TITLE_RE = re.compile(rf"\b{TITLE}\b")

_TAG_RE = re.compile(r"<[^>]*>")
_HSPACE_RE = re.compile(r"[ \t\r\f\v\xa0]+")
_NEWLINES_RE = re.compile(r" *\n[\n ]*")

NAME_STOP_WORDS = frozenset({
    "email", "e-mail", "mail", "contact", "us", "phone", "call", "click", "here", "send",
    "message", "read", "more", "learn", "about", "home", "our", "the", "team", "staff",
    "coach", "coaches", "director", "head", "assistant", "program", "programs", "skating",
    "hockey", "club", "rink", "figure", "privacy", "policy", "terms", "copyright", "all",
    "rights", "reserved", "follow", "register", "sign", "log", "new", "news", "events",
    "schedule", "lessons", "skate", "street", "avenue", "suite", "board", "directors",
    "office", "info", "information", "website", "questions", "general", "inquiries",
})


# ---------------------------------------------------------------------------
# Emails
# ---------------------------------------------------------------------------

def _domain_is_denylisted(domain: str) -> bool:
    return any(domain == d or domain.endswith("." + d) for d in NON_CONTACT_DOMAINS)


def is_contact_email(email: str) -> bool:
    """Return True when a lower-cased, email-shaped string is plausibly a real contact."""
    if not email or email.count("@") != 1:
        return False
    local, domain = email.split("@", 1)
    if not local or not domain:
        return False
    # (a) asset filenames
    if _RETINA_RE.search(email) or _ASSET_EXT_RE.search(email):
        return False
    # (b) non-contact domains
    if _domain_is_denylisted(domain) or _NO_REPLY_LOCAL_RE.match(local):
        return False
    # (c) versions and tracking ids
    if _VERSION_EMAIL_RE.match(email) or _NUMERIC_LOCAL_RE.match(email) or _HEX_ID_RE.search(email):
        return False
    # (d) bundled library authors / package names
    if email in KNOWN_LIBRARY_AUTHOR_EMAILS or any(m in email for m in LIBRARY_LOCAL_MARKERS):
        return False
    # (e) example values
    if local in PLACEHOLDER_LOCAL_PARTS:
        return False
    return True


def _placeholder_emails(html: str) -> Set[str]:
    found: Set[str] = set()
    for m in _PLACEHOLDER_ATTR_RE.finditer(html):
        found.update(e.lower() for e in EMAIL_RE.findall(m.group(1)))
    return found


def _script_author_emails(html: str) -> Set[str]:
    found: Set[str] = set()
    for block in _SCRIPT_BLOCK_RE.finditer(html):
        found.update(e.lower() for e in _SCRIPT_AUTHOR_RE.findall(block.group(1)))
    return found


def extract_emails(html: str) -> List[str]:
    """Find plain-text emails in HTML, filtered and lower-cased, in first-seen order."""
    if not html:
        return []
    text = html.replace("%20", " ")
    excluded = _placeholder_emails(text) | _script_author_emails(text)
    out: List[str] = []
    seen: Set[str] = set()
    for m in EMAIL_RE.finditer(text):
        email = m.group(0).lower()
        if email in seen:
            continue
        seen.add(email)
        if email in excluded or not is_contact_email(email):
            continue
        out.append(email)
    return out


def sanitize_mailto(href: str, fallback_text: Optional[str] = None) -> Optional[str]:
    """Sanitize a mailto href and fall back to link text if needed."""
    if not href:
        return None
    s = href.strip()
    raw = s[7:] if s.lower().startswith("mailto:") else s
    raw = raw.replace("%20", "")
    email = raw.split("?", 1)[0].split("#", 1)[0].strip().lower()
    m = EMAIL_RE.fullmatch(email)
    if m:
        return email
    if fallback_text:
        ft = html_lib.unescape(str(fallback_text)).strip()
        m = EMAIL_RE.search(ft.lower())
        if m:
            return m.group(0)
    return None


def extract_mailto_links(html: str) -> List[Tuple[str, str]]:
    """Return ``(email, link_text)`` for every ``<a href="mailto:...">`` in the page."""
    if not html:
        return []
    parser = HTMLParser(html)
    out: List[Tuple[str, str]] = []
    seen: Set[str] = set()
    for a in parser.css("a[href]"):
        href = (a.attrs.get("href") or "").strip()
        if not href.lower().startswith("mailto:"):
            continue
        text = (a.text() or "").strip()
        email = sanitize_mailto(href, text)
        if not email or email in seen or not is_contact_email(email):
            continue
        seen.add(email)
        out.append((email, text))
    return out


# ---------------------------------------------------------------------------
# Obfuscated emails
# ---------------------------------------------------------------------------

def decode_cfemail(encoded: str) -> str:
    """Decode a Cloudflare protected email: first byte is the XOR key for the rest."""
    if len(encoded) < 4 or len(encoded) % 2:
        raise ValueError(f"malformed cfemail payload: {encoded!r}")
    key = int(encoded[:2], 16)
    return "".join(chr(int(encoded[i:i + 2], 16) ^ key) for i in range(2, len(encoded), 2))


def decode_encoded_attribute(value: str) -> Optional[str]:
    """Decode a base64 (preferred) or ROT13 encoded attribute value into an email."""
    value = value.strip()
    candidate: Optional[str] = None
    try:
        candidate = base64.b64decode(value, validate=True).decode("utf-8")
    except ValueError:
        candidate = None
    if not candidate or "@" not in candidate:
        candidate = codecs.decode(value, "rot_13")
    if "@" not in candidate:
        return None
    m = EMAIL_RE.search(candidate)
    return m.group(0).lower() if m else None


def _decode_cloudflare(html: str) -> List[str]:
    payloads = _CFEMAIL_ATTR_RE.findall(html) + _CFEMAIL_HREF_RE.findall(html)
    out = []
    for payload in payloads:
        m = EMAIL_RE.fullmatch(decode_cfemail(payload).strip())
        if m:
            out.append(m.group(0).lower())
    return out


def _decode_entities(html: str) -> List[str]:
    out = []
    for m in _ENTITY_RUN_RE.finditer(html):
        decoded = html_lib.unescape(m.group(0))
        if "@" not in decoded:
            continue
        em = EMAIL_RE.search(decoded)
        if em:
            out.append(em.group(0).lower())
    return out


def _decode_attributes(html: str) -> List[str]:
    out = []
    for value in _ENCODED_ATTR_RE.findall(html):
        email = decode_encoded_attribute(value)
        if email:
            out.append(email)
    return out


def _run_decoder(name: str, decoder: Callable[[str], List[str]], html: str) -> List[str]:
    try:
        return decoder(html)
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning("obfuscation decoder %s failed: %s", name, e)
        return []


def extract_obfuscated_emails(html: str) -> List[str]:
    """Decode XOR-protected, entity-encoded and base64/ROT13 attribute emails."""
    if not html:
        return []
    found: List[str] = []
    for name, decoder in (
        ("cloudflare", _decode_cloudflare),
        ("entities", _decode_entities),
        ("encoded-attribute", _decode_attributes),
    ):
        found.extend(_run_decoder(name, decoder, html))
    out: List[str] = []
    for email in found:
        if email not in out and is_contact_email(email):
            out.append(email)
    return out


# ---------------------------------------------------------------------------
# Phones
# ---------------------------------------------------------------------------

def html_to_text(html: str) -> str:
    """Visible text of a document, one block per line, scripts and styles removed."""
    if not html:
        return ""
    tree = HTMLParser(html)
    for node in tree.css("script, style, noscript, template"):
        node.decompose()
    root = tree.body or tree.root
    if root is None:
        return ""
    return root.text(separator="\n")


def _digits(s: str) -> str:
    return re.sub(r"\D", "", s)


def is_plausible_phone(candidate: str, before: str = "", after: str = "") -> bool:
    """Reject dates, versions, sequential/repeated runs and version-marked numbers."""
    digits = _digits(candidate)
    if not 10 <= len(digits) <= 15:
        return False
    if before and before[-1] in VERSION_MARKERS:
        return False
    if (before.endswith(".") and before[-2:-1].isdigit()) or (after.startswith(".") and after[1:2].isdigit()):
        return False
    if _SEPARATED_DATE_RE.search(candidate) or _COMPACT_DATE_RE.match(digits):
        return False
    if len(set(digits)) == 1:
        return False
    tail = digits[-10:]
    if tail in _ASCENDING or tail in _DESCENDING:
        return False
    return True


def is_strict_regional_phone(phone: str) -> bool:
    """North American number written with separators, e.g. ``(401) 555-1234``."""
    return bool(STRICT_PHONE_RE.match(phone.strip()))


def _find_phones(text: str) -> List[Tuple[str, int]]:
    out = []
    for m in PHONE_RE.finditer(text):
        candidate = m.group(0).strip()
        before = text[max(0, m.start() - 2):m.start()]
        after = text[m.end():m.end() + 2]
        if is_plausible_phone(candidate, before, after):
            out.append((candidate, m.start()))
    return out


def extract_phone_numbers(html: str) -> List[str]:
    """Phone numbers from the visible text of a page, de-duplicated by digits."""
    text = html_to_text(html)
    out: List[str] = []
    seen: Set[str] = set()
    for phone, _ in _find_phones(text):
        key = _digits(phone)
        if key not in seen:
            seen.add(key)
            out.append(phone)
    return out


# ---------------------------------------------------------------------------
# Proximity lookups
# ---------------------------------------------------------------------------

def _strip_partial_tags(s: str) -> str:
    lt, gt = s.find("<"), s.find(">")
    if gt != -1 and (lt == -1 or gt < lt):
        s = s[gt + 1:]
    last_lt = s.rfind("<")
    if last_lt != -1 and s.find(">", last_lt) == -1:
        s = s[:last_lt]
    return s


def _to_text(fragment: str) -> str:
    s = _TAG_RE.sub("\n", _strip_partial_tags(fragment))
    s = html_lib.unescape(s)
    s = _HSPACE_RE.sub(" ", s)
    return _NEWLINES_RE.sub("\n", s)


class _Context:
    """Window around the first occurrence of an email, as raw HTML and as text."""

    def __init__(self, email: str, html: str):
        self.email = email
        self.found = False
        self.raw_before = self.raw_after = ""
        self.before = self.after = ""
        if not html or not email:
            return
        idx = html.lower().find(email.lower())
        if idx == -1:
            return
        self.found = True
        self.raw_before = html[max(0, idx - WINDOW_RADIUS):idx]
        self.raw_after = html[idx + len(email):idx + len(email) + WINDOW_RADIUS]
        self.before = _to_text(self.raw_before)
        self.after = _to_text(self.raw_after)


def is_plausible_name(name: Optional[str]) -> bool:
    if not name:
        return False
    tokens = [t.strip(".").lower() for t in name.split()]
    if len(tokens) < 2:
        return False
    return not any(t in NAME_STOP_WORDS for t in tokens)


def _nearest(pattern: re.Pattern, before: str, after: str, group: int,
             accept: Callable[[str], bool] = bool) -> Optional[str]:
    """Closest acceptable match: last one before the email, else first one after."""
    for m in reversed(list(pattern.finditer(before))):
        value = m.group(group).strip()
        if accept(value):
            return value
    for m in pattern.finditer(after):
        value = m.group(group).strip()
        if accept(value):
            return value
    return None


def _name_before(before: str) -> Optional[str]:
    """Name ending right before the email, with leading label words such as ``Contact`` dropped."""
    m = _NAME_BEFORE_RE.search(before.rstrip())
    if not m:
        return None
    tokens = m.group(1).split()
    while tokens and tokens[0].strip(".").lower() in NAME_STOP_WORDS:
        tokens.pop(0)
    name = " ".join(tokens)
    return name if is_plausible_name(name) else None


def _name_from_local_part(email: str) -> Optional[str]:
    m = _LOCAL_PART_NAME_RE.match(email.lower())
    if not m:
        return None
    name = f"{m.group(1).capitalize()} {m.group(2).capitalize()}"
    return name if is_plausible_name(name) else None


def find_name_near(email: str, html: str) -> Optional[str]:
    """Name next to an email; the first surface pattern that matches wins."""
    ctx = _Context(email, html)
    if ctx.found:
        lookups = (
            lambda: _nearest(_NAME_DASH_TITLE_RE, ctx.before, ctx.after, 1, is_plausible_name),
            lambda: _nearest(_TITLE_COLON_NAME_RE, ctx.before, ctx.after, 2, is_plausible_name),
            lambda: _name_before(ctx.before),
            lambda: _nearest(_NAME_AFTER_RE, "", ctx.after, 1, is_plausible_name),
            lambda: _nearest(_NAME_BRACKETED_RE, ctx.before, ctx.after, 1, is_plausible_name),
            lambda: _nearest(_NAME_EMPHASIS_RE, ctx.raw_before, ctx.raw_after, 2, is_plausible_name),
        )
        for lookup in lookups:
            name = lookup()
            if name:
                return name
    return _name_from_local_part(email)


def find_title_near(email: str, html: str) -> Optional[str]:
    """Role/title next to an email, e.g. ``Jane Doe - Head Coach`` or ``Title: Registrar``."""
    ctx = _Context(email, html)
    if not ctx.found:
        return None
    for pattern, group in (
        (_NAME_DASH_TITLE_RE, 2),
        (_TITLE_COLON_NAME_RE, 1),
        (_LABELLED_TITLE_RE, 1),
        (_TITLE_RE, 0),
    ):
        title = _nearest(pattern, ctx.before, ctx.after, group,
                         lambda v: v.lower() not in ("contact", "name"))
        if title:
            return title
    return None


def find_phone_near(email: str, html: str) -> Optional[str]:
    """Closest plausible phone number to an email."""
    ctx = _Context(email, html)
    if not ctx.found:
        return None
    before = _find_phones(ctx.before)
    if before:
        return before[-1][0]
    after = _find_phones(ctx.after)
    if after:
        return after[0][0]
    return None
