"""
Contact deduplication keyed by normalized email.

One ``ContactRecord`` per normalized email per job. The first-seen record
wins; a later sighting only contributes a name the record is missing.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import unquote

from ..schemas import ContactRecord, RawContact
from .patterns import KNOWN_LIBRARY_AUTHOR_EMAILS, LIBRARY_LOCAL_MARKERS, NON_CONTACT_DOMAINS


_STRIP_CHARS = " \t\r\n<>\"'.,;:"

# Map pins and coordinates picked up from map embeds: /@33.97,-117.3
_GPS_PATTERNS = [
    re.compile(r"^/?@\d+\.\d+"),
    re.compile(r"/@\d+\.\d+"),
    re.compile(r"^@-?\d+\.\d+"),
    re.compile(r"^/?@[0-9.\-]+$"),
]
_BUNDLER_PATTERNS = [
    re.compile(r"[a-f0-9]{24,}@"),
    re.compile(r"^[a-zA-Z0-9_-]+@\d+\.\d+\.\d+$"),
]
_PLACEHOLDER_PATTERNS = [
    re.compile(r"^example\.\w+@"),
    re.compile(r"^your-?email@"),
    re.compile(r"^user@example\."),
]


def normalize_email(value: str) -> str:
    """Lower-case, percent-decode, drop encoded spaces and trim until stable."""
    current = value or ""
    while True:
        nxt = current
        if "%" in nxt:
            nxt = unquote(nxt.replace("%20", ""))
        nxt = re.sub(r"\s+", "", nxt).strip(_STRIP_CHARS).lower()
        if nxt == current:
            return nxt
        current = nxt


def is_denylisted(email: str) -> bool:
    """True for values that must never become a ContactRecord."""
    if not email or "@" not in email:
        return True
    if email.startswith("/@") or email.startswith("@"):
        return True
    if any(p.search(email) for p in _GPS_PATTERNS):
        return True
    if any(p.search(email) for p in _BUNDLER_PATTERNS):
        return True
    if any(m in email for m in LIBRARY_LOCAL_MARKERS) or "@sentry" in email:
        return True
    if email in KNOWN_LIBRARY_AUTHOR_EMAILS:
        return True
    if any(p.search(email) for p in _PLACEHOLDER_PATTERNS):
        return True
    domain = email.rsplit("@", 1)[1]
    return any(domain == d or domain.endswith("." + d) for d in NON_CONTACT_DOMAINS)


def merge_contact(existing: Dict[str, ContactRecord], incoming: RawContact) -> bool:
    """Merge one raw contact into ``existing``; return True if the map changed."""
    key = normalize_email(incoming.email)
    if is_denylisted(key):
        return False
    current = existing.get(key)
    if current is None:
        existing[key] = ContactRecord.from_raw(incoming, key)
        return True
    if not current.name and incoming.name:
        existing[key] = current.model_copy(update={"name": incoming.name})
        return True
    return False


class ContactSet:
    """Running contact map for one crawl job, in first-seen order."""

    def __init__(self) -> None:
        self._records: Dict[str, ContactRecord] = {}

    def add(self, contact: RawContact) -> bool:
        return merge_contact(self._records, contact)

    def add_all(self, contacts: Iterable[RawContact]) -> int:
        return sum(1 for c in contacts if self.add(c))

    def get(self, email: str) -> Optional[ContactRecord]:
        return self._records.get(normalize_email(email))

    def records(self) -> List[ContactRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and normalize_email(email) in self._records
