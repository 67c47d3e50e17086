"""
Crawl frontier: candidate URLs ordered by link priority, then depth.

The frontier is a plain priority container. Whether a URL was already
visited is decided by the orchestrator when an entry is popped.
"""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlparse

from ..config import LinkKeywords


class LinkPriority(IntEnum):
    """Lower value is visited first."""
    INITIAL = 0
    COACH = 1
    CONTACT = 2
    TOPIC = 3
    OTHER = 4


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int
    priority: LinkPriority

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError("depth must be >= 0")


class Frontier:
    """Binary heap keyed by ``(priority, depth)``."""

    def __init__(self) -> None:
        self._heap: List[Tuple[int, int, int, FrontierEntry]] = []
        self._seq = itertools.count()

    def push(self, entry: FrontierEntry) -> None:
        heapq.heappush(self._heap, (int(entry.priority), entry.depth, next(self._seq), entry))

    def pop(self) -> Optional[FrontierEntry]:
        if not self._heap:
            return None
        return heapq.heappop(self._heap)[-1]

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)


class LinkClassifier:
    """Rank a discovered link by keyword family.

    Only the URL path/query and the anchor text are inspected, so a site whose
    domain name happens to contain a keyword does not promote every link.
    """

    def __init__(self, keywords: Optional[LinkKeywords] = None):
        kw = keywords or LinkKeywords()
        self._families = (
            (LinkPriority.COACH, tuple(k.lower() for k in kw.coach)),
            (LinkPriority.CONTACT, tuple(k.lower() for k in kw.contact)),
            (LinkPriority.TOPIC, tuple(k.lower() for k in kw.topic)),
        )

    def classify(self, url: str, anchor_text: str = "") -> LinkPriority:
        p = urlparse(url)
        haystack = " ".join([unquote(p.path or ""), unquote(p.query or ""), anchor_text or ""]).lower()
        for priority, words in self._families:
            if any(w in haystack for w in words):
                return priority
        return LinkPriority.OTHER
