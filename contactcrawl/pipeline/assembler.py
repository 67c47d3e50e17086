"""
Contact assembler: turn the emails found on one page into RawContacts.

Order of preference for an email seen by several strategies:
mailto anchor > plain text > obfuscated. If a page has no emails at all but
one to three strictly formatted phone numbers, phone-only placeholder
contacts are produced instead.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Set

from ..schemas import Confidence, ExtractionMethod, RawContact
from . import patterns

logger = logging.getLogger(__name__)

PHONE_ONLY_DOMAIN = "no-email.invalid"
MAX_PHONE_ONLY_CONTACTS = 3


def phone_sentinel_email(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    return f"phone-{digits}@{PHONE_ONLY_DOMAIN}"


def is_phone_sentinel(email: str) -> bool:
    return email.endswith("@" + PHONE_ONLY_DOMAIN)


def _link_text_name(text: str) -> Optional[str]:
    t = " ".join((text or "").split())
    if not t or "@" in t or len(t) > 60:
        return None
    return t if patterns.is_plausible_name(t) else None


def assemble(
    emails: Iterable[str],
    obfuscated_emails: Iterable[str],
    html: str,
    source_url: str,
) -> List[RawContact]:
    contacts: List[RawContact] = []
    seen: Set[str] = set()

    for email, link_text in patterns.extract_mailto_links(html):
        if email in seen:
            continue
        seen.add(email)
        contacts.append(RawContact(
            email=email,
            name=_link_text_name(link_text) or patterns.find_name_near(email, html),
            title=patterns.find_title_near(email, html),
            phone=patterns.find_phone_near(email, html),
            source_url=source_url,
            method=ExtractionMethod.MAILTO,
            confidence=Confidence.CONFIRMED,
        ))

    for email in emails:
        email = email.lower()
        if email in seen:
            continue
        seen.add(email)
        contacts.append(RawContact(
            email=email,
            name=patterns.find_name_near(email, html),
            title=patterns.find_title_near(email, html),
            phone=patterns.find_phone_near(email, html),
            source_url=source_url,
            method=ExtractionMethod.STANDARD,
            confidence=Confidence.CONFIRMED,
        ))

    for email in obfuscated_emails:
        email = email.lower()
        if email in seen:
            continue
        seen.add(email)
        contacts.append(RawContact(
            email=email,
            source_url=source_url,
            method=ExtractionMethod.OBFUSCATED,
            confidence=Confidence.CONFIRMED,
        ))

    if not contacts:
        phones = [p for p in patterns.extract_phone_numbers(html) if patterns.is_strict_regional_phone(p)]
        if 1 <= len(phones) <= MAX_PHONE_ONLY_CONTACTS:
            for phone in phones:
                contacts.append(RawContact(
                    email=phone_sentinel_email(phone),
                    phone=phone,
                    source_url=source_url,
                    method=ExtractionMethod.PHONE_ONLY,
                    confidence=Confidence.CONFIRMED,
                ))
        elif phones:
            logger.debug("%s: %d phones without emails, skipping phone-only contacts", source_url, len(phones))

    return contacts


def extract_page_contacts(html: str, source_url: str) -> List[RawContact]:
    """Run every extraction strategy over one rendered page."""
    return assemble(
        patterns.extract_emails(html),
        patterns.extract_obfuscated_emails(html),
        html,
        source_url,
    )
