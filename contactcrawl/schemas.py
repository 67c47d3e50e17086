"""
Coach Contact Crawler - Pydantic Data Schemas

Core data models for crawl requests, raw contacts found on a single page,
and the deduplicated contact records returned for a whole crawl job.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Confidence(str, Enum):
    """How directly an email was observed on the page."""
    CONFIRMED = "Confirmed"                         # Read verbatim or decoded
    GENERATED = "Generated"                         # Pattern-guessed
    GENERATED_UNVERIFIED = "GeneratedUnverified"    # Pattern-guessed, not checked


class ExtractionMethod(str, Enum):
    """Extraction technique that produced a contact."""
    STANDARD = "standard"
    MAILTO = "mailto"
    OBFUSCATED = "obfuscated"
    PHONE_ONLY = "phone-only"


class CrawlMode(str, Enum):
    """Requested crawl intensity."""
    GENTLE = "gentle"
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"


class BrowserEngine(str, Enum):
    """Browser engines the fetcher can drive."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"


def _validate_http_url(v: str, field_name: str) -> str:
    if not v.startswith(('http://', 'https://')):
        raise ValueError(f'{field_name} must be a valid HTTP/HTTPS URL')
    return v


class RawContact(BaseModel):
    """
    A contact as found on one page visit.

    Immutable once produced; several RawContacts may share the same email.
    """
    model_config = ConfigDict(frozen=True)

    email: str = Field(..., description="Email address (or phone-only sentinel)")
    name: Optional[str] = Field(default=None, description="Person name found near the email")
    title: Optional[str] = Field(default=None, description="Role or job title found near the email")
    phone: Optional[str] = Field(default=None, description="Phone number found near the email")
    source_url: str = Field(..., description="Page URL the contact was extracted from")
    method: ExtractionMethod = Field(..., description="Extraction technique tag")
    confidence: Confidence = Field(default=Confidence.CONFIRMED)

    @field_validator('source_url')
    @classmethod
    def validate_source_url(cls, v):
        return _validate_http_url(v, 'source_url')


class ContactRecord(BaseModel):
    """
    Deduplicated contact keyed by normalized email across a crawl job.

    Keeps the first-seen email/source/confidence/method; ``name`` may be
    backfilled later by the merge step.
    """
    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    source: str
    confidence: Confidence
    method: ExtractionMethod

    @classmethod
    def from_raw(cls, raw: RawContact, email: str) -> 'ContactRecord':
        """Create a record from a raw contact using an already-normalized email."""
        return cls(
            email=email,
            name=raw.name,
            title=raw.title,
            phone=raw.phone,
            source=raw.source_url,
            confidence=raw.confidence,
            method=raw.method,
        )


class CrawlBudget(BaseModel):
    """Depth, page-count and wall-clock limits fixed for one job."""
    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(..., ge=0)
    max_pages: int = Field(..., ge=1)
    per_navigation_timeout_ms: int = Field(..., gt=0)
    job_wall_clock_timeout_ms: int = Field(..., gt=0)


class CrawlRequest(BaseModel):
    """
    One crawl request as handed over by the job-dispatch layer.

    Unset optional fields fall back to the defaults of ``mode``.
    """
    seed_url: str
    mode: CrawlMode = CrawlMode.STANDARD
    max_depth: Optional[int] = Field(default=None, ge=0)
    max_pages: Optional[int] = Field(default=None, ge=1)
    follow_links: Optional[bool] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    browser_engine: BrowserEngine = BrowserEngine.CHROMIUM

    @field_validator('seed_url', mode='before')
    @classmethod
    def validate_seed_url(cls, v):
        """Bare domains get an https:// scheme; anything else must be HTTP(S)."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError('seed_url cannot be empty')
        v = v.strip()
        if '://' not in v and '.' in v:
            v = f'https://{v}'
        return _validate_http_url(v, 'seed_url')
