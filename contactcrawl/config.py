"""
Crawler configuration: per-mode budget profiles and link keyword families.

Every mode maps to an explicit ``ModeProfile``; a crawl request is resolved
against it exactly once, when the job is created.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .schemas import BrowserEngine, CrawlBudget, CrawlMode, CrawlRequest


class ConfigError(Exception):
    """Configuration file is missing, unreadable or invalid."""


class FetchTier(str, Enum):
    """Fetch tier chosen once per job."""
    FAST = "fast"        # gentle: minimal rendering, single page
    FULL = "full"        # standard/aggressive: JS rendering, link following


class ModeProfile(BaseModel):
    max_depth: int = Field(..., ge=0)
    max_pages: int = Field(..., ge=1)
    follow_links: bool
    navigation_timeout_ms: int = Field(..., gt=0)
    job_timeout_ms: int = Field(..., gt=0)
    tier: FetchTier = FetchTier.FULL


DEFAULT_MODES: Dict[CrawlMode, ModeProfile] = {
    CrawlMode.GENTLE: ModeProfile(
        max_depth=0, max_pages=1, follow_links=False,
        navigation_timeout_ms=10_000, job_timeout_ms=30_000, tier=FetchTier.FAST,
    ),
    CrawlMode.STANDARD: ModeProfile(
        max_depth=2, max_pages=10, follow_links=True,
        navigation_timeout_ms=20_000, job_timeout_ms=180_000,
    ),
    CrawlMode.AGGRESSIVE: ModeProfile(
        max_depth=3, max_pages=20, follow_links=True,
        navigation_timeout_ms=20_000, job_timeout_ms=300_000,
    ),
}


class LinkKeywords(BaseModel):
    """Keyword families used to rank discovered links (matched case-insensitively)."""
    coach: List[str] = Field(default_factory=lambda: [
        "coach", "coaches", "coaching", "staff", "directory", "roster", "faculty",
        "instructor", "instructors", "team", "people", "board", "officers",
    ])
    contact: List[str] = Field(default_factory=lambda: [
        "contact", "contacts", "kontakt", "contacto", "contactez", "get-in-touch",
        "reach-us", "about", "about-us", "connect", "email",
    ])
    topic: List[str] = Field(default_factory=lambda: [
        "skate", "skating", "hockey", "figure-skating", "rink", "learn-to-skate", "lessons",
        "program", "programs", "clinic", "camp", "league", "club",
    ])


class OpsConfig(BaseModel):
    log_path: Optional[str] = None
    also_stdout: bool = False


class CrawlerConfig(BaseModel):
    modes: Dict[CrawlMode, ModeProfile] = Field(default_factory=lambda: dict(DEFAULT_MODES))
    link_keywords: LinkKeywords = Field(default_factory=LinkKeywords)
    max_concurrent_jobs: int = Field(default=4, ge=1)
    headless: bool = True
    ops: OpsConfig = Field(default_factory=OpsConfig)

    def profile(self, mode: CrawlMode) -> ModeProfile:
        return self.modes.get(mode) or DEFAULT_MODES[mode]


@dataclass(frozen=True)
class CrawlSettings:
    """Fully resolved, immutable settings for one crawl job."""
    mode: CrawlMode
    budget: CrawlBudget
    follow_links: bool
    tier: FetchTier
    engine: BrowserEngine


def resolve_settings(request: CrawlRequest, config: Optional[CrawlerConfig] = None) -> CrawlSettings:
    """Merge request overrides into the mode profile."""
    cfg = config or CrawlerConfig()
    profile = cfg.profile(request.mode)

    def pick(override, default):
        return default if override is None else override

    budget = CrawlBudget(
        max_depth=pick(request.max_depth, profile.max_depth),
        max_pages=pick(request.max_pages, profile.max_pages),
        per_navigation_timeout_ms=pick(request.timeout_ms, profile.navigation_timeout_ms),
        job_wall_clock_timeout_ms=profile.job_timeout_ms,
    )
    return CrawlSettings(
        mode=request.mode,
        budget=budget,
        follow_links=pick(request.follow_links, profile.follow_links),
        tier=profile.tier,
        engine=request.browser_engine,
    )


def load_config(path: Path | str) -> CrawlerConfig:
    """Load a YAML config file; modes missing from the file keep their defaults."""
    config_path = Path(path)
    if not config_path.exists() or not config_path.is_file():
        raise ConfigError(f"file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"top-level YAML value must be a mapping in {config_path}")

    modes_raw = raw.get("modes") or {}
    if not isinstance(modes_raw, dict):
        raise ConfigError("'modes' must be a mapping of mode name to profile")
    merged_modes = {}
    for mode, default in DEFAULT_MODES.items():
        override = modes_raw.get(mode.value) or {}
        merged_modes[mode.value] = {**default.model_dump(), **override}
    raw["modes"] = merged_modes

    try:
        return CrawlerConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config in {config_path}: {e}") from e
