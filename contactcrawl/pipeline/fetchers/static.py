from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


DEFAULT_UA = "CCC-Probe/0.1"


@dataclass(frozen=True)
class ProbeResult:
    url: str
    reachable: bool
    status_code: int = 0
    mime: str | None = None
    error: str | None = None


class ReachabilityProbe:
    """Cheap HEAD check run before a seed is handed to the browser.

    - Uses httpx, follows redirects
    - HTTP errors and non-HTML content types mark a seed unreachable
    - Network failures are fail-open: the browser gets to try anyway
    """

    def __init__(self, *, timeout_s: float = 5.0, user_agent: str = DEFAULT_UA) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._client = httpx.Client(
            timeout=self.timeout_s,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ReachabilityProbe":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def probe(self, url: str) -> ProbeResult:
        try:
            resp = self._client.head(url)
        except httpx.HTTPError as e:
            logger.debug("Probe failed for %s (%s), assuming reachable", url, e)
            return ProbeResult(url=url, reachable=True, error=str(e))

        # Many servers reject HEAD outright; let the browser decide
        if resp.status_code in (403, 405, 501):
            return ProbeResult(url=url, reachable=True, status_code=resp.status_code)

        mime = resp.headers.get("Content-Type")
        mime_main = mime.split(";")[0].strip().lower() if mime else None
        if resp.status_code >= 400:
            return ProbeResult(url=url, reachable=False, status_code=resp.status_code, mime=mime_main,
                               error=f"HTTP {resp.status_code}")
        if mime_main and mime_main not in ("text/html", "application/xhtml+xml"):
            return ProbeResult(url=url, reachable=False, status_code=resp.status_code, mime=mime_main,
                               error=f"not HTML ({mime_main})")
        return ProbeResult(url=url, reachable=True, status_code=resp.status_code, mime=mime_main)
