"""
Coach Contact Crawler - CLI Runner

Usage:
  python -m ccc.run \
    --input input_urls.txt \
    --mode standard \
    --out ./out

  python -m ccc.run --url https://rinkclub.org --mode gentle --out ./out

Dry run (validate only):
  python -m ccc.run --input input_urls.txt --config config/example.yaml --out ./out --dry-run

Exit codes:
  0 - success
  1 - config error (file missing or invalid YAML/schema)
  2 - input error (input file missing, no URLs given, invalid URL)
  3 - processing error (browser launch failure, nothing left to crawl, output not writable)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import platform
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import psutil
from pydantic import ValidationError

from contactcrawl.config import ConfigError, CrawlerConfig, load_config
from contactcrawl.ops_logger import OpsLogger
from contactcrawl.pipeline.fetchers.static import ReachabilityProbe
from contactcrawl.pipeline.orchestrator import ContactCrawler, CrawlResult, CrawlState
from contactcrawl.schemas import BrowserEngine, CrawlMode, CrawlRequest


def read_input_urls(input_path: Path) -> List[str]:
    urls: List[str] = []
    for line in input_path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        # Bare domains get https://; anything else is validated by CrawlRequest
        if "://" in s:
            urls.append(s)
        elif "." in s:
            urls.append(f"https://{s}")
        else:
            urls.append(s)
    return urls


def ensure_out_dir(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    test_file = out_dir / ".write_test"
    test_file.write_text("ok", encoding="utf-8")
    test_file.unlink(missing_ok=True)


def build_requests(urls: List[str], args: argparse.Namespace) -> List[CrawlRequest]:
    """Raises pydantic ValidationError for URLs that are not HTTP(S)."""
    return [
        CrawlRequest(
            seed_url=u,
            mode=CrawlMode(args.mode),
            max_depth=args.max_depth,
            max_pages=args.max_pages,
            follow_links=False if args.no_follow_links else None,
            timeout_ms=args.timeout_ms,
            browser_engine=BrowserEngine(args.browser),
        )
        for u in urls
    ]


def prefilter_requests(requests: List[CrawlRequest], timeout_s: float) -> List[CrawlRequest]:
    kept: List[CrawlRequest] = []
    with ReachabilityProbe(timeout_s=timeout_s) as probe:
        for req in requests:
            res = probe.probe(req.seed_url)
            if res.reachable:
                kept.append(req)
            else:
                print(f"  ⚠️  Skipped: {req.seed_url} — {res.error}")
    return kept


def write_results(out_dir: Path, results: List[CrawlResult]) -> Path:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = out_dir / f"contacts_{ts}.json"
    payload = {
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "results": [r.to_dict() for r in results],
    }
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


async def run_crawl(
    requests: List[CrawlRequest],
    config: CrawlerConfig,
    ops_logger: Optional[OpsLogger],
    concurrency: Optional[int],
) -> List[CrawlResult]:
    async with ContactCrawler(config, ops_logger) as crawler:
        return await crawler.scrape_many(requests, concurrency=concurrency)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="ccc.run", description="Coach contact crawler")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--input", "-i", default=None, help="Path to URLs file (one per line)")
    src.add_argument("--url", "-u", action="append", default=None, help="Seed URL (repeatable)")
    parser.add_argument("--config", "-c", default=None, help="Path to YAML config file (optional)")
    parser.add_argument("--out", "-o", default="./out", help="Output directory (default ./out)")
    parser.add_argument("--mode", choices=[m.value for m in CrawlMode], default=CrawlMode.STANDARD.value,
                        help="Crawl mode (default standard)")
    parser.add_argument("--max-depth", type=int, default=None, help="Override mode max depth")
    parser.add_argument("--max-pages", type=int, default=None, help="Override mode max pages")
    parser.add_argument("--no-follow-links", action="store_true", help="Only visit the seed page")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-navigation timeout in ms")
    parser.add_argument("--browser", choices=[e.value for e in BrowserEngine], default=BrowserEngine.CHROMIUM.value,
                        help="Browser engine (default chromium)")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel jobs (default from config)")
    parser.add_argument("--no-prefilter", action="store_true", help="Disable HEAD reachability check of seeds")
    parser.add_argument("--prefilter-timeout", type=float, default=5.0, help="Prefilter check timeout seconds (default 5.0)")
    parser.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <out>/ops.log)")
    parser.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Library log level (default WARNING)")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs/config and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Config
    try:
        config = load_config(args.config) if args.config else CrawlerConfig()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    # Input
    if args.input:
        input_path = Path(args.input)
        if not input_path.exists() or not input_path.is_file():
            print(f"Input error: file not found: {input_path}", file=sys.stderr)
            return 2
        urls = read_input_urls(input_path)
    else:
        urls = list(args.url or [])
    if not urls:
        print("Input error: no URLs given (use --input or --url)", file=sys.stderr)
        return 2
    try:
        requests = build_requests(urls, args)
    except ValidationError as e:
        print(f"Input error: {e}", file=sys.stderr)
        return 2

    out_dir = Path(args.out)
    try:
        ensure_out_dir(out_dir)
    except OSError as e:
        print(f"Output error: cannot write to {out_dir}: {e}", file=sys.stderr)
        return 3

    if args.dry_run:
        print("✅ Dry-run validation passed")
        print(f" - Input: {args.input or 'command line'}")
        print(f" - Config: {args.config or 'defaults'}")
        print(f" - Output dir: {out_dir}")
        print(f" - Mode: {args.mode}")
        print(f" - URLs to process: {len(requests)}")
        return 0

    if not args.no_prefilter:
        requests = prefilter_requests(requests, args.prefilter_timeout)
    if not requests:
        print("No reachable URLs to crawl.", file=sys.stderr)
        return 3

    ops_log_path = Path(args.ops_log) if args.ops_log else (
        Path(config.ops.log_path) if config.ops.log_path else out_dir / "ops.log")
    ops_logger = OpsLogger(ops_log_path, also_stdout=args.ops_stdout or config.ops.also_stdout)

    print(f"Mode: {args.mode}, browser={args.browser}, seeds={len(requests)}")
    started = time.perf_counter()
    results = asyncio.run(run_crawl(requests, config, ops_logger, args.concurrency))
    wall_s = time.perf_counter() - started

    for r in results:
        if r.state is CrawlState.FAILED:
            print(f"  ❌ {r.seed_url} — {'; '.join(r.errors)}")
            continue
        tag = " (timed out)" if r.state is CrawlState.ABORTED_BY_TIMEOUT else ""
        print(f"  ✅ {r.seed_url}: {len(r.contacts)} contacts from {r.pages_visited} pages{tag}")

    try:
        json_path = write_results(out_dir, results)
    except OSError as e:
        print(f"Export error: {e}", file=sys.stderr)
        return 3
    print(f"💾 JSON: {json_path}")

    total = sum(len(r.contacts) for r in results)
    proc = psutil.Process()
    with proc.oneshot():
        rss_mb = round(proc.memory_info().rss / (1024 * 1024), 1)
        cpu_pct = round(proc.cpu_percent(interval=None), 1)
    ops_logger.emit({
        "summary": True,
        "seeds": len(results),
        "total_contacts": total,
        "states": {s.value: sum(1 for r in results if r.state is s) for s in CrawlState},
        "durations": {"wall_s": round(wall_s, 2)},
        "resources": {"cpu_pct": cpu_pct, "rss_mb": rss_mb},
        "python": platform.python_version(),
        "host": {"platform": platform.system(), "release": platform.release(), "machine": platform.machine()},
    })
    print("🏁 Done.")
    print(f"   Seeds: {len(results)}")
    print(f"   Total contacts: {total}")

    if any(r.state is CrawlState.FAILED for r in results):
        return 3
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
