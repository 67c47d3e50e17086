from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional


class OpsLogger:
    """Append-only JSONL log of crawl operations.

    - One JSON object per line (UTF-8), tagged ``ccc_ops: 1``
    - Per-page records (``event: "page"``) and per-job summaries (``event: "job"``)
    - Thread-safe (coarse lock)
    - Best-effort: never raises to caller
    """

    def __init__(self, file_path: Optional[Path] = None, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path) if file_path else None
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        if self.file_path is not None:
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                pass

    def emit(self, record: Dict[str, Any]) -> None:
        payload = {"ccc_ops": 1, "ts": round(time.time(), 3), **record}
        try:
            line = json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            line = json.dumps({"ccc_ops": 1, "_serialization_error": True, "record_str": str(record)})
        if self.file_path is not None:
            try:
                with self._lock:
                    with self.file_path.open("a", encoding="utf-8") as f:
                        f.write(line)
                        f.write("\n")
            except OSError:
                pass
        if self.also_stdout:
            print(line)

    def page(self, *, seed_url: str, url: str, depth: int, status: str,
             contacts: int = 0, elapsed_ms: float = 0.0, error: Optional[str] = None) -> None:
        self.emit({
            "event": "page",
            "seed_url": seed_url,
            "url": url,
            "depth": depth,
            "status": status,
            "contacts": contacts,
            "elapsed_ms": round(elapsed_ms, 1),
            "error": error,
        })

    def job(self, summary: Dict[str, Any]) -> None:
        self.emit({"event": "job", **summary})
