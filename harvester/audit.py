"""
Error Log
=========
Append-only audit trail for a harvest run.

One timestamped line per failed detail page, one structured line per
pause episode::

    [2026-10-19T09:12:03.412+00:00] Failed to scrape https://... :: Timeout 30000ms exceeded
    [2026-10-19T09:14:40.001+00:00] PAUSE {"reason": "...", "outcome": "RESUMED", ...}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .models import PauseEvent

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class ErrorLog:
    """Append-only text stream backed by a file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.failure_count = 0

    def reset(self) -> None:
        """Truncate the log (once, at run start)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")
        self.failure_count = 0

    def record_failure(self, url: str, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        # Playwright messages carry a multi-line call log; keep the first line
        message = message.splitlines()[0]
        self._append(f"[{_timestamp()}] Failed to scrape {url} :: {message}")
        self.failure_count += 1

    def record_pause(self, event: PauseEvent) -> None:
        payload = json.dumps(event.to_dict(), ensure_ascii=False)
        self._append(f"[{_timestamp()}] PAUSE {payload}")

    def entries(self) -> List[str]:
        if not self.path.exists():
            return []
        return [line for line in self.path.read_text(encoding="utf-8").splitlines() if line]

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
