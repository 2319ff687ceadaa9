"""
Run Metrics
===========
Counters for one harvest run and the end-of-run summary banner.

Tracks:
- Collections visited / failed
- References discovered, records extracted, extraction failures
- Pause count and cumulative paused duration
- Wall-clock time
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class HarvestMetrics:
    """Snapshot of one run's counters."""
    collections_visited: int = 0
    collections_failed: int = 0
    references_discovered: int = 0
    records_extracted: int = 0
    extraction_failures: int = 0
    pause_count: int = 0
    paused_seconds: float = 0.0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float = 0.0
    stop_reason: str = ""

    @property
    def elapsed_sec(self) -> float:
        end = self.finished_at or time.monotonic()
        return max(0.0, end - self.started_at)

    def finish(self, reason: str = "completed") -> None:
        self.finished_at = time.monotonic()
        self.stop_reason = reason

    def to_dict(self) -> dict:
        return {
            'collections_visited': self.collections_visited,
            'collections_failed': self.collections_failed,
            'references_discovered': self.references_discovered,
            'records_extracted': self.records_extracted,
            'extraction_failures': self.extraction_failures,
            'pause_count': self.pause_count,
            'paused_seconds': round(self.paused_seconds, 2),
            'elapsed_sec': round(self.elapsed_sec, 2),
            'stop_reason': self.stop_reason,
        }


def format_summary(metrics: HarvestMetrics) -> str:
    """Human-readable summary for the log."""
    lines = [
        "=" * 60,
        "HARVEST SUMMARY",
        "=" * 60,
        f"  Stop reason:        {metrics.stop_reason or 'completed'}",
        f"  Collections:        {metrics.collections_visited} visited, {metrics.collections_failed} failed",
        f"  References:         {metrics.references_discovered}",
        f"  Records:            {metrics.records_extracted}",
        f"  Failures:           {metrics.extraction_failures}",
        f"  Pauses:             {metrics.pause_count} ({metrics.paused_seconds:.1f}s paused)",
        f"  Elapsed:            {metrics.elapsed_sec:.1f}s",
        "=" * 60,
    ]
    return "\n".join(lines)
