"""
Harvest Data Model
==================
Records passed between the pipeline stages and handed to the output writer.

- ``ItemReference``: canonical detail-page URL (unique per discovery run)
- ``ListingRecord``: one extracted listing; every field independently nullable
- ``PauseEvent``: one anti-automation blocking episode
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, NewType, Optional

ItemReference = NewType("ItemReference", str)


# ---------------------------------------------------------------------------
# Listing record
# ---------------------------------------------------------------------------

# Column order used by every writer
RECORD_FIELDS = [
    "id",
    "url",
    "title",
    "price",
    "price_per_sqm",
    "area_sqm",
    "rooms",
    "bedrooms",
    "floor",
    "address",
    "dpe",
    "ges",
    "features",
    "description",
    "agency",
    "reference",
]


@dataclass(frozen=True)
class ListingRecord:
    """Extraction result for one detail page."""
    id: Optional[str]
    url: str
    title: Optional[str] = None
    price: Optional[int] = None
    price_per_sqm: Optional[int] = None
    area_sqm: Optional[float] = None
    rooms: Optional[int] = None
    bedrooms: Optional[int] = None
    floor: Optional[str] = None
    address: Optional[str] = None
    dpe: Optional[str] = None
    ges: Optional[str] = None
    features: List[str] = field(default_factory=list)
    description: Optional[str] = None
    agency: Optional[str] = None
    reference: Optional[str] = None

    def to_dict(self) -> dict:
        row = {name: getattr(self, name) for name in RECORD_FIELDS}
        row["features"] = list(self.features)
        return row

    def to_flat_dict(self) -> dict:
        """Row form: lists joined, nulls as empty strings."""
        row = {}
        for name in RECORD_FIELDS:
            value = getattr(self, name)
            if isinstance(value, list):
                row[name] = "; ".join(value)
            elif value is None:
                row[name] = ""
            else:
                row[name] = value
        return row


# ---------------------------------------------------------------------------
# Pause episodes
# ---------------------------------------------------------------------------

class PauseOutcome(str, Enum):
    RESUMED = "RESUMED"
    ABORTED = "ABORTED"


@dataclass
class PauseEvent:
    """One blocking episode, appended once the human has answered."""
    reason: str
    urls: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    outcome: Optional[PauseOutcome] = None

    @property
    def duration_s(self) -> float:
        if self.ended_at is None:
            return 0.0
        return max(0.0, (self.ended_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "urls": list(self.urls),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_s": round(self.duration_s, 3),
            "outcome": self.outcome.value if self.outcome else None,
        }
