# catalog_ingest/models/job.py

"""Batch job state: progress checkpoints, work items and rescrape replies."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


@dataclass
class JobProgress:
    """Resumable batch runner progress, persisted after every batch."""

    offset: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialise to a JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobProgress":
        """Build progress from a persisted dict, tolerating missing keys."""
        return cls(
            offset=max(0, int(data.get("offset", 0))),
            succeeded=int(data.get("succeeded", 0)),
            partial=int(data.get("partial", 0)),
            failed=int(data.get("failed", 0)),
            consecutive_failures=int(
                data.get("consecutive_failures", 0)
            ),
        )


@dataclass
class WorkItem:
    """A unit of batch work: a listing to re-scrape or a leaf to top off."""

    item_id: str
    label: str = ""
    payload: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )


@dataclass
class RescrapeResponse:
    """Reply of the rescrape trigger endpoint (or a synthetic failure)."""

    status_code: int
    success: bool = False
    attributes: int = 0
    price_tiers: int = 0
    quality: str = ""
    debug_source: str = ""


class Quality(str, Enum):
    """Richness class of a dispatch result."""

    GOOD = "good"
    PARTIAL = "partial"
    BAD = "bad"


@dataclass
class Classification:
    """Classified outcome of one dispatched work item."""

    quality: Quality
    fallback: bool = False
    rate_limited: bool = False
    detail: str = ""


@dataclass
class RunSummary:
    """Final counters of a batch run."""

    progress: JobProgress
    total: int
    completed: bool
    cooldowns: int = 0
    rate_limit_backoffs: int = 0
