"""Per-batch outcome report returned by every aggregation pass."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional


@dataclass
class BatchSummary:
    job: str
    fuel_type: str
    week_start: Optional[date] = None
    total: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    # partition -> reason
    skip_reasons: Dict[str, str] = field(default_factory=dict)
    fail_reasons: Dict[str, str] = field(default_factory=dict)
    reference_gaps: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def status(self) -> str:
        if self.failed or self.cancelled:
            return "partial"
        return "success"

    def record_skip(self, partition: str, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[partition] = reason

    def record_failure(self, partition: str, reason: str) -> None:
        self.failed += 1
        self.fail_reasons[partition] = reason

    def skip_reason_counts(self) -> Dict[str, int]:
        return dict(Counter(self.skip_reasons.values()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "fuel_type": self.fuel_type,
            "week_start": self.week_start.isoformat() if self.week_start else None,
            "status": self.status,
            "total": self.total,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "skip_reasons": dict(self.skip_reasons),
            "fail_reasons": dict(self.fail_reasons),
            "reference_gaps": list(self.reference_gaps),
            "cancelled": self.cancelled,
        }
