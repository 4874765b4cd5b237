"""Process-lifetime detection counters."""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict

from .models import Attribution


@dataclass(frozen=True)
class DetectionStats:
    total_detections: int = 0
    by_method: Dict[str, int] = field(default_factory=dict)
    by_company: Dict[str, int] = field(default_factory=dict)
    since: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_detections': self.total_detections,
            'by_method': dict(self.by_method),
            'by_company': dict(self.by_company),
            'since': self.since,
        }


class StatsRegistry:
    """Counts arbitrated attributions; one ``record`` per selected result."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._total = 0
        self._by_method: Counter = Counter()
        self._by_company: Counter = Counter()
        self._since = clock()

    def record(self, attribution: Attribution) -> None:
        with self._lock:
            self._total += 1
            self._by_method[attribution.method.value] += 1
            self._by_company[attribution.company] += 1

    def snapshot(self) -> DetectionStats:
        with self._lock:
            return DetectionStats(
                total_detections=self._total,
                by_method=dict(self._by_method),
                by_company=dict(self._by_company),
                since=self._since,
            )

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._by_method.clear()
            self._by_company.clear()
            self._since = self._clock()
