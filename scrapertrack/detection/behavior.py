"""Per-client sliding-window request history and rate/breadth heuristics."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set, Tuple

from .. import metrics
from ..signatures import SIGNATURES, company_display_name
from .models import Attribution, DetectionMethod

_LOG = logging.getLogger('scrapertrack.behavior')

RAPID_CONFIDENCE = 0.7
SYSTEMATIC_CONFIDENCE = 0.6
BEHAVIOR_COMPANY = 'web_research'

# distinct URLs retained per key; well above any breadth threshold in use
MAX_URLS_PER_KEY = 5000

ClientKey = Tuple[str, str]


def client_key(ip: Optional[str], user_agent: Optional[str]) -> ClientKey:
    return (ip or '', user_agent or '')


@dataclass
class ClientBehaviorRecord:
    history: Deque[Tuple[float, str]] = field(default_factory=deque)
    urls: Set[str] = field(default_factory=set)
    first_seen: float = 0.0
    last_seen: float = 0.0


class BehavioralAnalyzer:
    """Tracks ``(ip, user_agent)`` keys and flags rapid or systematic access.

    All state sits behind one lock, so concurrent observations of the same
    key never lose an update. Records are kept in least-recently-seen order;
    once ``max_keys`` is exceeded the stalest record is dropped.
    """

    def __init__(
        self,
        *,
        retention: float = 3600,
        rapid_window: float = 60,
        rapid_threshold: int = 10,
        breadth_threshold: int = 20,
        max_keys: int = 50000,
        clock=time.time,
    ):
        self.retention = retention
        self.rapid_window = rapid_window
        self.rapid_threshold = rapid_threshold
        self.breadth_threshold = breadth_threshold
        self.max_keys = max(1, max_keys)
        self._clock = clock
        self._records: 'OrderedDict[ClientKey, ClientBehaviorRecord]' = OrderedDict()
        self._lock = threading.Lock()

    def observe(self, key: ClientKey, url: str, now: Optional[float] = None) -> Optional[Attribution]:
        now = self._clock() if now is None else now
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = ClientBehaviorRecord(first_seen=now)
                self._records[key] = record
                while len(self._records) > self.max_keys:
                    dropped, _ = self._records.popitem(last=False)
                    _LOG.debug('behavior map full, dropped %r', dropped)
            else:
                self._records.move_to_end(key)
            self._evict(record, now)
            record.history.append((now, url))
            if len(record.urls) < MAX_URLS_PER_KEY:
                record.urls.add(url)
            record.last_seen = now
            recent = self._recent_count(record, now)
            distinct = len(record.urls)
            tracked = len(self._records)
        metrics.BEHAVIOR_KEYS.set(tracked)

        if recent > self.rapid_threshold:
            return self._attribution(
                DetectionMethod.RAPID_REQUESTS,
                RAPID_CONFIDENCE,
                f'{recent} requests in last {self.rapid_window:g}s',
            )
        if distinct > self.breadth_threshold:
            return self._attribution(
                DetectionMethod.SYSTEMATIC_CRAWLING,
                SYSTEMATIC_CONFIDENCE,
                f'Accessed {distinct} different URLs',
            )
        return None

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop history older than the retention horizon; return records deleted."""
        now = self._clock() if now is None else now
        removed = 0
        with self._lock:
            for key in list(self._records.keys()):
                record = self._records[key]
                self._evict(record, now)
                if not record.history:
                    del self._records[key]
                    removed += 1
            tracked = len(self._records)
        metrics.BEHAVIOR_KEYS.set(tracked)
        if removed:
            _LOG.info('behavior sweep removed %d idle client records (%d tracked)', removed, tracked)
        return removed

    def describe(self, key: ClientKey, now: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Read-only view of one client's record, or ``None`` if untracked."""
        now = self._clock() if now is None else now
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return {
                'retained_requests': len(record.history),
                'recent_requests': self._recent_count(record, now),
                'distinct_urls': len(record.urls),
                'first_seen': record.first_seen,
                'last_seen': record.last_seen,
                'idle_seconds': max(0.0, now - record.last_seen),
            }

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        metrics.BEHAVIOR_KEYS.set(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._records

    # ---- internals (caller holds the lock) ----

    def _evict(self, record: ClientBehaviorRecord, now: float) -> None:
        history = record.history
        while history and now - history[0][0] >= self.retention:
            history.popleft()

    def _recent_count(self, record: ClientBehaviorRecord, now: float) -> int:
        count = 0
        for ts, _ in reversed(record.history):
            if now - ts >= self.rapid_window:
                break
            count += 1
        return count

    @staticmethod
    def _attribution(method: DetectionMethod, confidence: float, details: str) -> Attribution:
        return Attribution(
            company=BEHAVIOR_COMPANY,
            company_name=company_display_name(BEHAVIOR_COMPANY, SIGNATURES),
            method=method,
            confidence=confidence,
            details=details,
        )
