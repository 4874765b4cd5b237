"""IPInfo cache: in-process map with an optional Redis mirror.

The local map is authoritative for this process. When a Redis URL is
configured, entries are written through so that sibling worker processes
can reuse each other's lookups; Redis keeps them for twice the TTL so a
stale copy is still available as the last-resort fallback. Freshness is
always decided here from the stored capture time, never from Redis expiry.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from .. import metrics
from ..logging_utils import log_suppressed
from .models import IPInfo

_LOG = logging.getLogger('scrapertrack.ip_cache')

KEY_PREFIX = 'scrapertrack:ipinfo:'

Entry = Tuple[IPInfo, float]


def _key(ip: str) -> str:
    return f'{KEY_PREFIX}{ip}'


class IPInfoCache:
    def __init__(self, ttl_seconds: int, *, client: Optional[Any] = None,
                 clock: Callable[[], float] = time.time):
        self.ttl = max(1, int(ttl_seconds))
        self._client = client
        self._clock = clock
        self._data: Dict[str, Entry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, ttl_seconds: int, redis_url: Optional[str], *,
                 clock: Callable[[], float] = time.time) -> 'IPInfoCache':
        """Build a cache, attaching Redis only if it answers a ping."""
        client = None
        if redis_url:
            try:
                client = redis.from_url(redis_url, decode_responses=True)
                client.ping()
                _LOG.info('IPInfo cache mirrored to Redis')
            except Exception as e:
                _LOG.warning('Redis connection failed, IPInfo cache is process-local: %s', e)
                client = None
        return cls(ttl_seconds, client=client, clock=clock)

    @property
    def mirrored(self) -> bool:
        return self._client is not None

    def is_fresh(self, entry: Entry) -> bool:
        return (self._clock() - entry[1]) < self.ttl

    def get(self, ip: str) -> Optional[Entry]:
        """Return ``(info, stored_at)`` whether fresh or stale, or ``None``.

        A missing or stale local entry is checked against the mirror; the
        newer capture wins and is kept locally.
        """
        with self._lock:
            entry = self._data.get(ip)
        if self._client is None or (entry is not None and self.is_fresh(entry)):
            return entry
        shared = self._mirror_get(ip)
        if shared is None:
            return entry
        with self._lock:
            current = self._data.get(ip)
            if current is None or current[1] < shared[1]:
                self._data[ip] = shared
                return shared
            return current

    def set(self, ip: str, info: IPInfo, stored_at: Optional[float] = None) -> None:
        stored_at = self._clock() if stored_at is None else stored_at
        with self._lock:
            current = self._data.get(ip)
            # a late lookup must not overwrite a newer capture
            if current is not None and current[1] > stored_at:
                return
            self._data[ip] = (info, stored_at)
            size = len(self._data)
        metrics.IP_CACHE_SIZE.set(size)
        self._mirror_set(ip, info, stored_at)

    def remove_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [ip for ip, (_, ts) in self._data.items() if now - ts >= self.ttl]
            for ip in expired:
                self._data.pop(ip, None)
            size = len(self._data)
        metrics.IP_CACHE_SIZE.set(size)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
        metrics.IP_CACHE_SIZE.set(0)
        if self._client is not None:
            try:
                keys = list(self._client.scan_iter(match=KEY_PREFIX + '*'))
                if keys:
                    self._client.delete(*keys)
            except Exception as e:
                log_suppressed(_LOG, e, 'ip_cache.redis_clear')

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    # ============ Redis mirror ============

    def _mirror_get(self, ip: str) -> Optional[Entry]:
        try:
            raw = self._client.get(_key(ip))  # type: ignore[union-attr]
            if not raw:
                return None
            payload = json.loads(raw)
            return IPInfo.from_dict(payload['info']), float(payload['stored_at'])
        except Exception as e:
            log_suppressed(_LOG, e, 'ip_cache.redis_get')
            return None

    def _mirror_set(self, ip: str, info: IPInfo, stored_at: float) -> None:
        if self._client is None:
            return
        try:
            payload = json.dumps({'stored_at': stored_at, 'info': info.to_dict()})
            self._client.setex(_key(ip), self.ttl * 2, payload)
        except Exception as e:
            log_suppressed(_LOG, e, 'ip_cache.redis_set')
