"""Environment-driven configuration.

Every knob is read from a ``SCRAPERTRACK_*`` environment variable exactly
once, when :func:`load_config` builds the immutable :class:`EngineConfig`.
Components receive the config (or plain values taken from it) through
their constructors; nothing below reads ``os.environ`` at request time.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

_LOG = logging.getLogger('scrapertrack.config')

DAY_SECONDS = 24 * 3600
FREE_TIER_DAILY_REQUESTS = 1000
KEYED_TIER_DAILY_REQUESTS = 10000


@dataclass(frozen=True)
class EngineConfig:
    # IPInfo provider
    ip_cache_ttl: int = DAY_SECONDS
    lookup_timeout: float = 5.0
    lookup_url_template: str = 'https://ipapi.co/{ip}/json/'
    ip_api_key: Optional[str] = None
    max_requests_override: Optional[int] = None
    quota_window: int = DAY_SECONDS
    redis_url: Optional[str] = None

    # DNS verification
    dns_timeout: float = 3.0

    # Behavioral analyzer
    behavior_retention: int = 3600
    rapid_window: int = 60
    rapid_threshold: int = 10
    breadth_threshold: int = 20
    max_tracked_keys: int = 50000

    # Background sweeps
    sweeps_enabled: bool = True
    cache_sweep_interval: int = 3600
    behavior_sweep_interval: int = 3600
    quota_sweep_interval: int = 600

    # Orchestration
    enhanced: bool = True
    heuristics_file: Optional[str] = None

    # HTTP surface
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    api_rate_limit: str = '120 per minute'
    admin_token: Optional[str] = None
    debug_headers: bool = False

    @property
    def max_requests_per_day(self) -> int:
        if self.max_requests_override is not None:
            return self.max_requests_override
        return KEYED_TIER_DAILY_REQUESTS if self.ip_api_key else FREE_TIER_DAILY_REQUESTS


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        _LOG.warning('invalid integer %s=%r; using default %s', name, raw, default)
        return default


def _float(env: Mapping[str, str], name: str, default: float, minimum: float = 0.0) -> float:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        _LOG.warning('invalid number %s=%r; using default %s', name, raw, default)
        return default


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _str(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    raw = env.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def load_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Build an :class:`EngineConfig` from ``env`` (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    override_raw = _str(env, 'SCRAPERTRACK_IP_MAX_REQUESTS')
    override = _int(env, 'SCRAPERTRACK_IP_MAX_REQUESTS', 0) if override_raw else None
    return EngineConfig(
        ip_cache_ttl=_int(env, 'SCRAPERTRACK_IP_CACHE_TTL', DAY_SECONDS, minimum=1),
        lookup_timeout=_float(env, 'SCRAPERTRACK_IP_LOOKUP_TIMEOUT', 5.0, minimum=0.1),
        lookup_url_template=_str(env, 'SCRAPERTRACK_IP_LOOKUP_URL', 'https://ipapi.co/{ip}/json/'),
        ip_api_key=_str(env, 'SCRAPERTRACK_IP_API_KEY'),
        max_requests_override=override,
        quota_window=_int(env, 'SCRAPERTRACK_IP_QUOTA_WINDOW', DAY_SECONDS, minimum=1),
        redis_url=_str(env, 'SCRAPERTRACK_REDIS_URL'),
        dns_timeout=_float(env, 'SCRAPERTRACK_DNS_TIMEOUT', 3.0, minimum=0.1),
        behavior_retention=_int(env, 'SCRAPERTRACK_BEHAVIOR_RETENTION', 3600, minimum=60),
        rapid_window=_int(env, 'SCRAPERTRACK_RAPID_WINDOW', 60, minimum=1),
        rapid_threshold=_int(env, 'SCRAPERTRACK_RAPID_THRESHOLD', 10, minimum=1),
        breadth_threshold=_int(env, 'SCRAPERTRACK_BREADTH_THRESHOLD', 20, minimum=1),
        max_tracked_keys=_int(env, 'SCRAPERTRACK_MAX_TRACKED_KEYS', 50000, minimum=64),
        sweeps_enabled=_flag(env, 'SCRAPERTRACK_SWEEPS', True),
        cache_sweep_interval=_int(env, 'SCRAPERTRACK_CACHE_SWEEP_INTERVAL', 3600, minimum=1),
        behavior_sweep_interval=_int(env, 'SCRAPERTRACK_BEHAVIOR_SWEEP_INTERVAL', 3600, minimum=1),
        quota_sweep_interval=_int(env, 'SCRAPERTRACK_QUOTA_SWEEP_INTERVAL', 600, minimum=1),
        enhanced=_flag(env, 'SCRAPERTRACK_ENHANCED', True),
        heuristics_file=_str(env, 'SCRAPERTRACK_HEURISTICS_FILE'),
        log_level=(_str(env, 'SCRAPERTRACK_LOG_LEVEL', 'INFO') or 'INFO').upper(),
        log_file=_str(env, 'SCRAPERTRACK_LOG_FILE'),
        api_rate_limit=_str(env, 'SCRAPERTRACK_RATE_LIMIT', '120 per minute'),
        admin_token=_str(env, 'SCRAPERTRACK_ADMIN_TOKEN'),
        debug_headers=_flag(env, 'SCRAPERTRACK_DEBUG_HEADERS', False),
    )
