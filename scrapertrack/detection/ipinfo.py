"""Cached, quota-bounded, timeout-bounded IP geolocation lookup.

``IPInfoProvider.resolve`` is total: every call returns an :class:`IPInfo`
and no exception escapes. Policy, in order:

1. invalid literal      -> unknown sentinel (no cache write, no call)
2. private / reserved   -> private sentinel (never cached, never counted)
3. fresh cache entry    -> cached value
4. daily quota spent    -> stale cached value or unknown sentinel
5. external lookup      -> fresh value, or stale/unknown on failure/timeout

Concurrent resolves of the same address share one in-flight lookup. A
lookup that outlives its caller's timeout still lands in the cache when
it completes.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

from .. import metrics
from ..config import DAY_SECONDS, FREE_TIER_DAILY_REQUESTS
from ..exceptions import LookupFailedError, LookupTimeoutError
from ..logging_utils import log_suppressed
from .ip_cache import IPInfoCache
from .models import UNKNOWN, IPInfo, private_ipinfo, unknown_ipinfo

_LOG = logging.getLogger('scrapertrack.ipinfo')

USER_AGENT = 'scrapertrack-ipinfo/1.0'

DATACENTER_INDICATORS = (
    'amazon', 'aws', 'google', 'microsoft', 'azure', 'cloudflare',
    'digitalocean', 'linode', 'vultr', 'hetzner', 'ovh',
    'datacenter', 'hosting', 'server', 'cloud', 'vps',
    'dedicated', 'colocation', 'colo', 'infrastructure',
)

Fetch = Callable[[str], Dict[str, Any]]


# ============ Address classification ============

def parse_ip(value: Any) -> Optional[ipaddress._BaseAddress]:
    """Return the parsed address for a valid IPv4/IPv6 literal, else ``None``."""
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_private_address(addr: ipaddress._BaseAddress) -> bool:
    mapped = getattr(addr, 'ipv4_mapped', None)
    if mapped is not None:
        addr = mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_unspecified
        or addr.is_multicast
    )


# ============ Payload parsing ============

def _text(data: Dict[str, Any], key: str, default: str = UNKNOWN) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _number(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_asn(value: Any) -> Optional[str]:
    """Coerce provider ASN values (``15169``, ``'15169'``, ``'as15169'``) to ``'AS15169'``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return f'AS{value}'
    if not isinstance(value, str):
        return None
    token = value.strip().split()[0].upper() if value.strip() else ''
    if token.isdigit():
        return f'AS{token}'
    if token.startswith('AS') and token[2:].isdigit():
        return token
    return None


def is_data_center(org: str, isp: str) -> bool:
    org_l, isp_l = org.lower(), isp.lower()
    return any(ind in org_l or ind in isp_l for ind in DATACENTER_INDICATORS)


def connection_type(org: str, isp: str) -> str:
    if is_data_center(org, isp):
        return 'datacenter'
    org_l = org.lower()
    if 'mobile' in org_l or 'cellular' in org_l:
        return 'mobile'
    if 'broadband' in org_l or 'cable' in org_l or 'fiber' in org_l:
        return 'broadband'
    if 'satellite' in org_l:
        return 'satellite'
    return 'unknown'


def parse_payload(ip: str, data: Dict[str, Any], now: float) -> IPInfo:
    """Build an :class:`IPInfo` from an ipapi-style payload; every field is optional."""
    org = _text(data, 'org')
    isp = _text(data, 'isp', org)
    timezone_name = data.get('timezone') if isinstance(data.get('timezone'), str) else None
    return IPInfo(
        ip=ip,
        country=_text(data, 'country_name'),
        country_code=_text(data, 'country_code', 'XX'),
        region=_text(data, 'region'),
        city=_text(data, 'city'),
        organization=org,
        isp=isp,
        asn=normalize_asn(data.get('asn')),
        timezone=timezone_name or None,
        is_data_center=is_data_center(org, isp),
        is_proxy=bool(data.get('threat')) if not isinstance(data.get('threat'), dict) else any(data['threat'].values()),
        latitude=_number(data, 'latitude'),
        longitude=_number(data, 'longitude'),
        connection_type=connection_type(org, isp),
        captured_at=now,
    )


# ============ Provider ============

class IPInfoProvider:
    def __init__(
        self,
        cache: IPInfoCache,
        *,
        api_key: Optional[str] = None,
        max_requests_per_day: int = FREE_TIER_DAILY_REQUESTS,
        timeout: float = 5.0,
        url_template: str = 'https://ipapi.co/{ip}/json/',
        quota_window: int = DAY_SECONDS,
        fetch: Optional[Fetch] = None,
        session: Optional[requests.Session] = None,
        max_workers: int = 8,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.api_key = api_key
        self.max_requests = max(0, int(max_requests_per_day))
        self.timeout = float(timeout)
        self.url_template = url_template
        self.quota_window = quota_window
        self._fetch = fetch or self._http_fetch
        self._session = session or requests.Session()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='ipinfo')
        self._lock = threading.Lock()
        self._pending: Dict[str, Future] = {}
        self._request_count = 0
        self._last_reset = clock()

    # ---- public API ----

    def resolve(self, ip: Any) -> IPInfo:
        try:
            return self._resolve(ip)
        except Exception as e:
            log_suppressed(_LOG, e, 'ipinfo.resolve', level=logging.WARNING)
            metrics.record_lookup('failed')
            return unknown_ipinfo(str(ip), self._clock())

    def get_usage_stats(self) -> Dict[str, Any]:
        with self._lock:
            count = self._request_count
            last_reset = self._last_reset
            in_flight = len(self._pending)
        return {
            'request_count': count,
            'max_requests': self.max_requests,
            'cache_size': len(self.cache),
            'has_api_key': bool(self.api_key),
            'in_flight': in_flight,
            'last_reset_time': datetime.fromtimestamp(last_reset, tz=timezone.utc).isoformat(),
        }

    def reset_quota_if_due(self) -> bool:
        with self._lock:
            return self._reset_if_due_locked(self._clock())

    def clean_expired(self) -> int:
        removed = self.cache.remove_expired()
        if removed:
            _LOG.info('cleaned %d expired IPInfo cache entries', removed)
        return removed

    def clear_cache(self) -> None:
        self.cache.clear()
        _LOG.info('IPInfo cache cleared')

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---- internals ----

    def _reset_if_due_locked(self, now: float) -> bool:
        if now - self._last_reset > self.quota_window:
            _LOG.info('daily lookup quota reset (used=%d of %d)', self._request_count, self.max_requests)
            self._request_count = 0
            self._last_reset = now
            return True
        return False

    def _resolve(self, ip: Any) -> IPInfo:
        addr = parse_ip(ip)
        if addr is None:
            _LOG.debug('invalid IP address format: %r', ip)
            metrics.record_lookup('invalid')
            return unknown_ipinfo(str(ip) if ip is not None else '', self._clock())
        key = str(ip).strip()
        if is_private_address(addr):
            metrics.record_lookup('private')
            return private_ipinfo(key, self._clock())

        entry = self.cache.get(key)
        if entry is not None and self.cache.is_fresh(entry):
            metrics.record_lookup('cache_hit')
            return entry[0]
        fallback = entry[0] if entry is not None else None

        with self._lock:
            # in-flight lookups count against the quota until they finish
            future = self._pending.get(key)
            if future is None:
                self._reset_if_due_locked(self._clock())
                if self._request_count + len(self._pending) < self.max_requests:
                    future = self._executor.submit(self._lookup_and_store, key)
                    self._pending[key] = future
        if future is None:
            _LOG.debug('lookup quota exhausted, using %s data for %s', 'cached' if fallback else 'default', key)
            metrics.record_lookup('quota_exhausted')
            return fallback or unknown_ipinfo(key, self._clock())

        try:
            info = future.result(timeout=self.timeout)
            metrics.record_lookup('fetched')
            return info
        except FutureTimeout:
            if future.cancel():
                self._forget(key, future)
            log_suppressed(_LOG, LookupTimeoutError(key, self.timeout), 'ipinfo.timeout')
            metrics.record_lookup('timeout')
        except Exception as e:
            log_suppressed(_LOG, e, 'ipinfo.fetch')
            metrics.record_lookup('failed')
        return fallback or unknown_ipinfo(key, self._clock())

    def _forget(self, key: str, future: Future) -> None:
        with self._lock:
            if self._pending.get(key) is future:
                self._pending.pop(key, None)

    def _lookup_and_store(self, ip: str) -> IPInfo:
        stored = False
        try:
            payload = self._fetch(ip)
            if not isinstance(payload, dict):
                raise LookupFailedError(ip, 'non-object payload')
            if payload.get('error'):
                raise LookupFailedError(ip, str(payload.get('reason') or 'Unknown error'))
            now = self._clock()
            info = parse_payload(ip, payload, now)
            self.cache.set(ip, info, now)
            stored = True
        finally:
            with self._lock:
                if stored:
                    self._request_count += 1
                self._pending.pop(ip, None)
        _LOG.debug('IP analysis complete for %s: %s, %s', ip, info.country, info.organization)
        return info

    def _http_fetch(self, ip: str) -> Dict[str, Any]:
        url = self.url_template.format(ip=ip)
        params = {'key': self.api_key} if self.api_key else None
        resp = self._session.get(
            url,
            params=params,
            timeout=self.timeout,
            headers={'User-Agent': USER_AGENT, 'Accept': 'application/json'},
        )
        if resp.status_code != 200:
            raise LookupFailedError(ip, f'status {resp.status_code}')
        try:
            return resp.json()
        except ValueError as exc:
            raise LookupFailedError(ip, 'invalid JSON') from exc
