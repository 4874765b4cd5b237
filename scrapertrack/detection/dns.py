"""Reverse + forward DNS round-trip verification.

A reverse record alone proves nothing (whoever controls the PTR zone can
claim any name), so a hostname only counts once it forward-resolves back to
the original address.
"""

from __future__ import annotations

import errno
import ipaddress
import logging
import socket
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Iterable, List, Optional, Sequence

from .. import metrics
from ..exceptions import DnsLookupError
from ..logging_utils import log_suppressed

_LOG = logging.getLogger('scrapertrack.dns')

# socket.herror / gaierror codes meaning "no such record" rather than a failure
_NO_RESULT_HERRNO = {1, 4}  # HOST_NOT_FOUND, NO_DATA
_NO_RESULT_GAI = {
    getattr(socket, 'EAI_NONAME', -2),
    getattr(socket, 'EAI_NODATA', -5),
}


def _normalize_name(name: str) -> str:
    return name.strip().rstrip('.').lower()


class SocketResolver:
    """System resolver with a hard per-call timeout.

    ``reverse`` and ``forward`` return ``[]`` when the name simply does not
    exist and raise :class:`DnsLookupError` for anything else (timeouts,
    SERVFAIL, resolver unavailable), so callers can tell the two apart.
    """

    def __init__(self, timeout: float = 3.0, max_workers: int = 4):
        self.timeout = float(timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='dns')

    def reverse(self, ip: str) -> List[str]:
        return self._bounded(self._reverse, ip)

    def forward(self, hostname: str) -> List[str]:
        return self._bounded(self._forward, hostname)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _bounded(self, fn: Callable[[str], List[str]], target: str) -> List[str]:
        future = self._executor.submit(fn, target)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise DnsLookupError(target, f'timed out after {self.timeout}s') from exc

    @staticmethod
    def _reverse(ip: str) -> List[str]:
        try:
            primary, aliases, _ = socket.gethostbyaddr(ip)
        except socket.herror as e:
            if e.errno in _NO_RESULT_HERRNO:
                return []
            raise DnsLookupError(ip, str(e)) from e
        except socket.gaierror as e:
            if e.errno in _NO_RESULT_GAI:
                return []
            raise DnsLookupError(ip, str(e)) from e
        except OSError as e:
            raise DnsLookupError(ip, str(e)) from e
        names = []
        for name in [primary, *aliases]:
            norm = _normalize_name(name)
            if norm and norm not in names:
                names.append(norm)
        return names

    @staticmethod
    def _forward(hostname: str) -> List[str]:
        try:
            infos = socket.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            if e.errno in _NO_RESULT_GAI:
                return []
            raise DnsLookupError(hostname, str(e)) from e
        except OSError as e:
            if e.errno == errno.ETIMEDOUT:
                raise DnsLookupError(hostname, 'timed out') from e
            raise DnsLookupError(hostname, str(e)) from e
        addrs = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            if sockaddr and sockaddr[0] not in addrs:
                addrs.append(sockaddr[0])
        return addrs


def hostname_allowed(hostname: str, allow_list: Sequence[str]) -> bool:
    """True when ``hostname`` is a strict subdomain of an allow-listed domain."""
    name = _normalize_name(hostname)
    for domain in allow_list:
        suffix = '.' + domain.strip('.').lower()
        if name.endswith(suffix):
            return True
    return False


def _same_address(candidate: str, target: ipaddress._BaseAddress) -> bool:
    try:
        # getaddrinfo may append a scope id to link-local v6 results
        addr = ipaddress.ip_address(candidate.split('%', 1)[0])
    except ValueError:
        return False
    mapped = getattr(addr, 'ipv4_mapped', None)
    return addr == target or (mapped is not None and mapped == target)


def verify_round_trip(
    ip: str,
    allow_list: Sequence[str],
    resolver,
    extra_candidates: Optional[Iterable[str]] = None,
) -> bool:
    """Authenticate ``ip`` as belonging to one of ``allow_list``'s domains.

    Candidates are the reverse-DNS names of ``ip`` followed by any
    ``extra_candidates`` (e.g. a hostname the caller already knows); only
    allow-listed names are tried. A reverse-lookup error fails the check
    outright. A forward-lookup error disqualifies that candidate only.
    """
    try:
        target = ipaddress.ip_address(ip.strip())
    except (ValueError, AttributeError):
        return False

    try:
        names = list(resolver.reverse(str(target)))
    except Exception as e:
        log_suppressed(_LOG, e, 'dns.reverse')
        metrics.record_dns('error')
        return False

    candidates: List[str] = []
    for name in [*names, *(extra_candidates or ())]:
        if not name:
            continue
        norm = _normalize_name(name)
        if norm not in candidates and hostname_allowed(norm, allow_list):
            candidates.append(norm)

    for name in candidates:
        try:
            addresses = resolver.forward(name)
        except Exception as e:
            log_suppressed(_LOG, e, 'dns.forward')
            continue
        if any(_same_address(a, target) for a in addresses):
            _LOG.info('crawler verified: %s -> %s', name, ip)
            metrics.record_dns('verified')
            return True

    _LOG.debug('DNS verification failed for %s (candidates=%s)', ip, candidates)
    metrics.record_dns('rejected')
    return False
