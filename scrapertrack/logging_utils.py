"""Throttled logging for the soft failures detection degrades around.

A failure site is a dotted ``component.operation`` name such as
``ipinfo.fetch``, ``dns.reverse`` or ``producer.network`` (the producer
names match the ``producer`` label of ``scrapertrack_detection_errors_total``).
Counts are kept per site, reported grouped by component on
``/api/detector/stats`` and exported as ``scrapertrack_soft_failures_total``.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from . import metrics


@dataclass
class _SiteState:
    count: int = 0
    logged: int = 0
    last_emit: float = 0.0
    last_error: str = ''


_SUPPRESSION_LOCK = threading.Lock()
_SUPPRESSION_STATE: Dict[str, _SiteState] = {}


def split_site(site: str) -> Tuple[str, str]:
    """``'ipinfo.fetch'`` -> ``('ipinfo', 'fetch')``; a bare name has no operation."""
    component, _, operation = site.partition('.')
    return component, operation


def log_suppressed(
    logger: logging.Logger,
    exc: BaseException,
    site: str,
    *,
    level: int = logging.DEBUG,
    sample: int = 5,
    cooldown: float = 120.0,
) -> int:
    """Log a soft failure that the caller has already degraded around.

    Detection runs on every inbound request, so a dead geolocation provider
    or resolver would otherwise write one line per request. The first
    ``sample`` failures at a site are logged with traceback; after that at
    most one line per ``cooldown`` seconds. Every failure is counted.

    Returns the number of failures seen at ``site`` so far, logged or not.
    """
    now = time.time()
    with _SUPPRESSION_LOCK:
        state = _SUPPRESSION_STATE.setdefault(site, _SiteState())
        state.count += 1
        state.last_error = f'{type(exc).__name__}: {exc}'
        count = state.count
        emit = count <= sample or (now - state.last_emit) >= cooldown
        if emit:
            state.logged += 1
            state.last_emit = now
    metrics.record_soft_failure(*split_site(site))
    if emit:
        logger.log(level, '%s failed err=%s (seen=%d)', site, exc, count, exc_info=exc)
    return count


def get_suppressed_snapshot() -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Copy of the soft-failure counters as ``{component: {operation: counters}}``."""
    out: Dict[str, Dict[str, Dict[str, Any]]] = {}
    with _SUPPRESSION_LOCK:
        for site, state in sorted(_SUPPRESSION_STATE.items()):
            component, operation = split_site(site)
            out.setdefault(component, {})[operation] = {
                'count': state.count,
                'logged': state.logged,
                'last_emit': state.last_emit,
                'last_error': state.last_error,
            }
    return out


def reset_suppressed_state() -> None:
    """Clear soft-failure counters. Useful for unit tests."""
    with _SUPPRESSION_LOCK:
        _SUPPRESSION_STATE.clear()
