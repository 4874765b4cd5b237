"""App-wide request tracker.

Runs the detection engine on every tracked request before the view
executes. The result lands on ``flask.g`` (``scraper_attribution`` and
``scraper_activity``) for downstream views; tracking faults never reach
the client.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, request

from ..detection.engine import RequestSignals
from ..detection.ipinfo import parse_ip
from ..detection.models import Attribution
from ..logging_utils import log_suppressed
from ..paths import is_guided_path, is_sensitive_path, should_track_path

tracking_bp = Blueprint('tracking', __name__)

_LOG = logging.getLogger('scrapertrack.tracking')

# forwarding headers, most specific first
IP_HEADERS = (
    'X-Forwarded-For',
    'X-Real-IP',
    'X-Client-IP',
    'CF-Connecting-IP',
    'X-Cluster-Client-IP',
    'X-Forwarded',
    'Forwarded-For',
    'Forwarded',
)


def _strip_port(value: str) -> str:
    value = value.strip().strip('"')
    if value.lower().startswith('for='):
        value = value[4:].strip('"')
    if value.startswith('['):
        return value[1:].split(']', 1)[0]
    # a single colon means ipv4:port; more than one is a bare ipv6 literal
    if value.count(':') == 1:
        return value.split(':', 1)[0]
    return value


def client_ip_from(req) -> Optional[str]:
    for header in IP_HEADERS:
        raw = req.headers.get(header)
        if not raw:
            continue
        first = raw.split(',')[0]
        # Forwarded: for=1.2.3.4;proto=https
        first = first.split(';')[0]
        candidate = _strip_port(first)
        if parse_ip(candidate) is not None:
            return candidate
    return req.remote_addr


def page_visited(req) -> str:
    full = req.full_path or req.path or '/'
    return full[:-1] if full.endswith('?') else full


def extract_signals(req) -> RequestSignals:
    return RequestSignals(
        user_agent=req.headers.get('User-Agent', ''),
        client_ip=client_ip_from(req),
        hostname=req.host.split(':')[0] if req.host else None,
        url=page_visited(req),
        referrer=req.headers.get('Referer') or req.headers.get('Referrer') or '',
        headers={k.lower(): v for k, v in req.headers.items()},
    )


def build_activity(signals: RequestSignals, found: Attribution) -> Dict[str, Any]:
    info = found.ip_info
    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'company': found.company,
        'user_agent': signals.user_agent,
        'ip_address': signals.client_ip,
        'page_visited': signals.url,
        'referer': signals.referrer,
        'detection_method': found.method.value,
        'country': info.country if info else None,
        'asn': info.asn if info else None,
        'organization': info.organization if info else None,
        'is_guided_path': is_guided_path(request.path),
        'confidence': found.confidence,
        'details': found.details,
        'hostname': signals.hostname,
        'method': request.method,
        'protocol': request.scheme,
    }


@tracking_bp.before_app_request
def track_request():
    ctx = current_app.extensions.get('scrapertrack')
    g.scraper_attribution = None
    if ctx is None or not should_track_path(request.path):
        return None
    started = time.time()
    try:
        signals = extract_signals(request)
        if is_sensitive_path(request.path):
            _LOG.warning('sensitive path accessed: %s from %s', request.path, signals.client_ip)
        found = ctx.engine.detect_request(signals)
        if found is None:
            return None
        g.scraper_attribution = found
        g.scraper_activity = build_activity(signals, found)
        _LOG.info(
            '%s detected %s via %s (%.2f confidence, %dms)',
            found.company_name, signals.url, found.method.value, found.confidence,
            int((time.time() - started) * 1000),
        )
    except Exception as e:
        log_suppressed(_LOG, e, 'tracking.before_request', level=logging.ERROR)
    return None


@tracking_bp.after_app_request
def add_debug_headers(response):
    ctx = current_app.extensions.get('scrapertrack')
    found = g.get('scraper_attribution')
    if ctx is not None and ctx.config.debug_headers and found is not None:
        response.headers['X-LLM-Detected'] = found.company_name
        response.headers['X-LLM-Method'] = found.method.value
        response.headers['X-LLM-Confidence'] = f'{found.confidence:.2f}'
    return response
