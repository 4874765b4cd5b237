import hmac
import logging
import time

from flask import Blueprint, current_app, jsonify, request

from ..detection.behavior import client_key
from ..detection.engine import RequestSignals
from ..detection.ipinfo import parse_ip
from ..exceptions import UnauthorizedError, ValidationError
from ..logging_utils import get_suppressed_snapshot
from ..signatures import SIGNATURES

api_bp = Blueprint('api', __name__, url_prefix='/api')

_LOG = logging.getLogger('scrapertrack.api')


def _context():
    return current_app.extensions['scrapertrack']


def _require_admin():
    token_required = _context().config.admin_token
    if not token_required:  # open if not set
        return
    provided = request.headers.get('X-Admin-Token') or ''
    if not hmac.compare_digest(provided, token_required):
        raise UnauthorizedError()


def _limited(fn):
    limiter = current_app.extensions.get('limiter')
    if limiter:
        # per-route limit applied at call time, the limiter is attached after blueprint import
        @limiter.limit(_context().config.api_rate_limit)
        def inner():
            return fn()
        return inner()
    return fn()


def _optional_str(data, key):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string", details={'field': key})
    return value


@api_bp.route('/detector/stats', methods=['GET'])
def detector_stats():
    ctx = _context()
    return jsonify({
        'detector': ctx.engine.get_stats().to_dict(),
        'behavior_keys': len(ctx.behavior),
        'suppressed_errors': get_suppressed_snapshot(),
        'timestamp': time.time(),
    })


@api_bp.route('/detector/stats/reset', methods=['POST'])
def detector_stats_reset():
    _require_admin()
    _context().engine.reset_stats()
    return jsonify({'status': 'ok'})


@api_bp.route('/behavior', methods=['GET'])
def behavior():
    """Tracked history for one client. Query: ``ip`` (required), ``user_agent``."""
    _require_admin()
    ip = (request.args.get('ip') or '').strip()
    if not ip or parse_ip(ip) is None:
        raise ValidationError('a valid ip query parameter is required', details={'field': 'ip'})
    user_agent = request.args.get('user_agent', '')
    view = _context().behavior.describe(client_key(ip, user_agent))
    return jsonify({'ip': ip, 'user_agent': user_agent, 'tracked': view is not None, 'behavior': view})


@api_bp.route('/ip/usage', methods=['GET'])
def ip_usage():
    return jsonify(_context().provider.get_usage_stats())


@api_bp.route('/ip/cache/clear', methods=['POST'])
def ip_cache_clear():
    _require_admin()
    provider = _context().provider
    before = len(provider.cache)
    provider.clear_cache()
    _LOG.info('ip cache cleared removed=%d', before)
    return jsonify({'status': 'ok', 'removed': before})


@api_bp.route('/detect', methods=['POST'])
def detect():
    return _limited(detect_impl)


def detect_impl():
    """Classify caller-supplied signals.

    Body: {"user_agent": str, "ip": str, "hostname": str, "url": str,
           "referrer": str, "headers": {name: value}, "enhanced": bool}
    At least one of ``user_agent`` or ``ip`` is required.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('request body must be a JSON object')
    user_agent = _optional_str(data, 'user_agent')
    ip = _optional_str(data, 'ip')
    if not user_agent and not ip:
        raise ValidationError("one of 'user_agent' or 'ip' is required")
    if ip and parse_ip(ip) is None:
        raise ValidationError(f'invalid IP address: {ip}', details={'field': 'ip'})
    headers = data.get('headers')
    if headers is not None and not isinstance(headers, dict):
        raise ValidationError("'headers' must be an object", details={'field': 'headers'})
    enhanced = data.get('enhanced')
    if enhanced is not None and not isinstance(enhanced, bool):
        raise ValidationError("'enhanced' must be a boolean", details={'field': 'enhanced'})

    signals = RequestSignals(
        user_agent=user_agent,
        client_ip=ip,
        hostname=_optional_str(data, 'hostname'),
        url=_optional_str(data, 'url'),
        referrer=_optional_str(data, 'referrer'),
        headers={str(k).lower(): str(v) for k, v in headers.items()} if headers is not None else None,
    )
    found = _context().engine.detect_request(signals, enhanced=enhanced)
    return jsonify({
        'detected': found is not None,
        'attribution': found.to_dict() if found else None,
    })


@api_bp.route('/detector/selftest', methods=['GET'])
def selftest():
    return _limited(selftest_impl)


def selftest_impl():
    results = _context().engine.run_self_test()
    passed = sum(1 for r in results if r['passed'])
    _LOG.info('detector selftest passed=%d total=%d', passed, len(results))
    return jsonify({'results': results, 'passed': passed, 'total': len(results)})


@api_bp.route('/companies', methods=['GET'])
def companies():
    return jsonify({
        'companies': [
            {
                'key': entry.key,
                'name': entry.name,
                'description': entry.description,
                'user_agents': list(entry.user_agents),
                'ip_ranges': list(entry.ip_ranges),
                'asn': entry.asn,
                'requires_verification': entry.requires_verification,
            }
            for entry in SIGNATURES.values()
        ]
    })
