import time

from flask import Blueprint, Response, current_app, jsonify

from .. import __version__, metrics

system_bp = Blueprint('system', __name__)

_START_TIME = time.time()


@system_bp.route('/health', methods=['GET'])
def health():
    # lightweight status; no external calls
    uptime = time.time() - _START_TIME
    return jsonify({'status': 'ok', 'uptime_seconds': round(uptime, 2)})


@system_bp.route('/version', methods=['GET'])
def version():
    ctx = current_app.extensions.get('scrapertrack')
    cfg = ctx.config if ctx else None
    features = {
        'enhanced_detection': bool(cfg and cfg.enhanced),
        'redis_mirror': bool(ctx and ctx.cache.mirrored),
        'background_sweeps': bool(ctx and ctx.sweeper.running),
        'debug_headers': bool(cfg and cfg.debug_headers),
    }
    return jsonify({
        'version': __version__,
        'uptime_seconds': round(time.time() - _START_TIME, 2),
        'features': features,
    })


@system_bp.route('/metrics/prometheus', methods=['GET'])
def metrics_prometheus():
    return Response(metrics.get_metrics(), content_type=metrics.get_content_type())
