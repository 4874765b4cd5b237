import logging

from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

__version__ = '1.0.0'

_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _configure_logging(cfg):
    level = getattr(logging, cfg.log_level, logging.INFO)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # Optional rotating file handler for persistent logs (useful in production)
    if cfg.log_file:
        from logging.handlers import RotatingFileHandler
        try:
            fh = RotatingFileHandler(cfg.log_file, maxBytes=5 * 1024 * 1024, backupCount=5)
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(_LOG_FORMAT))
            logging.getLogger().addHandler(fh)
            logging.getLogger(__name__).info('RotatingFileHandler attached path=%s', cfg.log_file)
        except OSError as e:
            logging.getLogger(__name__).warning('failed attaching RotatingFileHandler for %s: %s', cfg.log_file, e)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger(__name__).info('Logging initialized at level %s', cfg.log_level)


def create_app(config=None, context=None):
    """Build the Flask app around one :class:`EngineContext`.

    ``context`` wins over ``config``; with neither, configuration comes from
    the ``SCRAPERTRACK_*`` environment.
    """
    from .config import load_config
    from .context import EngineContext
    from .exceptions import TrackerException, error_response

    cfg = context.config if context is not None else (config or load_config())
    _configure_logging(cfg)

    app = Flask(__name__)

    # Use Redis storage for limiter when provided, otherwise in-memory storage
    storage_uri = cfg.redis_url if cfg.redis_url else 'memory://'
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=[cfg.api_rate_limit],
        storage_uri=storage_uri,
    )
    # Expose limiter for blueprints to use specific limits
    app.extensions['limiter'] = limiter

    ctx = context if context is not None else EngineContext(cfg)
    app.extensions['scrapertrack'] = ctx

    from .routes.api import api_bp
    from .routes.system import system_bp
    from .routes.tracking import tracking_bp
    app.register_blueprint(tracking_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(system_bp)

    @app.errorhandler(TrackerException)
    def _tracker_error(exc):
        body, status = error_response(exc)
        return jsonify(body), status

    ctx.start_background()
    logging.getLogger(__name__).info(
        'scrapertrack %s ready enhanced=%s redis_mirror=%s',
        __version__, cfg.enhanced, ctx.cache.mirrored,
    )
    return app
