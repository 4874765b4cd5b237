"""Process-scoped wiring of the detection components.

An :class:`EngineContext` owns one instance of every component plus the
background sweeper. Nothing is stored at module level, so tests can build as
many independent contexts as they like.
"""

from __future__ import annotations

import atexit
import logging
import time
from typing import Any, Callable, Optional

from .config import EngineConfig, load_config
from .detection.behavior import BehavioralAnalyzer
from .detection.dns import SocketResolver
from .detection.engine import DetectionEngine
from .detection.heuristics import HeuristicPolicy, load_policy
from .detection.ip_cache import IPInfoCache
from .detection.ipinfo import Fetch, IPInfoProvider
from .detection.matcher import SignatureMatcher
from .detection.network import NetworkAttributor
from .detection.stats import StatsRegistry
from .periodic import Sweeper
from .signatures import SIGNATURES, validate_registry

_LOG = logging.getLogger('scrapertrack.context')


class EngineContext:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        fetch: Optional[Fetch] = None,
        resolver: Any = None,
        redis_client: Any = None,
        policy: Optional[HeuristicPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or load_config()
        cfg = self.config

        summary = validate_registry(SIGNATURES)
        _LOG.info('signature registry ok companies=%(companies)d user_agents=%(user_agents)d '
                  'ip_ranges=%(ip_ranges)d', summary)

        if redis_client is not None:
            self.cache = IPInfoCache(cfg.ip_cache_ttl, client=redis_client, clock=clock)
        else:
            self.cache = IPInfoCache.from_url(cfg.ip_cache_ttl, cfg.redis_url, clock=clock)
        self.provider = IPInfoProvider(
            self.cache,
            api_key=cfg.ip_api_key,
            max_requests_per_day=cfg.max_requests_per_day,
            timeout=cfg.lookup_timeout,
            url_template=cfg.lookup_url_template,
            quota_window=cfg.quota_window,
            fetch=fetch,
            clock=clock,
        )
        self.resolver = resolver if resolver is not None else SocketResolver(cfg.dns_timeout)
        self.matcher = SignatureMatcher(SIGNATURES)
        self.network = NetworkAttributor(self.provider, self.resolver, SIGNATURES)
        self.behavior = BehavioralAnalyzer(
            retention=cfg.behavior_retention,
            rapid_window=cfg.rapid_window,
            rapid_threshold=cfg.rapid_threshold,
            breadth_threshold=cfg.breadth_threshold,
            max_keys=cfg.max_tracked_keys,
            clock=clock,
        )
        self.stats = StatsRegistry(clock=clock)
        self.policy = policy if policy is not None else load_policy(cfg.heuristics_file)
        self.engine = DetectionEngine(
            self.matcher,
            self.network,
            self.behavior,
            self.stats,
            policy=self.policy,
            enhanced=cfg.enhanced,
        )

        self.sweeper = Sweeper()
        self.sweeper.add_job('ipinfo_cache', cfg.cache_sweep_interval, self.provider.clean_expired)
        self.sweeper.add_job('behavior', cfg.behavior_sweep_interval, self.behavior.sweep)
        self.sweeper.add_job('quota', cfg.quota_sweep_interval, self.provider.reset_quota_if_due)
        self._closed = False

    def start_background(self) -> None:
        if not self.config.sweeps_enabled:
            _LOG.info('background sweeps disabled (SCRAPERTRACK_SWEEPS=0)')
            return
        self.sweeper.start()
        atexit.register(self.close)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sweeper.stop()
        self.provider.close()
        close_resolver = getattr(self.resolver, 'close', None)
        if callable(close_resolver):
            close_resolver()
