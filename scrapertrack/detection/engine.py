"""Detection orchestrator.

Runs every producer against one request's signals, arbitrates the
candidates by confidence and counts the winner. ``detect`` and
``detect_request`` are total: a fault in any producer only removes that
producer's candidate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .. import metrics
from ..logging_utils import log_suppressed
from . import arbiter, heuristics
from .behavior import BehavioralAnalyzer, client_key
from .heuristics import DEFAULT_POLICY, HeuristicPolicy
from .matcher import SignatureMatcher
from .models import Attribution
from .network import NetworkAttributor
from .stats import DetectionStats, StatsRegistry

_LOG = logging.getLogger('scrapertrack.engine')

SELF_TEST_CASES = (
    {
        'name': 'OpenAI GPTBot',
        'user_agent': 'GPTBot/1.0 (+https://openai.com/gptbot)',
        'ip': '23.102.140.115',
        'expected': 'openai',
    },
    {
        'name': 'Anthropic ClaudeBot',
        'user_agent': 'ClaudeBot/1.0 (+https://www.anthropic.com/claude-bot)',
        'ip': '160.79.104.50',
        'expected': 'anthropic',
    },
    {
        'name': 'Google Extended',
        'user_agent': 'Mozilla/5.0 (compatible; Google-Extended)',
        'ip': '66.249.66.1',
        'expected': 'google',
    },
    {
        'name': 'Perplexity Bot',
        'user_agent': 'PerplexityBot/1.0 (+https://perplexity.ai/bot)',
        'ip': '104.18.26.48',
        'expected': 'perplexity',
    },
)


@dataclass(frozen=True)
class RequestSignals:
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    hostname: Optional[str] = None
    url: Optional[str] = None
    referrer: Optional[str] = None
    headers: Optional[Mapping[str, Any]] = None


class DetectionEngine:
    def __init__(
        self,
        matcher: SignatureMatcher,
        network: NetworkAttributor,
        behavior: BehavioralAnalyzer,
        stats: StatsRegistry,
        *,
        policy: HeuristicPolicy = DEFAULT_POLICY,
        enhanced: bool = True,
    ):
        self.matcher = matcher
        self.network = network
        self.behavior = behavior
        self.stats = stats
        self.policy = policy
        self.enhanced = enhanced

    def detect(self, user_agent: Optional[str], client_ip: Optional[str],
               hostname: Optional[str] = None) -> Optional[Attribution]:
        """Signature + network attribution for one request."""
        return self.detect_request(
            RequestSignals(user_agent=user_agent, client_ip=client_ip, hostname=hostname),
            enhanced=False,
        )

    def detect_request(self, signals: RequestSignals, enhanced: Optional[bool] = None) -> Optional[Attribution]:
        """Full attribution for one request.

        Producer order (ties go to the earlier one): signature, network
        (when an IP is known), behavior (when a URL is known), then in
        enhanced mode the User-Agent vocabulary, referrer and header checks.
        """
        enhanced = self.enhanced if enhanced is None else enhanced
        try:
            candidates = self._candidates(signals, enhanced)
            result = arbiter.select(candidates)
        except Exception as e:
            log_suppressed(_LOG, e, 'engine.detect', level=logging.ERROR)
            metrics.record_error('engine')
            return None
        if result is not None:
            self.stats.record(result)
            metrics.record_detection(result.method.value, result.company)
            _LOG.debug(
                'detected company=%s method=%s confidence=%.2f ip=%s',
                result.company, result.method.value, result.confidence, signals.client_ip,
            )
        return result

    def get_stats(self) -> DetectionStats:
        return self.stats.snapshot()

    def reset_stats(self) -> None:
        self.stats.reset()
        _LOG.info('detection stats reset')

    def run_self_test(self) -> List[Dict[str, Any]]:
        """Classify the canned crawler cases; used by the selftest endpoint."""
        results = []
        for case in SELF_TEST_CASES:
            found = self.detect(case['user_agent'], case['ip'])
            results.append({
                'test_case': case['name'],
                'detected': found is not None,
                'company': found.company if found else None,
                'company_name': found.company_name if found else 'None',
                'method': found.method.value if found else 'None',
                'confidence': found.confidence if found else 0,
                'passed': found is not None and found.company == case['expected'],
            })
        return results

    # ---- producers ----

    def _candidates(self, signals: RequestSignals, enhanced: bool) -> List[Attribution]:
        found: List[Optional[Attribution]] = [
            self._run('user_agent', self.matcher.match, signals.user_agent),
        ]
        if signals.client_ip:
            found.append(self._run('network', self.network.attribute, signals.client_ip, signals.hostname))
        if signals.url is not None:
            key = client_key(signals.client_ip, signals.user_agent)
            found.append(self._run('behavior', self.behavior.observe, key, signals.url))
        if enhanced:
            found.append(self._run('suspicious_user_agent', heuristics.suspicious_user_agent,
                                   signals.user_agent, self.policy))
            found.append(self._run('suspicious_referrer', heuristics.suspicious_referrer,
                                   signals.referrer, self.policy))
            found.append(self._run('header_analysis', heuristics.header_analysis,
                                   signals.headers, self.policy))
        return [c for c in found if c is not None]

    def _run(self, producer: str, fn: Callable[..., Optional[Attribution]], *args) -> Optional[Attribution]:
        try:
            return fn(*args)
        except Exception as e:
            log_suppressed(_LOG, e, f'producer.{producer}', level=logging.WARNING)
            metrics.record_error(producer)
            return None
