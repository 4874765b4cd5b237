"""Enhanced-mode heuristics: suspicious User-Agent vocabulary, AI-product
referrers and header shape.

These are weak, false-positive-prone signals, so every pattern, threshold
and confidence lives in a :class:`HeuristicPolicy`. The defaults below can
be replaced by a JSON policy file (``SCRAPERTRACK_HEURISTICS_FILE``)::

    {
      "user_agent": {"patterns": ["headless", "crawler"], "confidence": 0.6,
                     "company": "web_research"},
      "referrer":   {"patterns": ["openai\\\\.com"], "confidence": 0.8,
                     "classify": [{"pattern": "openai|chatgpt", "company": "openai"}],
                     "default_company": "misc_llm"},
      "headers":    {"expected": ["accept-language", "accept-encoding"],
                     "missing_threshold": 2, "automation": ["x-bot"],
                     "confidence": 0.5}
    }

Sections and keys are individually optional; omitted ones keep defaults.
"""

from __future__ import annotations

import json
import logging
import pathlib
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..exceptions import ConfigurationError
from ..signatures import SIGNATURES, company_display_name
from .models import Attribution, DetectionMethod, clamp_confidence

_LOG = logging.getLogger('scrapertrack.heuristics')

DEFAULT_USER_AGENT_PATTERNS = (
    # headless browsers
    r'headless', r'phantom', r'selenium', r'puppeteer', r'playwright',
    # generic research / crawling
    r'research', r'crawler', r'scraper', r'bot', r'spider',
    # AI vocabulary
    r'artificial', r'intelligence', r'machine.learning', r'neural', r'gpt', r'claude', r'bard',
    # automation tools
    r'automated', r'script', r'tool', r'agent',
)

DEFAULT_REFERRER_PATTERNS = (
    r'openai\.com', r'anthropic\.com', r'perplexity\.ai', r'claude\.ai',
    r'chatgpt\.com', r'bard\.google\.com', r'copilot\.microsoft\.com',
)

DEFAULT_REFERRER_CLASSES = (
    (r'openai|chatgpt', 'openai'),
    (r'anthropic|claude', 'anthropic'),
    (r'perplexity', 'perplexity'),
    (r'google|bard', 'google'),
    (r'microsoft|copilot', 'microsoft'),
)

DEFAULT_EXPECTED_HEADERS = ('accept-language', 'accept-encoding', 'cache-control')
DEFAULT_AUTOMATION_HEADERS = ('x-automation', 'x-bot')


def _compile(patterns) -> Tuple[re.Pattern, ...]:
    out: List[re.Pattern] = []
    for pat in patterns:
        if not isinstance(pat, str) or not pat:
            continue
        try:
            out.append(re.compile(pat, re.I))
        except re.error as er:
            _LOG.warning('invalid regex pattern=%s err=%s', pat, er)
    return tuple(out)


@dataclass(frozen=True)
class HeuristicPolicy:
    user_agent_patterns: Tuple[re.Pattern, ...] = _compile(DEFAULT_USER_AGENT_PATTERNS)
    user_agent_confidence: float = 0.6
    user_agent_company: str = 'web_research'
    referrer_patterns: Tuple[re.Pattern, ...] = _compile(DEFAULT_REFERRER_PATTERNS)
    referrer_confidence: float = 0.8
    referrer_classes: Tuple[Tuple[re.Pattern, str], ...] = tuple(
        (re.compile(p, re.I), c) for p, c in DEFAULT_REFERRER_CLASSES
    )
    referrer_default_company: str = 'misc_llm'
    expected_headers: Tuple[str, ...] = DEFAULT_EXPECTED_HEADERS
    missing_header_threshold: int = 2
    automation_headers: Tuple[str, ...] = DEFAULT_AUTOMATION_HEADERS
    header_confidence: float = 0.5
    header_company: str = 'web_research'


DEFAULT_POLICY = HeuristicPolicy()


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    sec = data.get(name)
    return sec if isinstance(sec, dict) else {}


def _confidence(sec: Dict[str, Any], default: float) -> float:
    value = sec.get('confidence')
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return clamp_confidence(value)
    return default


def policy_from_dict(data: Dict[str, Any], base: HeuristicPolicy = DEFAULT_POLICY) -> HeuristicPolicy:
    changes: Dict[str, Any] = {}

    ua = _section(data, 'user_agent')
    if isinstance(ua.get('patterns'), list):
        changes['user_agent_patterns'] = _compile(ua['patterns'])
    changes['user_agent_confidence'] = _confidence(ua, base.user_agent_confidence)
    if isinstance(ua.get('company'), str):
        changes['user_agent_company'] = ua['company']

    ref = _section(data, 'referrer')
    if isinstance(ref.get('patterns'), list):
        changes['referrer_patterns'] = _compile(ref['patterns'])
    changes['referrer_confidence'] = _confidence(ref, base.referrer_confidence)
    if isinstance(ref.get('classify'), list):
        classes = []
        for item in ref['classify']:
            if not isinstance(item, dict) or not isinstance(item.get('company'), str):
                continue
            compiled = _compile([item.get('pattern')])
            if compiled:
                classes.append((compiled[0], item['company']))
        changes['referrer_classes'] = tuple(classes)
    if isinstance(ref.get('default_company'), str):
        changes['referrer_default_company'] = ref['default_company']

    hdr = _section(data, 'headers')
    if isinstance(hdr.get('expected'), list):
        changes['expected_headers'] = tuple(h.lower() for h in hdr['expected'] if isinstance(h, str))
    if isinstance(hdr.get('missing_threshold'), int) and hdr['missing_threshold'] > 0:
        changes['missing_header_threshold'] = hdr['missing_threshold']
    if isinstance(hdr.get('automation'), list):
        changes['automation_headers'] = tuple(h.lower() for h in hdr['automation'] if isinstance(h, str))
    changes['header_confidence'] = _confidence(hdr, base.header_confidence)
    if isinstance(hdr.get('company'), str):
        changes['header_company'] = hdr['company']

    return replace(base, **changes)


def load_policy(path: Optional[str]) -> HeuristicPolicy:
    """Load a policy file; a missing path or file means the defaults."""
    if not path:
        return DEFAULT_POLICY
    p = pathlib.Path(path)
    if not p.exists():
        _LOG.info('heuristics file not found path=%s (using defaults)', path)
        return DEFAULT_POLICY
    try:
        data = json.loads(p.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        raise ConfigurationError('SCRAPERTRACK_HEURISTICS_FILE', f'cannot read {path}: {e}') from e
    if not isinstance(data, dict):
        raise ConfigurationError('SCRAPERTRACK_HEURISTICS_FILE', f'{path} must hold a JSON object')
    policy = policy_from_dict(data)
    _LOG.info(
        'loaded heuristics path=%s ua_patterns=%d referrer_patterns=%d',
        path, len(policy.user_agent_patterns), len(policy.referrer_patterns),
    )
    return policy


def _attribution(company: str, method: DetectionMethod, confidence: float, details: str,
                 matched: Optional[str] = None) -> Attribution:
    return Attribution(
        company=company,
        company_name=company_display_name(company, SIGNATURES),
        method=method,
        confidence=confidence,
        details=details,
        matched=matched,
    )


def suspicious_user_agent(user_agent: Optional[str], policy: HeuristicPolicy = DEFAULT_POLICY) -> Optional[Attribution]:
    if not user_agent:
        return None
    for pattern in policy.user_agent_patterns:
        if pattern.search(user_agent):
            return _attribution(
                policy.user_agent_company,
                DetectionMethod.SUSPICIOUS_USER_AGENT,
                policy.user_agent_confidence,
                f'Suspicious user-agent pattern: {pattern.pattern}',
                matched=pattern.pattern,
            )
    return None


def classify_referrer(referrer: str, policy: HeuristicPolicy = DEFAULT_POLICY) -> str:
    for pattern, company in policy.referrer_classes:
        if pattern.search(referrer):
            return company
    return policy.referrer_default_company


def suspicious_referrer(referrer: Optional[str], policy: HeuristicPolicy = DEFAULT_POLICY) -> Optional[Attribution]:
    if not referrer:
        return None
    for pattern in policy.referrer_patterns:
        if pattern.search(referrer):
            return _attribution(
                classify_referrer(referrer, policy),
                DetectionMethod.SUSPICIOUS_REFERRER,
                policy.referrer_confidence,
                f'Suspicious referrer: {referrer}',
                matched=pattern.pattern,
            )
    return None


def header_analysis(headers: Optional[Mapping[str, Any]], policy: HeuristicPolicy = DEFAULT_POLICY) -> Optional[Attribution]:
    if headers is None:
        return None
    present = {str(k).lower(): v for k, v in headers.items() if v}

    indicators: List[str] = []
    missing = [
        h for h in policy.expected_headers
        if h not in present and h.replace('-', '_') not in present
    ]
    if len(missing) >= policy.missing_header_threshold:
        indicators.append('Missing headers: ' + ', '.join(missing))
    for h in policy.automation_headers:
        if h in present:
            indicators.append(f'Automation header: {h}')

    if not indicators:
        return None
    return _attribution(
        policy.header_company,
        DetectionMethod.HEADER_ANALYSIS,
        policy.header_confidence,
        'Suspicious headers: ' + '; '.join(indicators),
    )
