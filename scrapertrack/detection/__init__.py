"""Scraper attribution engine.

Modules:
- models: IPInfo, Attribution, DetectionMethod value types
- matcher: User-Agent signature matching
- ip_cache / ipinfo: cached, quota-bounded geolocation lookup
- dns: reverse + forward DNS round-trip verification
- network: CIDR range, ASN and organization attribution
- behavior: per-client rate and URL-breadth heuristics
- heuristics: enhanced-mode User-Agent, referrer and header checks
- arbiter: confidence-ranked selection
- stats: detection counters
- engine: orchestration of all of the above
"""

from .arbiter import select
from .engine import DetectionEngine, RequestSignals
from .models import Attribution, DetectionMethod, IPInfo

__all__ = [
    'Attribution',
    'DetectionEngine',
    'DetectionMethod',
    'IPInfo',
    'RequestSignals',
    'select',
]
