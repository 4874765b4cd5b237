"""User-Agent signature matching (pure, side-effect free)."""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from ..signatures import SIGNATURES, WELL_KNOWN_BOTS, CompanySignature
from .models import Attribution, DetectionMethod

EXACT_CONFIDENCE = 0.95
WELL_KNOWN_CONFIDENCE = 0.9
PARTIAL_CONFIDENCE = 0.8


class SignatureMatcher:
    """First-hit substring matcher over the signature registry.

    The registry is flattened once into ``(company, signature, lowered)``
    triples in registry order so that ``match`` is a single linear scan.
    """

    def __init__(self, registry: Mapping[str, CompanySignature] = SIGNATURES,
                 well_known: Tuple[str, ...] = WELL_KNOWN_BOTS):
        self._registry = registry
        self._well_known = tuple(w.lower() for w in well_known)
        self._table: List[Tuple[CompanySignature, str, str]] = [
            (entry, sig, sig.lower())
            for entry in registry.values()
            for sig in entry.user_agents
        ]

    def confidence_for(self, user_agent: str, signature: str) -> float:
        lowered_sig = signature.lower()
        if user_agent.lower() == lowered_sig:
            return EXACT_CONFIDENCE
        if any(w in lowered_sig for w in self._well_known):
            return WELL_KNOWN_CONFIDENCE
        return PARTIAL_CONFIDENCE

    def match(self, user_agent: Optional[str]) -> Optional[Attribution]:
        if not user_agent or not isinstance(user_agent, str):
            return None
        lowered = user_agent.lower()
        for entry, signature, lowered_sig in self._table:
            if lowered_sig in lowered:
                return Attribution(
                    company=entry.key,
                    company_name=entry.name,
                    method=DetectionMethod.USER_AGENT,
                    confidence=self.confidence_for(user_agent, signature),
                    details=f'Matched User-Agent pattern: "{signature}"',
                    matched=signature,
                )
        return None
