"""Value types shared by the detection components."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DetectionMethod(str, Enum):
    USER_AGENT = 'user_agent'
    IP_RANGE = 'ip_range'
    ASN = 'asn'
    REVERSE_DNS = 'reverse_dns'
    ORGANIZATION = 'organization'
    SUSPICIOUS_USER_AGENT = 'suspicious_user_agent'
    SUSPICIOUS_REFERRER = 'suspicious_referrer'
    HEADER_ANALYSIS = 'header_analysis'
    RAPID_REQUESTS = 'rapid_requests'
    SYSTEMATIC_CRAWLING = 'systematic_crawling'


UNKNOWN = 'Unknown'
PRIVATE_NETWORK = 'Private Network'


@dataclass(frozen=True)
class IPInfo:
    """Network/geolocation snapshot for one address.

    Immutable; the provider caches instances by exact IP string. Every field
    coming from the geolocation service is optional and defaults to the
    unknown value.
    """
    ip: str
    country: str = UNKNOWN
    country_code: str = 'XX'
    region: str = UNKNOWN
    city: str = UNKNOWN
    organization: str = UNKNOWN
    isp: str = UNKNOWN
    asn: Optional[str] = None
    timezone: Optional[str] = None
    is_data_center: bool = False
    is_proxy: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    connection_type: str = 'unknown'
    captured_at: float = field(default_factory=time.time)
    is_private: bool = False
    error: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return self.latitude, self.longitude

    @property
    def is_unknown(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IPInfo':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def unknown_ipinfo(ip: str, now: Optional[float] = None) -> IPInfo:
    """Sentinel for invalid input or a lookup that produced nothing usable."""
    return IPInfo(
        ip=ip,
        captured_at=now if now is not None else time.time(),
        error='Analysis failed or invalid IP',
    )


def private_ipinfo(ip: str, now: Optional[float] = None) -> IPInfo:
    """Sentinel for RFC1918, loopback, link-local and the IPv6 equivalents."""
    return IPInfo(
        ip=ip,
        country=PRIVATE_NETWORK,
        region='Private',
        city='Private',
        organization=PRIVATE_NETWORK,
        isp=PRIVATE_NETWORK,
        connection_type='private',
        captured_at=now if now is not None else time.time(),
        is_private=True,
    )


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class Attribution:
    """One candidate (or the selected) source of a request."""
    company: str
    company_name: str
    method: DetectionMethod
    confidence: float
    details: str
    ip_info: Optional[IPInfo] = None
    matched: Optional[str] = None
    alternatives: Tuple['Attribution', ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'confidence', clamp_confidence(self.confidence))
        object.__setattr__(self, 'method', DetectionMethod(self.method))

    def with_alternatives(self, alternatives) -> 'Attribution':
        return replace(self, alternatives=tuple(alternatives))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            'company': self.company,
            'company_name': self.company_name,
            'method': self.method.value,
            'confidence': round(self.confidence, 4),
            'details': self.details,
        }
        if self.matched is not None:
            out['matched'] = self.matched
        if self.ip_info is not None:
            out['ip_info'] = self.ip_info.to_dict()
        if self.alternatives:
            out['alternative_detections'] = [alt.to_dict() for alt in self.alternatives]
        return out
