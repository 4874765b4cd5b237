"""Network provenance: CIDR ranges, ASN, verified reverse DNS, organization."""

from __future__ import annotations

import ipaddress
import logging
from typing import List, Mapping, Optional, Sequence, Tuple

from .. import metrics
from ..logging_utils import log_suppressed
from ..signatures import ORGANIZATION_PATTERNS, SIGNATURES, CompanySignature, company_display_name
from .dns import verify_round_trip
from .ipinfo import IPInfoProvider, parse_ip
from .models import UNKNOWN, Attribution, DetectionMethod, IPInfo

_LOG = logging.getLogger('scrapertrack.network')

IP_RANGE_CONFIDENCE = 0.9
REVERSE_DNS_CONFIDENCE = 0.95
ASN_CONFIDENCE = 0.7
ORGANIZATION_CONFIDENCE = 0.6


def ip_in_cidr(ip: str, cidr: str) -> bool:
    """CIDR membership for IPv4 or IPv6; malformed input is simply not a member."""
    addr = parse_ip(ip)
    if addr is None:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        return False
    return _contains(network, addr)


def _contains(network, addr) -> bool:
    if addr in network:
        return True
    mapped = getattr(addr, 'ipv4_mapped', None)
    return mapped is not None and mapped in network


class NetworkAttributor:
    """Attribute a client address by network provenance.

    Checks run in strict priority order and the first hit wins: published
    CIDR range, then ASN (with a DNS round trip for companies that require
    it), then organization name. ``attribute`` never raises.
    """

    def __init__(
        self,
        provider: IPInfoProvider,
        resolver,
        registry: Mapping[str, CompanySignature] = SIGNATURES,
        org_patterns: Sequence[Tuple[str, Tuple[str, ...]]] = ORGANIZATION_PATTERNS,
    ):
        self.provider = provider
        self.resolver = resolver
        self._registry = registry
        self._org_patterns = [(company, tuple(p.lower() for p in pats)) for company, pats in org_patterns]
        self._networks: List[Tuple[CompanySignature, str, object]] = [
            (entry, cidr, ipaddress.ip_network(cidr, strict=False))
            for entry in registry.values()
            for cidr in entry.ip_ranges
        ]

    def attribute(self, ip: Optional[str], hostname: Optional[str] = None) -> Optional[Attribution]:
        if not ip:
            return None
        try:
            return self._attribute(ip, hostname)
        except Exception as e:
            log_suppressed(_LOG, e, 'network.attribute', level=logging.WARNING)
            metrics.record_error('network')
            return None

    def match_range(self, ip: str) -> Optional[Tuple[CompanySignature, str]]:
        addr = parse_ip(ip)
        if addr is None:
            return None
        for entry, cidr, network in self._networks:
            if _contains(network, addr):
                return entry, cidr
        return None

    def _attribute(self, ip: str, hostname: Optional[str]) -> Optional[Attribution]:
        info = self.provider.resolve(ip)

        hit = self.match_range(ip)
        if hit is not None:
            entry, cidr = hit
            return Attribution(
                company=entry.key,
                company_name=entry.name,
                method=DetectionMethod.IP_RANGE,
                confidence=IP_RANGE_CONFIDENCE,
                details=f'IP {ip} matches range {cidr}',
                ip_info=info,
                matched=cidr,
            )

        found = self._match_asn(ip, hostname, info)
        if found is not None:
            return found

        return self._match_organization(info)

    def _match_asn(self, ip: str, hostname: Optional[str], info: IPInfo) -> Optional[Attribution]:
        if not info.asn:
            return None
        asn = info.asn.upper()
        for entry in self._registry.values():
            if not entry.asn or entry.asn.upper() != asn:
                continue
            if entry.requires_verification:
                extra = [hostname] if hostname else None
                if verify_round_trip(ip, entry.hostnames, self.resolver, extra):
                    return Attribution(
                        company=entry.key,
                        company_name=entry.name,
                        method=DetectionMethod.REVERSE_DNS,
                        confidence=REVERSE_DNS_CONFIDENCE,
                        details=f'Verified {entry.name} crawler via reverse DNS',
                        ip_info=info,
                        matched=asn,
                    )
                _LOG.debug('ASN %s matched %s but DNS verification failed for %s', asn, entry.key, ip)
                continue
            return Attribution(
                company=entry.key,
                company_name=entry.name,
                method=DetectionMethod.ASN,
                confidence=ASN_CONFIDENCE,
                details=f'ASN {asn} belongs to {entry.name}',
                ip_info=info,
                matched=asn,
            )
        return None

    def _match_organization(self, info: IPInfo) -> Optional[Attribution]:
        org = info.organization
        if not org or org == UNKNOWN or info.is_private:
            return None
        lowered = org.lower()
        for company, patterns in self._org_patterns:
            for pattern in patterns:
                if pattern in lowered:
                    return Attribution(
                        company=company,
                        company_name=company_display_name(company, self._registry),
                        method=DetectionMethod.ORGANIZATION,
                        confidence=ORGANIZATION_CONFIDENCE,
                        details=f'Organization matches: {org}',
                        ip_info=info,
                        matched=pattern,
                    )
        return None
