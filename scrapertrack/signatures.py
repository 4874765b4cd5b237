"""Static signature registry for automated agents.

Each entry lists the User-Agent substrings, published CIDR ranges, ASN and
verification requirements for one company. The table is ordered; matchers
iterate it in declaration order, so earlier entries win ties between
overlapping substrings (e.g. ``anthropic-ai`` appears under both OpenAI and
Anthropic and resolves to OpenAI).
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .exceptions import RegistryError


@dataclass(frozen=True)
class CompanySignature:
    key: str
    name: str
    user_agents: Tuple[str, ...]
    ip_ranges: Tuple[str, ...] = ()
    asn: Optional[str] = None
    requires_verification: bool = False
    hostnames: Tuple[str, ...] = ()
    description: str = ''


_ENTRIES: List[CompanySignature] = [
    CompanySignature(
        key='openai',
        name='OpenAI',
        user_agents=('GPTBot', 'ChatGPT-User', 'CCBot', 'anthropic-ai', 'OpenAI-SearchBot', 'OAI-SearchBot'),
        ip_ranges=(
            '23.102.140.112/28',
            '13.66.11.96/28',
            '23.98.142.176/28',
            '40.84.180.224/28',
            '52.190.190.16/28',
            '172.182.204.0/24',
            '20.15.240.64/28',
            '20.15.240.80/28',
            '20.15.240.96/28',
        ),
        description='OpenAI GPT models and ChatGPT crawlers',
    ),
    CompanySignature(
        key='anthropic',
        name='Anthropic',
        user_agents=('ClaudeBot', 'ANTHROPIC-AI', 'CLAUDE-WEB', 'Claude-Web', 'anthropic-ai', 'Claude'),
        ip_ranges=('160.79.104.0/21', '160.79.112.0/21'),
        asn='AS399358',
        description='Anthropic Claude AI crawlers',
    ),
    CompanySignature(
        key='google',
        name='Google',
        user_agents=(
            'Googlebot',
            'Google-Extended',
            'GoogleOther',
            'AdsBot-Google',
            'Bard',
            'Google-InspectionTool',
            'GoogleProducer',
        ),
        # Google publishes rotating ranges; provenance comes from ASN + DNS round trip.
        asn='AS15169',
        requires_verification=True,
        hostnames=('googlebot.com', 'google.com'),
        description='Google search crawlers and Bard AI',
    ),
    CompanySignature(
        key='perplexity',
        name='Perplexity AI',
        user_agents=(
            'PerplexityBot',
            'Perplexity',
            'pplx',
            'PerplexityBot/',
            'Mozilla/5.0 (compatible; PerplexityBot',
        ),
        ip_ranges=('104.18.26.48/32', '172.67.0.0/16', '104.16.0.0/13'),
        asn='AS13335',  # Cloudflare
        hostnames=('perplexity.ai', 'pplx-next-static-public.perplexity.ai'),
        description='Perplexity AI search and answer engine',
    ),
    CompanySignature(
        key='meta',
        name='Meta AI',
        user_agents=('facebookexternalhit', 'Meta-ExternalAgent', 'Meta-ExternalFetcher', 'FacebookBot'),
        ip_ranges=(
            '31.13.24.0/21',
            '31.13.64.0/18',
            '66.220.144.0/20',
            '69.63.176.0/20',
            '69.171.224.0/19',
            '74.119.76.0/22',
            '103.4.96.0/22',
            '157.240.0.0/17',
            '173.252.64.0/18',
            '204.15.20.0/22',
        ),
        asn='AS32934',
        description='Meta AI and Facebook crawlers',
    ),
    CompanySignature(
        key='microsoft',
        name='Microsoft AI',
        user_agents=('bingbot', 'Bingbot', 'msnbot', 'Microsoft-CopilotBot', 'Copilot'),
        ip_ranges=('40.77.167.0/24', '157.55.39.0/24', '207.46.13.0/24'),
        asn='AS8075',
        description='Microsoft Copilot and Bing AI crawlers',
    ),
    CompanySignature(
        key='apple',
        name='Apple AI',
        user_agents=('Applebot-Extended', 'Applebot', 'AppleNewsBot'),
        ip_ranges=('17.0.0.0/8',),
        asn='AS714',
        description='Apple Intelligence and Siri crawlers',
    ),
    CompanySignature(
        key='amazon',
        name='Amazon AI',
        user_agents=('Amazonbot', 'Amazon-Bot', 'AlexaBot'),
        ip_ranges=('52.0.0.0/11', '54.0.0.0/8'),
        asn='AS16509',
        description='Amazon Alexa and AWS AI crawlers',
    ),
    CompanySignature(
        key='cohere',
        name='Cohere AI',
        user_agents=('cohere-ai', 'CohereBot', 'Cohere'),
        description='Cohere AI language model crawlers',
    ),
    CompanySignature(
        key='bytedance',
        name='ByteDance AI',
        user_agents=('Bytespider', 'ByteDance', 'TikTokBot'),
        ip_ranges=('110.249.200.0/21', '111.225.148.0/22'),
        asn='AS55967',
        description='ByteDance/TikTok AI crawlers',
    ),
    CompanySignature(
        key='web_research',
        name='Web Research Bots',
        user_agents=(
            'Mozilla/5.0 (compatible; research)',
            'Mozilla/5.0 (compatible; web-research)',
            'research-bot',
            'web-crawler',
            'content-fetcher',
            'ai-research',
            'llm-crawler',
            'intelligent-agent',
        ),
        description='Generic web research and AI-powered crawlers',
    ),
    CompanySignature(
        key='misc_llm',
        name='Other LLM',
        user_agents=(
            'LinkedInBot',
            'WhatsApp',
            'TelegramBot',
            'SkypeUriPreview',
            'Slackbot',
            'Twitterbot',
            'ia_archiver',
            'SemrushBot',
            'AhrefsBot',
            'MJ12bot',
            'DotBot',
            'YandexBot',
            'BaiduSpider',
            'AI2Bot',
            'YouBot',
            'ChatGPT',
            'GPT-4',
            'AI-Agent',
            'intelligent-crawler',
            'smart-bot',
            'research-agent',
            'content-analyzer',
        ),
        description='Other AI and automated crawlers',
    ),
]

SIGNATURES: Mapping[str, CompanySignature] = MappingProxyType({e.key: e for e in _ENTRIES})

# Substrings that mark a signature as a well-known, self-identifying crawler.
WELL_KNOWN_BOTS: Tuple[str, ...] = ('gptbot', 'claudebot', 'googlebot', 'perplexitybot')

# Organization-name fragments checked against the geolocation "org" field.
ORGANIZATION_PATTERNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('google', ('google', 'googlebot', 'google inc', 'alphabet')),
    ('openai', ('openai', 'open ai')),
    ('anthropic', ('anthropic',)),
    ('meta', ('facebook', 'meta', 'meta platforms')),
    ('perplexity', ('perplexity', 'pplx')),
)


def company_display_name(key: str, registry: Mapping[str, CompanySignature] = SIGNATURES) -> str:
    entry = registry.get(key)
    return entry.name if entry else key


def all_companies(registry: Mapping[str, CompanySignature] = SIGNATURES) -> List[str]:
    return list(registry.keys())


def validate_registry(registry: Mapping[str, CompanySignature] = SIGNATURES) -> Dict[str, int]:
    """Check the registry once at startup; raise :class:`RegistryError` on the first bad entry.

    Returns a small summary (companies, substrings, ranges) for the startup log.
    """
    substrings = ranges = 0
    for key, entry in registry.items():
        if key != entry.key:
            raise RegistryError(key, f'key mismatch with entry.key={entry.key!r}')
        if not entry.name:
            raise RegistryError(key, 'missing display name')
        if not entry.user_agents and not entry.ip_ranges and not entry.asn:
            raise RegistryError(key, 'entry has no matchable signal')
        for ua in entry.user_agents:
            if not ua or not ua.strip():
                raise RegistryError(key, 'empty user-agent substring')
        for cidr in entry.ip_ranges:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as exc:
                raise RegistryError(key, f'bad CIDR {cidr!r}: {exc}') from exc
        if entry.asn is not None and not entry.asn.upper().startswith('AS'):
            raise RegistryError(key, f'ASN must look like AS<number>, got {entry.asn!r}')
        if entry.requires_verification and not entry.hostnames:
            raise RegistryError(key, 'verification required but no hostname allow-list')
        substrings += len(entry.user_agents)
        ranges += len(entry.ip_ranges)
    return {'companies': len(registry), 'user_agents': substrings, 'ip_ranges': ranges}
