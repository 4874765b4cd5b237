"""Path classification used by the request tracker.

Matching is a case-insensitive prefix test. ``'/'`` in the guided list
means the home page only, not every path.
"""

from typing import Iterable

GUIDED_PATHS = (
    '/',
    '/about',
    '/flows',
    '/agents',
    '/bootcamps',
    '/blogs',
    '/contact-us',
    '/en-ca/our-story',
    # AI content sections
    '/ai-education',
    '/ai-training',
    '/machine-learning',
    '/artificial-intelligence',
    '/automation',
    '/chatbot',
    '/llm-training',
    '/neural-networks',
    '/deep-learning',
    '/ai-consulting',
    '/ai-implementation',
    '/ai-strategy',
    '/ai-workflows',
    '/ai-solutions',
    '/ai-tools',
    '/ai-research',
    '/ai-insights',
    '/ai-best-practices',
    '/ai-case-studies',
    '/ai-tutorials',
    '/ai-guides',
    '/ai-resources',
    '/ai-documentation',
    '/ai-whitepapers',
    '/ai-reports',
    '/ai-analysis',
    '/ai-trends',
    '/ai-innovation',
    '/ai-transformation',
)

SENSITIVE_PATHS = (
    '/admin/',
    '/api/',
    '/private/',
    '/internal/',
    '/dashboard/',
    '/user/',
    '/account/',
    '/login/',
    '/auth/',
    '/config/',
    '/settings/',
)

IGNORED_PATHS = (
    '/favicon.ico',
    '/robots.txt',
    '/sitemap.xml',
    '/health',
    '/ping',
    '/.well-known/',
    '/static/',
    '/assets/',
    '/images/',
    '/css/',
    '/js/',
    '/fonts/',
)


def _matches(path: str, prefixes: Iterable[str]) -> bool:
    lowered = (path or '').lower()
    for prefix in prefixes:
        p = prefix.lower()
        if p == '/':
            if lowered == '/':
                return True
        elif lowered.startswith(p):
            return True
    return False


def should_track_path(path: str) -> bool:
    return not _matches(path, IGNORED_PATHS)


def is_guided_path(path: str) -> bool:
    return _matches(path, GUIDED_PATHS)


def is_sensitive_path(path: str) -> bool:
    return _matches(path, SENSITIVE_PATHS)
