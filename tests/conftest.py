import sys
import pathlib
import dataclasses

import pytest

# Ensure project root is on sys.path so 'import scrapertrack' works when pytest
# runs from different working directories or on individual test files.
_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from scrapertrack import create_app
from scrapertrack.config import EngineConfig
from scrapertrack.context import EngineContext
from scrapertrack.exceptions import DnsLookupError


DEFAULT_PAYLOAD = {
    'country_name': 'United States',
    'country_code': 'US',
    'region': 'California',
    'city': 'San Jose',
    'org': 'Example Broadband',
    'asn': 'AS64500',
    'timezone': 'America/Los_Angeles',
    'latitude': 37.33,
    'longitude': -121.89,
}


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeFetcher:
    """Stands in for the geolocation HTTP call; records every IP it is asked for."""

    def __init__(self, payloads=None, default=None):
        self.payloads = dict(payloads or {})
        self.default = dict(DEFAULT_PAYLOAD if default is None else default)
        self.calls = []
        self.error = None

    def __call__(self, ip):
        self.calls.append(ip)
        if self.error is not None:
            raise self.error
        return dict(self.payloads.get(ip, self.default))


class FakeResolver:
    """In-memory DNS. ``fail_reverse`` / ``fail_forward`` simulate resolver errors."""

    def __init__(self, reverse=None, forward=None):
        self.reverse_map = dict(reverse or {})
        self.forward_map = dict(forward or {})
        self.fail_reverse = False
        self.fail_forward = set()
        self.reverse_calls = []
        self.forward_calls = []

    def reverse(self, ip):
        self.reverse_calls.append(ip)
        if self.fail_reverse:
            raise DnsLookupError(ip, 'SERVFAIL')
        return list(self.reverse_map.get(ip, []))

    def forward(self, hostname):
        self.forward_calls.append(hostname)
        if hostname in self.fail_forward:
            raise DnsLookupError(hostname, 'SERVFAIL')
        return list(self.forward_map.get(hostname, []))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def config():
    return EngineConfig(sweeps_enabled=False, lookup_timeout=2.0)


@pytest.fixture
def make_context(fetcher, resolver, clock):
    built = []

    def _make(cfg=None, **overrides):
        cfg = cfg or EngineConfig(sweeps_enabled=False, lookup_timeout=2.0)
        if overrides:
            cfg = dataclasses.replace(cfg, **overrides)
        ctx = EngineContext(cfg, fetch=fetcher, resolver=resolver, clock=clock)
        built.append(ctx)
        return ctx

    yield _make
    for ctx in built:
        ctx.close()


@pytest.fixture
def context(make_context, config):
    return make_context(config)


@pytest.fixture
def make_app(make_context):
    def _make(**overrides):
        ctx = make_context(**overrides)
        app = create_app(context=ctx)
        app.testing = True
        limiter = app.extensions.get('limiter')
        if limiter:
            limiter.enabled = False
        return app

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()
