"""Tests for scrapertrack.detection.ipinfo: cache, quota, timeout and sentinel policy."""
import threading
import time

import pytest

from conftest import FakeClock, FakeFetcher
from scrapertrack.detection.ip_cache import IPInfoCache
from scrapertrack.detection.ipinfo import (
    IPInfoProvider,
    connection_type,
    is_private_address,
    normalize_asn,
    parse_ip,
    parse_payload,
)
from scrapertrack.detection.models import PRIVATE_NETWORK, UNKNOWN
from scrapertrack.exceptions import LookupFailedError


def _provider(fetcher, clock, *, ttl=86400, **kwargs):
    cache = IPInfoCache(ttl, clock=clock)
    kwargs.setdefault('timeout', 2.0)
    return IPInfoProvider(cache, fetch=fetcher, clock=clock, **kwargs)


@pytest.fixture
def provider(fetcher, clock):
    p = _provider(fetcher, clock)
    yield p
    p.close()


class TestAddressClassification:
    @pytest.mark.parametrize('ip', ['8.8.8.8', '2001:4860:4860::8888', ' 1.1.1.1 '])
    def test_valid(self, ip):
        assert parse_ip(ip) is not None

    @pytest.mark.parametrize('ip', ['', 'unknown', '999.1.1.1', '1.2.3', None, 42, '1.2.3.4:80'])
    def test_invalid(self, ip):
        assert parse_ip(ip) is None

    @pytest.mark.parametrize('ip', [
        '127.0.0.1', '10.1.2.3', '172.16.0.9', '192.168.1.100', '169.254.1.1',
        '::1', 'fe80::1', 'fc00::1', '::ffff:192.168.0.1', '0.0.0.0',
    ])
    def test_private(self, ip):
        assert is_private_address(parse_ip(ip))

    @pytest.mark.parametrize('ip', ['8.8.8.8', '23.102.140.115', '2606:4700::1111'])
    def test_public(self, ip):
        assert not is_private_address(parse_ip(ip))


class TestPayloadParsing:
    def test_full_payload(self):
        info = parse_payload('66.249.66.1', {
            'country_name': 'United States', 'country_code': 'US', 'region': 'California',
            'city': 'Mountain View', 'org': 'Google LLC', 'asn': 'AS15169',
            'timezone': 'America/Los_Angeles', 'latitude': 37.4, 'longitude': -122.1,
        }, now=100.0)
        assert info.country == 'United States'
        assert info.organization == 'Google LLC'
        assert info.asn == 'AS15169'
        assert info.is_data_center is True
        assert info.connection_type == 'datacenter'
        assert info.coordinates == (37.4, -122.1)
        assert info.captured_at == 100.0
        assert info.error is None

    def test_nulls_and_garbage(self):
        info = parse_payload('1.2.3.4', {'country_name': None, 'org': 12, 'latitude': 'north', 'asn': []}, now=1.0)
        assert info.country == UNKNOWN
        assert info.organization == UNKNOWN
        assert info.asn is None
        assert info.coordinates is None
        assert info.connection_type == 'unknown'

    def test_threat_marks_proxy(self):
        assert parse_payload('1.2.3.4', {'threat': {'is_proxy': True}}, now=1.0).is_proxy is True
        assert parse_payload('1.2.3.4', {'threat': {'is_proxy': False}}, now=1.0).is_proxy is False

    @pytest.mark.parametrize('raw, expected', [
        ('AS15169', 'AS15169'), ('as15169', 'AS15169'), (15169, 'AS15169'),
        ('15169', 'AS15169'), ('AS15169 Google LLC', 'AS15169'), ('', None), (None, None), (True, None),
    ])
    def test_normalize_asn(self, raw, expected):
        assert normalize_asn(raw) == expected

    @pytest.mark.parametrize('org, expected', [
        ('DigitalOcean, LLC', 'datacenter'),
        ('Verizon Mobile', 'mobile'),
        ('Comcast Cable', 'broadband'),
        ('Starlink Satellite', 'satellite'),
        ('Some Telco', 'unknown'),
    ])
    def test_connection_type(self, org, expected):
        assert connection_type(org, org) == expected


class TestResolvePolicy:
    def test_invalid_ip_returns_unknown_without_call(self, provider, fetcher):
        info = provider.resolve('not-an-ip')
        assert info.is_unknown
        assert fetcher.calls == []
        assert len(provider.cache) == 0

    def test_private_ip_never_calls_out(self, provider, fetcher):
        for _ in range(3):
            info = provider.resolve('127.0.0.1')
            assert info.is_private
            assert info.country == PRIVATE_NETWORK
            assert info.connection_type == 'private'
        assert fetcher.calls == []
        assert len(provider.cache) == 0
        assert provider.get_usage_stats()['request_count'] == 0

    def test_second_lookup_served_from_cache(self, provider, fetcher):
        first = provider.resolve('8.8.8.8')
        second = provider.resolve('8.8.8.8')
        assert first == second
        assert fetcher.calls == ['8.8.8.8']
        assert provider.get_usage_stats()['request_count'] == 1

    def test_expired_entry_is_refetched(self, fetcher, clock):
        p = _provider(fetcher, clock, ttl=100)
        try:
            p.resolve('8.8.8.8')
            clock.advance(101)
            p.resolve('8.8.8.8')
            assert fetcher.calls == ['8.8.8.8', '8.8.8.8']
        finally:
            p.close()

    def test_quota_exhausted_skips_new_ips(self, fetcher, clock):
        p = _provider(fetcher, clock, max_requests_per_day=2)
        try:
            p.resolve('1.1.1.1')
            p.resolve('8.8.8.8')
            info = p.resolve('9.9.9.9')
            assert info.is_unknown
            assert fetcher.calls == ['1.1.1.1', '8.8.8.8']
            # cached entries keep being served
            assert not p.resolve('1.1.1.1').is_unknown
        finally:
            p.close()

    def test_quota_exhausted_serves_stale_entry(self, fetcher, clock):
        p = _provider(fetcher, clock, ttl=100, max_requests_per_day=1)
        try:
            fresh = p.resolve('1.1.1.1')
            clock.advance(500)
            stale = p.resolve('1.1.1.1')
            assert stale == fresh
            assert fetcher.calls == ['1.1.1.1']
        finally:
            p.close()

    def test_quota_resets_after_window(self, fetcher, clock):
        p = _provider(fetcher, clock, max_requests_per_day=1, quota_window=3600)
        try:
            p.resolve('1.1.1.1')
            assert p.resolve('8.8.8.8').is_unknown
            clock.advance(3601)
            assert not p.resolve('8.8.8.8').is_unknown
            assert p.get_usage_stats()['request_count'] == 1
        finally:
            p.close()

    def test_reset_quota_if_due(self, fetcher, clock):
        p = _provider(fetcher, clock, quota_window=10)
        try:
            p.resolve('1.1.1.1')
            assert p.reset_quota_if_due() is False
            clock.advance(11)
            assert p.reset_quota_if_due() is True
            assert p.get_usage_stats()['request_count'] == 0
        finally:
            p.close()

    def test_failure_falls_back_to_stale(self, fetcher, clock):
        p = _provider(fetcher, clock, ttl=100)
        try:
            fresh = p.resolve('1.1.1.1')
            clock.advance(200)
            fetcher.error = LookupFailedError('1.1.1.1', 'status 503')
            assert p.resolve('1.1.1.1') == fresh
        finally:
            p.close()

    def test_failure_without_cache_returns_unknown(self, provider, fetcher):
        fetcher.error = RuntimeError('connection reset')
        info = provider.resolve('1.1.1.1')
        assert info.is_unknown
        assert provider.get_usage_stats()['request_count'] == 0

    def test_error_payload_is_failure(self, provider, fetcher):
        fetcher.payloads['1.1.1.1'] = {'error': True, 'reason': 'RateLimited'}
        assert provider.resolve('1.1.1.1').is_unknown
        assert len(provider.cache) == 0

    def test_non_dict_payload_is_failure(self, provider, fetcher):
        fetcher.payloads['1.1.1.1'] = ['not', 'an', 'object']
        assert provider.resolve('1.1.1.1').is_unknown


class TestTimeout:
    def test_slow_lookup_times_out_then_populates_cache(self, clock):
        release = threading.Event()

        def slow_fetch(ip):
            release.wait(5)
            return {'country_name': 'Canada', 'org': 'Slow ISP'}

        p = _provider(slow_fetch, clock, timeout=0.05)
        try:
            started = time.time()
            info = p.resolve('5.5.5.5')
            assert time.time() - started < 2
            assert info.is_unknown
            release.set()
            deadline = time.time() + 5
            # the counter is bumped after the cache write, so wait on it
            while p.get_usage_stats()['request_count'] == 0 and time.time() < deadline:
                time.sleep(0.01)
            assert p.get_usage_stats()['request_count'] == 1
            assert p.cache.get('5.5.5.5')[0].country == 'Canada'
        finally:
            release.set()
            p.close()


class TestConcurrency:
    def test_concurrent_resolves_share_one_lookup(self, clock):
        gate = threading.Event()
        fetcher = FakeFetcher()

        def gated(ip):
            gate.wait(5)
            return fetcher(ip)

        p = _provider(gated, clock)
        results = []
        try:
            threads = [threading.Thread(target=lambda: results.append(p.resolve('4.4.4.4'))) for _ in range(5)]
            for t in threads:
                t.start()
            time.sleep(0.05)
            gate.set()
            for t in threads:
                t.join(5)
            assert len(results) == 5
            assert fetcher.calls == ['4.4.4.4']
            assert p.get_usage_stats()['request_count'] == 1
        finally:
            gate.set()
            p.close()


class TestUsageAndHousekeeping:
    def test_usage_stats_shape(self, provider):
        stats = provider.get_usage_stats()
        assert stats['request_count'] == 0
        assert stats['max_requests'] == 1000
        assert stats['cache_size'] == 0
        assert stats['has_api_key'] is False
        assert 'last_reset_time' in stats

    def test_clean_expired_and_clear(self, fetcher):
        clock = FakeClock()
        p = _provider(fetcher, clock, ttl=100)
        try:
            p.resolve('1.1.1.1')
            clock.advance(50)
            p.resolve('8.8.8.8')
            clock.advance(60)
            assert p.clean_expired() == 1
            assert len(p.cache) == 1
            p.clear_cache()
            assert len(p.cache) == 0
        finally:
            p.close()


class TestHttpFetch:
    class _Resp:
        def __init__(self, status, body):
            self.status_code = status
            self._body = body

        def json(self):
            if isinstance(self._body, Exception):
                raise self._body
            return self._body

    class _Session:
        def __init__(self, resp):
            self.resp = resp
            self.calls = []

        def get(self, url, **kwargs):
            self.calls.append((url, kwargs))
            return self.resp

    def test_sends_key_and_timeout(self, clock):
        session = self._Session(self._Resp(200, {'country_name': 'Germany', 'org': 'Hetzner Online'}))
        p = IPInfoProvider(IPInfoCache(60, clock=clock), api_key='k123', session=session, clock=clock, timeout=1.5)
        try:
            info = p.resolve('78.46.1.1')
            assert info.country == 'Germany'
            assert info.is_data_center
            url, kwargs = session.calls[0]
            assert url == 'https://ipapi.co/78.46.1.1/json/'
            assert kwargs['params'] == {'key': 'k123'}
            assert kwargs['timeout'] == 1.5
        finally:
            p.close()

    def test_bad_status_is_failure(self, clock):
        session = self._Session(self._Resp(429, {}))
        p = IPInfoProvider(IPInfoCache(60, clock=clock), session=session, clock=clock)
        try:
            assert p.resolve('78.46.1.1').is_unknown
        finally:
            p.close()

    def test_invalid_json_is_failure(self, clock):
        session = self._Session(self._Resp(200, ValueError('bad json')))
        p = IPInfoProvider(IPInfoCache(60, clock=clock), session=session, clock=clock)
        try:
            assert p.resolve('78.46.1.1').is_unknown
        finally:
            p.close()
