"""Tests for scrapertrack.signatures: registry contents and startup validation."""
import pytest

from scrapertrack.exceptions import RegistryError
from scrapertrack.signatures import (
    SIGNATURES,
    CompanySignature,
    all_companies,
    company_display_name,
    validate_registry,
)


class TestRegistry:
    def test_default_registry_is_valid(self):
        summary = validate_registry()
        assert summary['companies'] == len(SIGNATURES)
        assert summary['user_agents'] > 0
        assert summary['ip_ranges'] > 0

    def test_order_is_declaration_order(self):
        assert all_companies()[:4] == ['openai', 'anthropic', 'google', 'perplexity']

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            SIGNATURES['x'] = SIGNATURES['openai']

    def test_google_requires_verification(self):
        google = SIGNATURES['google']
        assert google.requires_verification
        assert google.asn == 'AS15169'
        assert 'googlebot.com' in google.hostnames

    def test_display_name(self):
        assert company_display_name('openai') == 'OpenAI'
        assert company_display_name('nobody') == 'nobody'


class TestValidation:
    def _one(self, **fields):
        base = dict(key='acme', name='Acme', user_agents=('AcmeBot',))
        base.update(fields)
        return {'acme': CompanySignature(**base)}

    def test_valid_minimal(self):
        assert validate_registry(self._one())['companies'] == 1

    @pytest.mark.parametrize('fields', [
        {'key': 'other'},
        {'name': ''},
        {'user_agents': ()},
        {'user_agents': ('  ',)},
        {'ip_ranges': ('10.0.0.0/33',)},
        {'asn': '15169'},
        {'requires_verification': True},
    ])
    def test_bad_entries(self, fields):
        with pytest.raises(RegistryError):
            validate_registry(self._one(**fields))

    def test_asn_only_entry_is_matchable(self):
        assert validate_registry(self._one(user_agents=(), asn='AS64500'))['user_agents'] == 0
