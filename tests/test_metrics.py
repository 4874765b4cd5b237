"""Tests for scrapertrack.metrics: Prometheus counters."""
from prometheus_client import REGISTRY

from scrapertrack import metrics


def _value(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestRecorders:
    def test_record_detection(self):
        labels = {'method': 'user_agent', 'company': 'metrics-test'}
        before = _value('scrapertrack_detections_total', labels)
        metrics.record_detection('user_agent', 'metrics-test')
        assert _value('scrapertrack_detections_total', labels) == before + 1

    def test_record_lookup(self):
        before = _value('scrapertrack_ip_lookups_total', {'outcome': 'timeout'})
        metrics.record_lookup('timeout')
        assert _value('scrapertrack_ip_lookups_total', {'outcome': 'timeout'}) == before + 1

    def test_record_dns(self):
        before = _value('scrapertrack_dns_verifications_total', {'outcome': 'rejected'})
        metrics.record_dns('rejected')
        assert _value('scrapertrack_dns_verifications_total', {'outcome': 'rejected'}) == before + 1

    def test_record_error(self):
        before = _value('scrapertrack_detection_errors_total', {'producer': 'metrics-test'})
        metrics.record_error('metrics-test')
        assert _value('scrapertrack_detection_errors_total', {'producer': 'metrics-test'}) == before + 1


class TestExport:
    def test_get_metrics(self):
        metrics.record_error('export-test')
        body = metrics.get_metrics()
        assert isinstance(body, bytes)
        assert b'scrapertrack_detection_errors_total' in body

    def test_content_type(self):
        assert metrics.get_content_type().startswith('text/plain')


class TestEngineCounts:
    def test_engine_records_detection(self, context):
        labels = {'method': 'user_agent', 'company': 'openai'}
        before = _value('scrapertrack_detections_total', labels)
        context.engine.detect('GPTBot/1.0', None)
        assert _value('scrapertrack_detections_total', labels) == before + 1

    def test_engine_records_producer_fault(self, context, monkeypatch):
        def boom(*args):
            raise RuntimeError('x')

        monkeypatch.setattr(context.matcher, 'match', boom)
        before = _value('scrapertrack_detection_errors_total', {'producer': 'user_agent'})
        assert context.engine.detect('GPTBot/1.0', None) is None
        assert _value('scrapertrack_detection_errors_total', {'producer': 'user_agent'}) == before + 1
