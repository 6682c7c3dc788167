"""Tests for session metrics."""

import pytest

from i3gnome.monitoring.metrics import (
    Counter,
    Gauge,
    Histogram,
    call_attempts_total,
    generate_metrics,
    reset_metrics,
    unresponsive_critical_endpoints,
    write_metrics_file,
)


@pytest.mark.unit
class TestCounter:
    """Test Counter metric."""

    def test_increment_by_labels(self):
        counter = Counter("test_total", "Test counter", labels=["outcome"])
        counter.labels(outcome="success").inc()
        counter.labels(outcome="success").inc(2)
        counter.labels(outcome="timeout").inc()

        assert counter.get(outcome="success") == 3
        assert counter.get(outcome="timeout") == 1
        assert counter.get(outcome="unavailable") == 0

    def test_cannot_decrease(self):
        counter = Counter("test_total", "Test counter")
        with pytest.raises(ValueError):
            counter.inc(-1)

    def test_prometheus_format(self):
        counter = Counter("test_total", "Test counter", labels=["tier"])
        counter.labels(tier="critical").inc()

        text = counter.to_prometheus()

        assert "# TYPE test_total counter" in text
        assert 'test_total{tier="critical"} 1.0' in text


@pytest.mark.unit
class TestGauge:
    def test_set(self):
        gauge = Gauge("test_gauge", "Test gauge")
        gauge.set(3)
        gauge.set(1)
        assert gauge.get() == 1


@pytest.mark.unit
class TestHistogram:
    """Test Histogram metric."""

    def test_buckets(self):
        histogram = Histogram("test_seconds", "Test", labels=["outcome"], buckets=(0.1, 1.0))
        histogram.labels(outcome="success").observe(0.05)
        histogram.labels(outcome="success").observe(0.5)

        text = histogram.to_prometheus()

        assert 'test_seconds_bucket{outcome="success",le="0.1"} 1' in text
        assert 'test_seconds_bucket{outcome="success",le="1.0"} 2' in text
        assert 'test_seconds_bucket{outcome="success",le="+Inf"} 2' in text
        assert 'test_seconds_count{outcome="success"} 2' in text
        assert histogram.count(outcome="success") == 2


@pytest.mark.unit
class TestExport:
    """Test metric export."""

    def test_generate_and_reset(self):
        call_attempts_total.labels(endpoint="svc", outcome="success").inc()
        unresponsive_critical_endpoints.set(2)

        text = generate_metrics()

        assert 'i3gnome_call_attempts_total{endpoint="svc",outcome="success"} 1.0' in text
        assert "i3gnome_unresponsive_critical_endpoints 2" in text

        reset_metrics()
        assert call_attempts_total.get(endpoint="svc", outcome="success") == 0

    def test_write_metrics_file(self, tmp_path):
        call_attempts_total.labels(endpoint="svc", outcome="timeout").inc()
        path = tmp_path / "textfile" / "i3gnome.prom"

        write_metrics_file(str(path))

        assert 'outcome="timeout"' in path.read_text()
        assert [p.name for p in path.parent.iterdir()] == ["i3gnome.prom"]
