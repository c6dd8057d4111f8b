"""Unit tests for metric accumulation and percentile math."""

import threading

import pytest

from loadforge.core.metrics import (
    COUNTER,
    RATE,
    TREND,
    Aggregate,
    MetricSink,
    percentile,
    step_duration_name,
    tagged_name,
)
from loadforge.utils.errors import MetricTypeError


@pytest.mark.unit
class TestPercentile:

    def test_linear_interpolation_between_closest_ranks(self):
        values = (10.0, 20.0, 30.0, 40.0)
        # position (4 - 1) * 0.5 = 1.5 -> halfway between 20 and 30
        assert percentile(values, 50) == 25.0
        assert percentile(values, 0) == 10.0
        assert percentile(values, 100) == 40.0

    def test_single_value(self):
        assert percentile((42.0,), 95) == 42.0

    def test_empty_is_zero(self):
        assert percentile((), 99) == 0.0

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            percentile((1.0, 2.0), 101)

    def test_monotonic_in_p(self):
        values = tuple(sorted([3.0, 17.0, 1.0, 250.0, 42.0, 42.0, 8.0, 1000.0, 5.5]))
        p50, p90, p95, p99 = (percentile(values, p) for p in (50, 90, 95, 99))
        assert p50 <= p90 <= p95 <= p99


@pytest.mark.unit
class TestMetricSink:

    def test_trend_aggregates(self, sink):
        for v in (100, 200, 300, 400):
            sink.record("login_duration", v)

        snap = sink.snapshot("login_duration")
        assert snap.kind == TREND
        assert snap.count == 4
        assert snap.sum == 1000.0
        assert snap.min == 100.0
        assert snap.max == 400.0
        assert snap.avg == 250.0
        assert snap.med == 250.0
        assert snap.percentile(100) == 400.0

    def test_rate_counts_trues(self, sink):
        for failed in (True, False, False, False):
            sink.record("step_failed", failed)

        snap = sink.snapshot("step_failed")
        assert snap.kind == RATE
        assert snap.count == 4
        assert snap.trues == 1
        assert snap.rate == 0.25

    def test_counter(self, sink):
        sink.add("iterations")
        sink.add("iterations")
        sink.add("iterations", 3)

        snap = sink.snapshot("iterations")
        assert snap.kind == COUNTER
        assert snap.sum == 5.0
        assert snap.to_dict() == {"count": 5.0}

    def test_unknown_metric_is_empty(self, sink):
        snap = sink.snapshot("never_recorded")
        assert snap.empty
        assert snap.count == 0
        assert snap.percentile(95) == 0.0

    def test_kind_mismatch_rejected(self, sink):
        sink.record("step_duration", 12.5)
        with pytest.raises(MetricTypeError):
            sink.record("step_duration", True)
        with pytest.raises(MetricTypeError):
            sink.add("step_duration")

    def test_non_numeric_sample_rejected(self, sink):
        with pytest.raises(MetricTypeError):
            sink.record("step_duration", "fast")

    def test_snapshot_is_detached(self, sink):
        sink.record("x_duration", 1)
        snap = sink.snapshot("x_duration")
        sink.record("x_duration", 2)
        assert snap.count == 1
        assert sink.count("x_duration") == 2

    def test_count_equals_records_under_concurrent_threads(self, sink):
        threads_n, per_thread = 8, 1000

        def produce():
            for i in range(per_thread):
                sink.record("step_duration", float(i))
                sink.record("step_failed", i % 10 == 0)

        threads = [threading.Thread(target=produce) for _ in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sink.count("step_duration") == threads_n * per_thread
        snap = sink.snapshot("step_failed")
        assert snap.count == threads_n * per_thread
        assert snap.trues == threads_n * per_thread // 10

    def test_snapshot_all_and_names(self, sink):
        sink.record("b_duration", 1)
        sink.record("a_failed", False)
        assert sink.names() == ["a_failed", "b_duration"]
        assert set(sink.snapshot_all()) == {"a_failed", "b_duration"}


@pytest.mark.unit
class TestAggregate:

    def test_rate_to_dict(self):
        snap = Aggregate(name="login_failed", kind=RATE, count=4, sum=1.0, trues=1)
        assert snap.to_dict() == {"count": 4, "passes": 1, "fails": 3, "rate": 0.25}

    def test_trend_to_dict_keys(self):
        snap = Aggregate(name="d", kind=TREND, count=2, sum=3.0, min=1.0, max=2.0, values=(1.0, 2.0))
        assert set(snap.to_dict()) == {"count", "avg", "min", "med", "max", "p90", "p95", "p99"}


@pytest.mark.unit
class TestMetricNames:

    def test_step_duration_name(self):
        assert step_duration_name("login") == "login_duration"

    def test_tagged_name(self):
        assert tagged_name("step_duration", scenario="new_users") == "step_duration{scenario:new_users}"
        assert tagged_name("step_duration") == "step_duration"
