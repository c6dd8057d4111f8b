"""Unit tests for threshold parsing and evaluation."""

import pytest

from loadforge.core.metrics import Aggregate
from loadforge.core.thresholds import (
    ThresholdEvaluator,
    ThresholdRule,
    ThresholdStatus,
    rules_from_mapping,
)
from loadforge.utils.errors import ConfigurationError, ThresholdParseError


@pytest.mark.unit
class TestThresholdParsing:

    @pytest.mark.parametrize("expression", [
        "p(95)<2000",
        "p(99.9)<=5000",
        "avg<500",
        "med<300",
        "min>0",
        "max<10000",
        "rate<0.01",
        "count>10",
        " p( 90 ) < 10000 ",
    ])
    def test_valid_expressions(self, expression):
        rule = ThresholdRule.parse("step_duration", expression)
        assert rule.metric_name == "step_duration"
        assert " " not in rule.description

    @pytest.mark.parametrize("expression", ["", "p95<2000", "rate", "avg<<3", "p(95)<fast", "stddev<3"])
    def test_malformed_expressions(self, expression):
        with pytest.raises(ThresholdParseError) as exc_info:
            ThresholdRule.parse("step_duration", expression)
        assert exc_info.value.metric == "step_duration"

    def test_percentile_above_100_rejected(self):
        with pytest.raises(ThresholdParseError):
            ThresholdRule.parse("step_duration", "p(101)<10")

    def test_parse_error_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ThresholdRule.parse("x", "nonsense")

    def test_rules_from_mapping(self):
        rules = rules_from_mapping({
            "step_duration": ["p(95)<2000", "p(99)<5000"],
            "step_failed": "rate<0.01",
        })
        assert [(r.metric_name, r.description) for r in rules] == [
            ("step_duration", "p(95)<2000"),
            ("step_duration", "p(99)<5000"),
            ("step_failed", "rate<0.01"),
        ]


@pytest.mark.unit
class TestThresholdEvaluator:

    def test_passed_and_failed(self, sink):
        for v in range(1, 101):
            sink.record("step_duration", float(v))
        rules = rules_from_mapping({"step_duration": ["p(95)<200", "p(95)<50"]})

        results = ThresholdEvaluator().evaluate(sink, rules)

        assert [r.status for r in results] == [ThresholdStatus.PASSED, ThresholdStatus.FAILED]
        assert results[0].observed_value == pytest.approx(95.05)

    def test_no_data_for_empty_series(self, sink):
        rule = ThresholdRule.parse("journey_power_user_failed", "rate<0.10")
        result = ThresholdEvaluator().evaluate(sink, [rule])[0]
        assert result.status is ThresholdStatus.NO_DATA
        assert not result.passed

    def test_rate_threshold(self, sink):
        for failed in [True] + [False] * 99:
            sink.record("step_failed", failed)
        ok, too_strict = ThresholdEvaluator().evaluate(
            sink, rules_from_mapping({"step_failed": ["rate<0.05", "rate<0.01"]})
        )
        assert ok.passed
        assert too_strict.status is ThresholdStatus.FAILED
        assert too_strict.observed_value == pytest.approx(0.01)

    def test_count_on_counter_uses_sum(self, sink):
        sink.add("iterations", 5)
        sink.add("iterations", 7)
        result = ThresholdEvaluator().evaluate(sink, [ThresholdRule.parse("iterations", "count>10")])[0]
        assert result.passed
        assert result.observed_value == 12.0

    def test_predicate_error_reported_as_failed(self):
        def boom(snap):
            raise RuntimeError("bad predicate")

        rule = ThresholdRule(metric_name="x", predicate=boom, description="custom")
        snap = Aggregate(name="x", kind="trend", count=1, sum=1.0, min=1.0, max=1.0, values=(1.0,))

        result = ThresholdEvaluator().evaluate_rule(snap, rule)

        assert result.status is ThresholdStatus.FAILED
        assert "bad predicate" in result.error

    def test_to_dict(self, sink):
        sink.record("step_duration", 10.0)
        result = ThresholdEvaluator().evaluate(sink, [ThresholdRule.parse("step_duration", "avg<20")])[0]
        assert result.to_dict() == {
            "metric": "step_duration",
            "rule": "avg<20",
            "status": "passed",
            "passed": True,
            "observed_value": 10.0,
            "error": None,
        }
