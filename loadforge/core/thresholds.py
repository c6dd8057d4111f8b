"""Threshold rules and their evaluation against a metric sink."""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .metrics import Aggregate, MetricSink
from ..utils.errors import ThresholdParseError

logger = logging.getLogger(__name__)


_EXPR_RE = re.compile(
    r"^\s*(?P<agg>p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|avg|min|max|med|rate|count)"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<value>-?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def _observer_for(aggregation: str, pct: Optional[str]) -> Callable[[Aggregate], float]:
    if pct is not None:
        p = float(pct)
        if p > 100:
            raise ValueError(f"percentile {p} is above 100")
        return lambda snap: snap.percentile(p)
    if aggregation == "count":
        # Counters accumulate their increments in sum
        return lambda snap: snap.sum if snap.kind == "counter" else float(snap.count)
    if aggregation in ("min", "max"):
        return lambda snap: float(getattr(snap, aggregation) or 0.0)
    return lambda snap: float(getattr(snap, aggregation))


@dataclass(frozen=True)
class ThresholdRule:
    """A pass/fail acceptance rule bound to one metric series."""

    metric_name: str
    predicate: Callable[[Aggregate], bool]
    description: str
    observe: Optional[Callable[[Aggregate], float]] = None

    @classmethod
    def parse(cls, metric_name: str, expression: str) -> "ThresholdRule":
        """Build a rule from a k6-style expression such as ``p(95)<2000`` or ``rate<0.01``."""
        match = _EXPR_RE.match(expression or "")
        if not match:
            raise ThresholdParseError("Malformed threshold expression", metric=metric_name, expression=expression)
        try:
            observe = _observer_for(match.group("agg"), match.group("pct"))
        except ValueError as e:
            raise ThresholdParseError(str(e), metric=metric_name, expression=expression) from e
        compare = _OPERATORS[match.group("op")]
        limit = float(match.group("value"))

        def predicate(snap: Aggregate) -> bool:
            return compare(observe(snap), limit)

        return cls(
            metric_name=metric_name,
            predicate=predicate,
            description=expression.replace(" ", ""),
            observe=observe,
        )


def rules_from_mapping(thresholds: Mapping[str, Union[str, Sequence[str]]]) -> List[ThresholdRule]:
    """Turn ``{"step_duration": ["p(95)<2000"], ...}`` into rules."""
    rules: List[ThresholdRule] = []
    for metric_name, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            rules.append(ThresholdRule.parse(metric_name, expression))
    return rules


class ThresholdStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class ThresholdResult:
    rule: ThresholdRule
    status: ThresholdStatus
    observed_value: Optional[float] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status is ThresholdStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.rule.metric_name,
            "rule": self.rule.description,
            "status": self.status.value,
            "passed": self.passed,
            "observed_value": self.observed_value,
            "error": self.error,
        }


class ThresholdEvaluator:
    """Evaluates rules against the current aggregates of a sink."""

    def evaluate(self, sink: MetricSink, rules: Iterable[ThresholdRule]) -> List[ThresholdResult]:
        results: List[ThresholdResult] = []
        for rule in rules:
            results.append(self.evaluate_rule(sink.snapshot(rule.metric_name), rule))
        return results

    def evaluate_rule(self, snapshot: Aggregate, rule: ThresholdRule) -> ThresholdResult:
        # Empty series report no_data, never passed
        if snapshot.empty:
            return ThresholdResult(rule=rule, status=ThresholdStatus.NO_DATA)

        observed = None
        try:
            if rule.observe is not None:
                observed = rule.observe(snapshot)
            ok = bool(rule.predicate(snapshot))
        except Exception as e:
            logger.error(f"Threshold {rule.metric_name}: {rule.description} failed to evaluate: {e}")
            return ThresholdResult(rule=rule, status=ThresholdStatus.FAILED, observed_value=observed, error=str(e))

        status = ThresholdStatus.PASSED if ok else ThresholdStatus.FAILED
        return ThresholdResult(rule=rule, status=status, observed_value=observed)
