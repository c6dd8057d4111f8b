"""Thread-safe metric accumulation and aggregate snapshots."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from ..utils.errors import MetricTypeError


# Series names written by the runner and scheduler
STEP_DURATION = "step_duration"
STEP_FAILED = "step_failed"
JOURNEY_DURATION = "journey_duration"
JOURNEY_FAILED = "journey_failed"
ITERATIONS = "iterations"
ITERATIONS_ABORTED = "iterations_aborted"
VUS = "vus"

TREND = "trend"
RATE = "rate"
COUNTER = "counter"

Sample = Union[bool, int, float]


def step_duration_name(label: str) -> str:
    return f"{label}_duration"


def step_failed_name(label: str) -> str:
    return f"{label}_failed"


def journey_duration_name(journey: str) -> str:
    return f"journey_{journey}_duration"


def journey_failed_name(journey: str) -> str:
    return f"journey_{journey}_failed"


def journey_aborted_name(journey: str) -> str:
    return f"journey_{journey}_aborted"


def tagged_name(name: str, **tags: str) -> str:
    """k6-style tagged series name, e.g. ``step_duration{scenario:new_users}``."""
    if not tags:
        return name
    inner = ",".join(f"{key}:{value}" for key, value in sorted(tags.items()))
    return f"{name}{{{inner}}}"


def percentile(sorted_values: Tuple[float, ...], p: float) -> float:
    """Linear interpolation between closest ranks over pre-sorted values.

    Every series uses this rule, so p50 <= p90 <= p95 <= p99 always holds.
    """
    if not sorted_values:
        return 0.0
    if not 0 <= p <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {p}")
    pos = (len(sorted_values) - 1) * p / 100.0
    lower = int(math.floor(pos))
    upper = int(math.ceil(pos))
    if lower == upper:
        return float(sorted_values[lower])
    frac = pos - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * frac


@dataclass(frozen=True)
class Aggregate:
    """Point-in-time view of one metric series."""

    name: str
    kind: Optional[str] = None
    count: int = 0
    sum: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None
    trues: int = 0
    values: Tuple[float, ...] = ()

    @property
    def empty(self) -> bool:
        return self.count == 0

    @property
    def avg(self) -> float:
        return self.sum / self.count if self.count else 0.0

    @property
    def rate(self) -> float:
        """Fraction of true samples for rate series."""
        return self.trues / self.count if self.count else 0.0

    @property
    def med(self) -> float:
        return self.percentile(50)

    def percentile(self, p: float) -> float:
        return percentile(self.values, p)

    def to_dict(self) -> Dict[str, float]:
        if self.kind == RATE:
            return {"count": self.count, "passes": self.trues, "fails": self.count - self.trues, "rate": self.rate}
        if self.kind == COUNTER:
            return {"count": self.sum}
        return {
            "count": self.count,
            "avg": self.avg,
            "min": self.min or 0.0,
            "med": self.med,
            "max": self.max or 0.0,
            "p90": self.percentile(90),
            "p95": self.percentile(95),
            "p99": self.percentile(99),
        }


@dataclass
class MetricSeries:
    """Append-only samples with running aggregates."""

    name: str
    kind: str
    samples: List[float] = field(default_factory=list)
    count: int = 0
    total: float = 0.0
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    trues: int = 0

    def append(self, value: float) -> None:
        self.samples.append(value)
        self.count += 1
        self.total += value
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value
        if self.kind == RATE and value:
            self.trues += 1

    def snapshot(self) -> Aggregate:
        values: Tuple[float, ...] = ()
        if self.kind == TREND:
            values = tuple(sorted(self.samples))
        return Aggregate(
            name=self.name,
            kind=self.kind,
            count=self.count,
            sum=self.total,
            min=self.minimum,
            max=self.maximum,
            trues=self.trues,
            values=values,
        )


class MetricSink:
    """Named metric series shared by every virtual user of one test run.

    Writers hold the lock only for an append, so producers never block
    for long. Snapshots copy under the same lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: Dict[str, MetricSeries] = {}

    def record(self, name: str, sample: Sample) -> None:
        """Append a duration (number) or an outcome (bool) to ``name``."""
        kind = RATE if isinstance(sample, bool) else TREND
        if kind == TREND and not isinstance(sample, (int, float)):
            raise MetricTypeError(f"Metric '{name}' expects a number or bool, got {type(sample).__name__}")
        with self._lock:
            series = self._get_or_create(name, kind)
            series.append(float(sample))

    def add(self, name: str, value: Union[int, float] = 1) -> None:
        """Increment counter ``name``."""
        with self._lock:
            series = self._get_or_create(name, COUNTER)
            series.append(float(value))

    def _get_or_create(self, name: str, kind: str) -> MetricSeries:
        series = self._series.get(name)
        if series is None:
            series = MetricSeries(name=name, kind=kind)
            self._series[name] = series
        elif series.kind != kind:
            raise MetricTypeError(f"Metric '{name}' is a {series.kind} series, cannot record a {kind} sample")
        return series

    def snapshot(self, name: str) -> Aggregate:
        with self._lock:
            series = self._series.get(name)
            if series is None:
                return Aggregate(name=name)
            return series.snapshot()

    def snapshot_all(self) -> Dict[str, Aggregate]:
        with self._lock:
            return {name: series.snapshot() for name, series in self._series.items()}

    def count(self, name: str) -> int:
        with self._lock:
            series = self._series.get(name)
            return series.count if series else 0

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._series)
