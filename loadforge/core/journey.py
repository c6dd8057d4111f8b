"""Journeys: named, ordered sequences of steps that one virtual user executes."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..utils.errors import ConfigurationError


@dataclass
class StepResult:
    """Outcome of one step action."""

    success: bool
    duration_ms: Optional[float] = None
    error_info: Optional[str] = None

    @classmethod
    def ok(cls, duration_ms: Optional[float] = None) -> "StepResult":
        return cls(success=True, duration_ms=duration_ms)

    @classmethod
    def failed(cls, error_info: str, duration_ms: Optional[float] = None) -> "StepResult":
        return cls(success=False, duration_ms=duration_ms, error_info=error_info)


@dataclass
class Context:
    """Mutable state threaded through the steps of one iteration.

    Created fresh for every iteration and never shared between virtual users.
    """

    vu_id: int
    iteration: int
    journey: str
    transport: Any = None
    data: Dict[str, Any] = field(default_factory=dict)
    rng: Optional[random.Random] = None

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


StepAction = Callable[[Context], Awaitable[StepResult]]


@dataclass(frozen=True)
class Step:
    """One labelled action inside a journey.

    ``think_time_ms`` is the pause after this step before the next one.
    Best-effort steps (logout, cleanup) never fail the journey and still
    run after an earlier failure when every key in ``requires`` is present.
    """

    label: str
    action: StepAction
    think_time_ms: Tuple[int, int] = (0, 0)
    best_effort: bool = False
    requires: Tuple[str, ...] = ()
    timeout_s: Optional[float] = None

    def __post_init__(self) -> None:
        low, high = self.think_time_ms
        if low < 0 or high < low:
            raise ConfigurationError(f"Step '{self.label}' has an invalid think time range {self.think_time_ms}")

    def reachable(self, context: Context) -> bool:
        return all(key in context for key in self.requires)


@dataclass(frozen=True)
class Journey:
    """A named user behaviour pattern."""

    name: str
    steps: Sequence[Step]
    weight: float = 1.0
    pacing_ms: Tuple[int, int] = (0, 0)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ConfigurationError(f"Journey '{self.name}' has no steps")
        if self.weight <= 0:
            raise ConfigurationError(f"Journey '{self.name}' must have a positive weight, got {self.weight}")
        low, high = self.pacing_ms
        if low < 0 or high < low:
            raise ConfigurationError(f"Journey '{self.name}' has an invalid pacing range {self.pacing_ms}")

    @property
    def labels(self) -> List[str]:
        return [step.label for step in self.steps]


class JourneySet:
    """Weighted catalog of journeys; weights are normalized at selection time."""

    def __init__(self, journeys: Sequence[Journey]):
        if not journeys:
            raise ConfigurationError("A journey set needs at least one journey")
        names = [journey.name for journey in journeys]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ConfigurationError(f"Duplicate journey names: {', '.join(sorted(duplicates))}")
        self.journeys: List[Journey] = list(journeys)

    def __iter__(self):
        return iter(self.journeys)

    def __len__(self) -> int:
        return len(self.journeys)

    @property
    def names(self) -> List[str]:
        return [journey.name for journey in self.journeys]

    def probabilities(self) -> Dict[str, float]:
        total = sum(journey.weight for journey in self.journeys)
        return {journey.name: journey.weight / total for journey in self.journeys}

    def select(self, rng: Optional[random.Random] = None) -> Journey:
        if len(self.journeys) == 1:
            return self.journeys[0]
        rng = rng or random
        weights = [journey.weight for journey in self.journeys]
        return rng.choices(self.journeys, weights=weights, k=1)[0]


class IterationOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class IterationResult:
    """What happened during one journey iteration of one virtual user."""

    vu_id: int
    journey: str
    outcome: IterationOutcome
    duration_ms: float
    steps: List[Tuple[str, StepResult]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome is IterationOutcome.SUCCEEDED

    def step(self, label: str) -> Optional[StepResult]:
        for step_label, result in self.steps:
            if step_label == label:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vu_id": self.vu_id,
            "journey": self.journey,
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
            "steps": [
                {"label": label, "success": r.success, "duration_ms": r.duration_ms, "error": r.error_info}
                for label, r in self.steps
            ],
        }


def think_time(low_s: float, high_s: float) -> Tuple[int, int]:
    """Think time range in ms from seconds, the way the flow scripts write it."""
    return int(low_s * 1000), int(high_s * 1000)
