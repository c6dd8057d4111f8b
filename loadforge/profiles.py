"""Named load profiles: stage lists, threshold sets and run options per test type."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .core.config import RunOptions, StageMode, StageProfile
from .core.metrics import JOURNEY_FAILED, STEP_DURATION, STEP_FAILED, step_duration_name, tagged_name
from .utils.errors import ConfigurationError


COMMON_THRESHOLDS: Dict[str, List[str]] = {
    STEP_DURATION: ["p(95)<2000", "p(99)<5000"],
    STEP_FAILED: ["rate<0.01"],
}

# label -> (p95 budget, p99 budget) in ms
ENDPOINT_BUDGETS_MS: Dict[str, tuple] = {
    "login": (500, 1000),
    "get_profile": (500, 1000),
    "search_users": (1000, 2000),
    "create_schedule": (1500, 3000),
    "get_schedules": (1000, 2000),
    "update_schedule": (1000, 2000),
    "ai_arrangement": (5000, 10000),
}


def endpoint_thresholds(*labels: str) -> Dict[str, List[str]]:
    """Per-endpoint latency thresholds for the given step labels."""
    thresholds = {}
    for label in labels:
        if label not in ENDPOINT_BUDGETS_MS:
            raise ConfigurationError(f"No latency budget for endpoint '{label}'")
        p95, p99 = ENDPOINT_BUDGETS_MS[label]
        thresholds[step_duration_name(label)] = [f"p(95)<{p95}", f"p(99)<{p99}"]
    return thresholds


class LoadProfile(BaseModel):
    """A named test type.

    Single-population profiles carry ``stages``; the scenario mix carries one
    stage profile per scenario in ``scenario_stages`` instead.
    """

    name: str
    description: str = ""
    stages: Optional[StageProfile] = None
    scenario_stages: Dict[str, StageProfile] = Field(default_factory=dict)
    thresholds: Dict[str, List[str]] = Field(default_factory=dict)
    options: RunOptions = Field(default_factory=RunOptions)

    @model_validator(mode="after")
    def check_stages(self) -> "LoadProfile":
        if (self.stages is None) == (not self.scenario_stages):
            raise ValueError(f"Profile '{self.name}' needs either stages or scenario_stages")
        return self

    @property
    def is_mix(self) -> bool:
        return bool(self.scenario_stages)

    @property
    def max_vus(self) -> int:
        if self.stages is not None:
            return self.stages.max_target
        return sum(p.max_target for p in self.scenario_stages.values())

    @property
    def total_duration_ms(self) -> int:
        if self.stages is not None:
            return self.stages.total_duration_ms
        return max(p.total_duration_ms for p in self.scenario_stages.values())

    def scaled(self, factor: float) -> "LoadProfile":
        """Compressed (or stretched) copy, e.g. for a quick dry run of a long profile."""
        return self.model_copy(
            update={
                "stages": self.stages.scaled(factor) if self.stages is not None else None,
                "scenario_stages": {name: p.scaled(factor) for name, p in self.scenario_stages.items()},
            }
        )


def _stages(*pairs, **kwargs) -> StageProfile:
    return StageProfile.from_stages([{"duration": d, "target": t} for d, t in pairs], **kwargs)


def _breakpoint_stages() -> StageProfile:
    pairs = [("1m", target) for target in range(50, 501, 50)]
    pairs += [("1m", target) for target in range(600, 1001, 100)]
    pairs.append(("2m", 0))
    return _stages(*pairs)


SMOKE = LoadProfile(
    name="smoke",
    description="Minimal load to verify the system works before heavier tests",
    stages=_stages(("30s", 1), ("1m", 5), ("30s", 0)),
    thresholds={**COMMON_THRESHOLDS, **endpoint_thresholds("get_profile")},
)

LOAD = LoadProfile(
    name="load",
    description="Expected production load held for a sustained period",
    stages=_stages(("2m", 30), ("2m", 30), ("2m", 30), ("2m", 30), ("2m", 30), ("2m", 20)),
    thresholds={
        **COMMON_THRESHOLDS,
        **endpoint_thresholds("get_profile", "create_schedule", "get_schedules"),
        JOURNEY_FAILED: ["rate<0.05"],
    },
)

STRESS = LoadProfile(
    name="stress",
    description="Stepwise escalation past normal load to find the breaking behaviour",
    stages=_stages(
        ("2m", 10), ("3m", 10),
        ("2m", 20), ("3m", 20),
        ("2m", 40), ("3m", 40),
        ("2m", 60), ("3m", 60),
        ("2m", 0),
    ),
    thresholds={
        STEP_DURATION: ["p(95)<5000", "p(99)<10000"],
        STEP_FAILED: ["rate<0.10"],
        JOURNEY_FAILED: ["rate<0.20"],
    },
    options=RunOptions(think_time_scale=0),
)

SPIKE = LoadProfile(
    name="spike",
    description="Sudden surges from baseline to ten times the load",
    stages=StageProfile.from_stages(
        [
            {"duration": "1m", "target": 10, "mode": StageMode.LINEAR},
            {"duration": "10s", "target": 100},
            {"duration": "2m", "target": 100},
            {"duration": "10s", "target": 10},
            {"duration": "2m", "target": 10},
            {"duration": "10s", "target": 100},
            {"duration": "2m", "target": 100},
            {"duration": "1m", "target": 0, "mode": StageMode.LINEAR},
        ],
        mode=StageMode.STEP,
    ),
    thresholds={
        STEP_DURATION: ["p(90)<10000", "p(95)<15000"],
        STEP_FAILED: ["rate<0.10"],
        JOURNEY_FAILED: ["rate<0.15"],
    },
)

SOAK = LoadProfile(
    name="soak",
    description="Moderate load held for hours to surface leaks and degradation",
    stages=_stages(("5m", 100), ("2h", 100), ("5m", 0)),
    thresholds={**COMMON_THRESHOLDS, JOURNEY_FAILED: ["rate<0.05"]},
)

BREAKPOINT = LoadProfile(
    name="breakpoint",
    description="Keep raising the load until the system breaks",
    stages=_breakpoint_stages(),
    thresholds={
        STEP_DURATION: ["p(95)<30000"],
        STEP_FAILED: ["rate<0.50"],
    },
    options=RunOptions(think_time_scale=0, graceful_stop_s=60, graceful_ramp_down_s=30),
)

MIX_WEIGHTS: Dict[str, float] = {
    "new_users": 0.10,
    "returning_users": 0.60,
    "active_users": 0.25,
    "power_users": 0.05,
}

# scenario -> (p95 budget ms, failure rate budget)
MIX_BUDGETS: Dict[str, tuple] = {
    "new_users": (2000, 0.02),
    "returning_users": (1500, 0.01),
    "active_users": (2500, 0.03),
    "power_users": (10000, 0.10),
}


def _mix_thresholds() -> Dict[str, List[str]]:
    thresholds = {
        STEP_DURATION: ["p(95)<3000"],
        STEP_FAILED: ["rate<0.05"],
    }
    for scenario, (p95, fail_rate) in MIX_BUDGETS.items():
        thresholds[tagged_name(STEP_DURATION, scenario=scenario)] = [f"p(95)<{p95}"]
        thresholds[tagged_name(STEP_FAILED, scenario=scenario)] = [f"rate<{fail_rate}"]
    return thresholds


SCENARIO_MIX = LoadProfile(
    name="scenario-mix",
    description="Realistic traffic: new, returning, active and power users ramping together",
    scenario_stages={
        "new_users": _stages(("2m", 5), ("5m", 10), ("2m", 5), ("1m", 0)),
        "returning_users": _stages(("2m", 30), ("5m", 60), ("2m", 30), ("1m", 0)),
        "active_users": _stages(("2m", 15), ("5m", 25), ("2m", 15), ("1m", 0)),
        "power_users": _stages(("2m", 2), ("5m", 5), ("2m", 2), ("1m", 0)),
    },
    thresholds=_mix_thresholds(),
)


PROFILES: Dict[str, LoadProfile] = {
    p.name: p for p in (SMOKE, LOAD, STRESS, SPIKE, SOAK, BREAKPOINT, SCENARIO_MIX)
}


def get_profile(name: str) -> LoadProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown profile '{name}'. Available: {', '.join(sorted(PROFILES))}"
        ) from None


def list_profiles() -> List[LoadProfile]:
    return [PROFILES[name] for name in sorted(PROFILES)]
