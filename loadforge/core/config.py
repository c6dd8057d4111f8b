"""Configuration models for stage profiles, scenarios and run options."""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.errors import ConfigurationError


_DURATION_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)")
_UNIT_MS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000}


def parse_duration_ms(value: Any) -> int:
    """Convert a k6-style duration ("30s", "1m30s", "500ms") or a number of ms to int ms."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    if text.isdigit():
        return int(text)

    total = 0.0
    pos = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group("value")) * _UNIT_MS[match.group("unit")]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    return int(total)


class StageMode(str, Enum):
    """How the concurrency target moves inside a stage."""

    LINEAR = "linear"
    STEP = "step"


class Stage(BaseModel):
    """A (duration, target concurrency) pair."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    duration_ms: int = Field(gt=0, alias="duration")
    target: int = Field(ge=0)
    mode: Optional[StageMode] = None

    @field_validator("duration_ms", mode="before")
    @classmethod
    def normalize_duration(cls, v: Any) -> int:
        return parse_duration_ms(v)


class StageProfile(BaseModel):
    """Ordered, non-empty list of stages."""

    model_config = ConfigDict(frozen=True)

    stages: List[Stage]
    mode: StageMode = StageMode.LINEAR
    start_target: int = Field(default=0, ge=0)

    @field_validator("stages", mode="before")
    @classmethod
    def validate_stages(cls, v: Any) -> Any:
        if not v:
            raise ValueError("stage profile must contain at least one stage")
        return v

    @property
    def total_duration_ms(self) -> int:
        return sum(stage.duration_ms for stage in self.stages)

    @property
    def max_target(self) -> int:
        return max([self.start_target] + [stage.target for stage in self.stages])

    def stage_mode(self, index: int) -> StageMode:
        return self.stages[index].mode or self.mode

    def stage_index_at(self, elapsed_ms: float) -> int:
        """Index of the stage active at ``elapsed_ms``; the last stage once the profile ends."""
        boundary = 0
        for index, stage in enumerate(self.stages):
            boundary += stage.duration_ms
            if elapsed_ms < boundary:
                return index
        return len(self.stages) - 1

    def target_at(self, elapsed_ms: float) -> int:
        """Target concurrency at ``elapsed_ms`` since the test started."""
        elapsed_ms = max(0.0, elapsed_ms)
        previous = self.start_target
        stage_start = 0
        for index, stage in enumerate(self.stages):
            stage_end = stage_start + stage.duration_ms
            if elapsed_ms < stage_end:
                if self.stage_mode(index) is StageMode.STEP:
                    return stage.target
                fraction = (elapsed_ms - stage_start) / stage.duration_ms
                return _round_half_up(previous + (stage.target - previous) * fraction)
            previous = stage.target
            stage_start = stage_end
        return self.stages[-1].target

    def scaled(self, factor: float) -> "StageProfile":
        """Same shape with every stage duration multiplied by ``factor``."""
        if factor <= 0:
            raise ConfigurationError(f"Duration scale must be positive, got {factor}")
        stages = [
            stage.model_copy(update={"duration_ms": max(1, int(stage.duration_ms * factor))})
            for stage in self.stages
        ]
        return self.model_copy(update={"stages": stages})

    @classmethod
    def from_stages(cls, stages: List[Dict[str, Any]], **kwargs: Any) -> "StageProfile":
        return cls(stages=[Stage(**stage) for stage in stages], **kwargs)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RunOptions(BaseModel):
    """Execution options shared by every scenario of a load test."""

    tick_interval_s: float = Field(default=1.0, gt=0)
    graceful_stop_s: float = Field(default=30.0, ge=0)
    graceful_ramp_down_s: float = Field(default=30.0, ge=0)
    step_timeout_s: float = Field(default=10.0, gt=0)
    think_time_scale: float = Field(default=1.0, ge=0)
    aborted_counts_as_failure: bool = False
    seed: Optional[int] = None


class TargetSettings(BaseSettings):
    """Process-wide settings for the system under test, read once at start."""

    model_config = SettingsConfigDict(
        env_prefix="LOADFORGE_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    base_url: str = Field(default="http://localhost:8080")
    default_timeout_s: float = Field(default=10.0, gt=0)
    ai_timeout_s: float = Field(default=30.0, gt=0)
    default_headers: Dict[str, str] = Field(
        default_factory=lambda: {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
    )
    report_dir: str = "loadforge_reports"
    log_level: str = "INFO"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

