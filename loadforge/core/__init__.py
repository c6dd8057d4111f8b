"""Core load generation components."""

from .config import RunOptions, Stage, StageMode, StageProfile, TargetSettings
from .engine import LoadTest, Scenario
from .journey import Journey, JourneySet, Step, StepResult
from .metrics import MetricSink
from .report import ReportSummary
from .thresholds import ThresholdEvaluator, ThresholdRule

__all__ = [
    "LoadTest",
    "Scenario",
    "Journey",
    "JourneySet",
    "Step",
    "StepResult",
    "MetricSink",
    "ReportSummary",
    "RunOptions",
    "Stage",
    "StageMode",
    "StageProfile",
    "TargetSettings",
    "ThresholdEvaluator",
    "ThresholdRule",
]
