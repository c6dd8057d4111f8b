"""
loadforge: weighted user journeys driven through staged virtual-user ramps.

Run a load test in a few lines:
    test = LoadTest("smoke", [Scenario("default", journeys, profile)], thresholds)
    report = test.run()
"""

__version__ = "0.1.0"

from .core.config import RunOptions, StageProfile, TargetSettings
from .core.engine import LoadTest, Scenario
from .core.journey import Journey, JourneySet, Step, StepResult
from .core.report import ReportSummary
from .profiles import get_profile, list_profiles

__all__ = [
    "LoadTest",
    "Scenario",
    "Journey",
    "JourneySet",
    "Step",
    "StepResult",
    "ReportSummary",
    "RunOptions",
    "StageProfile",
    "TargetSettings",
    "get_profile",
    "list_profiles",
]
