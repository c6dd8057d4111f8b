"""Custom exceptions for the load testing framework."""

from __future__ import annotations

from typing import Optional


class LoadForgeError(Exception):
    """Base exception for all loadforge errors."""
    pass


class ConfigurationError(LoadForgeError):
    """Raised when a stage profile, scenario or run option is invalid."""
    pass


class ThresholdParseError(ConfigurationError):
    """Raised when a threshold expression cannot be parsed."""

    def __init__(self, message: str, *, metric: str, expression: Optional[str] = None):
        parts = [message]
        loc = [f"metric={metric}"]
        if expression is not None:
            loc.append(f"expression={expression!r}")
        parts.append(f"({', '.join(loc)})")
        super().__init__(" ".join(parts))
        self.metric = metric
        self.expression = expression


class MetricTypeError(LoadForgeError):
    """Raised when a sample does not match the kind of its metric series."""
    pass


class StepFailure(LoadForgeError):
    """Raised by a step action when its response does not pass the checks.

    Recovered inside the iteration: the runner records it as a failed step.
    """
    pass


class SetupFailure(LoadForgeError):
    """Raised when a precondition for starting the test fails.

    Fatal: the run stops before any virtual user is spawned.
    """
    pass


class CallTimeout(StepFailure):
    """Raised when an external call exceeds its timeout."""

    def __init__(self, message: str = "timeout"):
        super().__init__(message)
