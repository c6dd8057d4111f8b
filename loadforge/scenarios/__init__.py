"""Schedule backend journeys and scenario builders."""

from .journeys import build_scenarios, mixed_journeys
from .schedule_api import health_check

__all__ = ["build_scenarios", "health_check", "mixed_journeys"]
