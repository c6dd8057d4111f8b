"""User journeys against the schedule backend and the scenarios built from them."""

from __future__ import annotations

from functools import partial
from typing import Callable, Dict, List, Optional

from ..core.config import RunOptions, TargetSettings
from ..core.engine import Scenario
from ..core.journey import Journey, JourneySet, think_time
from ..core.runner import DEFAULT_SCENARIO
from ..profiles import MIX_WEIGHTS, LoadProfile
from ..utils.errors import ConfigurationError
from . import schedule_api as api


def full_flow() -> Journey:
    """Signup, initial load, schedule CRUD, social features, cleanup."""
    return Journey(
        name="full_flow",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_profile(),
            api.get_schedules_by_date(think_time_ms=think_time(2, 4)),
            api.create_schedule("Load Test", focus_level=3, think_time_ms=think_time(1, 2)),
            api.get_schedules(think_time_ms=think_time(1, 2)),
            api.update_schedule_status("DONE", think_time_ms=think_time(2, 3)),
            api.search_users(think_time_ms=think_time(1, 2)),
            api.get_notifications(think_time_ms=think_time(1, 2)),
            api.delete_schedule(),
            api.logout(),
        ],
        pacing_ms=think_time(1, 1),
    )


def stress_flow() -> Journey:
    """Short write-heavy flow used when pushing past normal load."""
    return Journey(
        name="stress_flow",
        steps=[
            api.signup(think_time_ms=think_time(0.5, 1)),
            api.get_profile(),
            api.get_schedules_by_date(think_time_ms=think_time(0.5, 1)),
            api.create_schedule("Stress", length_minutes=30, time_range="MINUTE_30_TO_60",
                                think_time_ms=think_time(0.5, 1)),
            api.get_schedules(think_time_ms=think_time(0.5, 1)),
            api.delete_schedule(),
            api.logout(),
        ],
        pacing_ms=think_time(0.5, 0.5),
    )


def new_user() -> Journey:
    return Journey(
        name="new_user",
        steps=[
            api.signup(think_time_ms=think_time(2, 4)),
            api.get_profile(think_time_ms=think_time(1, 2)),
            api.get_schedules_by_date(think_time_ms=think_time(1, 2)),
            api.create_schedule("My First Schedule", focus_level=3, think_time_ms=think_time(2, 3)),
            api.logout(),
        ],
        pacing_ms=think_time(3, 3),
    )


def returning_user() -> Journey:
    return Journey(
        name="returning_user",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_profile(think_time_ms=think_time(1, 2)),
            api.get_schedules_by_date(think_time_ms=think_time(2, 4)),
            api.get_notifications(think_time_ms=think_time(1, 2)),
            api.logout(),
        ],
        pacing_ms=think_time(2, 2),
    )


def active_user() -> Journey:
    return Journey(
        name="active_user",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_profile(),
            api.get_schedules_by_date(think_time_ms=think_time(2, 3)),
            api.create_schedule("Active User Task", length_minutes=45, time_range="MINUTE_30_TO_60",
                                focus_level=4, urgent_chance=0.3, think_time_ms=think_time(1, 2)),
            api.get_schedules(think_time_ms=think_time(2, 3)),
            api.update_schedule_status("DONE", think_time_ms=think_time(1, 2)),
            api.search_users(think_time_ms=think_time(1, 2)),
            api.delete_schedule(),
            api.logout(),
        ],
        pacing_ms=think_time(2, 2),
    )


def power_user(schedules: int = 3, ai_timeout_s: float = api.DEFAULT_AI_TIMEOUT_S) -> Journey:
    """Bulk schedule creation followed by AI arrangement."""
    creates = [
        api.create_schedule(f"Power Task {i + 1}", start_in_minutes=i * 30, length_minutes=30,
                            time_range="MINUTE_30_TO_60", urgent_chance=0.2)
        for i in range(schedules)
    ]
    return Journey(
        name="power_user",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_profile(),
            api.get_schedules_by_date(think_time_ms=think_time(2, 3)),
            *creates,
            api.ai_arrangement(timeout_s=ai_timeout_s, think_time_ms=think_time(2, 3)),
            api.get_schedules(),
            *[api.delete_created_schedule(i + 1) for i in range(schedules)],
            api.logout(),
        ],
        pacing_ms=think_time(2, 2),
    )


def breakpoint_journeys() -> JourneySet:
    """Half the iterations read only, half also create and delete a schedule."""
    reads = [api.signup(), api.get_profile(), api.get_schedules_by_date()]
    return JourneySet([
        Journey(name="core_read", steps=list(reads), weight=1),
        Journey(
            name="core_write",
            steps=[*reads, api.create_schedule("BP", length_minutes=30, time_range="MINUTE_30_TO_60",
                                               focus_level=3), api.delete_schedule()],
            weight=1,
        ),
    ])


def spike_journeys() -> JourneySet:
    """Mostly main-screen reads; one iteration in five also writes."""
    pause = think_time(0.1, 0.1)
    return JourneySet([
        Journey(
            name="spike_read",
            steps=[api.signup(think_time_ms=pause), api.get_profile(),
                   api.get_schedules_by_date(think_time_ms=pause), api.logout()],
            weight=4,
            pacing_ms=think_time(0.2, 0.2),
        ),
        Journey(
            name="spike_write",
            steps=[
                api.signup(think_time_ms=pause),
                api.get_profile(),
                api.get_schedules_by_date(think_time_ms=pause),
                api.create_schedule("Spike", length_minutes=30, time_range="MINUTE_30_TO_60",
                                    focus_level=3, think_time_ms=pause),
                api.delete_schedule(),
                api.logout(),
            ],
            weight=1,
            pacing_ms=think_time(0.2, 0.2),
        ),
    ])


def mix_builders(ai_timeout_s: float = api.DEFAULT_AI_TIMEOUT_S) -> Dict[str, Callable[[], Journey]]:
    """Journey builder per scenario-mix user type."""
    return {
        "new_users": new_user,
        "returning_users": returning_user,
        "active_users": active_user,
        "power_users": partial(power_user, ai_timeout_s=ai_timeout_s),
    }


def mixed_journeys(ai_timeout_s: float = api.DEFAULT_AI_TIMEOUT_S) -> JourneySet:
    """All four user types in one population, weighted by their traffic share."""
    journeys = []
    for scenario, build in mix_builders(ai_timeout_s).items():
        journey = build()
        journeys.append(
            Journey(name=journey.name, steps=journey.steps, weight=MIX_WEIGHTS[scenario], pacing_ms=journey.pacing_ms)
        )
    return JourneySet(journeys)


def journeys_for_profile(name: str, ai_timeout_s: float = api.DEFAULT_AI_TIMEOUT_S) -> JourneySet:
    """The journey set a single-population profile runs."""
    builders = {
        "smoke": lambda: JourneySet([full_flow()]),
        "load": lambda: JourneySet([full_flow()]),
        "stress": lambda: JourneySet([stress_flow()]),
        "spike": spike_journeys,
        "soak": lambda: mixed_journeys(ai_timeout_s),
        "breakpoint": breakpoint_journeys,
    }
    if name not in builders:
        raise ConfigurationError(f"No journeys registered for profile '{name}'")
    return builders[name]()


def build_scenarios(
    profile: LoadProfile,
    options: Optional[RunOptions] = None,
    settings: Optional[TargetSettings] = None,
) -> List[Scenario]:
    """Scenarios for a named profile: one population, or one per user type for the mix."""
    options = options or profile.options
    ai_timeout_s = settings.ai_timeout_s if settings is not None else api.DEFAULT_AI_TIMEOUT_S
    if profile.is_mix:
        builders = mix_builders(ai_timeout_s)
        scenarios = []
        for name, stages in profile.scenario_stages.items():
            if name not in builders:
                raise ConfigurationError(f"No journey for scenario '{name}'")
            scenarios.append(
                Scenario(name=name, journeys=JourneySet([builders[name]()]), profile=stages, options=options)
            )
        return scenarios

    journeys = journeys_for_profile(profile.name, ai_timeout_s)
    return [Scenario(name=DEFAULT_SCENARIO, journeys=journeys, profile=profile.stages, options=options)]
