"""
Example: a hand-built journey, ramp and threshold set run through LoadTest.
"""

from dotenv import load_dotenv

from loadforge import Journey, JourneySet, LoadTest, RunOptions, Scenario, StageProfile, TargetSettings
from loadforge.scenarios import health_check
from loadforge.scenarios import schedule_api as api
from loadforge.core.journey import think_time

# Load LOADFORGE_* variables from .env
load_dotenv()


def browse_only() -> Journey:
    return Journey(
        name="browse_only",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_schedules_by_date(think_time_ms=think_time(1, 3)),
            api.get_notifications(),
            api.logout(),
        ],
        weight=3,
    )


def plan_the_day() -> Journey:
    return Journey(
        name="plan_the_day",
        steps=[
            api.signup(think_time_ms=think_time(1, 2)),
            api.get_schedules_by_date(think_time_ms=think_time(1, 2)),
            api.create_schedule("Example", focus_level=2, think_time_ms=think_time(1, 2)),
            api.update_schedule_status("DONE"),
            api.delete_schedule(),
            api.logout(),
        ],
        weight=1,
    )


def main():
    profile = StageProfile.from_stages([
        {"duration": "20s", "target": 5},
        {"duration": "40s", "target": 5},
        {"duration": "10s", "target": 0},
    ])

    test = LoadTest(
        "example",
        [Scenario("default", JourneySet([browse_only(), plan_the_day()]), profile)],
        thresholds={
            "step_duration": ["p(95)<1500"],
            "create_schedule_duration": ["p(99)<3000"],
            "journey_failed": ["rate<0.05"],
        },
        options=RunOptions(tick_interval_s=0.5, seed=1),
        settings=TargetSettings(),
        setup=health_check,
    )

    report = test.run()
    report.print_summary()
    print(f"Saved to {report.save_json(output_dir='loadforge_reports')}")


if __name__ == "__main__":
    main()
