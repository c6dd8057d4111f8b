"""End-to-end load tests against an in-memory schedule backend."""

import asyncio
from unittest.mock import MagicMock

import pytest

from loadforge.core.config import RunOptions, StageProfile
from loadforge.core.engine import LoadTest, Scenario
from loadforge.core.journey import Journey, JourneySet
from loadforge.core.observers import LoadTestObserver
from loadforge.core.thresholds import ThresholdStatus
from loadforge.profiles import SCENARIO_MIX
from loadforge.scenarios import build_scenarios, health_check
from loadforge.scenarios.journeys import full_flow
from loadforge.utils.errors import ConfigurationError, SetupFailure

from tests.helpers import FakeTransport, json_response, make_step, schedule_api_routes


def ramp(duration_ms=300, target=3):
    return StageProfile.from_stages([
        {"duration": duration_ms // 3, "target": target},
        {"duration": duration_ms // 3, "target": target},
        {"duration": duration_ms // 3, "target": 0},
    ])


def quick_options(**overrides):
    values = dict(tick_interval_s=0.01, graceful_stop_s=2.0, graceful_ramp_down_s=2.0,
                  step_timeout_s=1.0, think_time_scale=0, seed=7)
    values.update(overrides)
    return RunOptions(**values)


@pytest.mark.integration
class TestLoadTestLifecycle:

    def test_requires_scenarios(self):
        with pytest.raises(ConfigurationError):
            LoadTest("empty", [])

    def test_rejects_duplicate_scenario_names(self, simple_journeys):
        scenario = Scenario(name="a", journeys=simple_journeys, profile=ramp())
        with pytest.raises(ConfigurationError):
            LoadTest("dup", [scenario, scenario])

    @pytest.mark.asyncio
    async def test_setup_failure_stops_before_any_user(self):
        transport = FakeTransport({**schedule_api_routes(), ("GET", "/"): json_response(503)})
        observer = MagicMock(spec=LoadTestObserver)
        test = LoadTest(
            "smoke",
            [Scenario(name="default", journeys=JourneySet([full_flow()]), profile=ramp())],
            options=quick_options(),
            transport=transport,
            setup=health_check,
            observer=observer,
        )

        with pytest.raises(SetupFailure):
            await test.arun()

        assert transport.paths() == ["/"]
        observer.on_test_start.assert_not_called()
        observer.on_vu_spawned.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_setup_error_wrapped(self):
        async def broken_setup(transport):
            raise KeyError("token")

        test = LoadTest("t", [Scenario(name="default", journeys=JourneySet([full_flow()]), profile=ramp())],
                        transport=FakeTransport(), setup=broken_setup)

        with pytest.raises(SetupFailure, match="Setup failed"):
            await test.arun()

    @pytest.mark.asyncio
    async def test_injected_transport_left_open(self, simple_journeys):
        transport = FakeTransport()
        test = LoadTest("t", [Scenario(name="default", journeys=simple_journeys, profile=ramp(60, 1))],
                        options=quick_options(), transport=transport)

        await test.arun()

        assert not transport.closed


@pytest.mark.integration
class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_full_flow_against_healthy_backend(self):
        transport = FakeTransport(schedule_api_routes(), delay_s=0.002)
        observer = MagicMock(spec=LoadTestObserver)
        test = LoadTest(
            "smoke",
            [Scenario(name="default", journeys=JourneySet([full_flow()]), profile=ramp())],
            thresholds={"step_failed": ["rate<0.01"], "step_duration": ["p(95)<2000"],
                        "journey_missing_failed": ["rate<0.5"]},
            options=quick_options(),
            transport=transport,
            setup=health_check,
            observer=observer,
        )

        report = await test.arun()

        assert report.total_iterations > 0
        assert report.failed == 0
        assert report.aborted == 0
        assert report.success_rate == 1.0
        assert 1 <= report.max_vus <= 3
        assert [t.status for t in report.thresholds] == [
            ThresholdStatus.PASSED, ThresholdStatus.PASSED, ThresholdStatus.NO_DATA,
        ]
        assert not report.passed
        assert {s.label for s in report.steps} >= {"signup", "create_schedule", "logout"}
        assert report.journeys[0].name == "full_flow"
        assert "step_duration{scenario:default}" not in test.sink.names()

        info = observer.on_test_start.call_args.kwargs["test_info"]
        assert info["scenarios"] == ["default"]
        assert info["max_vus"] == 3
        summary = observer.on_test_finish.call_args.kwargs["summary"]
        assert summary["total_iterations"] == report.total_iterations

    @pytest.mark.asyncio
    async def test_report_keeps_step_labels_apart_from_journeys(self):
        journeys = JourneySet([Journey(name="browse", steps=[make_step("journey_search"), make_step("open")])])
        test = LoadTest("t", [Scenario(name="default", journeys=journeys, profile=ramp(150, 1))],
                        options=quick_options(), transport=FakeTransport())

        report = await test.arun()

        assert sorted(s.label for s in report.steps) == ["journey_search", "open"]
        assert [j.name for j in report.journeys] == ["browse"]

    @pytest.mark.asyncio
    async def test_backend_errors_fail_thresholds(self):
        routes = schedule_api_routes()
        routes[("POST", "/day-plan/11/schedule")] = json_response(500)
        transport = FakeTransport(routes)
        test = LoadTest(
            "stress",
            [Scenario(name="default", journeys=JourneySet([full_flow()]), profile=ramp())],
            thresholds={"journey_failed": ["rate<0.05"]},
            options=quick_options(),
            transport=transport,
        )

        report = await test.arun()

        assert report.succeeded == 0
        assert report.failed == report.total_iterations - report.aborted
        assert report.thresholds[0].status is ThresholdStatus.FAILED
        assert not report.passed
        assert not any(path.startswith("/schedule/") for path in transport.paths())
        assert "/token" in transport.paths("DELETE")

    @pytest.mark.asyncio
    async def test_stuck_steps_are_aborted_at_drain(self):
        journeys = JourneySet([Journey(name="stuck", steps=[make_step("hang", delay_s=30)])])
        test = LoadTest(
            "drain",
            [Scenario(name="default", journeys=journeys, profile=ramp(60, 2))],
            options=quick_options(graceful_stop_s=0.05, step_timeout_s=60),
            transport=FakeTransport(),
        )

        report = await asyncio.wait_for(test.arun(), timeout=10)

        assert report.aborted == 2
        assert report.succeeded == 0
        assert report.journeys[0].aborted == 2

    @pytest.mark.asyncio
    async def test_scenario_mix_runs_side_by_side(self):
        profile = SCENARIO_MIX.scaled(0.0005)
        options = quick_options(graceful_stop_s=5.0)
        transport = FakeTransport(schedule_api_routes())
        test = LoadTest(
            profile.name,
            build_scenarios(profile, options),
            thresholds=profile.thresholds,
            options=options,
            transport=transport,
        )

        report = await asyncio.wait_for(test.arun(), timeout=30)

        assert report.scenarios == ["new_users", "returning_users", "active_users", "power_users"]
        assert {j.name for j in report.journeys} == {"new_user", "returning_user", "active_user", "power_user"}
        assert report.failed == 0
        names = test.sink.names()
        assert "step_duration{scenario:returning_users}" in names
        assert "step_failed{scenario:returning_users}" in names
        assert sum(s.max_active for s in test.schedulers) == report.max_vus
