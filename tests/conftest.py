import pytest

from loadforge.core.config import RunOptions
from loadforge.core.journey import Journey, JourneySet
from loadforge.core.metrics import MetricSink

from tests.helpers import FakeTransport, make_step, schedule_api_routes


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests wiring several components together")


@pytest.fixture
def sink():
    return MetricSink()


@pytest.fixture
def fast_options():
    return RunOptions(tick_interval_s=0.01, graceful_stop_s=1.0, graceful_ramp_down_s=1.0,
                      step_timeout_s=1.0, think_time_scale=0)


@pytest.fixture
def fake_transport():
    return FakeTransport(schedule_api_routes())


@pytest.fixture
def simple_journeys():
    return JourneySet([Journey(name="simple", steps=[make_step("a"), make_step("b")])])
