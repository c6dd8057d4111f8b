"""Unit tests for lifecycle observers."""

import logging
from unittest.mock import MagicMock

import pytest

from loadforge.core.observers import (
    CompositeLoadTestObserver,
    LoadTestObserver,
    LoggingObserver,
    NullLoadTestObserver,
)


@pytest.mark.unit
class TestCompositeObserver:

    def test_fans_out_to_every_observer(self):
        first = MagicMock(spec=LoadTestObserver)
        second = MagicMock(spec=LoadTestObserver)
        composite = CompositeLoadTestObserver([first, None, second])

        composite.on_vu_spawned(test_name="t", scenario="default", vu_id=3)

        assert len(composite.observers) == 2
        first.on_vu_spawned.assert_called_once_with(test_name="t", scenario="default", vu_id=3)
        second.on_vu_spawned.assert_called_once_with(test_name="t", scenario="default", vu_id=3)

    def test_failing_observer_does_not_block_others(self, caplog):
        broken = MagicMock(spec=LoadTestObserver)
        broken.on_test_finish.side_effect = RuntimeError("disk full")
        healthy = MagicMock(spec=LoadTestObserver)
        composite = CompositeLoadTestObserver([broken, healthy])

        with caplog.at_level(logging.ERROR):
            composite.on_test_finish(test_name="t", summary={})

        healthy.on_test_finish.assert_called_once()
        assert "on_test_finish failed: disk full" in caplog.text

    def test_null_observer_accepts_everything(self):
        observer = NullLoadTestObserver()
        observer.on_test_start(test_name="t", test_info={})
        observer.on_draining(test_name="t", scenario="s", in_flight=0)


@pytest.mark.unit
class TestLoggingObserver:

    def test_narrates_lifecycle(self, caplog):
        observer = LoggingObserver(logging.getLogger("loadforge.test"))

        with caplog.at_level(logging.INFO, logger="loadforge.test"):
            observer.on_test_start("smoke", {"base_url": "http://api.test", "scenarios": ["default"], "max_vus": 5})
            observer.on_stage_transition("smoke", "default", 0, 5)
            observer.on_draining("smoke", "default", 2)
            observer.on_test_finish("smoke", {"total_iterations": 10, "success_rate": 0.9,
                                              "thresholds_passed": 3, "thresholds_total": 4})

        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            "Test 'smoke' started against http://api.test (scenarios: default, max VUs: 5)",
            "[default] stage 1 -> target 5 VUs",
            "[default] draining, 2 VUs still running",
            "Test 'smoke' finished: 10 iterations, success rate 90.0%, thresholds 3/4 passed",
        ]

    def test_vu_events_logged_at_debug(self, caplog):
        observer = LoggingObserver(logging.getLogger("loadforge.test"))

        with caplog.at_level(logging.INFO, logger="loadforge.test"):
            observer.on_vu_spawned("smoke", "default", 1)
            observer.on_vu_retired("smoke", "default", 1)

        assert caplog.records == []
