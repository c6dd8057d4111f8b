"""Observer hooks for load test lifecycle events."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class LoadTestObserver:
    """Base observer with no-op hooks for load test lifecycle events."""

    def on_test_start(
        self,
        test_name: str,
        test_info: Dict[str, Any],
    ) -> None:
        """Called once after setup succeeded, before any virtual user starts."""

    def on_stage_transition(
        self,
        test_name: str,
        scenario: str,
        stage_index: int,
        target: int,
    ) -> None:
        """Called when a scenario's scheduler enters a new stage."""

    def on_vu_spawned(
        self,
        test_name: str,
        scenario: str,
        vu_id: int,
    ) -> None:
        """Called when a virtual user starts."""

    def on_vu_retired(
        self,
        test_name: str,
        scenario: str,
        vu_id: int,
    ) -> None:
        """Called when a virtual user is asked to stop after its current iteration."""

    def on_iteration_complete(
        self,
        test_name: str,
        scenario: str,
        result: Any,
    ) -> None:
        """Called after every iteration, whatever its outcome."""

    def on_draining(
        self,
        test_name: str,
        scenario: str,
        in_flight: int,
    ) -> None:
        """Called when a scenario stops spawning and waits for in-flight iterations."""

    def on_test_finish(
        self,
        test_name: str,
        summary: Dict[str, Any],
    ) -> None:
        """Called after the report has been built."""


class NullLoadTestObserver(LoadTestObserver):
    """Default observer that ignores all notifications."""

    pass


class CompositeLoadTestObserver(LoadTestObserver):
    """Fan-out observer that notifies multiple observers."""

    def __init__(self, observers: Optional[Sequence[LoadTestObserver]] = None) -> None:
        self._observers: List[LoadTestObserver] = []
        if observers:
            for observer in observers:
                self.add_observer(observer)

    def add_observer(self, observer: Optional[LoadTestObserver]) -> None:
        if observer is None:
            return
        self._observers.append(observer)

    @property
    def observers(self) -> List[LoadTestObserver]:
        return list(self._observers)

    def _call(self, method: str, **kwargs: Any) -> None:
        for observer in list(self._observers):
            callback = getattr(observer, method, None)
            if callable(callback):
                try:
                    callback(**kwargs)
                except Exception as e:
                    logger.error(f"Observer callback {method} failed: {e}")
                    continue

    def on_test_start(self, **kwargs: Any) -> None:
        self._call("on_test_start", **kwargs)

    def on_stage_transition(self, **kwargs: Any) -> None:
        self._call("on_stage_transition", **kwargs)

    def on_vu_spawned(self, **kwargs: Any) -> None:
        self._call("on_vu_spawned", **kwargs)

    def on_vu_retired(self, **kwargs: Any) -> None:
        self._call("on_vu_retired", **kwargs)

    def on_iteration_complete(self, **kwargs: Any) -> None:
        self._call("on_iteration_complete", **kwargs)

    def on_draining(self, **kwargs: Any) -> None:
        self._call("on_draining", **kwargs)

    def on_test_finish(self, **kwargs: Any) -> None:
        self._call("on_test_finish", **kwargs)


class LoggingObserver(LoadTestObserver):
    """Narrates the lifecycle through ``logging``."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def on_test_start(self, test_name: str, test_info: Dict[str, Any]) -> None:
        scenarios = ", ".join(test_info.get("scenarios", []))
        self.log.info(
            f"Test '{test_name}' started against {test_info.get('base_url', '?')} "
            f"(scenarios: {scenarios}, max VUs: {test_info.get('max_vus', '?')})"
        )

    def on_stage_transition(self, test_name: str, scenario: str, stage_index: int, target: int) -> None:
        self.log.info(f"[{scenario}] stage {stage_index + 1} -> target {target} VUs")

    def on_vu_spawned(self, test_name: str, scenario: str, vu_id: int) -> None:
        self.log.debug(f"[{scenario}] VU {vu_id} spawned")

    def on_vu_retired(self, test_name: str, scenario: str, vu_id: int) -> None:
        self.log.debug(f"[{scenario}] VU {vu_id} retiring")

    def on_draining(self, test_name: str, scenario: str, in_flight: int) -> None:
        self.log.info(f"[{scenario}] draining, {in_flight} VUs still running")

    def on_test_finish(self, test_name: str, summary: Dict[str, Any]) -> None:
        self.log.info(
            f"Test '{test_name}' finished: {summary.get('total_iterations', 0)} iterations, "
            f"success rate {summary.get('success_rate', 0.0):.1%}, "
            f"thresholds {summary.get('thresholds_passed', 0)}/{summary.get('thresholds_total', 0)} passed"
        )
