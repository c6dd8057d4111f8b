"""Main LoadTest class: runs scenarios, evaluates thresholds, builds the report."""

from __future__ import annotations

import asyncio
import logging
import random
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .config import RunOptions, StageProfile, TargetSettings
from .journey import JourneySet
from .metrics import MetricSink
from .observers import CompositeLoadTestObserver, LoadTestObserver, NullLoadTestObserver
from .report import ReportBuilder, ReportSummary
from .runner import VirtualUserRunner
from .stages import StageScheduler
from .thresholds import ThresholdEvaluator, ThresholdRule, rules_from_mapping
from ..utils.errors import ConfigurationError, SetupFailure

logger = logging.getLogger(__name__)


SetupHook = Callable[[Any], Awaitable[Any]]
ThresholdSpec = Union[Sequence[ThresholdRule], Mapping[str, Union[str, Sequence[str]]]]


@dataclass
class Scenario:
    """One population of virtual users: a journey mix following its own stage profile."""

    name: str
    journeys: JourneySet
    profile: StageProfile
    options: Optional[RunOptions] = None


class LoadTest:
    """
    Runs one or more scenarios concurrently against a shared metric sink.
    """

    def __init__(
        self,
        name: str,
        scenarios: Sequence[Scenario],
        thresholds: ThresholdSpec = (),
        *,
        options: Optional[RunOptions] = None,
        settings: Optional[TargetSettings] = None,
        transport: Any = None,
        setup: Optional[SetupHook] = None,
        observer: Optional[LoadTestObserver] = None,
    ):
        if not scenarios:
            raise ConfigurationError("A load test needs at least one scenario")
        names = [s.name for s in scenarios]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Scenario names must be unique, got {names}")

        self.name = name
        self.scenarios = list(scenarios)
        if isinstance(thresholds, Mapping):
            self.thresholds = rules_from_mapping(thresholds)
        else:
            self.thresholds = list(thresholds)
        self.options = options or RunOptions()
        self.settings = settings
        self.transport = transport
        self.setup = setup

        base_observer = observer or NullLoadTestObserver()
        self.observer = CompositeLoadTestObserver([base_observer])

        self.sink: Optional[MetricSink] = None
        self.setup_data: Any = None
        self.schedulers: List[StageScheduler] = []

    def _notify_observer(self, method: str, **payload: Any) -> None:
        """Best-effort observer notification."""
        callback = getattr(self.observer, method, None)
        if callable(callback):
            try:
                callback(test_name=self.name, **payload)
            except Exception as e:
                logger.error(f"Observer callback {method} failed: {e}")

    def run(self) -> ReportSummary:
        """
        Run the load test synchronously.

        Returns:
            ReportSummary with iteration counts, latencies and threshold results

        Raises:
            SetupFailure: if the setup hook failed; no virtual user was started.
        """
        if sys.platform == 'win32':
            asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
        return asyncio.run(self.arun())

    async def arun(self) -> ReportSummary:
        """Run the load test asynchronously."""
        self.sink = MetricSink()
        transport = self.transport
        owns_transport = transport is None
        if owns_transport:
            from ..client import HttpTransport

            transport = HttpTransport(self.settings or TargetSettings())

        try:
            self.setup_data = await self._run_setup(transport)

            self.schedulers = [
                self._build_scheduler(index, scenario, transport)
                for index, scenario in enumerate(self.scenarios)
            ]
            self._notify_observer("on_test_start", test_info=self._build_test_info())

            started_at = datetime.now()
            await asyncio.gather(*(scheduler.run() for scheduler in self.schedulers))
            finished_at = datetime.now()
        finally:
            if owns_transport:
                await transport.aclose()

        threshold_results = ThresholdEvaluator().evaluate(self.sink, self.thresholds)
        report = ReportBuilder().build(
            self.sink.snapshot_all(),
            threshold_results,
            test_name=self.name,
            started_at=started_at,
            finished_at=finished_at,
            scenarios=[s.name for s in self.scenarios],
            journey_names=self._journey_names(),
            step_labels=self._step_labels(),
        )
        report.max_vus = max(report.max_vus, sum(s.max_active for s in self.schedulers))

        self._notify_observer("on_test_finish", summary=report.to_dict())
        return report

    async def _run_setup(self, transport: Any) -> Any:
        if self.setup is None:
            return None
        try:
            return await self.setup(transport)
        except SetupFailure:
            raise
        except Exception as e:
            raise SetupFailure(f"Setup failed: {e}") from e

    def _build_scheduler(self, index: int, scenario: Scenario, transport: Any) -> StageScheduler:
        options = scenario.options or self.options
        sink = self.sink

        def runner_factory(vu_id: int) -> VirtualUserRunner:
            rng = random.Random(hash((options.seed, index, vu_id))) if options.seed is not None else None
            return VirtualUserRunner(
                vu_id,
                scenario.journeys,
                sink,
                transport=transport,
                options=options,
                rng=rng,
                observer=self.observer,
                scenario=scenario.name,
                test_name=self.name,
            )

        return StageScheduler(
            scenario.profile,
            runner_factory,
            options=options,
            sink=sink,
            observer=self.observer,
            scenario=scenario.name,
            test_name=self.name,
        )

    def _journey_names(self) -> List[str]:
        names: List[str] = []
        for scenario in self.scenarios:
            for name in scenario.journeys.names:
                if name not in names:
                    names.append(name)
        return names

    def _step_labels(self) -> List[str]:
        labels: List[str] = []
        for scenario in self.scenarios:
            for journey in scenario.journeys:
                for label in journey.labels:
                    if label not in labels:
                        labels.append(label)
        return labels

    def _build_test_info(self) -> Dict[str, Any]:
        return {
            "base_url": getattr(self.settings, "base_url", None),
            "scenarios": [s.name for s in self.scenarios],
            "max_vus": sum(s.profile.max_target for s in self.scenarios),
            "duration_ms": max(s.profile.total_duration_ms for s in self.scenarios),
            "thresholds": len(self.thresholds),
        }
