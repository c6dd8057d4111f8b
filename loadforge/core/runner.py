"""Virtual user runner: the unit of concurrency of a load test."""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

from .config import RunOptions
from .journey import (
    Context,
    IterationOutcome,
    IterationResult,
    Journey,
    JourneySet,
    Step,
    StepResult,
)
from .metrics import (
    ITERATIONS,
    ITERATIONS_ABORTED,
    JOURNEY_DURATION,
    JOURNEY_FAILED,
    STEP_DURATION,
    STEP_FAILED,
    MetricSink,
    journey_aborted_name,
    journey_duration_name,
    journey_failed_name,
    step_duration_name,
    step_failed_name,
    tagged_name,
)
from .observers import LoadTestObserver, NullLoadTestObserver

logger = logging.getLogger(__name__)


SleepFunc = Callable[[float], Awaitable[Any]]

DEFAULT_SCENARIO = "default"


class VirtualUserRunner:
    """Repeatedly executes journeys until asked to retire.

    Each iteration picks a journey by weight, builds a fresh Context and runs
    the steps strictly in order. Suspension happens only inside step actions
    (the external call) and during think time / pacing pauses.
    """

    def __init__(
        self,
        vu_id: int,
        journeys: JourneySet,
        sink: MetricSink,
        *,
        transport: Any = None,
        options: Optional[RunOptions] = None,
        rng: Optional[random.Random] = None,
        observer: Optional[LoadTestObserver] = None,
        scenario: str = DEFAULT_SCENARIO,
        test_name: str = "",
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.vu_id = vu_id
        self.journeys = journeys
        self.sink = sink
        self.transport = transport
        self.options = options or RunOptions()
        self.rng = rng or random.Random()
        self.observer = observer or NullLoadTestObserver()
        self.scenario = scenario
        self.test_name = test_name
        self._sleep = sleep

        self.iterations = 0
        self.current_journey: Optional[Journey] = None
        self.in_iteration = False
        self._retiring = False

    @property
    def retiring(self) -> bool:
        return self._retiring

    def retire(self) -> None:
        """Stop after the current iteration."""
        self._retiring = True

    async def run(self) -> None:
        while not self._retiring:
            try:
                await self.run_iteration()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Iteration-level errors never leave the runner
                logger.exception(f"VU {self.vu_id}: iteration crashed")
                await self._sleep(0)
                continue
            if self._retiring:
                break
            await self._pause(self.current_journey.pacing_ms)
            # Hand control back to the scheduler even when pacing is disabled
            await asyncio.sleep(0)

    async def run_iteration(self) -> IterationResult:
        journey = self.journeys.select(self.rng)
        self.current_journey = journey
        self.iterations += 1
        context = Context(
            vu_id=self.vu_id,
            iteration=self.iterations,
            journey=journey.name,
            transport=self.transport,
            rng=self.rng,
        )

        started = time.perf_counter()
        steps = []
        failed = False
        self.in_iteration = True
        try:
            last_index = len(journey.steps) - 1
            for index, step in enumerate(journey.steps):
                if failed and not step.best_effort:
                    continue
                if step.best_effort and not step.reachable(context):
                    continue

                result = await self._run_step(step, context)
                steps.append((step.label, result))
                self._record_step(step, result)

                if not result.success and not step.best_effort:
                    failed = True
                    logger.debug(f"VU {self.vu_id}: {journey.name}/{step.label} failed: {result.error_info}")
                if not failed and index < last_index:
                    await self._pause(step.think_time_ms)
        except asyncio.CancelledError:
            aborted = IterationResult(
                vu_id=self.vu_id,
                journey=journey.name,
                outcome=IterationOutcome.ABORTED,
                duration_ms=_elapsed_ms(started),
                steps=steps,
            )
            self._record_aborted(aborted)
            self._notify(aborted)
            raise
        finally:
            self.in_iteration = False

        outcome = IterationOutcome.FAILED if failed else IterationOutcome.SUCCEEDED
        result = IterationResult(
            vu_id=self.vu_id,
            journey=journey.name,
            outcome=outcome,
            duration_ms=_elapsed_ms(started),
            steps=steps,
        )
        self._record_iteration(result)
        self._notify(result)
        return result

    async def _run_step(self, step: Step, context: Context) -> StepResult:
        timeout = step.timeout_s or self.options.step_timeout_s
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(step.action(context), timeout=timeout)
        except asyncio.TimeoutError:
            result = StepResult.failed("timeout")
        except Exception as e:
            result = StepResult.failed(str(e) or type(e).__name__)

        if result is None:
            result = StepResult.ok()
        elif not isinstance(result, StepResult):
            result = StepResult.failed(f"step returned {type(result).__name__}, expected StepResult")
        if result.duration_ms is None:
            result.duration_ms = _elapsed_ms(started)
        return result

    async def _pause(self, range_ms) -> None:
        low, high = range_ms
        if high <= 0 or self.options.think_time_scale <= 0:
            return
        delay_s = self.rng.uniform(low, high) * self.options.think_time_scale / 1000.0
        if delay_s > 0:
            await self._sleep(delay_s)

    def _record_step(self, step: Step, result: StepResult) -> None:
        self.sink.record(step_duration_name(step.label), result.duration_ms)
        self.sink.record(step_failed_name(step.label), not result.success)
        self.sink.record(STEP_DURATION, result.duration_ms)
        self.sink.record(STEP_FAILED, not result.success)
        if self.scenario != DEFAULT_SCENARIO:
            self.sink.record(tagged_name(STEP_DURATION, scenario=self.scenario), result.duration_ms)
            self.sink.record(tagged_name(STEP_FAILED, scenario=self.scenario), not result.success)

    def _record_iteration(self, result: IterationResult) -> None:
        failed = result.outcome is IterationOutcome.FAILED
        self.sink.add(ITERATIONS)
        self.sink.record(JOURNEY_DURATION, result.duration_ms)
        self.sink.record(JOURNEY_FAILED, failed)
        self.sink.record(journey_duration_name(result.journey), result.duration_ms)
        self.sink.record(journey_failed_name(result.journey), failed)

    def _record_aborted(self, result: IterationResult) -> None:
        self.sink.add(ITERATIONS_ABORTED)
        self.sink.add(journey_aborted_name(result.journey))
        if self.options.aborted_counts_as_failure:
            self.sink.record(JOURNEY_FAILED, True)
            self.sink.record(journey_failed_name(result.journey), True)

    def _notify(self, result: IterationResult) -> None:
        try:
            self.observer.on_iteration_complete(
                test_name=self.test_name,
                scenario=self.scenario,
                result=result,
            )
        except Exception as e:
            logger.error(f"Observer callback on_iteration_complete failed: {e}")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
