"""Stage scheduler: tracks a concurrency target over time with virtual users."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import RunOptions, StageProfile
from .metrics import VUS, MetricSink
from .observers import LoadTestObserver, NullLoadTestObserver
from .runner import DEFAULT_SCENARIO, VirtualUserRunner

logger = logging.getLogger(__name__)


RunnerFactory = Callable[[int], VirtualUserRunner]


class SchedulerState(str, Enum):
    NOT_STARTED = "not_started"
    RAMPING = "ramping"
    DRAINING = "draining"
    FINISHED = "finished"


@dataclass
class _VirtualUser:
    runner: VirtualUserRunner
    task: "asyncio.Task[None]"
    retire_deadline: Optional[float] = None


class StageScheduler:
    """Spawns and retires virtual users so that their count follows a stage profile.

    The target is recomputed every ``tick_interval_s``. Scale-down retires the
    most recently spawned users, which finish their current iteration; users
    still busy after ``graceful_ramp_down_s`` are cancelled. When the profile
    ends the scheduler drains: it stops spawning, retires everyone and waits
    up to ``graceful_stop_s`` before cancelling what is left.
    """

    def __init__(
        self,
        profile: StageProfile,
        runner_factory: RunnerFactory,
        *,
        options: Optional[RunOptions] = None,
        sink: Optional[MetricSink] = None,
        observer: Optional[LoadTestObserver] = None,
        scenario: str = DEFAULT_SCENARIO,
        test_name: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.profile = profile
        self.runner_factory = runner_factory
        self.options = options or RunOptions()
        self.sink = sink
        self.observer = observer or NullLoadTestObserver()
        self.scenario = scenario
        self.test_name = test_name
        self._clock = clock
        self._sleep = sleep

        self.state = SchedulerState.NOT_STARTED
        self.stage_index: Optional[int] = None
        self.max_active = 0
        self._next_vu_id = 1
        self._active: List[_VirtualUser] = []
        self._retiring: List[_VirtualUser] = []
        self._started_at: Optional[float] = None

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def running_count(self) -> int:
        """Users whose task has not ended yet, retiring ones included."""
        return sum(1 for vu in self._active + self._retiring if not vu.task.done())

    @property
    def spawned_count(self) -> int:
        return self._next_vu_id - 1

    def elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return (self._clock() - self._started_at) * 1000.0

    async def run(self) -> None:
        """Drive the profile to its end, then drain."""
        if self.state is not SchedulerState.NOT_STARTED:
            raise RuntimeError(f"Scheduler for '{self.scenario}' already ran")

        self._started_at = self._clock()
        self.state = SchedulerState.RAMPING
        total_ms = self.profile.total_duration_ms
        tick_s = self.options.tick_interval_s

        try:
            while True:
                elapsed = self.elapsed_ms()
                if elapsed >= total_ms:
                    break
                self._enter_stage(self.profile.stage_index_at(elapsed))
                self.reconcile(self.profile.target_at(elapsed))
                await self._sleep(min(tick_s, (total_ms - elapsed) / 1000.0))

            # No spawning once the profile has ended
            await self._drain()
        except asyncio.CancelledError:
            await self._cancel_all()
            raise
        finally:
            self.state = SchedulerState.FINISHED

    def _enter_stage(self, index: int) -> None:
        if index == self.stage_index:
            return
        self.stage_index = index
        target = self.profile.stages[index].target
        logger.debug(f"[{self.scenario}] entering stage {index + 1}/{len(self.profile.stages)}")
        self._notify("on_stage_transition", stage_index=index, target=target)

    def reconcile(self, target: int) -> None:
        """Spawn or retire users so that the active count matches ``target``."""
        self._reap()
        now = self._clock()

        while len(self._active) < target:
            self._spawn()
        while len(self._active) > target:
            vu = self._active.pop()
            vu.runner.retire()
            vu.retire_deadline = now + self.options.graceful_ramp_down_s
            self._retiring.append(vu)
            self._notify("on_vu_retired", vu_id=vu.runner.vu_id)

        for vu in self._retiring:
            if vu.retire_deadline is not None and now >= vu.retire_deadline and not vu.task.done():
                logger.warning(
                    f"[{self.scenario}] VU {vu.runner.vu_id} exceeded the ramp-down grace period, cancelling"
                )
                vu.task.cancel()

        self.max_active = max(self.max_active, len(self._active))
        if self.sink is not None:
            self.sink.record(VUS, len(self._active))

    def _spawn(self) -> None:
        vu_id = self._next_vu_id
        self._next_vu_id += 1
        runner = self.runner_factory(vu_id)
        task = asyncio.create_task(runner.run(), name=f"{self.scenario}-vu-{vu_id}")
        self._active.append(_VirtualUser(runner=runner, task=task))
        self._notify("on_vu_spawned", vu_id=vu_id)

    def _reap(self) -> None:
        """Drop retired users whose task ended; surface unexpected crashes in the log."""
        still_running = []
        for vu in self._retiring:
            if vu.task.done():
                self._log_task_error(vu)
            else:
                still_running.append(vu)
        self._retiring = still_running

        alive = []
        for vu in self._active:
            if vu.task.done():
                self._log_task_error(vu)
            else:
                alive.append(vu)
        self._active = alive

    def _log_task_error(self, vu: _VirtualUser) -> None:
        if vu.task.cancelled():
            return
        error = vu.task.exception()
        if error is not None:
            logger.error(f"[{self.scenario}] VU {vu.runner.vu_id} stopped with an error: {error}")

    async def _drain(self) -> None:
        self.state = SchedulerState.DRAINING
        for vu in self._active:
            vu.runner.retire()
            self._notify("on_vu_retired", vu_id=vu.runner.vu_id)
        self._retiring.extend(self._active)
        self._active = []

        tasks = [vu.task for vu in self._retiring if not vu.task.done()]
        self._notify("on_draining", in_flight=len(tasks))
        if self.sink is not None:
            self.sink.record(VUS, 0)
        if not tasks:
            self._reap()
            return

        _, pending = await asyncio.wait(tasks, timeout=self.options.graceful_stop_s)
        if pending:
            logger.warning(
                f"[{self.scenario}] graceful stop of {self.options.graceful_stop_s}s expired, "
                f"cancelling {len(pending)} VUs"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._reap()

    async def _cancel_all(self) -> None:
        tasks = [vu.task for vu in self._active + self._retiring if not vu.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._active = []
        self._retiring = []

    def _notify(self, method: str, **payload: Any) -> None:
        """Best-effort observer notification."""
        callback = getattr(self.observer, method, None)
        if callable(callback):
            try:
                callback(test_name=self.test_name, scenario=self.scenario, **payload)
            except Exception as e:
                logger.error(f"Observer callback {method} failed: {e}")

    def describe(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "state": self.state.value,
            "stage_index": self.stage_index,
            "active": self.active_count,
            "spawned": self.spawned_count,
            "max_active": self.max_active,
        }
