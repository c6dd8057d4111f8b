"""Report summary built from metric snapshots and threshold results."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from .metrics import (
    ITERATIONS,
    ITERATIONS_ABORTED,
    JOURNEY_DURATION,
    JOURNEY_FAILED,
    STEP_DURATION,
    STEP_FAILED,
    VUS,
    Aggregate,
)
from .thresholds import ThresholdResult, ThresholdStatus


console = Console()

_STEP_DURATION_SUFFIX = "_duration"
_JOURNEY_PREFIX = "journey_"
_RESERVED = {STEP_DURATION, STEP_FAILED, JOURNEY_DURATION, JOURNEY_FAILED, VUS}


class LatencyStats(BaseModel):
    """Latency percentiles in milliseconds."""

    count: int = 0
    avg: float = 0.0
    min: float = 0.0
    med: float = 0.0
    max: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0

    @classmethod
    def from_aggregate(cls, snap: Optional[Aggregate]) -> "LatencyStats":
        if snap is None or snap.empty:
            return cls()
        return cls(
            count=snap.count,
            avg=snap.avg,
            min=snap.min or 0.0,
            med=snap.med,
            max=snap.max or 0.0,
            p90=snap.percentile(90),
            p95=snap.percentile(95),
            p99=snap.percentile(99),
        )


class StepSummary(BaseModel):
    label: str
    latency: LatencyStats
    failure_rate: float = 0.0
    failures: int = 0


class JourneySummary(BaseModel):
    name: str
    iterations: int = 0
    failures: int = 0
    aborted: int = 0
    failure_rate: float = 0.0
    latency: LatencyStats = Field(default_factory=LatencyStats)


class ThresholdSummary(BaseModel):
    metric: str
    rule: str
    status: ThresholdStatus
    observed_value: Optional[float] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status is ThresholdStatus.PASSED


class ReportSummary(BaseModel):
    """Structured outcome of one load test, ready for a renderer."""

    test_name: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    scenarios: List[str] = Field(default_factory=list)

    total_iterations: int = 0
    succeeded: int = 0
    failed: int = 0
    aborted: int = 0
    success_rate: float = 0.0

    total_steps: int = 0
    step_failure_rate: float = 0.0
    requests_per_second: float = 0.0
    max_vus: int = 0

    latency: LatencyStats = Field(default_factory=LatencyStats)
    iteration_latency: LatencyStats = Field(default_factory=LatencyStats)
    steps: List[StepSummary] = Field(default_factory=list)
    journeys: List[JourneySummary] = Field(default_factory=list)
    thresholds: List[ThresholdSummary] = Field(default_factory=list)

    @property
    def duration_s(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    @property
    def thresholds_passed(self) -> int:
        return sum(1 for t in self.thresholds if t.status is ThresholdStatus.PASSED)

    @property
    def thresholds_failed(self) -> int:
        return sum(1 for t in self.thresholds if t.status is ThresholdStatus.FAILED)

    @property
    def thresholds_no_data(self) -> int:
        return sum(1 for t in self.thresholds if t.status is ThresholdStatus.NO_DATA)

    @property
    def passed(self) -> bool:
        """True when every threshold passed (no-data counts as a failure)."""
        return all(t.passed for t in self.thresholds)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["duration_s"] = self.duration_s
        data["thresholds_passed"] = self.thresholds_passed
        data["thresholds_failed"] = self.thresholds_failed
        data["thresholds_no_data"] = self.thresholds_no_data
        data["thresholds_total"] = len(self.thresholds)
        data["passed"] = self.passed
        return data

    def save_json(self, filepath: Optional[str] = None, output_dir: str = ".") -> str:
        """
        Save the report to a JSON file.

        Args:
            filepath: Optional custom filepath. If not provided, one is generated
                from the test name and a timestamp inside ``output_dir``.

        Returns:
            Path to the saved file
        """
        if filepath is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = str(Path(output_dir) / f"{self.test_name}-{timestamp}.json")

        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=str, ensure_ascii=False)
        return str(path)

    def print_summary(self, out: Optional[Console] = None) -> None:
        """Print a rich formatted summary to the console."""
        out = out or console

        header = (
            f"[bold]Iterations:[/bold] {self.total_iterations} "
            f"([green]{self.succeeded} ok[/green] / [red]{self.failed} failed[/red] / "
            f"[yellow]{self.aborted} aborted[/yellow]) | "
            f"[bold]Success:[/bold] {self.success_rate:.1%} | "
            f"[bold]Max VUs:[/bold] {self.max_vus} | "
            f"[bold]RPS:[/bold] {self.requests_per_second:.1f}"
        )

        steps_table = Table(show_header=True, header_style="bold", expand=True)
        steps_table.add_column("Step", style="cyan")
        for col in ("Count", "Avg", "P50", "P90", "P95", "P99", "Max", "Fail"):
            steps_table.add_column(col, justify="right")
        for step in self.steps:
            lat = step.latency
            steps_table.add_row(
                step.label,
                str(lat.count),
                f"{lat.avg:.0f}",
                f"{lat.med:.0f}",
                f"{lat.p90:.0f}",
                f"{lat.p95:.0f}",
                f"{lat.p99:.0f}",
                f"{lat.max:.0f}",
                f"{step.failure_rate:.1%}",
            )

        journeys_table = Table(show_header=True, header_style="bold", expand=True)
        journeys_table.add_column("Journey", style="cyan")
        for col in ("Iterations", "Failed", "Aborted", "Fail rate", "P95"):
            journeys_table.add_column(col, justify="right")
        for journey in self.journeys:
            journeys_table.add_row(
                journey.name,
                str(journey.iterations),
                str(journey.failures),
                str(journey.aborted),
                f"{journey.failure_rate:.1%}",
                f"{journey.latency.p95:.0f}",
            )

        thresholds_table = Table(show_header=True, header_style="bold", expand=True)
        thresholds_table.add_column("Metric", style="cyan")
        thresholds_table.add_column("Rule")
        thresholds_table.add_column("Observed", justify="right")
        thresholds_table.add_column("Status", justify="right")
        styles = {
            ThresholdStatus.PASSED: "[green]passed[/green]",
            ThresholdStatus.FAILED: "[red]failed[/red]",
            ThresholdStatus.NO_DATA: "[yellow]no data[/yellow]",
        }
        for t in self.thresholds:
            observed = "-" if t.observed_value is None else f"{t.observed_value:.3f}"
            thresholds_table.add_row(t.metric, t.rule, observed, styles[t.status])

        parts: List[Any] = [header, Rule(style="dim"), steps_table, journeys_table]
        if self.thresholds:
            parts.extend([Rule(style="dim"), thresholds_table])

        border = "green" if self.passed else "red"
        out.print(
            Panel(
                Group(*parts),
                title=f"[bold]{self.test_name}[/bold]",
                border_style=border,
                expand=False,
                width=110,
            )
        )


class ReportBuilder:
    """Reduces metric snapshots and threshold results into a ReportSummary.

    Pure: it only reads its inputs.
    """

    def build(
        self,
        snapshots: Mapping[str, Aggregate],
        threshold_results: Sequence[ThresholdResult] = (),
        *,
        test_name: str = "load-test",
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
        scenarios: Sequence[str] = (),
        journey_names: Sequence[str] = (),
        step_labels: Optional[Sequence[str]] = None,
    ) -> ReportSummary:
        """Build the summary.

        ``step_labels`` names the per-step series exactly. Without it, steps are
        recognised by their ``_duration`` suffix and any ``journey_`` series is
        taken for a journey.
        """
        completed = int(_counter(snapshots.get(ITERATIONS)))
        aborted = int(_counter(snapshots.get(ITERATIONS_ABORTED)))
        journey_failed = snapshots.get(JOURNEY_FAILED)
        failed = _completed_failures(journey_failed, completed)
        succeeded = completed - failed
        success_rate = succeeded / completed if completed else 0.0

        step_failed = snapshots.get(STEP_FAILED)
        step_duration = snapshots.get(STEP_DURATION)
        total_steps = step_duration.count if step_duration else 0

        duration_s = None
        if started_at and finished_at:
            duration_s = (finished_at - started_at).total_seconds()
        rps = total_steps / duration_s if duration_s else 0.0

        vus = snapshots.get(VUS)

        return ReportSummary(
            test_name=test_name,
            started_at=started_at,
            finished_at=finished_at,
            scenarios=list(scenarios),
            total_iterations=completed + aborted,
            succeeded=succeeded,
            failed=failed,
            aborted=aborted,
            success_rate=success_rate,
            total_steps=total_steps,
            step_failure_rate=step_failed.rate if step_failed else 0.0,
            requests_per_second=rps,
            max_vus=int(vus.max or 0) if vus else 0,
            latency=LatencyStats.from_aggregate(step_duration),
            iteration_latency=LatencyStats.from_aggregate(snapshots.get(JOURNEY_DURATION)),
            steps=self._steps(snapshots, step_labels),
            journeys=self._journeys(snapshots, journey_names, step_labels or ()),
            thresholds=[
                ThresholdSummary(
                    metric=r.rule.metric_name,
                    rule=r.rule.description,
                    status=r.status,
                    observed_value=r.observed_value,
                    error=r.error,
                )
                for r in threshold_results
            ],
        )

    def _steps(
        self, snapshots: Mapping[str, Aggregate], step_labels: Optional[Sequence[str]] = None
    ) -> List[StepSummary]:
        if step_labels is None:
            labels = [
                name[: -len(_STEP_DURATION_SUFFIX)]
                for name, snap in snapshots.items()
                if name not in _RESERVED
                and not name.startswith(_JOURNEY_PREFIX)
                and name.endswith(_STEP_DURATION_SUFFIX)
                and snap.kind == "trend"
            ]
        else:
            labels = [
                label for label in set(step_labels)
                if snapshots.get(f"{label}{_STEP_DURATION_SUFFIX}") is not None
            ]

        steps = []
        for label in sorted(labels):
            snap = snapshots[f"{label}{_STEP_DURATION_SUFFIX}"]
            failed = snapshots.get(f"{label}_failed")
            steps.append(
                StepSummary(
                    label=label,
                    latency=LatencyStats.from_aggregate(snap),
                    failure_rate=failed.rate if failed else 0.0,
                    failures=failed.trues if failed else 0,
                )
            )
        return steps

    def _journeys(
        self,
        snapshots: Mapping[str, Aggregate],
        journey_names: Sequence[str],
        step_labels: Sequence[str] = (),
    ) -> List[JourneySummary]:
        names = list(journey_names)
        step_series = {f"{label}{_STEP_DURATION_SUFFIX}" for label in step_labels}
        for name in snapshots:
            if name in step_series:
                continue
            if name.startswith(_JOURNEY_PREFIX) and name.endswith("_duration"):
                journey = name[len(_JOURNEY_PREFIX): -len("_duration")]
                if journey and journey not in names:
                    names.append(journey)

        journeys = []
        for journey in names:
            duration = snapshots.get(f"journey_{journey}_duration")
            failed = snapshots.get(f"journey_{journey}_failed")
            aborted = int(_counter(snapshots.get(f"journey_{journey}_aborted")))
            iterations = duration.count if duration else 0
            failures = _completed_failures(failed, iterations)
            journeys.append(
                JourneySummary(
                    name=journey,
                    iterations=iterations,
                    failures=failures,
                    aborted=aborted,
                    failure_rate=failures / iterations if iterations else 0.0,
                    latency=LatencyStats.from_aggregate(duration),
                )
            )
        return journeys


def _counter(snap: Optional[Aggregate]) -> float:
    return snap.sum if snap else 0.0


def _completed_failures(failed: Optional[Aggregate], completed: int) -> int:
    """Failed completed iterations; aborted ones recorded as failures are the surplus samples."""
    if failed is None:
        return 0
    surplus = max(failed.count - completed, 0)
    return max(failed.trues - surplus, 0)


def build_report(
    snapshots: Mapping[str, Aggregate],
    threshold_results: Sequence[ThresholdResult] = (),
    **kwargs: Any,
) -> ReportSummary:
    """Functional shortcut for ``ReportBuilder().build``."""
    return ReportBuilder().build(snapshots, threshold_results, **kwargs)
