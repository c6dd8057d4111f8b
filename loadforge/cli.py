"""Command-line interface for loadforge."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .core.config import RunOptions, TargetSettings
from .core.engine import LoadTest
from .core.observers import LoggingObserver
from .profiles import get_profile, list_profiles
from .scenarios import build_scenarios, health_check
from .utils.errors import ConfigurationError, SetupFailure


console = Console()

EXIT_PASSED = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_SETUP_ERROR = 2


def resolve_log_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {name!r}")
    return level


def configure_logging(level: int, quiet: bool = False) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def print_profiles() -> None:
    table = Table(title="Available profiles", header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Max VUs", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Description")
    for profile in list_profiles():
        minutes = profile.total_duration_ms / 60_000
        table.add_row(profile.name, str(profile.max_vus), f"{minutes:.1f}m", profile.description)
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadforge",
        description="Run staged load tests against the schedule API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Quick sanity check against a local server
  loadforge --test smoke --base-url http://localhost:8080/api/task

  # Realistic traffic mix, report saved as JSON
  loadforge --test scenario-mix --output reports/mix.json

  # Ten-times compressed breakpoint run with a fixed seed
  loadforge --test breakpoint --duration-scale 0.1 --seed 42

Exit codes: 0 thresholds passed, 1 thresholds failed, 2 setup or configuration error.
        """,
    )
    parser.add_argument("--test", "-t", help="Profile to run (see --list)")
    parser.add_argument("--list", action="store_true", help="List available profiles and exit")
    parser.add_argument("--base-url", help="Target base URL (overrides LOADFORGE_BASE_URL)")
    parser.add_argument("--output", "-o", help="File to save the JSON report")
    parser.add_argument("--output-dir", help="Directory for the generated JSON report")
    parser.add_argument("--no-save", action="store_true", help="Do not write a JSON report")
    parser.add_argument("--seed", type=int, help="Seed for journey selection and think time")
    parser.add_argument("--think-time-scale", type=float, help="Multiply think time and pacing (0 disables them)")
    parser.add_argument("--duration-scale", type=float, default=1.0, help="Multiply every stage duration")
    parser.add_argument("--options", help="JSON object of run options, e.g. '{\"graceful_stop_s\": 10}'")
    parser.add_argument("--skip-health-check", action="store_true", help="Start without checking GET /")
    parser.add_argument("--log-level", help="Logging level (default from LOADFORGE_LOG_LEVEL)")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print the final verdict")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        print_profiles()
        return EXIT_PASSED
    if not args.test:
        parser.error("--test is required (use --list to see profiles)")

    load_dotenv()
    try:
        overrides = {"base_url": args.base_url} if args.base_url else {}
        settings = TargetSettings(**overrides)
        configure_logging(resolve_log_level(args.log_level or settings.log_level), quiet=args.quiet)

        profile = get_profile(args.test)
        if args.duration_scale != 1.0:
            profile = profile.scaled(args.duration_scale)

        option_updates = json.loads(args.options) if args.options else {}
        if not isinstance(option_updates, dict):
            raise ConfigurationError(f"--options must be a JSON object, got {args.options!r}")
        if args.seed is not None:
            option_updates["seed"] = args.seed
        if args.think_time_scale is not None:
            option_updates["think_time_scale"] = args.think_time_scale
        options = RunOptions.model_validate({**profile.options.model_dump(), **option_updates})

        load_test = LoadTest(
            name=profile.name,
            scenarios=build_scenarios(profile, options, settings),
            thresholds=profile.thresholds,
            options=options,
            settings=settings,
            setup=None if args.skip_health_check else health_check,
            observer=LoggingObserver(),
        )

        if not args.quiet:
            console.print(
                f"Running [bold]{profile.name}[/bold] against {settings.base_url} "
                f"(max {profile.max_vus} VUs, {profile.total_duration_ms / 60_000:.1f}m)"
            )
        report = load_test.run()
    except (ConfigurationError, ValidationError, json.JSONDecodeError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return EXIT_SETUP_ERROR
    except SetupFailure as e:
        console.print(f"[red]Setup failed: {e}[/red]")
        return EXIT_SETUP_ERROR
    except KeyboardInterrupt:
        console.print("\n[yellow]Load test interrupted by user[/yellow]")
        return EXIT_THRESHOLDS_FAILED

    if args.quiet:
        console.print(
            f"Iterations: {report.total_iterations} | Success Rate: {report.success_rate:.1%} | "
            f"Thresholds: {report.thresholds_passed}/{len(report.thresholds)} passed"
        )
    else:
        report.print_summary(console)

    if not args.no_save:
        if args.output:
            path = report.save_json(filepath=args.output)
        else:
            path = report.save_json(output_dir=args.output_dir or settings.report_dir)
        console.print(f"Report saved to {Path(path)}")

    if not report.passed:
        console.print("[red]Thresholds failed[/red]")
        return EXIT_THRESHOLDS_FAILED
    console.print("[green]All thresholds passed[/green]")
    return EXIT_PASSED


if __name__ == "__main__":
    sys.exit(main())
