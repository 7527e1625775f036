"""CLI entry point for the lifecycle harness.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``ml_lifecycle = "ml_lifecycle.cli:main"``. Parses
command-line arguments, loads the optional config YAML file, and delegates to
``run_lifecycle_sync()`` from ``ml_lifecycle.orchestrator``.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Any

from pydantic import ValidationError
import yaml

from ml_lifecycle.errors import HarnessError, LifecycleError
from ml_lifecycle.models import HarnessConfig, RunReport, StageStatus
from ml_lifecycle.orchestrator import run_lifecycle_sync


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ml_lifecycle",
        description="Run the end-to-end dataset/model lifecycle against an ML service.",
    )
    parser.add_argument(
        "--config",
        required=False,
        default=None,
        help="Path to a HarnessConfig YAML file.",
    )
    parser.add_argument(
        "--base-url",
        required=False,
        default=None,
        help="Service root URL; overrides the config file.",
    )
    return parser


def _load_config(config_path: str | None, base_url: str | None) -> HarnessConfig:
    """Assemble the ``HarnessConfig`` for this run.

    The YAML file at *config_path*, when given, holds ``HarnessConfig``
    fields at its top level; fields it leaves out keep their defaults.
    *base_url* replaces whatever service URL the file names.

    Raises:
        LifecycleError: If the file cannot be read or parsed, or its values
            do not form a valid configuration.
    """
    fields: dict[str, Any] = {}
    if config_path is not None:
        try:
            loaded = yaml.safe_load(Path(config_path).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            msg = f"Cannot read harness config {config_path}: {exc}"
            raise LifecycleError(msg, diagnostics={"config": config_path}) from exc
        if not isinstance(loaded, dict):
            msg = (
                f"Harness config {config_path} must map field names to values, "
                f"got {type(loaded).__name__}"
            )
            raise LifecycleError(msg, diagnostics={"config": config_path})
        fields = loaded

    if base_url is not None:
        fields["base_url"] = base_url

    try:
        return HarnessConfig(**fields)
    except ValidationError as exc:
        problems = [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]
        msg = f"Harness config rejected ({len(problems)} invalid field(s))"
        raise LifecycleError(
            msg, diagnostics={"config": config_path, "fields": problems}
        ) from exc


def _print_startup_summary(config: HarnessConfig) -> None:
    sep = "=" * 60
    print(sep)
    print("ML Lifecycle Harness")
    print(sep)
    print(f"  Service:     {config.base_url}")
    print(f"  Dataset:     {config.dataset.name} v{config.dataset.version}")
    print(f"  Sample:      {config.dataset.sample_path}")
    print(f"  Project:     {config.project_name}")
    print(f"  Algorithms:  {', '.join(a.name for a in config.algorithms)}")
    print(
        f"  Polling:     every {config.poll.interval_seconds}s "
        f"(x{config.poll.backoff_factor}), timeout {config.poll.timeout_seconds}s"
    )
    print(sep)


def _print_report(report: RunReport) -> None:
    """Print one line per stage and the teardown outcome."""
    for result in report.stages:
        line = f"  [{result.status.upper():7}] {result.name}"
        if result.status != StageStatus.PASSED:
            line += f": {result.outcome.reason}"
        print(line)
    if report.teardown is not None:
        for label, outcome in (
            ("project", report.teardown.project),
            ("dataset", report.teardown.dataset),
        ):
            state = "deleted" if outcome.succeeded else f"NOT deleted ({outcome.error})"
            print(f"  teardown {label}: {state}")
    print(f"Total duration: {report.total_duration_seconds:.1f}s")


def _print_error(heading: str, exc: HarnessError) -> None:
    print(f"{heading}: {exc}", file=sys.stderr)
    for key, value in exc.diagnostics.items():
        print(f"  {key}: {value}", file=sys.stderr)


def main() -> int:
    """Entry point for the ml_lifecycle CLI application.

    Returns:
        Exit code: 0 when every stage passed or was skipped, 1 otherwise.
    """
    parser = _build_parser()
    args = parser.parse_args()

    try:
        config = _load_config(args.config, args.base_url)
    except LifecycleError as exc:
        _print_error("Invalid configuration", exc)
        return 1

    _print_startup_summary(config)
    try:
        report = run_lifecycle_sync(config)
    except HarnessError as exc:
        _print_error("Lifecycle aborted", exc)
        return 1
    _print_report(report)

    if not report.passed:
        print("Lifecycle FAILED.", file=sys.stderr)
        return 1
    print("Lifecycle passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
