"""Lifecycle run orchestration: entry points, env overrides and logging.

Provides ``run_lifecycle()`` (async) and ``run_lifecycle_sync()`` (sync
wrapper) as the top-level entry points. A run validates its inputs, opens the
service client, declares and validates the stage graph, runs every stage
inside the teardown scope, and returns a ``RunReport``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any

import httpx

from ml_lifecycle.client import MLServiceClient
from ml_lifecycle.errors import LifecycleError
from ml_lifecycle.lifecycle import build_lifecycle_stages
from ml_lifecycle.models import HarnessConfig, RunReport, StageResult
from ml_lifecycle.sequencer import StageSequencer, build_stage_graph
from ml_lifecycle.session import Session
from ml_lifecycle.teardown import teardown_scope

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "ML_LIFECYCLE_BASE_URL": "base_url",
    "ML_LIFECYCLE_LOG_LEVEL": "log_level",
    "ML_LIFECYCLE_POLL_TIMEOUT": "poll.timeout_seconds",
}
"""Maps environment variable names to (dotted) HarnessConfig field names."""


def _get_field(config: HarnessConfig, dotted: str) -> Any:
    value: Any = config
    for part in dotted.split("."):
        value = getattr(value, part)
    return value


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string for *field_name*; ``None`` when invalid."""
    if field_name in ("base_url", "log_level"):
        return raw or None

    if field_name == "poll.timeout_seconds":
        try:
            value = float(raw)
        except ValueError:
            return None
        if value <= 0:
            return None
        return value

    return None


def apply_env_overrides(config: HarnessConfig) -> HarnessConfig:
    """Apply ``ML_LIFECYCLE_*`` env var overrides to a config.

    Environment variables override **default** field values only; a value set
    explicitly in the configuration (one that differs from the default) wins.
    Unparseable values are ignored.

    Returns:
        A new ``HarnessConfig`` with overrides applied.
    """
    defaults = HarnessConfig()
    overrides: dict[str, Any] = {}
    poll_overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue
        if _get_field(config, field_name) != _get_field(defaults, field_name):
            continue
        parsed = _parse_env_value(field_name, env_value)
        if parsed is None:
            continue
        if field_name.startswith("poll."):
            poll_overrides[field_name.split(".", 1)[1]] = parsed
        else:
            overrides[field_name] = parsed

    if poll_overrides:
        overrides["poll"] = config.poll.model_copy(update=poll_overrides)
    if not overrides:
        return config
    return config.model_copy(update=overrides)


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(config: HarnessConfig) -> None:
    """Configure the ``ml_lifecycle`` logger.

    Adds a console handler and, when ``config.log_file`` is set, a file
    handler. Idempotent: repeated calls do not duplicate handlers.
    """
    pkg_logger = logging.getLogger("ml_lifecycle")
    pkg_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if not any(
        type(h) is logging.StreamHandler for h in pkg_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        pkg_logger.addHandler(console)

    if config.log_file is not None:
        target = os.path.abspath(config.log_file)
        has_file = any(
            isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target
            for h in pkg_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            pkg_logger.addHandler(file_handler)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _validate_inputs(config: HarnessConfig | None) -> HarnessConfig:
    """Resolve the configuration and check the dataset sample exists.

    Raises:
        LifecycleError: If the sample file is missing or empty.
    """
    resolved = config if config is not None else HarnessConfig()
    sample = resolved.sample_file
    if not sample.is_file():
        msg = f"Dataset sample not found: {sample}"
        raise LifecycleError(msg, diagnostics={"sample_path": str(sample)})
    if sample.stat().st_size == 0:
        msg = f"Dataset sample is empty: {sample}"
        raise LifecycleError(msg, diagnostics={"sample_path": str(sample)})
    return resolved


def _log_stage_summary(results: list[StageResult]) -> None:
    """Log a one-line JSON summary of every stage outcome."""
    summary = {
        r.name: {"status": str(r.status), "reason": r.outcome.reason} for r in results
    }
    logger.info("Stage summary: %s", json.dumps(summary, default=str))


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def run_lifecycle(
    config: HarnessConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunReport:
    """Run the full dataset lifecycle against the service.

    Args:
        config: Harness configuration; defaults to ``HarnessConfig()``.
        transport: Optional httpx transport override for the client.

    Returns:
        A ``RunReport`` with per-stage outcomes and the teardown result.

    Raises:
        LifecycleError: If the inputs are invalid.
        StageGraphError: If the declared stages do not form a valid graph.
    """
    resolved = apply_env_overrides(_validate_inputs(config))
    configure_logging(resolved)

    logger.info(
        "Lifecycle configuration: service=%s, dataset=%s v%s, project=%s, algorithms=%s",
        resolved.base_url,
        resolved.dataset.name,
        resolved.dataset.version,
        resolved.project_name,
        [a.name for a in resolved.algorithms],
    )

    graph = build_stage_graph(build_lifecycle_stages(resolved))
    session = Session()
    sequencer = StageSequencer()
    run_start = time.monotonic()

    async with MLServiceClient.from_config(resolved, transport=transport) as client:
        async with teardown_scope(
            client,
            resolved.project_name,
            lambda: int(session.get("dataset_id", resolved.dataset.dataset_id)),
        ) as scope:
            await sequencer.run(graph, session=session, client=client, config=resolved)

    results = list(sequencer.results)
    _log_stage_summary(results)
    report = RunReport(
        stages=results,
        teardown=scope.report,
        total_duration_seconds=time.monotonic() - run_start,
        session=session.snapshot(),
    )
    logger.info(
        "Lifecycle %s | passed=%d failed=%d skipped=%d | %.1fs",
        "PASSED" if report.passed else "FAILED",
        len(results) - len(report.failed_stages) - len(report.skipped_stages),
        len(report.failed_stages),
        len(report.skipped_stages),
        report.total_duration_seconds,
    )
    return report


def run_lifecycle_sync(config: HarnessConfig | None = None) -> RunReport:
    """Synchronous wrapper for ``run_lifecycle()`` via ``asyncio.run()``."""
    return asyncio.run(run_lifecycle(config))
