"""Completion polling for asynchronous model builds.

The service offers no push notification when training finishes, so the
harness reads the model status until it reaches a terminal value. Reads are
spaced by a growing interval and bounded by both an attempt count and a
wall-clock timeout; running out of budget raises ``CompletionTimeoutError``
instead of quietly reporting "not complete".
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from ml_lifecycle.errors import CompletionTimeoutError
from ml_lifecycle.models import TERMINAL_SUCCESS_STATUS, ModelStatus, PollConfig
from ml_lifecycle.verifier import expect_status

if TYPE_CHECKING:
    from ml_lifecycle.client import MLServiceClient
    from ml_lifecycle.session import SessionWriter

logger = logging.getLogger(__name__)


def next_interval(current: float, poll: PollConfig) -> float:
    """Return the delay that follows *current* under *poll*'s backoff."""
    return min(current * poll.backoff_factor, poll.max_interval_seconds)


async def check_model_status(client: MLServiceClient, model_name: str) -> str:
    """Read the current status string of *model_name*."""
    model = await client.get_model(model_name)
    return str(model["status"])


async def await_completion(
    client: MLServiceClient,
    model_name: str,
    poll: PollConfig | None = None,
) -> bool:
    """Block until *model_name* reaches a terminal status.

    Args:
        client: Service client.
        model_name: Name of the model being built.
        poll: Polling budget; defaults to ``PollConfig()``.

    Returns:
        ``True`` when the model reached ``Complete``, ``False`` when the
        service reported ``Failed``.

    Raises:
        CompletionTimeoutError: If neither terminal status was observed
            within ``max_attempts`` reads or ``timeout_seconds``.
        TransportError: If a status read cannot reach the service.
    """
    poll = poll or PollConfig()
    start = time.monotonic()
    deadline = start + poll.timeout_seconds
    interval = poll.interval_seconds
    status: str | None = None

    for attempt in range(1, poll.max_attempts + 1):
        status = await check_model_status(client, model_name)
        if status == TERMINAL_SUCCESS_STATUS:
            logger.info(
                "Model %s complete after %d read(s), %.1fs",
                model_name,
                attempt,
                time.monotonic() - start,
            )
            return True
        if status == ModelStatus.FAILED:
            logger.warning("Model %s build failed (read %d)", model_name, attempt)
            return False

        remaining = deadline - time.monotonic()
        if attempt == poll.max_attempts or remaining <= 0:
            break
        delay = min(interval, remaining)
        logger.debug(
            "Model %s status=%s (read %d/%d); next read in %.1fs",
            model_name,
            status,
            attempt,
            poll.max_attempts,
            delay,
        )
        await asyncio.sleep(delay)
        interval = next_interval(interval, poll)

    elapsed = time.monotonic() - start
    msg = (
        f"Model {model_name} did not finish building within {elapsed:.1f}s "
        f"(last status: {status})"
    )
    raise CompletionTimeoutError(
        msg,
        last_status=status,
        diagnostics={"model_name": model_name, "elapsed_seconds": elapsed},
    )


async def build_and_await(
    client: MLServiceClient,
    session: SessionWriter,
    poll: PollConfig | None = None,
) -> bool:
    """Start training the session's current model and wait for it.

    Records ``model_status`` in the session once a terminal status is seen.

    Returns:
        Whether the model build completed successfully.

    Raises:
        UnexpectedStatusError: If the service refuses to start training.
        CompletionTimeoutError: If the build does not finish in budget.
    """
    model_id = session.require("model_id")
    model_name = session.require("model_name")

    response = await client.build_model(model_id)
    expect_status(response, 200, context=f"build model {model_name}")
    logger.info("Training started for model %s (id=%d)", model_name, model_id)

    completed = await await_completion(client, model_name, poll)
    session.set(
        "model_status",
        ModelStatus.COMPLETE.value if completed else ModelStatus.FAILED.value,
    )
    return completed
