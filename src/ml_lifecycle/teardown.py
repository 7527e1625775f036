"""Unconditional release of the remote project and dataset.

``cleanup`` deletes the project and then the dataset it references, one
request each. ``teardown_scope`` wraps a block of stages so that ``cleanup``
runs in a ``finally`` clause on every exit path. Service and URL errors from
a delete are logged and recorded in the ``TeardownReport`` rather than
raised, so they cannot mask the outcome of earlier stages.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
import contextlib
import functools
import logging
from typing import TYPE_CHECKING

import httpx

from ml_lifecycle.errors import HarnessError
from ml_lifecycle.models import DeleteOutcome, TeardownReport

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from ml_lifecycle.client import MLServiceClient

logger = logging.getLogger(__name__)


async def _delete(
    label: str,
    path: str,
    send: Callable[[], Awaitable[httpx.Response]],
) -> DeleteOutcome:
    """Send one delete request and turn its result into a ``DeleteOutcome``."""
    try:
        response = await send()
    except (HarnessError, httpx.InvalidURL) as exc:
        logger.warning("Teardown: deleting %s failed: %s", label, exc)
        return DeleteOutcome(path=path, error=str(exc))

    outcome = DeleteOutcome(path=path, status_code=response.status_code)
    if outcome.succeeded:
        logger.info("Teardown: deleted %s (%d)", label, response.status_code)
        return outcome
    logger.warning("Teardown: deleting %s returned %d", label, response.status_code)
    return outcome.model_copy(update={"error": f"status {response.status_code}"})


async def cleanup(
    client: MLServiceClient,
    project_name: str,
    dataset_id: int,
) -> TeardownReport:
    """Delete the project, then the dataset.

    Both requests are issued exactly once, whatever the first one returns.
    Service and URL errors are recorded in the report. Any other error from
    the project delete propagates after the dataset delete has been sent.

    Args:
        client: Service client.
        project_name: Project to delete.
        dataset_id: Dataset to delete.

    Returns:
        The outcome of both deletes.
    """
    try:
        project = await _delete(
            f"project {project_name}",
            f"/api/projects/{project_name}",
            functools.partial(client.delete_project, project_name),
        )
    finally:
        dataset = await _delete(
            f"dataset {dataset_id}",
            f"/api/datasets/{dataset_id}",
            functools.partial(client.delete_dataset, dataset_id),
        )
    return TeardownReport(project=project, dataset=dataset)


class TeardownScope:
    """Handle yielded by ``teardown_scope``; holds the report after exit.

    Attributes:
        report: Teardown outcome, set when the scope exits.
    """

    def __init__(self) -> None:
        self.report: TeardownReport | None = None


@contextlib.asynccontextmanager
async def teardown_scope(
    client: MLServiceClient,
    project_name: str,
    dataset_id: Callable[[], int],
) -> AsyncIterator[TeardownScope]:
    """Run the enclosed block, then always tear down project and dataset.

    Args:
        client: Service client.
        project_name: Project to delete on exit.
        dataset_id: Called on exit to obtain the dataset id, so an id
            resolved while the block ran is the one deleted.

    Yields:
        A ``TeardownScope`` whose ``report`` is filled in on exit.
    """
    scope = TeardownScope()
    try:
        yield scope
    finally:
        logger.info("Teardown: releasing project %s and its dataset", project_name)
        scope.report = await cleanup(client, project_name, dataset_id())
