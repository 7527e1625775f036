"""Analysis and model configuration against the ML service.

``configure_model`` creates an analysis under a project, applies feature
defaults, submits the algorithm configuration, applies hyperparameter
defaults, creates a model for a dataset version set and registers a storage
location for it. Every step must succeed; the first failing step aborts the
configuration with a ``ConfigurationError`` naming that step. Nothing is
rolled back: project and dataset teardown is the only cleanup path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from ml_lifecycle.errors import (
    ConfigurationError,
    MalformedResponseError,
    UnexpectedStatusError,
)
from ml_lifecycle.verifier import read_json_object

if TYPE_CHECKING:
    from collections.abc import Awaitable

    import httpx

    from ml_lifecycle.client import MLServiceClient
    from ml_lifecycle.session import SessionWriter

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

ALGORITHM_NAME = "algorithmName"
ALGORITHM_TYPE = "algorithmType"
RESPONSE = "responseVariable"
TRAIN_DATA_FRACTION = "trainDataFraction"

REQUIRED_CONFIGURATION_KEYS: tuple[str, ...] = (
    ALGORITHM_NAME,
    ALGORITHM_TYPE,
    RESPONSE,
    TRAIN_DATA_FRACTION,
)


def derive_analysis_name(algorithm_name: str, dataset_id: int) -> str:
    """Return the analysis name used for *algorithm_name* on *dataset_id*.

    Deterministic, so rerunning a stage within a session targets the same
    analysis name.
    """
    return f"{algorithm_name}{dataset_id}"


def build_model_configuration(
    algorithm_name: str,
    algorithm_type: str,
    response_attribute: str,
    train_fraction: str,
) -> dict[str, str]:
    """Assemble the algorithm configuration mapping.

    Raises:
        ConfigurationError: If any of the four values is empty.
    """
    configurations = {
        ALGORITHM_NAME: algorithm_name,
        ALGORITHM_TYPE: str(algorithm_type),
        RESPONSE: response_attribute,
        TRAIN_DATA_FRACTION: str(train_fraction),
    }
    missing = [k for k in REQUIRED_CONFIGURATION_KEYS if not configurations.get(k)]
    if missing:
        msg = f"Model configuration is missing values for {missing}"
        raise ConfigurationError(msg, step="model configuration", diagnostics={"missing": missing})
    return configurations


def _check_step(response: httpx.Response, step: str) -> None:
    """Raise ``ConfigurationError`` unless *response* is a 2xx answer."""
    if not 200 <= response.status_code < 300:
        msg = f"Configuration step '{step}' failed with status {response.status_code}"
        raise ConfigurationError(
            msg,
            step=step,
            diagnostics={"status_code": response.status_code, "body": response.text[:500]},
        )


async def _lookup(step: str, call: Awaitable[_T]) -> _T:
    """Await a client lookup, reporting verification failures as *step*."""
    try:
        return await call
    except (UnexpectedStatusError, MalformedResponseError) as exc:
        msg = f"Configuration step '{step}' failed: {exc}"
        raise ConfigurationError(msg, step=step, diagnostics=exc.diagnostics) from exc


async def configure_model(
    client: MLServiceClient,
    session: SessionWriter,
    *,
    algorithm_name: str,
    algorithm_type: str,
    response_attribute: str,
    train_fraction: str,
    project_id: int,
    dataset_id: int,
    storage_dir: str,
) -> str:
    """Create and configure an analysis and model for one algorithm.

    Records ``analysis_name``, ``analysis_id``, ``model_name`` and
    ``model_id`` in the session as they are produced.

    Args:
        client: Service client.
        session: Session writer of the calling stage.
        algorithm_name: Learning algorithm (``LINEAR_REGRESSION``).
        algorithm_type: Algorithm family (``Numerical_Prediction``).
        response_attribute: Column to predict.
        train_fraction: Fraction of data used for training.
        project_id: Project the analysis belongs to.
        dataset_id: Dataset whose version set the model is trained on.
        storage_dir: Directory registered as the model's storage location.

    Returns:
        The name the service assigned to the model.

    Raises:
        ConfigurationError: If any step is rejected.
        TransportError: If the service cannot be reached.
    """
    configurations = build_model_configuration(
        algorithm_name, algorithm_type, response_attribute, train_fraction
    )

    analysis_name = derive_analysis_name(algorithm_name, dataset_id)
    session.set("analysis_name", analysis_name)

    _check_step(await client.create_analysis(analysis_name, project_id), "create analysis")
    analysis_id = await _lookup(
        "get analysis id", client.get_analysis_id(project_id, analysis_name)
    )
    session.set("analysis_id", analysis_id)
    logger.info("Analysis %s created (id=%d)", analysis_name, analysis_id)

    _check_step(await client.set_feature_defaults(analysis_id), "feature defaults")
    _check_step(
        await client.set_model_configuration(analysis_id, configurations),
        "model configuration",
    )
    _check_step(
        await client.set_hyperparameter_defaults(analysis_id), "hyperparameter defaults"
    )

    version_set_id = await _lookup("get version set", client.get_version_set_id(dataset_id))
    response = await client.create_model(analysis_id, version_set_id)
    _check_step(response, "create model")
    try:
        model_name = str(read_json_object(response, "name")["name"])
    except MalformedResponseError as exc:
        msg = f"Configuration step 'create model' returned no model name: {exc}"
        raise ConfigurationError(msg, step="create model") from exc
    session.set("model_name", model_name)

    model_id = await _lookup("get model id", client.get_model_id(model_name))
    session.set("model_id", model_id)

    _check_step(
        await client.create_file_model_storage(model_id, storage_dir), "model storage"
    )
    logger.info(
        "Model %s (id=%d) configured: algorithm=%s, response=%s, train_fraction=%s",
        model_name,
        model_id,
        algorithm_name,
        response_attribute,
        train_fraction,
    )
    return model_name
