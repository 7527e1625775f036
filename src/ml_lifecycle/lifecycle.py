"""Stages of the dataset lifecycle: upload, project, model builds, prediction.

``build_lifecycle_stages`` declares the stages for the configured dataset:

1. ``create_dataset`` uploads the CSV sample;
2. ``create_project`` creates a project bound to the dataset;
3. one ``build_<algorithm>_model`` stage per configured algorithm, each
   configuring an analysis, training a model, waiting for it and predicting
   with it. The first depends on the project; every later one depends on the
   previous algorithm's group, so one broken model build skips the rest.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ml_lifecycle.configuration import configure_model
from ml_lifecycle.errors import ModelBuildError, PredictionOrderError
from ml_lifecycle.models import TERMINAL_SUCCESS_STATUS, AlgorithmSpec, HarnessConfig
from ml_lifecycle.poller import build_and_await
from ml_lifecycle.sequencer import Stage, StageAction, StageContext
from ml_lifecycle.verifier import expect_prediction_count, expect_status

if TYPE_CHECKING:
    from ml_lifecycle.client import MLServiceClient
    from ml_lifecycle.session import SessionWriter

logger = logging.getLogger(__name__)

_OK = 200

CREATE_DATASET_GROUP = "createDataset"
CREATE_PROJECT_GROUP = "createProject"


def resolve_dataset_id(context: StageContext) -> int:
    """Dataset id produced by the upload stage, else the configured one."""
    dataset_id = context.session.get("dataset_id")
    if dataset_id is None:
        return int(context.config.dataset.dataset_id)
    return int(dataset_id)


async def predict(
    client: MLServiceClient,
    session: SessionWriter,
    rows: list[list[float]],
) -> list[float]:
    """Predict *rows* with the session's current model.

    The model must have reached ``Complete`` first, and that status must
    have been recorded for the current model: a status left behind by an
    earlier stage's model does not count. Otherwise prediction is refused
    without contacting the service.

    Returns:
        One prediction per row.

    Raises:
        PredictionOrderError: If the model has not completed training.
        UnexpectedStatusError: If the service does not answer 200.
        MalformedResponseError: If the prediction count differs from the row count.
    """
    model_name = session.get("model_name")
    status = session.get("model_status")
    if session.producer("model_status") != session.producer("model_id"):
        status = None
    if status != TERMINAL_SUCCESS_STATUS:
        msg = f"Model {model_name} is not ready for prediction (status: {status})"
        raise PredictionOrderError(msg, diagnostics={"model_name": model_name, "status": status})

    model_id = session.require("model_id")
    response = await client.predict(model_id, rows)
    expect_status(response, _OK, context=f"predict with model {model_name}")
    predictions = expect_prediction_count(response, len(rows))
    logger.info("Model %s returned %d predictions", model_name, len(predictions))
    return predictions


# ---------------------------------------------------------------------------
# Stage actions
# ---------------------------------------------------------------------------


async def create_dataset(context: StageContext) -> None:
    """Upload the dataset sample and record the dataset id."""
    config: HarnessConfig = context.config
    dataset = config.dataset
    response = await context.client.upload_dataset_from_csv(
        dataset.name,
        dataset.version,
        dataset.sample_path,
        description=dataset.description,
    )
    expect_status(response, _OK, context=f"upload dataset {dataset.name}")

    found = await context.client.find_dataset_id(dataset.name)
    dataset_id = found if found is not None else dataset.dataset_id
    if found is None:
        logger.info("Dataset %s not listed; using configured id %d", dataset.name, dataset_id)
    context.session.set("dataset_id", dataset_id)
    logger.info("Dataset %s v%s uploaded (id=%d)", dataset.name, dataset.version, dataset_id)


async def create_project(context: StageContext) -> None:
    """Create the project bound to the uploaded dataset."""
    config: HarnessConfig = context.config
    response = await context.client.create_project(config.project_name, config.dataset.name)
    expect_status(response, _OK, context=f"create project {config.project_name}")
    project_id = await context.client.get_project_id(config.project_name)
    context.session.set("project_id", project_id)
    logger.info("Project %s created (id=%d)", config.project_name, project_id)


async def project_available(context: StageContext) -> str | None:
    """Skip reason when the project cannot be fetched, else ``None``."""
    config: HarnessConfig = context.config
    response = await context.client.get_project(config.project_name)
    if response.status_code != _OK:
        return f"project {config.project_name} is not available ({response.status_code})"
    return None


def make_model_action(algorithm: AlgorithmSpec) -> StageAction:
    """Build the action that trains *algorithm* and predicts with the result."""

    async def build_model_and_predict(context: StageContext) -> None:
        config: HarnessConfig = context.config
        project_id = context.session.get("project_id")
        if project_id is None:
            project_id = await context.client.get_project_id(config.project_name)

        await configure_model(
            context.client,
            context.session,
            algorithm_name=algorithm.name,
            algorithm_type=algorithm.type,
            response_attribute=config.dataset.response_attribute,
            train_fraction=config.train_data_fraction,
            project_id=project_id,
            dataset_id=resolve_dataset_id(context),
            storage_dir=config.model_storage_dir,
        )
        completed = await build_and_await(context.client, context.session, config.poll)
        if not completed:
            model_name = context.session.get("model_name")
            msg = f"Model building did not complete successfully ({algorithm.name})"
            raise ModelBuildError(
                msg,
                model_name=model_name,
                last_status=context.session.get("model_status"),
            )
        await predict(context.client, context.session, config.prediction_rows)

    build_model_and_predict.__name__ = f"build_{algorithm.name.lower()}_model"
    return build_model_and_predict


# ---------------------------------------------------------------------------
# Stage declaration
# ---------------------------------------------------------------------------


def build_lifecycle_stages(config: HarnessConfig) -> list[Stage]:
    """Declare the lifecycle stages for *config*, in execution order."""
    dataset = config.dataset.name
    stages = [
        Stage(
            name="create_dataset",
            group=CREATE_DATASET_GROUP,
            action=create_dataset,
            description=f"Create the {dataset} dataset from a CSV file",
        ),
        Stage(
            name="create_project",
            group=CREATE_PROJECT_GROUP,
            depends_on_groups=(CREATE_DATASET_GROUP,),
            action=create_project,
            description=f"Create a project for the {dataset} dataset",
        ),
    ]

    previous_group = CREATE_PROJECT_GROUP
    for index, algorithm in enumerate(config.algorithms):
        stages.append(
            Stage(
                name=f"build_{algorithm.name.lower()}_model",
                group=algorithm.group,
                depends_on_groups=(previous_group,),
                action=make_model_action(algorithm),
                precondition=project_available if index == 0 else None,
                description=f"Build a {algorithm.name} model and predict for {dataset}",
            )
        )
        previous_group = algorithm.group
    return stages
