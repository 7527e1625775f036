"""Core data models for the lifecycle harness.

Defines the shared Pydantic models and enums used by every module: stage
outcomes and results, remote model status values, algorithm descriptors,
harness configuration, and the run/teardown reports returned to callers.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ---------------------------------------------------------------------------
# Stage outcomes
# ---------------------------------------------------------------------------


class StageStatus(StrEnum):
    """Three-valued outcome of a single lifecycle stage."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageOutcome(BaseModel):
    """Outcome of one stage: a status plus the reason for a failure or skip.

    Attributes:
        status: Passed, failed or skipped.
        reason: Human-readable reason; ``None`` for passed stages.
    """

    model_config = ConfigDict(frozen=True)

    status: StageStatus
    reason: str | None = None

    @model_validator(mode="after")
    def _reason_required_unless_passed(self) -> StageOutcome:
        """Failed and skipped outcomes must say why."""
        if self.status != StageStatus.PASSED and not self.reason:
            msg = f"A {self.status} outcome requires a reason"
            raise ValueError(msg)
        return self

    @classmethod
    def passed(cls) -> StageOutcome:
        """Build a passed outcome."""
        return cls(status=StageStatus.PASSED)

    @classmethod
    def failed(cls, reason: str) -> StageOutcome:
        """Build a failed outcome carrying *reason*."""
        return cls(status=StageStatus.FAILED, reason=reason)

    @classmethod
    def skipped(cls, reason: str) -> StageOutcome:
        """Build a skipped outcome carrying *reason*."""
        return cls(status=StageStatus.SKIPPED, reason=reason)


class StageResult(BaseModel):
    """Recorded result of one executed (or skipped) stage.

    Attributes:
        name: Stage name.
        group: Group the stage belongs to.
        outcome: Passed, failed or skipped, with reason.
        duration_seconds: Wall-clock time spent on the stage.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    group: str
    outcome: StageOutcome
    duration_seconds: float = 0.0

    @property
    def status(self) -> StageStatus:
        """Shortcut for ``outcome.status``."""
        return self.outcome.status


# ---------------------------------------------------------------------------
# Remote resource descriptors
# ---------------------------------------------------------------------------


class ModelStatus(StrEnum):
    """Status values reported by the service for a model training run."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"


TERMINAL_SUCCESS_STATUS: str = ModelStatus.COMPLETE.value
"""Status string marking a successfully trained model."""


class AlgorithmType(StrEnum):
    """Algorithm families understood by the service."""

    NUMERICAL_PREDICTION = "Numerical_Prediction"
    CLASSIFICATION = "Classification"
    CLUSTERING = "Clustering"
    ANOMALY_DETECTION = "Anomaly_Detection"


class AlgorithmSpec(BaseModel):
    """A learning algorithm to build, together with its stage group name.

    Attributes:
        name: Algorithm name as the service knows it (``LINEAR_REGRESSION``).
        type: Algorithm family.
        group: Stage group name; derived from *name* when omitted.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: AlgorithmType = AlgorithmType.NUMERICAL_PREDICTION
    group: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_group(cls, data: Any) -> Any:
        """Derive ``createLinearRegressionModel`` from ``LINEAR_REGRESSION``."""
        if isinstance(data, dict) and not data.get("group") and data.get("name"):
            words = str(data["name"]).lower().split("_")
            camel = "".join(w.capitalize() for w in words)
            data = {**data, "group": f"create{camel}Model"}
        return data


def _default_algorithms() -> list[AlgorithmSpec]:
    return [
        AlgorithmSpec(name="LINEAR_REGRESSION"),
        AlgorithmSpec(name="RIDGE_REGRESSION"),
        AlgorithmSpec(name="LASSO_REGRESSION"),
    ]


DEFAULT_PREDICTION_ROWS: list[list[float]] = [
    [-2.3, 0.568, 4.78, 3.99, 3.17, 0.125],
    [-2.3, 0.568, 4.78, 3.99, 3.17, 0.300],
]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class DatasetConfig(BaseModel):
    """The dataset uploaded at the start of a run.

    Attributes:
        name: Dataset name on the service.
        version: Dataset version label.
        sample_path: Local CSV file to upload.
        response_attribute: Column the models predict.
        dataset_id: Id the service is expected to assign; used when the id
            cannot be resolved from the service after upload.
        description: Free-text description sent with the upload.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "Yacht"
    version: str = "1.0"
    sample_path: str = "data/yacht_hydrodynamics.csv"
    response_attribute: str = "Residuary_resistance"
    dataset_id: int = 1
    description: str = "Yacht hydrodynamics dataset"

    @field_validator("dataset_id")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            msg = "dataset_id must be >= 1"
            raise ValueError(msg)
        return v


class PollConfig(BaseModel):
    """Budget for waiting on an asynchronous model build.

    The poller sleeps ``interval_seconds`` after the first unfinished read,
    multiplying the interval by ``backoff_factor`` after every further read
    up to ``max_interval_seconds``. It gives up once ``max_attempts`` status
    reads have been made or ``timeout_seconds`` have elapsed.

    Attributes:
        interval_seconds: Delay before the second status read.
        timeout_seconds: Overall wall-clock budget.
        max_attempts: Maximum number of status reads.
        backoff_factor: Interval multiplier, 1.0 for a fixed interval.
        max_interval_seconds: Upper bound on a single delay.
    """

    model_config = ConfigDict(frozen=True)

    interval_seconds: float = 5.0
    timeout_seconds: float = 300.0
    max_attempts: int = 120
    backoff_factor: float = 1.5
    max_interval_seconds: float = 30.0

    @field_validator("interval_seconds", "max_interval_seconds")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            msg = "Interval must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            msg = "timeout_seconds must be > 0"
            raise ValueError(msg)
        return v

    @field_validator("max_attempts")
    @classmethod
    def _at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        return v

    @field_validator("backoff_factor")
    @classmethod
    def _no_shrinking_backoff(cls, v: float) -> float:
        if v < 1.0:
            msg = "backoff_factor must be >= 1.0"
            raise ValueError(msg)
        return v


class HarnessConfig(BaseModel):
    """Everything a lifecycle run needs to know about the service and data.

    Attributes:
        base_url: Root URL of the service (``https://host:9443``).
        username: Basic-auth user, or ``None`` for anonymous access.
        password: Basic-auth password.
        verify_tls: Whether to verify the server certificate.
        request_timeout_seconds: Per-request timeout.
        dataset: Dataset uploaded at the start of the run.
        project_name: Name of the project created for the dataset.
        train_data_fraction: Fraction of rows used for training, as sent.
        algorithms: Algorithms built in order; each depends on the previous.
        poll: Budget for waiting on model builds.
        model_storage_dir: Directory registered as model storage.
        prediction_rows: Feature rows sent to every trained model.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://localhost:9443"
    username: str | None = "admin"
    password: str | None = "admin"
    verify_tls: bool = False
    request_timeout_seconds: float = 60.0
    dataset: DatasetConfig = DatasetConfig()
    project_name: str = "YachtHydrodynamicsProject"
    train_data_fraction: str = "0.7"
    algorithms: list[AlgorithmSpec] = _default_algorithms()
    poll: PollConfig = PollConfig()
    model_storage_dir: str = "models"
    prediction_rows: list[list[float]] = DEFAULT_PREDICTION_ROWS
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("train_data_fraction")
    @classmethod
    def _fraction_in_range(cls, v: str) -> str:
        """Validate that the fraction parses as a float in (0, 1]."""
        try:
            value = float(v)
        except ValueError:
            msg = f"train_data_fraction must be numeric, got {v!r}"
            raise ValueError(msg) from None
        if not 0.0 < value <= 1.0:
            msg = f"train_data_fraction must be in (0, 1], got {v}"
            raise ValueError(msg)
        return v

    @field_validator("algorithms")
    @classmethod
    def _algorithms_nonempty(cls, v: list[AlgorithmSpec]) -> list[AlgorithmSpec]:
        if len(v) < 1:
            msg = "algorithms list must contain at least 1 entry"
            raise ValueError(msg)
        return v

    @field_validator("prediction_rows")
    @classmethod
    def _rows_nonempty(cls, v: list[list[float]]) -> list[list[float]]:
        if len(v) < 1:
            msg = "prediction_rows must contain at least 1 row"
            raise ValueError(msg)
        return v

    @property
    def sample_file(self) -> Path:
        """Path of the dataset sample as a ``Path``."""
        return Path(self.dataset.sample_path)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class DeleteOutcome(BaseModel):
    """Result of one teardown delete request.

    Attributes:
        path: Request path that was deleted.
        status_code: HTTP status, or ``None`` when the request never completed.
        error: Error message when the delete did not succeed.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    status_code: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the delete was issued and acknowledged with a 2xx status."""
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )


class TeardownReport(BaseModel):
    """Outcome of the unconditional teardown.

    Attributes:
        project: Outcome of deleting the project.
        dataset: Outcome of deleting the dataset.
    """

    model_config = ConfigDict(frozen=True)

    project: DeleteOutcome
    dataset: DeleteOutcome

    @property
    def succeeded(self) -> bool:
        """Whether both deletes succeeded."""
        return self.project.succeeded and self.dataset.succeeded


class RunReport(BaseModel):
    """Complete result of one lifecycle run.

    Attributes:
        stages: Per-stage results in execution order.
        teardown: Teardown outcome, ``None`` if teardown never ran.
        total_duration_seconds: Wall-clock run time.
        session: Final snapshot of the session identifiers.
    """

    model_config = ConfigDict(frozen=True)

    stages: list[StageResult]
    teardown: TeardownReport | None = None
    total_duration_seconds: float = 0.0
    session: dict[str, Any] = {}

    @property
    def failed_stages(self) -> list[StageResult]:
        """Stages whose outcome is failed."""
        return [s for s in self.stages if s.status == StageStatus.FAILED]

    @property
    def skipped_stages(self) -> list[StageResult]:
        """Stages whose outcome is skipped."""
        return [s for s in self.stages if s.status == StageStatus.SKIPPED]

    @property
    def passed(self) -> bool:
        """A run passes when no stage failed. Teardown does not count."""
        return not self.failed_stages
