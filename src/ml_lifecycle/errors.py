"""Error taxonomy for the lifecycle harness.

Every error raised by the harness derives from ``HarnessError`` and carries a
``diagnostics`` dict with structured context (request path, observed status,
failing configuration step, ...). Errors raised inside a stage abort only that
stage; the sequencer records them as a failed outcome.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base class for all harness failures.

    Attributes:
        diagnostics: Structured context describing the failure.
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any] | None = None) -> None:
        """Initialize with a message and optional structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context (paths, status codes, etc.).
        """
        super().__init__(message)
        self.diagnostics: dict[str, Any] = dict(diagnostics or {})


class TransportError(HarnessError):
    """A request to the service failed before a response was received."""


class UnexpectedStatusError(HarnessError):
    """The service answered with a status code other than the expected one.

    Attributes:
        observed: Status code the service returned.
        expected: Status code the stage required.
    """

    def __init__(
        self,
        message: str,
        *,
        observed: int,
        expected: int,
        diagnostics: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the observed and expected status codes."""
        merged = {"observed": observed, "expected": expected, **(diagnostics or {})}
        super().__init__(message, diagnostics=merged)
        self.observed = observed
        self.expected = expected


class MalformedResponseError(HarnessError):
    """A response body did not have the expected shape."""


class ConfigurationError(HarnessError):
    """A step of the analysis/model configuration was rejected.

    Attributes:
        step: Name of the configuration step that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str,
        diagnostics: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the name of the failing step."""
        super().__init__(message, diagnostics={"step": step, **(diagnostics or {})})
        self.step = step


class SessionStateError(HarnessError):
    """A session field was written twice by one stage or read before written."""


class PredictionOrderError(HarnessError):
    """Prediction was requested for a model that has not completed training."""


class CompletionTimeoutError(HarnessError, TimeoutError):
    """A model build did not reach a terminal status within the poll budget.

    Attributes:
        last_status: Status observed on the final read, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        last_status: str | None,
        diagnostics: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the last observed status."""
        super().__init__(
            message, diagnostics={"last_status": last_status, **(diagnostics or {})}
        )
        self.last_status = last_status


class ModelBuildError(HarnessError):
    """The service reported a terminal failure for a model build.

    Attributes:
        model_name: Model whose training failed.
        last_status: Status the service reported.
    """

    def __init__(
        self,
        message: str,
        *,
        model_name: str,
        last_status: str | None,
        diagnostics: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            diagnostics={
                "model_name": model_name,
                "last_status": last_status,
                **(diagnostics or {}),
            },
        )
        self.model_name = model_name
        self.last_status = last_status


class StageGraphError(HarnessError):
    """The declared stages do not form a valid dependency graph."""


class LifecycleError(HarnessError):
    """A run could not be started (invalid input or configuration)."""
