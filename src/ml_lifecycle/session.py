"""Session state shared between lifecycle stages.

A ``Session`` is created once per run and handed to every stage. Stages write
the identifiers they produce through a ``SessionWriter`` bound to their own
name, so each field can be written at most once per stage and every value
remembers which stage produced it. Later stages read the most recent value.
"""

from __future__ import annotations

import logging
from typing import Any

from ml_lifecycle.errors import SessionStateError

logger = logging.getLogger(__name__)

SESSION_FIELDS: tuple[str, ...] = (
    "dataset_id",
    "project_id",
    "analysis_name",
    "analysis_id",
    "model_name",
    "model_id",
    "model_status",
)
"""Identifiers that stages may record in the session."""


class Session:
    """Cross-stage identifiers for one lifecycle run."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._producers: dict[str, str] = {}
        self._written: set[tuple[str, str]] = set()

    def writer(self, stage: str) -> SessionWriter:
        """Return a writer that records values on behalf of *stage*."""
        return SessionWriter(self, stage)

    def _record(self, stage: str, field: str, value: Any) -> None:
        if field not in SESSION_FIELDS:
            msg = f"Unknown session field {field!r}"
            raise SessionStateError(msg, diagnostics={"stage": stage})
        key = (stage, field)
        if key in self._written:
            msg = f"Stage {stage!r} already wrote session field {field!r}"
            raise SessionStateError(
                msg,
                diagnostics={"stage": stage, "field": field, "value": self._values[field]},
            )
        self._written.add(key)
        self._values[field] = value
        self._producers[field] = stage
        logger.debug("Session %s=%r (set by %s)", field, value, stage)

    def get(self, field: str, default: Any = None) -> Any:
        """Return the latest value of *field*, or *default* when unset."""
        return self._values.get(field, default)

    def require(self, field: str) -> Any:
        """Return the latest value of *field*.

        Raises:
            SessionStateError: If no stage has produced *field* yet.
        """
        if field not in self._values:
            msg = f"Session field {field!r} has not been produced by any stage"
            raise SessionStateError(msg, diagnostics={"field": field})
        return self._values[field]

    def producer(self, field: str) -> str | None:
        """Return the name of the stage that produced the current value."""
        return self._producers.get(field)

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of all recorded values."""
        return dict(self._values)

    def __contains__(self, field: object) -> bool:
        return field in self._values


class SessionWriter:
    """Write access to a ``Session`` on behalf of a single stage."""

    def __init__(self, session: Session, stage: str) -> None:
        self._session = session
        self.stage = stage

    @property
    def session(self) -> Session:
        """The session this writer records into."""
        return self._session

    def set(self, field: str, value: Any) -> None:
        """Record *value* for *field*.

        Raises:
            SessionStateError: If this stage already wrote *field*, or the
                field is not a known session field.
        """
        self._session._record(self.stage, field, value)

    def get(self, field: str, default: Any = None) -> Any:
        """Read *field* from the underlying session."""
        return self._session.get(field, default)

    def require(self, field: str) -> Any:
        """Read *field*, failing if no stage produced it."""
        return self._session.require(field)

    def producer(self, field: str) -> str | None:
        """Name the stage that wrote the current value of *field*."""
        return self._session.producer(field)
