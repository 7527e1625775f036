"""Stage graph validation and sequential stage execution.

Stages are declared statically, each with a name, a group, the groups it
depends on, an async action and an optional async precondition. Before a run,
``build_stage_graph`` checks that the declaration forms a valid DAG. The
``StageSequencer`` then runs stages strictly in declaration order and records
one ``StageOutcome`` per stage:

- skipped, when a dependency group has no passed member or the stage's
  precondition returns a reason;
- failed, when the action raises;
- passed otherwise, which marks the stage's group as satisfied.

A failure never stops the sequence. Dependents of a failed stage are skipped
through the satisfied-group check.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from ml_lifecycle.errors import HarnessError, StageGraphError
from ml_lifecycle.models import StageOutcome, StageResult, StageStatus
from ml_lifecycle.session import Session, SessionWriter

logger = logging.getLogger(__name__)


class StageContext:
    """What a stage action can see: the client, configuration and session.

    Attributes:
        stage_name: Name of the running stage.
        client: Service client shared by all stages.
        config: Harness configuration.
        session: Session writer bound to the running stage.
    """

    def __init__(
        self,
        stage_name: str,
        *,
        client: Any,
        config: Any,
        session: SessionWriter,
    ) -> None:
        self.stage_name = stage_name
        self.client = client
        self.config = config
        self.session = session


StageAction = Callable[[StageContext], Awaitable[None]]
StagePrecondition = Callable[[StageContext], Awaitable[str | None]]


class Stage(BaseModel):
    """A single named step of the lifecycle.

    Attributes:
        name: Unique stage name.
        group: Group the stage belongs to.
        depends_on_groups: Groups that need a passed member before this runs.
        action: Coroutine function performing the stage.
        precondition: Optional coroutine function returning a skip reason,
            or ``None`` to proceed.
        description: Human-readable description for reports.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    group: str
    depends_on_groups: tuple[str, ...] = ()
    action: StageAction
    precondition: StagePrecondition | None = None
    description: str = ""

    @field_validator("name", "group")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "Stage name and group must not be blank"
            raise ValueError(msg)
        return v


class StageGraph(BaseModel):
    """A validated, ordered collection of stages.

    Attributes:
        stages: Stages in declaration (execution) order.
        groups: Group name to member stage names, in declaration order.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stages: tuple[Stage, ...]
    groups: dict[str, tuple[str, ...]]

    def members(self, group: str) -> tuple[str, ...]:
        """Stage names belonging to *group*."""
        return self.groups.get(group, ())


# ---------------------------------------------------------------------------
# Graph validation
# ---------------------------------------------------------------------------


def _find_group_cycle(edges: dict[str, set[str]]) -> list[str] | None:
    """Return one cycle in the group dependency graph, or ``None``."""
    visiting: set[str] = set()
    done: set[str] = set()
    path: list[str] = []

    def visit(group: str) -> list[str] | None:
        visiting.add(group)
        path.append(group)
        for dep in sorted(edges.get(group, ())):
            if dep in visiting:
                return [*path[path.index(dep) :], dep]
            if dep not in done:
                cycle = visit(dep)
                if cycle is not None:
                    return cycle
        visiting.discard(group)
        done.add(group)
        path.pop()
        return None

    for group in sorted(edges):
        if group not in done:
            cycle = visit(group)
            if cycle is not None:
                return cycle
    return None


def build_stage_graph(stages: list[Stage] | tuple[Stage, ...]) -> StageGraph:
    """Validate *stages* and return them as a ``StageGraph``.

    Checks, in order: stage names are unique, every dependency refers to a
    declared group, group dependencies are acyclic, and every dependency
    group has a member declared before the dependent stage.

    Raises:
        StageGraphError: On the first violation found.
    """
    if not stages:
        msg = "No stages declared"
        raise StageGraphError(msg)

    names: set[str] = set()
    groups: dict[str, list[str]] = {}
    for stage in stages:
        if stage.name in names:
            msg = f"Duplicate stage name {stage.name!r}"
            raise StageGraphError(msg, diagnostics={"stage": stage.name})
        names.add(stage.name)
        groups.setdefault(stage.group, []).append(stage.name)

    edges: dict[str, set[str]] = {group: set() for group in groups}
    for stage in stages:
        for dep in stage.depends_on_groups:
            if dep not in groups:
                msg = f"Stage {stage.name!r} depends on unknown group {dep!r}"
                raise StageGraphError(msg, diagnostics={"stage": stage.name, "group": dep})
            edges[stage.group].add(dep)

    cycle = _find_group_cycle(edges)
    if cycle is not None:
        msg = f"Group dependency cycle: {' -> '.join(cycle)}"
        raise StageGraphError(msg, diagnostics={"cycle": cycle})

    declared: set[str] = set()
    for stage in stages:
        for dep in stage.depends_on_groups:
            if dep not in declared:
                msg = (
                    f"Stage {stage.name!r} depends on group {dep!r}, "
                    "which has no member declared before it"
                )
                raise StageGraphError(msg, diagnostics={"stage": stage.name, "group": dep})
        declared.add(stage.group)

    return StageGraph(
        stages=tuple(stages),
        groups={group: tuple(members) for group, members in groups.items()},
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class StageSequencer:
    """Runs the stages of a ``StageGraph`` one after another.

    Attributes:
        satisfied_groups: Groups with at least one passed member so far.
        results: Results recorded so far, in execution order.
    """

    def __init__(self) -> None:
        self.satisfied_groups: set[str] = set()
        self.results: list[StageResult] = []

    async def run(
        self,
        graph: StageGraph,
        *,
        session: Session,
        client: Any = None,
        config: Any = None,
    ) -> list[StageResult]:
        """Execute every stage of *graph* in declaration order.

        Args:
            graph: Validated stage graph.
            session: Session shared by all stages.
            client: Service client handed to stage actions.
            config: Harness configuration handed to stage actions.

        Returns:
            One ``StageResult`` per stage.
        """
        total = len(graph.stages)
        for index, stage in enumerate(graph.stages, start=1):
            context = StageContext(
                stage.name,
                client=client,
                config=config,
                session=session.writer(stage.name),
            )
            logger.info("Stage %s [%d/%d] (group=%s)", stage.name, index, total, stage.group)
            start = time.monotonic()
            outcome = await self._run_stage(stage, context)
            result = StageResult(
                name=stage.name,
                group=stage.group,
                outcome=outcome,
                duration_seconds=time.monotonic() - start,
            )
            self.results.append(result)
            if outcome.status == StageStatus.PASSED:
                self.satisfied_groups.add(stage.group)
            _log_result(result)
        return list(self.results)

    def unsatisfied_dependencies(self, stage: Stage) -> list[str]:
        """Dependency groups of *stage* without a passed member yet."""
        return [g for g in stage.depends_on_groups if g not in self.satisfied_groups]

    async def _run_stage(self, stage: Stage, context: StageContext) -> StageOutcome:
        missing = self.unsatisfied_dependencies(stage)
        if missing:
            return StageOutcome.skipped(
                f"depends on group(s) {', '.join(missing)} with no passed stage"
            )

        try:
            if stage.precondition is not None:
                reason = await stage.precondition(context)
                if reason is not None:
                    return StageOutcome.skipped(reason)
            await stage.action(context)
        except (HarnessError, AssertionError) as exc:
            return StageOutcome.failed(f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            logger.warning("Stage %s raised unexpectedly", stage.name, exc_info=True)
            return StageOutcome.failed(f"{type(exc).__name__}: {exc}")
        return StageOutcome.passed()


def _log_result(result: StageResult) -> None:
    """Log one stage result; skips and failures are logged distinctly."""
    if result.status == StageStatus.PASSED:
        logger.info("Stage %s PASSED in %.1fs", result.name, result.duration_seconds)
    elif result.status == StageStatus.SKIPPED:
        logger.info("Stage %s SKIPPED: %s", result.name, result.outcome.reason)
    else:
        logger.warning(
            "Stage %s FAILED after %.1fs: %s",
            result.name,
            result.duration_seconds,
            result.outcome.reason,
        )
