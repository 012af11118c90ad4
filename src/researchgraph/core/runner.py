"""Runner — superstep executor with dynamic fan-out, barrier joins and asyncio.gather per wave."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from researchgraph.core.node import END, START, NodeError, NodeResult, NodeStatus
from researchgraph.core.state import ChannelConflictError, InvalidUpdateError, RunContext, StateStore

if TYPE_CHECKING:
    from researchgraph.core.graph import CompiledGraph

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 25


class GraphStallError(RuntimeError):
    """Raised when no node can run and END was never reached."""


class RunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class StepSnapshot:
    """State after one superstep's merge."""

    step: int
    nodes: tuple[str, ...]
    state: Mapping[str, Any]
    errors: tuple[NodeError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RunReport:
    correlation_id: str = ""
    status: RunStatus = RunStatus.PENDING
    results: dict[str, NodeResult] = field(default_factory=dict)
    waves: list[tuple[str, ...]] = field(default_factory=list)
    final_state: Mapping[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def errors(self) -> list[NodeError]:
        return [r.error for r in self.results.values() if r.error is not None]

    @property
    def failed_nodes(self) -> list[str]:
        return [name for name, r in self.results.items() if r.status == NodeStatus.FAILURE]

    @property
    def success(self) -> bool:
        return self.status == RunStatus.DONE and not self.failed_nodes

    def summary(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for r in self.results.values():
            by_status[r.status.value] = by_status.get(r.status.value, 0) + 1
        return {
            "correlation_id": self.correlation_id,
            "status": self.status.value,
            "steps": len(self.waves),
            "total": len(self.results),
            "by_status": by_status,
            "duration_ms": self.duration_ms,
            "success": self.success,
        }


class Runner:
    """Execute a compiled graph in supersteps.

    Each superstep runs every ready node concurrently against the same
    snapshot, waits for all of them, merges their updates in one
    single-writer step, then follows static edges and routers to find the
    next candidates. A candidate is ready once no predecessor that could
    still fire is outstanding, so a join runs exactly once.
    """

    def __init__(self, *, max_steps: int = DEFAULT_MAX_STEPS) -> None:
        self.max_steps = max_steps

    async def run(self, graph: "CompiledGraph", input: Mapping[str, Any], ctx: RunContext) -> RunReport:
        report = RunReport(correlation_id=ctx.correlation_id)
        async for _ in self._execute(graph, input, ctx, report):
            pass
        return report

    async def stream(
        self, graph: "CompiledGraph", input: Mapping[str, Any], ctx: RunContext
    ) -> AsyncIterator[StepSnapshot]:
        async for snapshot in self._execute(graph, input, ctx, RunReport(correlation_id=ctx.correlation_id)):
            yield snapshot

    async def _execute(
        self,
        graph: "CompiledGraph",
        input: Mapping[str, Any],
        ctx: RunContext,
        report: RunReport,
    ) -> AsyncIterator[StepSnapshot]:
        cid = ctx.correlation_id
        start = time.monotonic()
        store = StateStore(graph.schema, input)
        triggered: dict[str, set[str]] = {graph.start: {START}}
        executed: set[str] = set()
        reached_end = False
        logger.info("[%s] Starting %s at %s", cid, graph.name, graph.start)

        try:
            while triggered:
                ready = self._ready(graph, triggered, executed)
                if not ready:
                    raise GraphStallError(f"No ready node among pending {sorted(triggered)}")
                if len(report.waves) >= self.max_steps:
                    raise GraphStallError(f"Exceeded {self.max_steps} supersteps")

                wave = tuple(sorted(ready))
                for name in wave:
                    del triggered[name]
                report.waves.append(wave)
                step = len(report.waves)

                report.status = RunStatus.RUNNING
                logger.info("[%s] Step %d: %s", cid, step, list(wave))
                # One copy per node: siblings must not see each other's in-place edits.
                results = await asyncio.gather(*(self._run_node(graph, name, store.snapshot(), ctx) for name in wave))

                report.status = RunStatus.MERGING
                errors = self._merge(graph, store, wave, results, report, cid)
                executed.update(wave)

                state = store.snapshot()
                for name in wave:
                    for target in graph.next_nodes(name, state):
                        if target == END:
                            reached_end = True
                            logger.info("[%s] %s reached END", cid, name)
                            continue
                        triggered.setdefault(target, set()).add(name)

                report.final_state = state
                yield StepSnapshot(step=step, nodes=wave, state=state, errors=tuple(errors))

            if not reached_end:
                raise GraphStallError(f"Run ended without reaching END after {len(report.waves)} step(s)")
        except BaseException:
            report.status = RunStatus.FAILED
            report.final_state = store.snapshot()
            raise
        finally:
            report.duration_ms = round((time.monotonic() - start) * 1000, 1)

        report.status = RunStatus.DONE
        logger.info("[%s] Done in %d step(s), %.0fms", cid, len(report.waves), report.duration_ms)

    def _ready(self, graph: "CompiledGraph", triggered: Mapping[str, set[str]], executed: set[str]) -> list[str]:
        """Candidates with no outstanding predecessor.

        A predecessor that already executed without selecting the candidate
        is never waited on. One that has not executed is waited on only while
        another pending candidate can still lead to it.
        """
        ready = []
        for name in triggered:
            others = [c for c in triggered if c != name]
            waiting = [
                pred
                for pred in graph.predecessors(name)
                if pred not in executed and any(pred == c or pred in graph.descendants(c) for c in others)
            ]
            if waiting:
                logger.debug("%s waiting on %s", name, waiting)
            else:
                ready.append(name)
        return ready

    async def _run_node(
        self, graph: "CompiledGraph", name: str, snapshot: Mapping[str, Any], ctx: RunContext
    ) -> NodeResult:
        node = graph.get_node(name)
        logger.info("[%s] Running %s", ctx.correlation_id, name)
        result = await node.execute(snapshot, ctx)
        logger.info("[%s] Finished %s: %s", ctx.correlation_id, name, result.status.value)
        return result

    def _merge(
        self,
        graph: "CompiledGraph",
        store: StateStore,
        wave: tuple[str, ...],
        results: list[NodeResult],
        report: RunReport,
        cid: str,
    ) -> list[NodeError]:
        """Apply a wave's updates in node-name order; failures go to the error channel."""
        errors: list[NodeError] = []
        for name, result in zip(wave, results):
            if result.status == NodeStatus.SUCCESS:
                try:
                    changed = store.apply(result.update)
                    logger.debug("[%s] %s wrote %s", cid, name, changed)
                except (InvalidUpdateError, ChannelConflictError) as e:
                    result.status = NodeStatus.FAILURE
                    result.error = NodeError(name, e)
                    result.update = {}

            if result.status == NodeStatus.FAILURE and result.error is not None:
                logger.warning("[%s] Node failed: %s", cid, result.error)
                errors.append(result.error)
                if graph.schema.error_channel is not None:
                    store.apply({graph.schema.error_channel: str(result.error)})

            report.results[name] = result
        return errors
