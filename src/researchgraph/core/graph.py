"""Graph — builder for nodes, static and conditional edges, compiled into an immutable handle."""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable, Mapping
from types import MappingProxyType
from typing import Any, Self

from researchgraph.core.node import END, START, GraphValidationError, Node, NodeFn, as_node
from researchgraph.core.router import ConditionalEdge, RouterFn
from researchgraph.core.runner import DEFAULT_MAX_STEPS, Runner, StepSnapshot
from researchgraph.core.state import RunContext, StateSchema

logger = logging.getLogger(__name__)


class CycleError(GraphValidationError):
    """Raised when the graph contains a cycle."""


class StateGraph:
    """Mutable builder for a workflow graph over a ``StateSchema``.

    Nodes are added with ``add_node``, static edges with
    ``add_edge(source, target)`` meaning *target runs after source*, and
    dynamic fan-out with ``add_conditional_edge``. ``compile()`` validates
    the definition and returns a reusable ``CompiledGraph``.
    """

    def __init__(self, schema: StateSchema, *, name: str = "graph") -> None:
        self.schema = schema
        self.name = name
        self._nodes: dict[str, Node] = {}
        self._edges: list[tuple[str, str]] = []
        self._conditional: list[ConditionalEdge] = []
        self._start: str | None = None

    def add_node(self, name: str, fn: Node | NodeFn) -> Self:
        if name in (START, END):
            raise GraphValidationError(f"Node name {name!r} is reserved")
        if name in self._nodes:
            raise GraphValidationError(f"Node {name!r} already declared")
        self._nodes[name] = as_node(name, fn)
        return self

    def add_edge(self, source: str, target: str) -> Self:
        """Add a static edge: *target* always follows *source*. ``START`` as source sets the start node."""
        if source == START:
            return self.set_start(target)
        self._edges.append((source, target))
        return self

    def add_conditional_edge(
        self,
        source: str,
        router: RouterFn,
        targets: Iterable[Any] | Mapping[Any, str],
    ) -> Self:
        """Attach a router to *source*; it selects a subset of *targets* at run time."""
        self._conditional.append(ConditionalEdge.build(source, router, targets))
        return self

    def set_start(self, name: str) -> Self:
        self._start = name
        return self

    @property
    def node_names(self) -> list[str]:
        return list(self._nodes)

    def compile(self, *, max_steps: int = DEFAULT_MAX_STEPS) -> "CompiledGraph":
        """Validate the definition and freeze it.

        Raises ``GraphValidationError`` naming the offending node or edge.
        """
        declared = set(self._nodes)

        if self._start is None:
            raise GraphValidationError("No start node: add an edge from START")
        if self._start not in declared:
            raise GraphValidationError(f"Start node {self._start!r} is not declared")

        successors: dict[str, set[str]] = {n: set() for n in self._nodes}
        for source, target in self._edges:
            if source not in declared:
                raise GraphValidationError(f"Edge {source!r} -> {target!r}: unknown source node {source!r}")
            if target != END and target not in declared:
                raise GraphValidationError(f"Edge {source!r} -> {target!r}: unknown target node {target!r}")
            successors[source].add(target)

        conditional: dict[str, ConditionalEdge] = {}
        for edge in self._conditional:
            if edge.source not in declared:
                raise GraphValidationError(f"Conditional edge from unknown node {edge.source!r}")
            if edge.source in conditional:
                raise GraphValidationError(f"Node {edge.source!r} already has a conditional edge")
            for target in edge.possible_targets:
                if target != END and target not in declared:
                    raise GraphValidationError(
                        f"Conditional edge from {edge.source!r}: unknown target node {target!r}"
                    )
            conditional[edge.source] = edge

        possible: dict[str, set[str]] = {n: set(successors[n]) for n in self._nodes}
        for source, edge in conditional.items():
            possible[source] |= edge.possible_targets

        levels = _topological_levels(possible)

        reachable = _reachable(self._start, possible)
        orphans = sorted(declared - reachable)
        if orphans:
            raise GraphValidationError(f"Node(s) unreachable from start {self._start!r}: {', '.join(orphans)}")
        if not any(END in possible[n] for n in self._nodes):
            raise GraphValidationError("No path reaches END")

        logger.debug("Compiled %s: %d nodes, %d levels", self.name, len(self._nodes), len(levels))
        return CompiledGraph(
            name=self.name,
            schema=self.schema,
            nodes=self._nodes,
            start=self._start,
            edges=successors,
            conditional=conditional,
            possible=possible,
            levels=levels,
            max_steps=max_steps,
        )

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (
            f"StateGraph({self.name!r}, nodes={len(self._nodes)}, edges={len(self._edges)}, "
            f"conditional={len(self._conditional)})"
        )


def _topological_levels(possible: Mapping[str, set[str]]) -> tuple[tuple[str, ...], ...]:
    """Kahn's algorithm producing topological levels over every possible edge.

    Raises ``CycleError`` if the graph contains a cycle.
    """
    in_degree: dict[str, int] = {nid: 0 for nid in possible}
    for targets in possible.values():
        for t in targets:
            if t != END:
                in_degree[t] += 1
    queue: deque[str] = deque(sorted(nid for nid, deg in in_degree.items() if deg == 0))
    levels: list[tuple[str, ...]] = []
    visited = 0

    while queue:
        level: list[str] = []
        for _ in range(len(queue)):
            nid = queue.popleft()
            level.append(nid)
            visited += 1
            for succ in sorted(possible[nid]):
                if succ == END:
                    continue
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    queue.append(succ)
        levels.append(tuple(level))

    if visited != len(possible):
        stuck = sorted(nid for nid, deg in in_degree.items() if deg > 0)
        raise CycleError(f"Graph contains a cycle through: {', '.join(stuck)}")

    return tuple(levels)


def _reachable(start: str, possible: Mapping[str, set[str]]) -> set[str]:
    seen: set[str] = set()
    queue: deque[str] = deque([start])
    while queue:
        nid = queue.popleft()
        if nid in seen or nid == END:
            continue
        seen.add(nid)
        queue.extend(possible[nid])
    return seen


class CompiledGraph:
    """Immutable, reusable graph handle. Safe to share across concurrent invocations.

    Every ``invoke``/``stream`` call builds a fresh ``StateStore`` and
    ``RunContext``; nothing run-specific is kept on the handle.
    """

    def __init__(
        self,
        *,
        name: str,
        schema: StateSchema,
        nodes: Mapping[str, Node],
        start: str,
        edges: Mapping[str, set[str]],
        conditional: Mapping[str, ConditionalEdge],
        possible: Mapping[str, set[str]],
        levels: tuple[tuple[str, ...], ...],
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self.name = name
        self.schema = schema
        self.start = start
        self.levels = levels
        self._nodes: Mapping[str, Node] = MappingProxyType(dict(nodes))
        self._edges: Mapping[str, frozenset[str]] = MappingProxyType(
            {n: frozenset(t) for n, t in edges.items()}
        )
        self._conditional: Mapping[str, ConditionalEdge] = MappingProxyType(dict(conditional))
        self._possible: Mapping[str, frozenset[str]] = MappingProxyType(
            {n: frozenset(t) for n, t in possible.items()}
        )
        reverse: dict[str, set[str]] = {n: set() for n in nodes}
        for source, targets in possible.items():
            for t in targets:
                if t != END:
                    reverse[t].add(source)
        self._reverse: Mapping[str, frozenset[str]] = MappingProxyType(
            {n: frozenset(s) for n, s in reverse.items()}
        )
        self._descendants: Mapping[str, frozenset[str]] = MappingProxyType(
            {n: frozenset(_reachable(n, possible) - {n}) for n in nodes}
        )
        self._runner = Runner(max_steps=max_steps)

    # -- structure -----------------------------------------------------------

    @property
    def node_names(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, name: str) -> Node:
        return self._nodes[name]

    def predecessors(self, name: str) -> frozenset[str]:
        """Every node with a static or possible conditional edge into *name*."""
        return self._reverse.get(name, frozenset())

    def successors(self, name: str) -> frozenset[str]:
        """Every static or possible conditional target of *name*."""
        return self._possible.get(name, frozenset())

    def descendants(self, name: str) -> frozenset[str]:
        return self._descendants.get(name, frozenset())

    def next_nodes(self, name: str, state: Mapping[str, Any]) -> tuple[str, ...]:
        """Active successors of *name*: its static targets plus what its router selects."""
        targets = sorted(self._edges.get(name, frozenset()))
        edge = self._conditional.get(name)
        if edge is not None:
            for target in edge.route(state):
                if target not in targets:
                    targets.append(target)
        return tuple(targets)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "start": self.start,
            "nodes": sorted(self._nodes),
            "edges": {n: sorted(t) for n, t in sorted(self._edges.items()) if t},
            "conditional": {n: dict(e.targets) for n, e in sorted(self._conditional.items())},
            "channels": {c: repr(p) for c, p in self.schema.channels.items()},
        }

    # -- invocation ----------------------------------------------------------

    def _context(self, config: Mapping[str, Any] | None) -> RunContext:
        return RunContext.from_config(config, prefix=self.name)

    async def ainvoke(self, input: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Run to completion and return the merged final state.

        Node failures do not raise: inspect the error channel of the result.
        """
        ctx = self._context(config)
        timeout = (config or {}).get("timeout")
        run = self._runner.run(self, input, ctx)
        if timeout is not None:
            report = await asyncio.wait_for(run, timeout=timeout)
        else:
            report = await run
        return dict(report.final_state)

    def invoke(self, input: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Synchronous wrapper around ``ainvoke``. Must not be called from a running event loop."""
        return asyncio.run(self.ainvoke(input, config))

    async def stream(
        self, input: Mapping[str, Any], config: Mapping[str, Any] | None = None
    ) -> AsyncIterator[StepSnapshot]:
        """Yield one snapshot per completed superstep. Each call re-runs from start."""
        ctx = self._context(config)
        async for snapshot in self._runner.stream(self, input, ctx):
            yield snapshot

    # -- equality ------------------------------------------------------------

    def _structure(self) -> tuple:
        return (
            self.name,
            self.schema,
            self.start,
            tuple(sorted((n, id(node)) for n, node in self._nodes.items())),
            tuple(sorted((n, tuple(sorted(t))) for n, t in self._edges.items())),
            tuple(
                sorted((n, id(e.router), tuple(sorted(e.targets.items()))) for n, e in self._conditional.items())
            ),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompiledGraph):
            return NotImplemented
        return self._structure() == other._structure()

    def __hash__(self) -> int:
        return hash(self._structure())

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"CompiledGraph({self.name!r}, nodes={len(self._nodes)}, start={self.start!r})"
