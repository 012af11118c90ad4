"""Node ABC, NodeResult dataclass, NodeStatus enum and NodeError."""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from researchgraph.core.state import RunContext

START = "__start__"
END = "__end__"

NodeFn = Callable[[Mapping[str, Any], RunContext], dict[str, Any] | None | Awaitable[dict[str, Any] | None]]


class GraphValidationError(ValueError):
    """Raised when a graph definition is malformed."""


class NodeStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class NodeError(Exception):
    """A node function failed. Carries the node name and the underlying cause."""

    def __init__(self, node: str, cause: BaseException | str) -> None:
        self.node = node
        self.cause = cause
        if isinstance(cause, BaseException):
            message = str(cause) or type(cause).__name__
        else:
            message = cause
        self.message = message
        super().__init__(f"{node}: {message}")


@dataclass
class NodeResult:
    status: NodeStatus
    update: dict[str, Any] = field(default_factory=dict)
    error: NodeError | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Node(ABC):
    """Abstract base class for all graph nodes.

    ``run`` receives a read-only state snapshot and the run context and
    returns a partial update holding only the channels the node owns.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    async def run(self, state: Mapping[str, Any], ctx: RunContext) -> dict[str, Any] | None: ...

    async def execute(self, state: Mapping[str, Any], ctx: RunContext) -> NodeResult:
        """Run the node with timing metadata, converting exceptions to ``NodeError``."""
        start = time.monotonic()
        try:
            update = await self.run(state, ctx)
            if update is None:
                update = {}
            if not isinstance(update, Mapping):
                raise TypeError(f"expected a dict update, got {type(update).__name__}")
            result = NodeResult(status=NodeStatus.SUCCESS, update=dict(update))
        except Exception as e:
            result = NodeResult(status=NodeStatus.FAILURE, error=NodeError(self.name, e))
        elapsed_ms = (time.monotonic() - start) * 1000
        result.metadata.setdefault("duration_ms", round(elapsed_ms, 1))
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class FunctionNode(Node):
    """Wrap a plain sync or async ``(state, ctx) -> update`` function as a node.

    Sync functions run in a worker thread so siblings in a superstep overlap.
    """

    def __init__(self, name: str, fn: NodeFn) -> None:
        super().__init__(name)
        self.fn = fn

    async def run(self, state: Mapping[str, Any], ctx: RunContext) -> dict[str, Any] | None:
        if inspect.iscoroutinefunction(self.fn):
            return await self.fn(state, ctx)
        result = await asyncio.to_thread(self.fn, state, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result


def as_node(name: str, fn: Node | NodeFn) -> Node:
    if isinstance(fn, Node):
        if fn.name != name:
            raise GraphValidationError(f"Node {fn!r} registered under a different name: {name!r}")
        return fn
    if not callable(fn):
        raise GraphValidationError(f"Node {name!r} must be a Node or a callable, got {type(fn).__name__}")
    return FunctionNode(name, fn)
