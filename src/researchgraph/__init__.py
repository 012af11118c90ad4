"""In-process workflow graphs with dynamic fan-out, barrier joins and error routing."""

from researchgraph.core.graph import CompiledGraph, CycleError, GraphValidationError, StateGraph
from researchgraph.core.node import END, START, FunctionNode, Node, NodeError, NodeResult, NodeStatus
from researchgraph.core.router import ConditionalEdge, RouterContractViolation
from researchgraph.core.runner import GraphStallError, RunReport, Runner, RunStatus, StepSnapshot
from researchgraph.core.state import (
    Append,
    ChannelConflictError,
    InvalidUpdateError,
    LastValue,
    MergePolicy,
    RunContext,
    SetOnce,
    StateSchema,
    StateStore,
)

__all__ = [
    "END",
    "START",
    "Append",
    "ChannelConflictError",
    "CompiledGraph",
    "ConditionalEdge",
    "CycleError",
    "FunctionNode",
    "GraphStallError",
    "GraphValidationError",
    "InvalidUpdateError",
    "LastValue",
    "MergePolicy",
    "Node",
    "NodeError",
    "NodeResult",
    "NodeStatus",
    "RouterContractViolation",
    "RunContext",
    "RunReport",
    "RunStatus",
    "Runner",
    "SetOnce",
    "StateGraph",
    "StateSchema",
    "StateStore",
    "StepSnapshot",
]
