"""Conditional edges — routers that pick the active successor set at run time."""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from researchgraph.core.node import GraphValidationError

logger = logging.getLogger(__name__)

RouterFn = Callable[[Mapping[str, Any]], Any]


class RouterContractViolation(RuntimeError):
    """Raised when a router returns a target outside its declared set."""


def _label(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        raise RouterContractViolation(f"Router returned a non-string target: {value!r}")
    return value


def _declared(source: str, value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        raise GraphValidationError(f"Conditional edge from {source!r}: target {value!r} is not a string")
    return value


@dataclass(frozen=True)
class ConditionalEdge:
    """A router attached to a source node plus the targets it may select.

    ``targets`` maps each label the router may return to a node name (or
    the END marker). A plain list of node names maps each name to itself.
    """

    source: str
    router: RouterFn
    targets: Mapping[str, str]

    @classmethod
    def build(cls, source: str, router: RouterFn, targets: Iterable[Any] | Mapping[Any, str]) -> "ConditionalEdge":
        if isinstance(targets, Mapping):
            mapping = {_declared(source, k): _declared(source, v) for k, v in targets.items()}
        elif isinstance(targets, type) and issubclass(targets, Enum):
            mapping = {_declared(source, m): _declared(source, m) for m in targets}
        else:
            mapping = {_declared(source, t): _declared(source, t) for t in targets}
        if not mapping:
            raise GraphValidationError(f"Conditional edge from {source!r} declares no targets")
        return cls(source=source, router=router, targets=MappingProxyType(mapping))

    @property
    def possible_targets(self) -> frozenset[str]:
        return frozenset(self.targets.values())

    def route(self, state: Mapping[str, Any]) -> tuple[str, ...]:
        """Evaluate the router and return the ordered, de-duplicated target names.

        The router may return a single label, an iterable of labels, or
        ``None``/empty for "no successors".
        """
        raw = self.router(state)
        if raw is None:
            labels: list[Any] = []
        elif isinstance(raw, (str, Enum)):
            labels = [raw]
        else:
            labels = list(raw)

        selected: list[str] = []
        for value in labels:
            label = _label(value)
            if label not in self.targets:
                raise RouterContractViolation(
                    f"Router on {self.source!r} returned {label!r}, "
                    f"expected one of {sorted(self.targets)}"
                )
            target = self.targets[label]
            if target not in selected:
                selected.append(target)

        logger.debug("Router on %s selected %s", self.source, selected)
        return tuple(selected)
