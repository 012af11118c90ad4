"""State — named channels with per-channel merge policies, plus the run context."""

import copy
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

_TEMPLATE_RE = re.compile(r"\{([^{}]+)\}")

_MISSING = object()


class ChannelConflictError(Exception):
    """Raised when a write violates a channel's merge policy."""


class InvalidUpdateError(Exception):
    """Raised when an update names a channel the schema does not declare."""


class MergePolicy(ABC):
    """How a channel combines its current value with a newly written one."""

    @abstractmethod
    def merge(self, channel: str, current: Any, new: Any) -> Any:
        """Return the channel's next value. ``current`` is ``None`` when unset."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class LastValue(MergePolicy):
    """Last writer wins: a new value fully replaces the old one."""

    def merge(self, channel: str, current: Any, new: Any) -> Any:
        return new


class SetOnce(MergePolicy):
    """Independent slot owned by a single branch; may only be written once per run."""

    def merge(self, channel: str, current: Any, new: Any) -> Any:
        if current is not None:
            raise ChannelConflictError(f"Channel {channel!r} is set-once and already holds a value")
        return new


class Append(MergePolicy):
    """List reducer: appends the new value (or each item of a list) to the existing list."""

    def merge(self, channel: str, current: Any, new: Any) -> Any:
        merged = list(current) if current is not None else []
        if isinstance(new, (list, tuple)):
            merged.extend(new)
        else:
            merged.append(new)
        return merged


class StateSchema:
    """Declared channels of a graph's shared state and their merge policies."""

    def __init__(self, channels: Mapping[str, MergePolicy], *, error_channel: str | None = "error") -> None:
        self._channels: Mapping[str, MergePolicy] = MappingProxyType(dict(channels))
        if error_channel is not None and error_channel not in self._channels:
            raise ValueError(f"Error channel {error_channel!r} is not a declared channel")
        self.error_channel = error_channel

    @property
    def channels(self) -> Mapping[str, MergePolicy]:
        return self._channels

    def policy(self, channel: str) -> MergePolicy:
        try:
            return self._channels[channel]
        except KeyError:
            raise InvalidUpdateError(f"Unknown channel: {channel!r}") from None

    def validate(self, update: Mapping[str, Any]) -> None:
        unknown = sorted(k for k in update if k not in self._channels)
        if unknown:
            raise InvalidUpdateError(f"Update writes undeclared channel(s): {', '.join(unknown)}")

    def __contains__(self, channel: str) -> bool:
        return channel in self._channels

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateSchema):
            return NotImplemented
        return dict(self._channels) == dict(other._channels) and self.error_channel == other.error_channel

    def __hash__(self) -> int:
        return hash((tuple(sorted(self._channels)), self.error_channel))

    def __repr__(self) -> str:
        return f"StateSchema({list(self._channels)!r}, error_channel={self.error_channel!r})"


class StateStore:
    """Shared state of one run.

    Nodes never touch the store. They receive ``snapshot()`` views and
    return partial updates, which the executor hands to ``apply()`` in its
    single-writer merge step.
    """

    def __init__(self, schema: StateSchema, initial: Mapping[str, Any] | None = None) -> None:
        self.schema = schema
        self._data: dict[str, Any] = {}
        if initial:
            self.apply(initial)

    def get(self, channel: str, default: Any = None) -> Any:
        return self._data.get(channel, default)

    def apply(self, update: Mapping[str, Any]) -> list[str]:
        """Merge a partial update; returns the channels that changed.

        ``None`` values are treated as "not written", matching how nodes
        return optional sections.
        """
        self.schema.validate(update)
        staged: dict[str, Any] = {}
        for channel, value in update.items():
            if value is None:
                continue
            current = staged.get(channel, self._data.get(channel))
            staged[channel] = self.schema.policy(channel).merge(channel, current, value)
        self._data.update(staged)
        return list(staged)

    def snapshot(self) -> Mapping[str, Any]:
        """Return a read-only deep copy of the last merged state."""
        return MappingProxyType(copy.deepcopy(self._data))

    def __contains__(self, channel: str) -> bool:
        return channel in self._data

    def __repr__(self) -> str:
        return f"StateStore({self._data!r})"


@dataclass(frozen=True)
class RunContext:
    """Ephemeral per-invocation data handed to every node alongside the state."""

    correlation_id: str
    config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None, *, prefix: str = "run") -> "RunContext":
        """Build a context, generating ``<prefix>_<epoch ms>`` when no id is supplied."""
        config = dict(config or {})
        thread_id = config.pop("thread_id", None)
        correlation_id = config.pop("correlation_id", None) or thread_id
        config.pop("timeout", None)
        if not correlation_id:
            correlation_id = f"{prefix}_{int(time.time() * 1000)}"
        return cls(correlation_id=str(correlation_id), config=MappingProxyType(config))

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)


def _lookup(values: Mapping[str, Any], key: str) -> Any:
    if key in values:
        return values[key]
    current: Any = values
    for part in key.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING or current is None:
            return _MISSING
    return current


def format_template(template: str, values: Mapping[str, Any]) -> str:
    """Format a string template using state values.

    Replaces ``{key}`` placeholders with values from ``values``.
    Dotted keys like ``{input.competitor_name}`` walk into mappings and
    attributes. Missing keys are left as-is (``{missing}`` stays ``{missing}``).
    """

    def _replace(match: re.Match[str]) -> str:
        value = _lookup(values, match.group(1))
        if value is _MISSING:
            return match.group(0)
        return str(value)

    return _TEMPLATE_RE.sub(_replace, template)
