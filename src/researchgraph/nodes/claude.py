"""ClaudeNode — Anthropic SDK-based node returning structured JSON."""

import json
import logging
import re
from abc import abstractmethod
from collections.abc import Mapping
from typing import Any

import anthropic

from researchgraph.core.node import Node
from researchgraph.core.state import RunContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MAX_TOKENS = 1500

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class StructuredOutputError(ValueError):
    """Raised when the model response is not the JSON shape that was asked for."""


def parse_json_response(text: str, *, expect: type = dict) -> Any:
    """Extract a JSON value from a model response.

    Accepts bare JSON or JSON inside a fenced code block, and falls back to
    the outermost ``{...}`` / ``[...]`` span.
    """
    candidates = [m.group(1).strip() for m in _FENCE_RE.finditer(text)]
    candidates.append(text.strip())
    open_char, close_char = ("[", "]") if expect is list else ("{", "}")
    first, last = text.find(open_char), text.rfind(close_char)
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expect):
            return value
    raise StructuredOutputError(f"Response is not a JSON {expect.__name__}: {text[:200]!r}")


class ClaudeNode(Node):
    """Run a prompt through the Anthropic Messages API and parse a JSON answer.

    Uses ``AsyncAnthropic`` with lazy client initialization. Subclasses
    implement ``build_prompt`` and usually ``to_update``. A per-run
    ``config={"model": ...}`` takes precedence over the node's own model.
    """

    expect: type = dict

    def __init__(
        self,
        name: str,
        *,
        system: str,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.1,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(name)
        self.system = system
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    @abstractmethod
    def build_prompt(self, state: Mapping[str, Any], ctx: RunContext) -> str: ...

    def to_update(self, data: Any, state: Mapping[str, Any]) -> dict[str, Any]:
        """Map the parsed answer to a state update. By default the answer is the update."""
        return dict(data)

    async def complete(self, prompt: str, ctx: RunContext) -> str:
        """Send one user message and return the concatenated text blocks."""
        client = self._get_client()
        response = await client.messages.create(
            model=ctx.get("model") or self.model or DEFAULT_MODEL,
            max_tokens=ctx.get("max_tokens") or self.max_tokens,
            temperature=self.temperature,
            system=self.system,
            messages=[{"role": "user", "content": prompt}],
        )
        logger.debug(
            "[%s] %s used %s input / %s output tokens",
            ctx.correlation_id,
            self.name,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")

    async def run(self, state: Mapping[str, Any], ctx: RunContext) -> dict[str, Any]:
        prompt = self.build_prompt(state, ctx)
        text = await self.complete(prompt, ctx)
        data = parse_json_response(text, expect=self.expect)
        return self.to_update(data, state)
