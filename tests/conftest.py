"""Shared fixtures: a fake Anthropic client that replays canned responses."""

import json
from types import SimpleNamespace

import pytest


class FakeMessages:
    def __init__(self, responses):
        self._responses = responses
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        responder = self._responses
        text = responder(kwargs) if callable(responder) else responder
        if isinstance(text, Exception):
            raise text
        if not isinstance(text, str):
            text = json.dumps(text)
        return SimpleNamespace(
            model=kwargs["model"],
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=10, output_tokens=20),
        )


class FakeClient:
    def __init__(self, responses):
        self.messages = FakeMessages(responses)


@pytest.fixture
def fake_client():
    return FakeClient
