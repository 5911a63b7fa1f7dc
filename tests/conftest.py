"""Pytest fixtures for the NIM proxy tests."""

import json
from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's .env file and environment toggles."""
    values = {
        "NIM_API_BASE": "https://nim.test/v1",
        "NIM_API_KEY": "test-key",
        "SHOW_REASONING": False,
        "ENABLE_THINKING_MODE": False,
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sse_body(*events) -> bytes:
    """Encodes backend SSE events; dicts become JSON, strings are used as-is."""
    lines = []
    for event in events:
        payload = json.dumps(event) if isinstance(event, dict) else event
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode()


def delta_event(content=None, reasoning=None) -> dict:
    delta = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return {
        "id": "cmpl-1",
        "object": "chat.completion.chunk",
        "model": "meta/llama-3.1-70b-instruct",
        "choices": [{"index": 0, "delta": delta, "finish_reason": None}],
    }


def parse_events(text: str) -> List[str]:
    """Splits a client SSE body into the payloads of its data events."""
    return [
        block[len("data: "):]
        for block in text.split("\n\n")
        if block.startswith("data: ")
    ]


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def backend_calls() -> List[httpx.Request]:
    return []


@pytest.fixture
def make_client(backend_calls) -> Callable[..., TestClient]:
    """Builds a TestClient whose backend is answered by `handler`."""
    from main import create_app

    def _make(handler, **setting_overrides) -> TestClient:
        def _recording_handler(request: httpx.Request):
            backend_calls.append(request)
            return handler(request)

        app = create_app(make_settings(**setting_overrides), transport=httpx.MockTransport(_recording_handler))
        return TestClient(app)

    return _make
