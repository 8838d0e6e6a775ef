"""
Global pytest configuration and test utilities.
Provides a scriptable fake Ollama server on top of httpx.MockTransport.

Usage:
    def test_something(fake_ollama, client):
        fake_ollama.stream_chunks = [b'{"response":"hi"}\\n', b'{"done":true}\\n']
        with client.stream("POST", "/api/convert", json={"inputCode": "x"}) as response:
            ...
"""
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from ollama_bridge import server
from ollama_bridge.config import BridgeConfig


# ============================================================================
# FakeOllama - scripted upstream
# ============================================================================

class FakeOllama:
    """
    In-process stand-in for the Ollama REST API.

    Records every call in `calls` as (method, path, json_body) and answers
    from the attributes below, which tests set before making requests.
    """

    def __init__(self):
        self.calls = []
        self.reachable = True
        self.root_body = "Ollama is running"
        self.tags = {"models": [{"name": "llama3.2:latest"}, {"name": "qwen2.5-coder:7b"}]}
        self.tags_status = 200
        self.generate_status = 200
        self.generate_payload = {
            "model": "llama3.2:latest",
            "response": "import { test } from '@playwright/test';",
            "done": True,
            "total_duration": 1234,
        }
        self.stream_chunks: list[bytes] = []
        self.stream_error: Exception | None = None

    @property
    def generate_calls(self):
        return [c for c in self.calls if c[1] == "/api/generate"]

    async def _stream_body(self):
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.reachable:
            raise httpx.ConnectError("Connection refused", request=request)

        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        path = request.url.path

        if path == "/":
            return httpx.Response(200, text=self.root_body)
        if path == "/api/tags":
            return httpx.Response(self.tags_status, json=self.tags)
        if path == "/api/generate":
            if self.generate_status == 404:
                return httpx.Response(404, json={"error": f"model '{body['model']}' not found"})
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={"error": "upstream exploded"})
            if body.get("stream"):
                return httpx.Response(
                    200,
                    content=self._stream_body(),
                    headers={"content-type": "application/x-ndjson"},
                )
            return httpx.Response(200, json=self.generate_payload)
        return httpx.Response(404, text="404 page not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ============================================================================
# Pytest Fixtures
# ============================================================================

@pytest.fixture
def fake_ollama():
    return FakeOllama()


@pytest.fixture
def bridge_config(tmp_path):
    config = BridgeConfig()
    config.static_dir = None
    config.log_dir = str(tmp_path / "logs")
    return config


@pytest.fixture
def client(fake_ollama, bridge_config):
    """TestClient bound to a bridge that talks to `fake_ollama`."""
    server.init_bridge(bridge_config, transport=fake_ollama.transport)
    yield TestClient(server.app)
    server.bridge = None
    server.config = None


def sse_payloads(response) -> list:
    """Decode the `data:` frames of a streamed TestClient response."""
    return [json.loads(line[len("data: "):]) for line in response.iter_lines() if line.startswith("data: ")]


@pytest.fixture
def read_sse():
    return sse_payloads
