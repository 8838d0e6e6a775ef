# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
HTTP client for the upstream Ollama server.

Every call opens its own httpx.AsyncClient so concurrent conversions share
nothing, and a failed call is surfaced immediately (no retries).
"""

import logging
from typing import Any, AsyncIterator

import httpx

from .config import OllamaConfig
from .exceptions import (
    ModelNotFoundError,
    UpstreamError,
    UpstreamStreamError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


class UpstreamStream:
    """
    Open byte stream of one streaming /api/generate call.

    Owns both the response and the client that produced it; aclose() releases
    them without draining the remaining body and may be called more than once.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, model: str):
        self._client = client
        self._response = response
        self.model = model
        self.closed = False

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield raw chunks as they arrive; any httpx failure becomes UpstreamStreamError."""
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise UpstreamStreamError(str(e) or e.__class__.__name__, model=self.model) from e

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class OllamaClient:
    """Thin async wrapper over the Ollama REST API."""

    def __init__(self, config: OllamaConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    def _client(self, timeout: float | None) -> httpx.AsyncClient:
        # timeout=None: generation is bounded only by the model itself
        return httpx.AsyncClient(base_url=self.config.url, transport=self._transport, timeout=timeout)

    def _payload(self, model: str, prompt: str, system: str, stream: bool) -> dict[str, Any]:
        return {"model": model, "prompt": prompt, "system": system, "stream": stream}

    async def _raise_for_status(self, response: httpx.Response, model: str) -> None:
        if response.status_code < 400:
            return
        if response.status_code == 404:
            raise ModelNotFoundError(model)
        await response.aread()
        detail = response.text.strip() or response.reason_phrase
        raise UpstreamError(
            f"Ollama returned HTTP {response.status_code}: {detail}",
            model=model,
            status_code=response.status_code,
        )

    async def generate(self, model: str, prompt: str, system: str) -> dict[str, Any]:
        """Run a non-streaming generation and return the decoded payload."""
        async with self._client(timeout=None) as client:
            try:
                response = await client.post("/api/generate", json=self._payload(model, prompt, system, False))
            except httpx.TransportError as e:
                raise UpstreamUnavailableError(str(e) or e.__class__.__name__, model=model) from e
            await self._raise_for_status(response, model)
            try:
                data = response.json()
            except ValueError as e:
                raise UpstreamError(f"Ollama returned invalid JSON: {e}", model=model) from e
        if not isinstance(data, dict):
            raise UpstreamError("Ollama returned an unexpected payload", model=model)
        return data

    async def open_stream(self, model: str, prompt: str, system: str) -> UpstreamStream:
        """
        Start a streaming generation.

        The status line is checked here, before anything is written downstream,
        so failures at this point can still become an HTTP error response.
        """
        client = self._client(timeout=None)
        request = client.build_request("POST", "/api/generate", json=self._payload(model, prompt, system, True))
        try:
            response = await client.send(request, stream=True)
        except httpx.TransportError as e:
            await client.aclose()
            raise UpstreamUnavailableError(str(e) or e.__class__.__name__, model=model) from e

        try:
            await self._raise_for_status(response, model)
        except UpstreamError:
            await response.aclose()
            await client.aclose()
            raise

        logger.debug(f"Opened upstream stream for model '{model}'")
        return UpstreamStream(client, response, model)

    async def probe(self) -> Any:
        """Probe the server root; returns its body (JSON if it is JSON, text otherwise)."""
        async with self._client(timeout=self.config.health_timeout) as client:
            response = await client.get("/")
            response.raise_for_status()
            try:
                return response.json()
            except ValueError:
                return response.text

    async def list_models(self) -> list[dict[str, Any]]:
        """Return the `models` array of /api/tags (empty if absent)."""
        async with self._client(timeout=self.config.models_timeout) as client:
            response = await client.get("/api/tags")
            response.raise_for_status()
            data = response.json()
        models = data.get("models") if isinstance(data, dict) else None
        return models or []
