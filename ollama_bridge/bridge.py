# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Conversion bridge: turns client requests into Ollama calls.
Coordinates the upstream client and the streaming relay.
"""

import contextlib
import dataclasses
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import httpx

from .config import BridgeConfig
from .exceptions import InvalidRequestError
from .relay import OutboundEvent, Relay
from .upstream import OllamaClient

logger = logging.getLogger(__name__)

INPUT_REQUIRED_MESSAGE = "inputCode is required"


@dataclasses.dataclass
class ConversionRequest:
    """One /api/convert call."""
    source_code: str
    model: str
    stream: bool = True

    @classmethod
    def from_body(cls, body: Any, default_model: str) -> "ConversionRequest":
        """Validate a JSON body `{inputCode, model?, stream?}`."""
        if not isinstance(body, dict):
            raise InvalidRequestError(INPUT_REQUIRED_MESSAGE)

        source_code = body.get("inputCode")
        if not isinstance(source_code, str) or not source_code:
            raise InvalidRequestError(INPUT_REQUIRED_MESSAGE)

        model = body.get("model")
        if model is not None and not isinstance(model, str):
            raise InvalidRequestError("model must be a string")

        return cls(
            source_code=source_code,
            model=model or default_model,
            stream=bool(body.get("stream", True)),
        )


class ConversionBridge:
    """
    Bridge between the HTTP facade and the Ollama server.
    One instance serves every request; per-request state lives in the Relay.
    """

    def __init__(self, config: BridgeConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.debug = config.debug
        self.log_dir = Path(config.log_dir)
        self.client = OllamaClient(config.ollama, transport=transport)

    def parse_request(self, body: Any) -> ConversionRequest:
        return ConversionRequest.from_body(body, self.config.ollama.default_model)

    def _upstream_request(self, request: ConversionRequest) -> dict:
        return {
            "model": request.model,
            "prompt": request.source_code,
            "system": self.config.system_prompt,
            "stream": request.stream,
        }

    def _log_request(self, stage: int, filename: str, data: Any, log_id: str) -> None:
        """Log request/response data in debug mode (4-File Rule)."""
        if not self.debug:
            return

        log_dir = self.log_dir / log_id
        log_dir.mkdir(parents=True, exist_ok=True)

        is_json = isinstance(data, (dict, list))
        ext = "json" if is_json else "txt"
        filepath = log_dir / f"{stage}_{filename}.{ext}"

        with open(filepath, "w") as f:
            if is_json:
                json.dump(data, f, indent=2, ensure_ascii=False)
            else:
                f.write(str(data))

        logger.debug(f"Logged Step {stage}: {filename}")

    def _log_stream_event(self, event: OutboundEvent, log_id: str) -> None:
        """Append one outbound event to the stream dump file."""
        if not self.debug:
            return

        log_dir = self.log_dir / log_id
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / "3_stream_dump.jsonl", "a") as f:
            record = {"type": type(event).__name__.lower(), **dataclasses.asdict(event)}
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    async def convert(self, request: ConversionRequest, body: Any = None) -> dict:
        """Handle a non-streaming conversion."""
        log_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self._log_request(1, "req_client_raw", body if body is not None else dataclasses.asdict(request), log_id)
        self._log_request(2, "req_upstream", self._upstream_request(request), log_id)

        t0 = time.time()
        data = await self.client.generate(request.model, request.source_code, self.config.system_prompt)
        logger.info(f"[Non-Streaming] Conversion with '{request.model}' complete in {time.time() - t0:.3f}s.")
        self._log_request(3, "res_upstream", data, log_id)

        result = {
            "result": data.get("response"),
            "meta": {
                "duration": data.get("total_duration"),
                "model": request.model,
            },
        }
        self._log_request(4, "res_client_sent_summary", result, log_id)
        return result

    async def open_relay(
        self,
        request: ConversionRequest,
        body: Any = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> tuple[Relay, str]:
        """
        Open the upstream stream and wrap it in a Relay.

        Raises before anything is streamed, so upstream failures here can
        still be answered with an HTTP status code.
        """
        log_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self._log_request(1, "req_client_raw", body if body is not None else dataclasses.asdict(request), log_id)
        self._log_request(2, "req_upstream", self._upstream_request(request), log_id)

        stream = await self.client.open_stream(request.model, request.source_code, self.config.system_prompt)
        relay = Relay(
            stream,
            is_disconnected=is_disconnected,
            on_event=lambda event: self._log_stream_event(event, log_id),
        )
        return relay, log_id

    async def stream_sse(self, relay: Relay, log_id: str) -> AsyncGenerator[str, None]:
        """Yield the relay's SSE frames and log a summary once it terminates."""
        t0 = time.time()
        try:
            async with contextlib.aclosing(relay.sse()) as frames:
                async for frame in frames:
                    yield frame
        finally:
            summary = {
                "status": relay.state.value,
                "disconnected": relay.disconnected,
                "discarded_lines": relay.reassembler.discarded,
            }
            logger.info(f"[Streaming] Relay finished in {time.time() - t0:.3f}s: {summary}")
            self._log_request(4, "res_client_sent_summary", summary, log_id)
