# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Relay state machine: upstream byte stream in, outbound events out.

    AWAITING_REQUEST --events()--> STREAMING --Done/Error/disconnect--> TERMINATED

The relay is an async generator pulled by the HTTP response, so the next
upstream read only happens once the previous event has been handed to the
client (backpressure). A client disconnect either closes/cancels the
generator or is seen through `is_disconnected`; both release the upstream
stream immediately instead of draining it.
"""

import asyncio
import contextlib
import enum
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import anyio

from ..exceptions import UpstreamStreamError
from .reassembler import Reassembler
from .records import Done, Error, OutboundEvent, UpstreamRecord, events_for

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_MESSAGE = "Upstream stream ended before completion"


class ByteStream(Protocol):
    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


class RelayState(enum.Enum):
    AWAITING_REQUEST = "awaiting_request"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class Relay:
    """
    Relays one upstream stream as OutboundEvents.

    Exactly one Done or Error ends the event sequence, unless the client goes
    away first, in which case nothing more is emitted.
    """

    def __init__(
        self,
        stream: ByteStream,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        on_event: Optional[Callable[[OutboundEvent], None]] = None,
    ):
        self.stream = stream
        self.reassembler = Reassembler()
        self.state = RelayState.AWAITING_REQUEST
        self.disconnected = False
        self._is_disconnected = is_disconnected
        self._on_event = on_event

    def _emit(self, event: OutboundEvent) -> OutboundEvent:
        if isinstance(event, (Done, Error)):
            self.state = RelayState.TERMINATED
        if self._on_event:
            self._on_event(event)
        return event

    def _abandon(self) -> None:
        if self.state is not RelayState.TERMINATED:
            self.disconnected = True
            logger.info("Downstream disconnected; abandoning upstream stream")
        self.state = RelayState.TERMINATED

    async def events(self) -> AsyncIterator[OutboundEvent]:
        if self.state is not RelayState.AWAITING_REQUEST:
            raise RuntimeError(f"Relay cannot be restarted (state={self.state.value})")
        self.state = RelayState.STREAMING

        try:
            failure: Optional[UpstreamStreamError] = None
            try:
                async for chunk in self.stream.aiter_bytes():
                    if self._is_disconnected and await self._is_disconnected():
                        self._abandon()
                        return
                    for event in self._events_from(self.reassembler.feed(chunk)):
                        yield self._emit(event)
                        if self.state is RelayState.TERMINATED:
                            return
            except UpstreamStreamError as e:
                logger.error(f"Upstream stream error: {e}")
                failure = e

            # Upstream is over (cleanly or not): the pending tail may hold a last record
            for event in self._events_from(self.reassembler.finish()):
                yield self._emit(event)
                if self.state is RelayState.TERMINATED:
                    return

            if failure is not None:
                yield self._emit(Error(str(failure)))
            else:
                logger.warning("Upstream closed without a final record")
                yield self._emit(Error(INCOMPLETE_STREAM_MESSAGE))
        except (GeneratorExit, asyncio.CancelledError):
            self._abandon()
            raise
        finally:
            self.state = RelayState.TERMINATED
            with anyio.CancelScope(shield=True):
                await self.stream.aclose()

    def _events_from(self, records: list[UpstreamRecord]):
        for record in records:
            yield from events_for(record)

    async def sse(self) -> AsyncIterator[str]:
        """The same events, framed as SSE `data:` lines."""
        async with contextlib.aclosing(self.events()) as events:
            async for event in events:
                yield event.to_sse()
