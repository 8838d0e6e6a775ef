# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Streaming relay: NDJSON reassembly and SSE event mapping.
"""

from .reassembler import Reassembler
from .records import Chunk, Done, Error, OutboundEvent, UpstreamRecord
from .relay import Relay, RelayState

__all__ = [
    "Chunk",
    "Done",
    "Error",
    "OutboundEvent",
    "Reassembler",
    "Relay",
    "RelayState",
    "UpstreamRecord",
]
