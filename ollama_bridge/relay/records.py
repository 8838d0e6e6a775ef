# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Records decoded from the Ollama stream and the events relayed to the client.
"""

import dataclasses
import json
from typing import Any, Dict, Optional, Union


@dataclasses.dataclass(frozen=True)
class UpstreamRecord:
    """One complete NDJSON object from /api/generate."""
    response: Optional[str]
    done: bool
    metadata: Dict[str, Any]

    @classmethod
    def from_line(cls, line: str) -> "UpstreamRecord":
        """
        Build a record from one newline-delimited segment.

        Raises ValueError if the segment is not a JSON object.
        """
        data = json.loads(line)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        response = data.get("response")
        return cls(
            response=response if isinstance(response, str) else None,
            done=data.get("done") is True,
            metadata=data,
        )


def _frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


@dataclasses.dataclass(frozen=True)
class Chunk:
    text: str

    def to_sse(self) -> str:
        return _frame({"chunk": self.text})


@dataclasses.dataclass(frozen=True)
class Done:
    metadata: Dict[str, Any]

    def to_sse(self) -> str:
        return _frame({"done": True, "meta": self.metadata})


@dataclasses.dataclass(frozen=True)
class Error:
    message: str

    def to_sse(self) -> str:
        return _frame({"error": self.message})


OutboundEvent = Union[Chunk, Done, Error]


def events_for(record: UpstreamRecord) -> list:
    """Map one record to its outbound events, in emission order."""
    events = []
    if record.response:
        events.append(Chunk(record.response))
    if record.done:
        events.append(Done(record.metadata))
    return events
