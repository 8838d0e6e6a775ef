# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Incremental NDJSON reassembly for the Ollama token stream.

Chunk boundaries from the transport have nothing to do with record
boundaries: a chunk may end in the middle of a JSON object or in the middle
of a multi-byte UTF-8 sequence. The Reassembler keeps the undecoded tail in
its decoder and the unterminated line in its buffer, and only ever parses
complete lines, so the work per chunk is proportional to the chunk size.
"""

import codecs
import logging
from typing import List

from .records import UpstreamRecord

logger = logging.getLogger(__name__)

DELIMITER = "\n"
PREVIEW_LEN = 80


class Reassembler:
    """
    Stateful line splitter + record parser for one upstream stream.

    Not reusable: create one per conversion request.
    """

    def __init__(self):
        self.discarded = 0
        # Pieces of the unterminated line, joined only once its delimiter arrives
        self._pending: List[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._finished = False

    @property
    def buffer(self) -> str:
        """The unterminated line received so far."""
        return "".join(self._pending)

    def feed(self, chunk: bytes) -> List[UpstreamRecord]:
        """Push one raw chunk; returns the records completed by it, in order."""
        if self._finished:
            raise RuntimeError("Reassembler already finished")

        text = self._decoder.decode(chunk)
        # Pending pieces never hold a delimiter, so only the new text is scanned
        if DELIMITER not in text:
            if text:
                self._pending.append(text)
            return []

        first, *lines, last = text.split(DELIMITER)
        self._pending.append(first)
        lines.insert(0, "".join(self._pending))
        self._pending = [last] if last else []
        return self._parse_lines(lines)

    def finish(self) -> List[UpstreamRecord]:
        """Flush the decoder and parse whatever is left as a trailing record."""
        if self._finished:
            return []
        self._finished = True

        self._pending.append(self._decoder.decode(b"", final=True))
        tail = "".join(self._pending)
        self._pending = []
        return self._parse_lines(tail.split(DELIMITER))

    def _parse_lines(self, lines: List[str]) -> List[UpstreamRecord]:
        records = []
        for line in lines:
            if not line.strip():
                continue
            try:
                records.append(UpstreamRecord.from_line(line))
            except ValueError as e:
                self._discard(line, e)
        return records

    def _discard(self, line: str, error: ValueError) -> None:
        """
        Discard policy for segments that are not a JSON object.

        Records are newline-delimited, so a bad segment is a stray keepalive or
        a framing irregularity and never part of a neighbouring record. It is
        dropped (not re-buffered) and the stream carries on.
        """
        self.discarded += 1
        preview = line if len(line) <= PREVIEW_LEN else line[:PREVIEW_LEN] + "..."
        logger.warning(f"Discarding non-record upstream line ({error}): {preview!r}")
