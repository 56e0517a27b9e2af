"""Newline framing over a fragmented byte stream."""

from __future__ import annotations

from typing import List

from stdio_rpc.ipc.protocol import DELIMITER


class LineFramer:
    """Reassembles newline-delimited frames from arbitrary byte chunks.

    Buffering is done on bytes, so a multi-byte UTF-8 character split
    across two chunks is decoded intact once its line completes.

    Usage:
        framer = LineFramer()
        framer.feed(b'{"id":1,')      # -> []
        framer.feed(b'"result":1}\\n')  # -> ['{"id":1,"result":1}']
    """

    def __init__(self):
        self._buffer = bytearray()
        self.dropped = 0

    @property
    def buffered(self) -> int:
        """Size in bytes of the incomplete tail."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[str]:
        """Append a chunk and return every frame it completes, in order.

        Blank lines are skipped. Lines that are not valid UTF-8 are dropped
        and counted in ``dropped``. Never raises.
        """
        self._buffer.extend(chunk)
        if DELIMITER not in chunk:
            return []

        *lines, tail = self._buffer.split(DELIMITER)
        self._buffer = bytearray(tail)

        frames: List[str] = []
        for line in lines:
            try:
                text = line.decode("utf-8")
            except UnicodeDecodeError:
                self.dropped += 1
                continue
            if text.strip():
                frames.append(text)
        return frames

    def reset(self) -> None:
        self._buffer.clear()
