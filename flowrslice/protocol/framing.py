"""Newline framing for the engine's line-delimited JSON stream."""

from __future__ import annotations

import codecs
from typing import Iterator

TERMINATOR = "\n"


class FrameBuffer:
    """Accumulate text chunks and yield complete newline-terminated messages.

    A chunk that leaves the buffer without a trailing terminator is only
    stored. Once the buffer ends in a terminator, every non-empty line it
    holds is yielded in arrival order and the buffer starts over.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> Iterator[str]:
        self._buffer += chunk
        if not self._buffer.endswith(TERMINATOR):
            return iter(())
        complete, self._buffer = self._buffer, ""
        return (segment for segment in complete.split(TERMINATOR) if segment)

    def reset(self) -> None:
        self._buffer = ""


class ByteFrameBuffer:
    """``FrameBuffer`` front-end for raw socket reads.

    UTF-8 sequences split across reads are held back by an incremental decoder
    so the text buffer only ever sees whole characters.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._frames = FrameBuffer()

    @property
    def pending(self) -> str:
        return self._frames.pending

    def feed(self, data: bytes) -> Iterator[str]:
        return self._frames.feed(self._decoder.decode(data))

    def reset(self) -> None:
        self._decoder.reset()
        self._frames.reset()


__all__ = ["ByteFrameBuffer", "FrameBuffer", "TERMINATOR"]
