"""crepro exec stream reader — sequential, bounds-checked word decoder.

The reader owns a private copy of the stream and hands out one 64-bit word
at a time.  It never looks further ahead than the word it returns.  A
well-formed stream always reaches EOF before running dry, so an underrun is
reported as a malformed-input fault, never silently padded.
"""
from __future__ import annotations

from crepro.isa import WORD, WORD_SIZE, align_up


class StreamError(Exception):
    """Malformed exec stream.  ``offset`` is the byte offset of the fault."""

    def __init__(self, offset: int, kind: str, message: str):
        super().__init__(f"offset {offset:#x}: {kind}: {message}")
        self.offset = offset
        self.kind   = kind


class StreamReader:
    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos  = 0

    @property
    def offset(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read(self) -> int:
        """Return the next word and advance past it."""
        if self.remaining < WORD_SIZE:
            raise StreamError(
                self._pos, "underrun",
                f"need {WORD_SIZE} bytes, {self.remaining} left",
            )
        (word,) = WORD.unpack_from(self._data, self._pos)
        self._pos += WORD_SIZE
        return word

    def read_data(self, size: int) -> bytes:
        """Return ``size`` raw bytes, then skip the padding up to the next word."""
        padded = align_up(size)
        if self.remaining < padded:
            raise StreamError(
                self._pos, "underrun",
                f"data blob needs {padded} bytes, {self.remaining} left",
            )
        data = self._data[self._pos:self._pos + size]
        self._pos += padded
        return data
