"""crepro exec stream — instruction / argument kind table and word layout.

Stream layout (flat sequence of 64-bit little-endian words):

  COPYIN   addr  kind size <payload>          write target memory before a call
  COPYOUT  addr  size                         read target memory after a call
  <id>     nargs (kind size <payload>)*       call with metadata-table index <id>
  EOF

Argument payloads:
  CONST    value bf_off bf_len
  RESULT   index divisor addend               divisor/addend: 0 = absent
  DATA     <size raw bytes, zero-padded to 8>
  CSUM     csum_kind nchunks (chunk_kind value size)*
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List

# ── Instruction kinds ──────────────────────────────────────────────────────────
INSTR_EOF     = 0xFFFFFFFFFFFFFFFF
INSTR_COPYIN  = 0xFFFFFFFFFFFFFFFE
INSTR_COPYOUT = 0xFFFFFFFFFFFFFFFD

INSTR_NAMES: dict[int, str] = {
    INSTR_EOF:     "EOF",
    INSTR_COPYIN:  "COPYIN",
    INSTR_COPYOUT: "COPYOUT",
}

# ── Argument kinds ─────────────────────────────────────────────────────────────
ARG_CONST  = 0
ARG_RESULT = 1
ARG_DATA   = 2
ARG_CSUM   = 3

ARG_NAMES: dict[int, str] = {
    ARG_CONST:  "const",
    ARG_RESULT: "result",
    ARG_DATA:   "data",
    ARG_CSUM:   "csum",
}

# ── Checksums ──────────────────────────────────────────────────────────────────
CSUM_INET = 0

CHUNK_DATA  = 0   # value is a target address
CHUNK_CONST = 1   # value is an inline constant

# ── Word layout ────────────────────────────────────────────────────────────────
WORD_SIZE = 8  # bytes
WORD      = struct.Struct("<Q")

# Result slot value meaning "no result"
RESULT_SENTINEL = -1


def align_up(size: int) -> int:
    return (size + WORD_SIZE - 1) // WORD_SIZE * WORD_SIZE


def encode_word(value: int) -> bytes:
    return WORD.pack(value & 0xFFFFFFFFFFFFFFFF)


def instr_name(word: int) -> str:
    return INSTR_NAMES.get(word, "CALL")


# ── Stream writer ──────────────────────────────────────────────────────────────

@dataclass
class ConstArg:
    value:  int
    size:   int = 8
    bf_off: int = 0
    bf_len: int = 0


@dataclass
class ResultArg:
    index:   int
    size:    int = 8
    divisor: int = 0
    addend:  int = 0


@dataclass
class CsumChunk:
    kind:  int
    value: int
    size:  int


@dataclass
class StreamWriter:
    """
    Builds an exec stream word by word.

    Every append returns ``self`` so small programs read as one chain:

        stream = (StreamWriter()
                  .copyin_const(0x2000, 0x41, 1)
                  .call(0, [ConstArg(0x2000)])
                  .eof()
                  .to_bytes())
    """
    words: List[bytes] = field(default_factory=list)
    count: int = 0   # instructions written so far (next result slot)

    def _w(self, *values: int) -> None:
        self.words.extend(encode_word(v) for v in values)

    def _raw(self, data: bytes) -> None:
        self.words.append(bytes(data) + b"\x00" * (align_up(len(data)) - len(data)))

    # ── memory setup / teardown ───────────────────────────────────────────────
    def copyin_const(self, addr: int, value: int, size: int,
                     bf_off: int = 0, bf_len: int = 0) -> "StreamWriter":
        self._w(INSTR_COPYIN, addr, ARG_CONST, size, value, bf_off, bf_len)
        self.count += 1
        return self

    def copyin_result(self, addr: int, index: int, size: int,
                      divisor: int = 0, addend: int = 0) -> "StreamWriter":
        self._w(INSTR_COPYIN, addr, ARG_RESULT, size, index, divisor, addend)
        self.count += 1
        return self

    def copyin_data(self, addr: int, data: bytes) -> "StreamWriter":
        self._w(INSTR_COPYIN, addr, ARG_DATA, len(data))
        self._raw(data)
        self.count += 1
        return self

    def copyin_csum(self, addr: int, chunks: List[CsumChunk],
                    kind: int = CSUM_INET) -> "StreamWriter":
        self._w(INSTR_COPYIN, addr, ARG_CSUM, 2, kind, len(chunks))
        for ch in chunks:
            self._w(ch.kind, ch.value, ch.size)
        self.count += 1
        return self

    def copyout(self, addr: int, size: int) -> "StreamWriter":
        self._w(INSTR_COPYOUT, addr, size)
        self.count += 1
        return self

    # ── calls ─────────────────────────────────────────────────────────────────
    def call(self, call_id: int, args: List[object] = ()) -> "StreamWriter":
        self._w(call_id, len(args))
        for arg in args:
            if isinstance(arg, ConstArg):
                self._w(ARG_CONST, arg.size, arg.value, arg.bf_off, arg.bf_len)
            elif isinstance(arg, ResultArg):
                self._w(ARG_RESULT, arg.size, arg.index, arg.divisor, arg.addend)
            else:
                raise TypeError(f"Unsupported call argument: {arg!r}")
        self.count += 1
        return self

    def eof(self) -> "StreamWriter":
        self._w(INSTR_EOF)
        return self

    def raw_word(self, value: int) -> "StreamWriter":
        self._w(value)
        return self

    def to_bytes(self) -> bytes:
        return b"".join(self.words)
