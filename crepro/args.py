"""crepro argument encoder and checksum assembler.

Renders one decoded argument straight from the stream into C text.  Nothing
is evaluated: every value printed here is exactly the value the stream
carried.

Guarded accesses are emitted as ``NONFAILING(<stmt>);`` on a line of their
own.  The post-processing pass relies on that shape.
"""
from __future__ import annotations

import logging

from crepro.isa import (
    ARG_CONST, ARG_RESULT, ARG_DATA, ARG_CSUM, ARG_NAMES,
    CSUM_INET, CHUNK_DATA, CHUNK_CONST,
)
from crepro.reader import StreamReader, StreamError

log = logging.getLogger(__name__)

INT_SIZES = (1, 2, 4, 8)


def guarded(stmt: str, indent: str = "\t") -> str:
    return f"{indent}NONFAILING({stmt});\n"


def c_int_type(size: int) -> str:
    return f"uint{size * 8}_t"


def escape_data(data: bytes) -> str:
    return "".join(f"\\x{b:02x}" for b in data)


# ── Renderers (pure, no stream access) ────────────────────────────────────────

def render_result_ref(index: int, divisor: int = 0, addend: int = 0) -> str:
    res = f"r[{index}]"
    if divisor:
        res = f"{res}/{divisor}"
    if addend:
        res = f"{res}+{addend}"
    return res


def render_const_store(addr: int, size: int, value: int,
                       bf_off: int = 0, bf_len: int = 0) -> str:
    typ = c_int_type(size)
    if bf_off == 0 and bf_len == 0:
        return guarded(f"*({typ}*){addr:#x} = ({typ}){value:#x}")
    return guarded(
        f"STORE_BY_BITMASK({typ}, {addr:#x}, {value:#x}, {bf_off}, {bf_len})"
    )


def render_result_store(addr: int, size: int, ref: str) -> str:
    return guarded(f"*({c_int_type(size)}*){addr:#x} = {ref}")


def render_data_copy(addr: int, data: bytes) -> str:
    return guarded(f'memcpy((void*){addr:#x}, "{escape_data(data)}", {len(data)})')


def render_const_arg(value: int) -> str:
    return f"{value:#x}ul"


# ── Checksum assembler ────────────────────────────────────────────────────────

def assemble_csum(reader: StreamReader, pos: int, addr: int) -> str:
    """Decode a checksum descriptor and render its computation + store.

    ``pos`` names the accumulator (``csum_<pos>``) so several checksums in
    one call block never collide.
    """
    off  = reader.offset
    kind = reader.read()
    if kind != CSUM_INET:
        raise StreamError(off, "csum", f"unknown checksum kind {kind}")

    acc   = f"csum_{pos}"
    lines = [
        f"\tstruct csum_inet {acc};\n",
        f"\tcsum_inet_init(&{acc});\n",
    ]
    nchunks = reader.read()
    for i in range(nchunks):
        off   = reader.offset
        ckind = reader.read()
        value = reader.read()
        size  = reader.read()
        if ckind == CHUNK_DATA:
            lines.append(guarded(
                f"csum_inet_update(&{acc}, (const uint8_t*){value:#x}, {size})"
            ))
        elif ckind == CHUNK_CONST:
            check_int_size(off, size)
            chunk = f"{acc}_chunk_{i}"
            lines.append(f"\t{c_int_type(size)} {chunk} = {value:#x};\n")
            lines.append(
                f"\tcsum_inet_update(&{acc}, (const uint8_t*)&{chunk}, {size});\n"
            )
        else:
            raise StreamError(off, "chunk", f"unknown checksum chunk kind {ckind}")
    lines.append(guarded(f"*(uint16_t*){addr:#x} = csum_inet_digest(&{acc})"))
    log.debug("csum at %#x: %d chunks", addr, nchunks)
    return "".join(lines)


def check_int_size(offset: int, size: int) -> None:
    if size not in INT_SIZES:
        raise StreamError(offset, "size", f"bad integer size {size}")


# ── Argument encoder ──────────────────────────────────────────────────────────

class ArgumentEncoder:
    """
    Reads arguments off ``reader`` and renders them.

    Tracks which header features the rendered text depends on:
    ``uses_bitmasks`` after any bitfield store, ``uses_checksums`` after any
    checksum.
    """

    def __init__(self, reader: StreamReader):
        self.reader         = reader
        self.uses_bitmasks  = False
        self.uses_checksums = False

    def result_ref(self, pos: int) -> str:
        off     = self.reader.offset
        index   = self.reader.read()
        divisor = self.reader.read()
        addend  = self.reader.read()
        if index >= pos:
            raise StreamError(
                off, "result",
                f"instruction {pos} references r[{index}], which is not produced earlier",
            )
        return render_result_ref(index, divisor, addend)

    def copyin(self, pos: int) -> str:
        """Decode the body of a COPYIN at stream position ``pos``."""
        addr = self.reader.read()
        off  = self.reader.offset
        kind = self.reader.read()
        size = self.reader.read()

        if kind == ARG_CONST:
            check_int_size(off, size)
            value  = self.reader.read()
            bf_off = self.reader.read()
            bf_len = self.reader.read()
            if bf_off or bf_len:
                self.uses_bitmasks = True
            return render_const_store(addr, size, value, bf_off, bf_len)
        if kind == ARG_RESULT:
            check_int_size(off, size)
            return render_result_store(addr, size, self.result_ref(pos))
        if kind == ARG_DATA:
            return render_data_copy(addr, self.reader.read_data(size))
        if kind == ARG_CSUM:
            self.uses_checksums = True
            return assemble_csum(self.reader, pos, addr)
        raise StreamError(off, "arg", f"bad argument type {kind}")

    def call_arg(self, pos: int) -> str:
        """Decode one call argument and return its C expression."""
        off  = self.reader.offset
        kind = self.reader.read()
        self.reader.read()   # size: every call argument is passed as a long
        if kind == ARG_CONST:
            value = self.reader.read()
            # Bitfields never reach a call argument; drop offset and length.
            self.reader.read()
            self.reader.read()
            return render_const_arg(value)
        if kind == ARG_RESULT:
            return self.result_ref(pos)
        name = ARG_NAMES.get(kind, str(kind))
        raise StreamError(off, "arg", f"unknown call argument type {name}")
