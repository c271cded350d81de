"""crepro disassembler — human-readable listing of an exec stream."""
from __future__ import annotations

from typing import List

from crepro.args import escape_data, render_result_ref
from crepro.isa import (
    INSTR_EOF, INSTR_COPYIN, INSTR_COPYOUT,
    ARG_CONST, ARG_RESULT, ARG_DATA, ARG_CSUM,
    CHUNK_DATA, CHUNK_CONST, instr_name,
)
from crepro.reader import StreamReader, StreamError
from crepro.target import Target


def _result(rd: StreamReader) -> str:
    return render_result_ref(rd.read(), rd.read(), rd.read())


def _arg(rd: StreamReader) -> str:
    off  = rd.offset
    kind = rd.read()
    size = rd.read()
    if kind == ARG_CONST:
        value, bf_off, bf_len = rd.read(), rd.read(), rd.read()
        bf = f" bf={bf_off}:{bf_len}" if bf_off or bf_len else ""
        return f"const[{size}] {value:#x}{bf}"
    if kind == ARG_RESULT:
        return f"result[{size}] {_result(rd)}"
    if kind == ARG_DATA:
        return f'data[{size}] "{escape_data(rd.read_data(size))}"'
    if kind == ARG_CSUM:
        ckind   = rd.read()
        nchunks = rd.read()
        chunks  = []
        for _ in range(nchunks):
            coff = rd.offset
            chunk_kind, value, csize = rd.read(), rd.read(), rd.read()
            if chunk_kind == CHUNK_DATA:
                chunks.append(f"mem {value:#x}/{csize}")
            elif chunk_kind == CHUNK_CONST:
                chunks.append(f"const {value:#x}/{csize}")
            else:
                raise StreamError(coff, "chunk", f"unknown checksum chunk kind {chunk_kind}")
        return f"csum[{size}] kind={ckind} {{{', '.join(chunks)}}}"
    raise StreamError(off, "arg", f"bad argument type {kind}")


def disassemble(stream: bytes, target: Target) -> str:
    """One line per instruction: byte offset, result slot, decoded form."""
    rd = StreamReader(stream)
    lines: List[str] = []
    pos = 0
    while True:
        off   = rd.offset
        instr = rd.read()
        if instr == INSTR_EOF:
            lines.append(f"  {off:06X}:        EOF")
            break
        if instr == INSTR_COPYIN:
            addr = rd.read()
            text = f"{addr:#x} {_arg(rd)}"
        elif instr == INSTR_COPYOUT:
            addr, size = rd.read(), rd.read()
            text = f"{addr:#x} [{size}]"
        else:
            meta = target.syscalls.get(instr)
            if meta is None:
                raise StreamError(off, "instr", f"unknown call id {instr}")
            nargs = rd.read()
            args  = [_arg(rd) for _ in range(nargs)]
            text  = f"{meta.name}({meta.nr}) nargs={nargs}"
            if args:
                text += "  " + ", ".join(args)
        lines.append(f"  {off:06X}: r[{pos}]  {instr_name(instr):<8}{text}")
        pos += 1
    return "\n".join(lines)
