"""crepro call builder — walks the exec stream once and cuts it into call blocks.

A call block is everything one call needs, in stream order:

    COPYIN*   →  memory setup for its arguments
    (fault)   →  fault-injection preamble, when this call is the fault target
    CALL      →  the call expression itself
    COPYOUT*  →  guarded reads of its output memory

Every instruction, whatever its kind, owns the result slot ``r[pos]`` where
``pos`` is its position in the stream.  Dropped calls still own theirs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from crepro.args import ArgumentEncoder, c_int_type, guarded, check_int_size
from crepro.harness import fault_preamble
from crepro.isa import INSTR_EOF, INSTR_COPYIN, INSTR_COPYOUT, RESULT_SENTINEL
from crepro.options import Options
from crepro.reader import StreamReader, StreamError
from crepro.target import Target, CallMeta

log = logging.getLogger(__name__)


@dataclass
class CallProgram:
    blocks:         List[str] = field(default_factory=list)
    nslots:         int = 0
    calls:          Dict[str, int] = field(default_factory=dict)   # call_name → NR
    uses_bitmasks:  bool = False
    uses_checksums: bool = False


class CallBuilder:
    def __init__(self, target: Target, opts: Options):
        self.target = target
        self.opts   = opts

    def emits(self, meta: CallMeta) -> bool:
        """False for calls that are decoded but left out of the program."""
        if meta.call_name in self.target.placeholder_calls:
            return False
        if not self.opts.enable_tun and meta.call_name in self.target.tun_calls:
            return False
        return True

    def build(self, reader: StreamReader) -> CallProgram:
        enc       = ArgumentEncoder(reader)
        prog      = CallProgram()
        pending: List[str] = []
        seen_call = False
        last_call = 0

        def flush() -> None:
            nonlocal pending, seen_call
            if seen_call:
                prog.blocks.append("".join(pending))
                pending   = []
                seen_call = False

        pos = 0
        while True:
            off   = reader.offset
            instr = reader.read()

            if instr == INSTR_EOF:
                break

            if instr == INSTR_COPYIN:
                flush()
                pending.append(enc.copyin(pos))

            elif instr == INSTR_COPYOUT:
                addr = reader.read()
                size_off = reader.offset
                size = reader.read()
                check_int_size(size_off, size)
                pending.append(f"\tif (r[{last_call}] != {RESULT_SENTINEL})\n")
                pending.append(guarded(
                    f"r[{pos}] = *({c_int_type(size)}*){addr:#x}", indent="\t\t"
                ))

            else:
                flush()
                if self.opts.fault and self.opts.fault_call == len(prog.blocks):
                    pending.append(fault_preamble(self.opts.fault_nth))
                pending.append(self._call(reader, enc, off, instr, pos, prog))
                last_call = pos
                seen_call = True

            pos += 1

        flush()
        prog.nslots         = pos
        prog.uses_bitmasks  = enc.uses_bitmasks
        prog.uses_checksums = enc.uses_checksums
        log.info("decoded %d instructions into %d calls", pos, len(prog.blocks))
        return prog

    def _call(self, reader: StreamReader, enc: ArgumentEncoder, off: int,
              call_id: int, pos: int, prog: CallProgram) -> str:
        meta = self.target.syscalls.get(call_id)
        if meta is None:
            raise StreamError(off, "instr", f"unknown call id {call_id}")

        nargs = reader.read()
        if meta.nargs is not None and nargs != meta.nargs:
            raise StreamError(
                off, "call",
                f"{meta.name} takes {meta.nargs} arguments, stream has {nargs}",
            )
        args = [enc.call_arg(pos) for _ in range(nargs)]
        prog.calls[meta.call_name] = meta.nr

        if not self.emits(meta):
            log.debug("r[%d]: dropped %s", pos, meta.name)
            return ""
        log.debug("r[%d]: %s(%d args)", pos, meta.name, nargs)
        if self.target.is_pseudo(meta):
            return f"\tr[{pos}] = {meta.call_name}({', '.join(args)});\n"
        callee = f"{self.target.syscall_prefix}{meta.call_name}"
        return f"\tr[{pos}] = syscall({', '.join([callee] + args)});\n"
