"""crepro C source generator — exec stream → standalone C reproducer.

Pipeline (single forward pass, one private context per call to write()):

  ┌─────────────┐  words   ┌─────────────┐  blocks  ┌──────────────┐
  │ StreamReader│ ───────▶ │ CallBuilder │ ───────▶ │ ExecModel    │
  └─────────────┘          │  + args     │          │ test routine │
                           └─────────────┘          └──────┬───────┘
                                                           ▼
          bytes ◀── postprocess ◀── main() harness ◀── header + defines

Generation is all-or-nothing: write() returns the whole program or raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from crepro.calls import CallBuilder, CallProgram
from crepro.execmodel import ExecModel, generate_test_func
from crepro.harness import generate_main, routine_name
from crepro.options import Options, OptionsError
from crepro.postprocess import postprocess
from crepro.reader import StreamReader
from crepro.target import Target
from crepro import toolchain

log = logging.getLogger(__name__)

BANNER = "// autogenerated by crepro\n\n"


@dataclass
class _Context:
    target: Target
    opts:   Options
    out:    List[str] = field(default_factory=list)

    def print(self, s: str) -> None:
        self.out.append(s)

    def text(self) -> str:
        return "".join(self.out)

    def header_defines(self, prog: CallProgram) -> List[str]:
        defines: List[str] = []
        if prog.uses_bitmasks:
            defines.append("SYZ_USE_BITMASKS")
        if prog.uses_checksums:
            defines.append("SYZ_USE_CHECKSUMS")
        defines.extend(self.opts.defines())
        defines.extend(f"__NR_{name}" for name in sorted(prog.calls))
        defines.extend(self.target.c_arch)
        return defines

    def syscall_defines(self, prog: CallProgram) -> None:
        prefix = self.target.syscall_prefix
        for name in sorted(prog.calls):
            if name.startswith(self.target.pseudo_prefix) or not self.target.need_syscall_define:
                continue
            self.print(f"#ifndef {prefix}{name}\n")
            self.print(f"#define {prefix}{name} {prog.calls[name]}\n")
            self.print("#endif\n")
        if self.target.os == "linux" and self.target.ptr_size == 4:
            # 32-bit mmap is old_mmap with a different signature; use mmap2
            # the same way the executor does.
            self.print("#undef __NR_mmap\n")
            self.print("#define __NR_mmap __NR_mmap2\n")
        self.print("\n")


def write(target: Target, stream: bytes, opts: Options, common_header: str) -> bytes:
    """Generate a C program reproducing ``stream``.

    ``common_header`` is the feature-guarded header template; it is run
    through cpp with the defines this program needs and embedded verbatim.
    """
    try:
        opts.check()
    except OptionsError as e:
        raise OptionsError(f"invalid opts: {e}") from e
    target.check()

    ctx  = _Context(target, opts)
    prog = CallBuilder(target, opts).build(StreamReader(stream))
    log.info("model=%s calls=%d slots=%d",
             ExecModel.from_options(opts).value, len(prog.blocks), prog.nslots)

    ctx.print(BANNER)
    ctx.print(toolchain.preprocess_header(common_header, ctx.header_defines(prog)))
    ctx.print("\n")
    ctx.syscall_defines(prog)
    ctx.print(f"long r[{prog.nslots}];\n")
    ctx.print(generate_test_func(prog.blocks, routine_name(opts), opts))
    ctx.print(generate_main(opts))

    return postprocess(ctx.text(), opts).encode()
