"""crepro execution models — lays call blocks out as one callable test routine.

  SEQUENTIAL   one routine, calls in stream order
  THREADED     one worker thread per call, spawned with random jitter
  COLLIDE      THREADED, then a second round re-spawning every call so two
               instances of the same call can race

Worker storage is always 2 × calls so the driver looks the same in every
threaded shape; only COLLIDE fills the second half.
"""
from __future__ import annotations

from enum import Enum
from typing import List

from crepro.options import Options


class ExecModel(Enum):
    SEQUENTIAL = "sequential"
    THREADED   = "threaded"
    COLLIDE    = "collide"

    @classmethod
    def from_options(cls, opts: Options) -> "ExecModel":
        if not opts.threaded:
            return cls.SEQUENTIAL
        if opts.collide:
            return cls.COLLIDE
        return cls.THREADED


def _prologue(name: str, opts: Options) -> List[str]:
    out: List[str] = []
    if opts.debug:
        # Keeps debug() referenced so -Wunused-function stays quiet.
        out.append(f'\tdebug("{name}\\n");\n')
    if opts.repro:
        out.append(
            '\tsyscall(SYS_write, 1, "executing program\\n", '
            'strlen("executing program\\n"));\n'
        )
    out.append("\tmemset(r, -1, sizeof(r));\n")
    return out


def _spawn(slot: int, call: int) -> str:
    return f"\tpthread_create(&th[{slot}], 0, thr, (void*){call});\n"


def generate_test_func(blocks: List[str], name: str, opts: Options) -> str:
    model = ExecModel.from_options(opts)
    if model is ExecModel.SEQUENTIAL:
        out = [f"void {name}()\n{{\n"]
        out.extend(_prologue(name, opts))
        out.extend(blocks)
        out.append("}\n\n")
        return "".join(out)

    ncalls = len(blocks)
    out = ["void *thr(void *arg)\n{\n", "\tswitch ((long)arg) {\n"]
    for i, block in enumerate(blocks):
        out.append(f"\tcase {i}:\n")
        out.append(block.replace("\t", "\t\t"))
        out.append("\t\tbreak;\n")
    out.append("\t}\n")
    out.append("\treturn 0;\n}\n\n")

    out.append(f"void {name}()\n{{\n")
    if ncalls:
        out.append(f"\tpthread_t th[{2 * ncalls}];\n")
    out.append("\n")
    out.extend(_prologue(name, opts))
    if model is ExecModel.COLLIDE:
        out.append("\tsrand(getpid());\n")
    for i in range(ncalls):
        out.append(_spawn(i, i))
        out.append("\tusleep(rand()%10000);\n")
    if model is ExecModel.COLLIDE:
        for i in range(ncalls):
            out.append(_spawn(ncalls + i, i))
            out.append("\tif (rand()%2)\n")
            out.append("\t\tusleep(rand()%10000);\n")
    out.append("\tusleep(rand()%100000);\n")
    out.append("}\n\n")
    return "".join(out)
