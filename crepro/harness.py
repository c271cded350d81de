"""crepro runtime harness — main() around the test routine.

Entry shapes:

  repeat=False             one worker sequence, slot 0
  repeat=True, procs<=1    same, the header's loop() repeats test()
  repeat=True, procs>1     fork one worker sequence per proc, parent sleeps

A worker sequence installs the optional handlers, then either hands the run
to a sandbox child and waits for it, or calls loop() directly.
"""
from __future__ import annotations

from crepro.options import Options

FAULT_KNOBS = (
    "/sys/kernel/debug/failslab/ignore-gfp-wait",
    "/sys/kernel/debug/fail_futex/ignore-private",
)


def c_bool(v: bool) -> str:
    return "true" if v else "false"


def routine_name(opts: Options) -> str:
    """``loop`` runs once; ``test`` is what the header's repeating loop() calls."""
    return "test" if opts.repeat else "loop"


def fault_preamble(nth: int) -> str:
    out = [f'\twrite_file("{knob}", "N");\n' for knob in FAULT_KNOBS]
    out.append(f"\tinject_fault({nth});\n")
    return "".join(out)


def _worker(opts: Options, indent: str, slot: str) -> str:
    out = []
    if opts.handle_segv:
        out.append(f"{indent}install_segv_handler();\n")
    if opts.use_tmp_dir:
        out.append(f"{indent}use_temporary_dir();\n")
    if opts.sandbox:
        out.append(
            f"{indent}int pid = do_sandbox_{opts.sandbox}({slot}, {c_bool(opts.enable_tun)});\n"
        )
        out.append(f"{indent}int status = 0;\n")
        out.append(f"{indent}while (waitpid(pid, &status, __WALL) != pid) {{}}\n")
    else:
        if opts.enable_tun:
            out.append(f"{indent}setup_tun({slot}, {c_bool(opts.enable_tun)});\n")
        out.append(f"{indent}loop();\n")
    return "".join(out)


def generate_main(opts: Options) -> str:
    out = ["int main()\n{\n"]
    if opts.repeat and opts.procs > 1:
        out.append("\tint i;\n")
        out.append(f"\tfor (i = 0; i < {opts.procs}; i++) {{\n")
        out.append("\t\tif (fork() == 0) {\n")
        out.append(_worker(opts, "\t\t\t", "i"))
        out.append("\t\t\treturn 0;\n")
        out.append("\t\t}\n")
        out.append("\t}\n")
        out.append("\tsleep(1000000);\n")
    else:
        out.append(_worker(opts, "\t", "0"))
    out.append("\treturn 0;\n}\n")
    return "".join(out)
