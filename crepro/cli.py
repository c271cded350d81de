#!/usr/bin/env python3
"""
crepro CLI — exec stream → C reproducer toolchain
Commands: gen · disasm · check · version
"""

import argparse
import logging
import sys
from pathlib import Path

from crepro import __version__

log = logging.getLogger("crepro")


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _fail(what: str, err: Exception) -> None:
    print(f"❌ {what}: {err}", file=sys.stderr)
    sys.exit(1)


def _load_target(path: str):
    from crepro.target import load_target, TargetError
    try:
        return load_target(path)
    except (OSError, TargetError) as e:
        _fail("Target error", e)


def _options(args):
    from crepro.options import Options
    return Options(
        threaded=args.threaded,
        collide=args.collide,
        repeat=args.repeat,
        procs=args.procs,
        sandbox=args.sandbox,
        fault=args.fault_call is not None,
        fault_call=args.fault_call or 0,
        fault_nth=args.fault_nth,
        enable_tun=args.tun,
        use_tmp_dir=args.tmpdir,
        handle_segv=args.segv,
        wait_repeat=args.wait_repeat,
        debug=args.debug,
        repro=args.repro,
    )


def _add_option_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--threaded", action="store_true", help="One thread per call")
    p.add_argument("--collide", action="store_true", help="Re-run calls concurrently (needs --threaded)")
    p.add_argument("--repeat", action="store_true", help="Run the program in a loop")
    p.add_argument("--procs", type=int, default=1, metavar="N", help="Parallel processes (needs --repeat)")
    p.add_argument("--sandbox", default="", choices=["", "none", "setuid", "namespace"])
    p.add_argument("--fault-call", type=int, default=None, metavar="IDX", help="Inject a fault into call IDX")
    p.add_argument("--fault-nth", type=int, default=0, metavar="N", help="Fail the N-th allocation")
    p.add_argument("--tun", action="store_true", help="Set up network device emulation")
    p.add_argument("--tmpdir", action="store_true", help="Run in a temporary directory")
    p.add_argument("--segv", action="store_true", help="Keep NONFAILING guards + SIGSEGV handler")
    p.add_argument("--wait-repeat", action="store_true", help="Wait for each repetition to finish")
    p.add_argument("--debug", action="store_true", help="Keep debug output")
    p.add_argument("--repro", action="store_true", help="Print a marker before each run")


# ---------------------------------------------------------------------------
# sub-command handlers
# ---------------------------------------------------------------------------

def cmd_gen(args):
    """crepro gen prog.exec --target t.json --header common.h [-o prog.c]"""
    from crepro.csource import write
    from crepro.options import OptionsError
    from crepro.reader import StreamError
    from crepro.target import TargetError
    from crepro.toolchain import ToolchainError, FormatError, format_source, build

    target = _load_target(args.target)
    opts   = _options(args)
    try:
        stream = Path(args.input).read_bytes()
        header = Path(args.header).read_text()
    except OSError as e:
        _fail("Input error", e)
    try:
        src = write(target, stream, opts, header)
    except StreamError as e:
        _fail("Malformed exec stream", e)
    except (OptionsError, TargetError, ToolchainError) as e:
        _fail("Generation failed", e)

    if args.format:
        try:
            src = format_source(src)
        except FormatError as e:
            log.warning("%s", e)
            src = e.source

    out = Path(args.output) if args.output else Path(args.input).with_suffix(".c")
    out.write_bytes(src)
    print(f"✅ Generated → {out}  ({len(src)} bytes)")

    if args.build:
        try:
            binary = build(target, "c", out)
        except ToolchainError as e:
            _fail("Build failed", e)
        print(f"✅ Built → {binary}")


def cmd_disasm(args):
    """crepro disasm prog.exec --target t.json"""
    from crepro.disasm import disassemble
    from crepro.reader import StreamError
    target = _load_target(args.target)
    try:
        stream = Path(args.input).read_bytes()
    except OSError as e:
        _fail("Input error", e)
    try:
        print(disassemble(stream, target))
    except StreamError as e:
        _fail("Malformed exec stream", e)


def cmd_check(args):
    """crepro check [option flags]"""
    from crepro.options import OptionsError
    try:
        _options(args).check()
    except OptionsError as e:
        _fail("Invalid options", e)
    print("✅ Options OK")


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crepro",
        description=(
            f"crepro {__version__} — C reproducers from exec streams\n\n"
            "  gen        Generate C source from an exec stream\n"
            "  disasm     List the instructions of an exec stream\n"
            "  check      Validate an option combination\n"
            "  version    Show version info\n"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"crepro {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="cmd", required=True)

    # ── gen ────────────────────────────────────────────────────────────────
    p_gen = sub.add_parser("gen", help="Generate C source from an exec stream")
    p_gen.add_argument("input", help="exec stream file")
    p_gen.add_argument("--target", required=True, help="Target description (JSON)")
    p_gen.add_argument("--header", required=True, help="Common header template")
    p_gen.add_argument("-o", "--output", help="Output .c path (default: <name>.c)")
    p_gen.add_argument("--format", action="store_true", help="Run clang-format on the result")
    p_gen.add_argument("--build", action="store_true", help="Compile the result with gcc")
    _add_option_flags(p_gen)
    p_gen.set_defaults(func=cmd_gen)

    # ── disasm ─────────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="List the instructions of an exec stream")
    p_dis.add_argument("input", help="exec stream file")
    p_dis.add_argument("--target", required=True, help="Target description (JSON)")
    p_dis.set_defaults(func=cmd_disasm)

    # ── check ──────────────────────────────────────────────────────────────
    p_chk = sub.add_parser("check", help="Validate an option combination")
    _add_option_flags(p_chk)
    p_chk.set_defaults(func=cmd_check)

    # ── version ────────────────────────────────────────────────────────────
    p_ver = sub.add_parser("version", help="Show version info")
    p_ver.set_defaults(func=lambda _: print(f"crepro {__version__}"))

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
