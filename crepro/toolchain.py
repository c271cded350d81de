"""crepro external toolchain — cpp, gcc and clang-format.

Each helper runs its tool synchronously and either returns the tool's
product or raises ToolchainError carrying the tool's captured output.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List

from crepro.target import Target

log = logging.getLogger(__name__)

# Macros cpp echoes back on its own in -dD mode
_CPP_BUILTINS = (
    "__STDC__",
    "__STDC_HOSTED__",
    "__STDC_UTF_16__",
    "__STDC_UTF_32__",
)
# Builtins with a value other than 1, removed whatever the value
_CPP_VALUED_BUILTINS = ("__STDC_VERSION__",)

# Kernel-style and mail-friendly
STYLE = """{
BasedOnStyle: LLVM,
IndentWidth: 2,
UseTab: Never,
BreakBeforeBraces: Linux,
IndentCaseLabels: false,
DerivePointerAlignment: false,
PointerAlignment: Left,
AlignTrailingComments: true,
AllowShortBlocksOnASingleLine: false,
AllowShortCaseLabelsOnASingleLine: false,
AllowShortFunctionsOnASingleLine: false,
AllowShortIfStatementsOnASingleLine: false,
AllowShortLoopsOnASingleLine: false,
ColumnLimit: 72,
}"""


class ToolchainError(Exception):
    def __init__(self, message: str, output: str = ""):
        super().__init__(f"{message}\n{output}" if output else message)
        self.output = output


class NoCompilerError(ToolchainError):
    pass


class FormatError(ToolchainError):
    def __init__(self, message: str, output: str, source: bytes):
        super().__init__(message, output)
        self.source = source


# ── cpp ───────────────────────────────────────────────────────────────────────

def cpp_command(defines: List[str], cpp: str = "cpp") -> List[str]:
    cmd = [cpp, "-nostdinc", "-undef", "-fdirectives-only", "-dDI", "-E", "-P", "-"]
    cmd.extend(f"-D{d}" for d in defines)
    return cmd


def strip_cpp_noise(out: str, defines: List[str]) -> str:
    for d in list(defines) + list(_CPP_BUILTINS):
        out = out.replace(f"#define {d} 1\n", "")
    kept = []
    for line in out.splitlines(keepends=True):
        if any(line.startswith(f"#define {d} ") for d in _CPP_VALUED_BUILTINS):
            continue
        kept.append(line)
    return "".join(kept)


def preprocess_header(header: str, defines: List[str], cpp: str = "cpp") -> str:
    """Expand the feature-guarded common header for this set of defines."""
    cmd = cpp_command(defines, cpp)
    log.debug("running %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, input=header, capture_output=True, text=True)
    except OSError as e:
        raise ToolchainError(f"cpp failed: {e}")
    if not proc.stdout:
        raise ToolchainError(
            f"cpp failed: exit status {proc.returncode}",
            proc.stderr,
        )
    return strip_cpp_noise(proc.stdout, defines)


# ── gcc ───────────────────────────────────────────────────────────────────────

def build(target: Target, lang: str, src: str | Path) -> str:
    """Compile ``src`` and return the path of the resulting binary.

    ``lang`` is passed to ``-x`` ("c" or "c++").  Static linking is tried
    first; distributions without static libraries get a dynamic binary.
    """
    compiler = target.c_compiler_prefix + "gcc"
    if shutil.which(compiler) is None:
        raise NoCompilerError(f"no target compiler: {compiler}")

    fd, bin_path = tempfile.mkstemp(prefix="crepro")
    os.close(fd)
    flags = [
        "-x", lang, "-Wall", "-Werror", "-O1", "-g", "-o", bin_path,
        str(src), "-pthread",
    ]
    flags.extend(target.cross_cflags)
    if target.ptr_size == 4:
        # 64-bit syscall arguments overflow long on 32-bit targets.
        flags.append("-Wno-overflow")

    proc = subprocess.run([compiler, *flags, "-static"],
                          stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    if proc.returncode != 0:
        log.warning("static build failed, retrying without -static")
        proc = subprocess.run([compiler, *flags],
                              stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    if proc.returncode != 0:
        os.remove(bin_path)
        source = Path(src).read_text(errors="replace")
        raise ToolchainError(
            "failed to build program",
            f"{source}\n{proc.stdout}\ncompiler invocation: {compiler} {' '.join(flags)}\n",
        )
    log.info("built %s", bin_path)
    return bin_path


# ── clang-format ──────────────────────────────────────────────────────────────

def format_source(src: bytes, clang_format: str = "clang-format") -> bytes:
    """Reformat C source.  On failure the FormatError carries ``src`` unchanged."""
    cmd = [clang_format, "-assume-filename=/src.c", "-style", STYLE]
    try:
        proc = subprocess.run(cmd, input=src, capture_output=True)
    except OSError as e:
        raise FormatError(f"failed to format source: {e}", "", src)
    if proc.returncode != 0:
        raise FormatError(
            f"failed to format source: exit status {proc.returncode}",
            proc.stderr.decode(errors="replace"),
            src,
        )
    return proc.stdout
