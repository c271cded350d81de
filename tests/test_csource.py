"""
tests/test_csource.py — write(): whole-program generation

The header preprocessor is patched to echo a marker so the generated text is
fully deterministic; one test at the bottom runs the real cpp + gcc pair.
"""

from __future__ import annotations

import shutil
from unittest.mock import patch

import pytest

from crepro.csource import write
from crepro.isa import StreamWriter, ConstArg, ResultArg, CsumChunk, CHUNK_DATA
from crepro.options import Options, OptionsError
from crepro.reader import StreamError
from crepro.target import TargetError
from crepro.toolchain import ToolchainError

from conftest import OPEN, CLOSE, GETPID, SYZ_TEST, SYZ_OPEN_DEV, make_target


def _fake_cpp(header, defines, cpp="cpp"):
    return "/* header */\n" + "".join(f"/* {d} */\n" for d in defines)


def _write(stream: bytes, target=None, **opts) -> str:
    with patch("crepro.toolchain.preprocess_header", side_effect=_fake_cpp):
        return write(target or make_target(), stream, Options(**opts), "HEADER").decode()


def _open_close() -> bytes:
    return (StreamWriter()
            .copyin_data(0x20000000, b"./file0\x00")
            .call(OPEN, [ConstArg(0x20000000), ConstArg(0x42), ConstArg(0)])
            .call(CLOSE, [ResultArg(1)])
            .eof()
            .to_bytes())


# ══════════════════════════════════════════════════════════════════════════════
# Layout
# ══════════════════════════════════════════════════════════════════════════════

class TestLayout:

    def test_full_program(self):
        assert _write(_open_close()) == (
            "// autogenerated by crepro\n"
            "\n"
            "/* header */\n"
            "/* __NR_close */\n"
            "/* __NR_open */\n"
            "/* __x86_64__ */\n"
            "\n"
            "#ifndef __NR_close\n"
            "#define __NR_close 3\n"
            "#endif\n"
            "#ifndef __NR_open\n"
            "#define __NR_open 2\n"
            "#endif\n"
            "\n"
            "long r[3];\n"
            "void loop()\n"
            "{\n"
            "\tmemset(r, -1, sizeof(r));\n"
            '\tmemcpy((void*)0x20000000, "\\x2e\\x2f\\x66\\x69\\x6c\\x65\\x30\\x00", 8);\n'
            "\tr[1] = syscall(__NR_open, 0x20000000ul, 0x42ul, 0x0ul);\n"
            "\tr[2] = syscall(__NR_close, r[1]);\n"
            "}\n"
            "\n"
            "int main()\n"
            "{\n"
            "\tloop();\n"
            "\treturn 0;\n"
            "}\n"
        )

    def test_zero_calls(self):
        out = _write(StreamWriter().eof().to_bytes())
        assert "long r[0];\n" in out
        assert "void loop()\n{\n\tmemset(r, -1, sizeof(r));\n}\n" in out
        assert "int main()\n{\n\tloop();\n\treturn 0;\n}\n" in out
        assert "syscall(" not in out

    def test_repeat_uses_test_routine(self):
        out = _write(_open_close(), repeat=True)
        assert "void test()\n" in out
        assert "\tloop();\n" in out
        assert "/* SYZ_REPEAT */" in out

    def test_no_triple_newlines(self):
        out = _write(_open_close(), threaded=True, collide=True)
        assert "\n\n\n" not in out

    def test_pseudo_calls_get_no_number_define(self):
        w = StreamWriter().call(SYZ_OPEN_DEV, [ConstArg(0)] * 3).eof()
        out = _write(w.to_bytes())
        assert "/* __NR_syz_open_dev */" in out
        assert "#define __NR_syz_open_dev" not in out

    def test_target_without_defines(self):
        out = _write(_open_close(), target=make_target(need_syscall_define=False))
        assert "#ifndef" not in out

    def test_32bit_linux_mmap_alias(self):
        out = _write(_open_close(), target=make_target(ptr_size=4))
        assert "#undef __NR_mmap\n#define __NR_mmap __NR_mmap2\n" in out

    def test_akaros_has_no_mmap_alias(self):
        out = _write(_open_close(), target=make_target(os="akaros", ptr_size=4))
        assert "__NR_mmap2" not in out


# ══════════════════════════════════════════════════════════════════════════════
# Header defines
# ══════════════════════════════════════════════════════════════════════════════

class TestHeaderDefines:

    def _defines(self, stream: bytes, **opts) -> list:
        captured = []

        def cpp(header, defines, cpp="cpp"):
            captured.extend(defines)
            return ""

        with patch("crepro.toolchain.preprocess_header", side_effect=cpp):
            write(make_target(), stream, Options(**opts), "HEADER")
        return captured

    def test_bitmask_and_checksum_features_from_stream(self):
        w = (StreamWriter()
             .copyin_const(0x20000000, 1, 1, 1, 2)
             .copyin_csum(0x20000010, [CsumChunk(CHUNK_DATA, 0x20000000, 4)])
             .call(GETPID)
             .eof())
        defines = self._defines(w.to_bytes())
        assert defines[:2] == ["SYZ_USE_BITMASKS", "SYZ_USE_CHECKSUMS"]

    def test_option_defines_then_calls_then_arch(self):
        defines = self._defines(_open_close(), threaded=True, sandbox="none")
        assert defines == [
            "SYZ_SANDBOX_NONE", "SYZ_THREADED",
            "__NR_close", "__NR_open",
            "__x86_64__",
        ]

    def test_header_text_is_passed_through(self):
        with patch("crepro.toolchain.preprocess_header", side_effect=_fake_cpp) as pp:
            write(make_target(), _open_close(), Options(), "THE HEADER")
        assert pp.call_args.args[0] == "THE HEADER"


# ══════════════════════════════════════════════════════════════════════════════
# Options flowing through
# ══════════════════════════════════════════════════════════════════════════════

class TestOptions:

    def test_guards_kept_with_segv(self):
        out = _write(_open_close(), handle_segv=True)
        assert "\tNONFAILING(memcpy((void*)0x20000000," in out
        assert "\tinstall_segv_handler();\n" in out

    def test_debug_line_survives_with_debug(self):
        assert '\tdebug("loop\\n");\n' in _write(_open_close(), debug=True)

    def test_collide_three_calls(self):
        w = (StreamWriter()
             .call(GETPID).call(GETPID).call(GETPID)
             .eof())
        out = _write(w.to_bytes(), threaded=True, collide=True)
        assert "pthread_t th[6];" in out
        assert out.count("pthread_create(") == 6

    def test_fault_injection(self):
        out = _write(_open_close(), fault=True, fault_call=1, fault_nth=2)
        before, after = out.split("inject_fault(2);\n")
        assert "syscall(__NR_open" in before
        assert after.lstrip().startswith("r[2] = syscall(__NR_close")

    def test_dropped_call_slot_still_sized(self):
        w = (StreamWriter()
             .call(SYZ_TEST)
             .call(CLOSE, [ResultArg(0)])
             .eof())
        out = _write(w.to_bytes())
        assert "long r[2];\n" in out
        assert "syz_test(" not in out
        assert "\tr[1] = syscall(__NR_close, r[0]);\n" in out


# ══════════════════════════════════════════════════════════════════════════════
# Failures are all-or-nothing
# ══════════════════════════════════════════════════════════════════════════════

class TestFailures:

    def test_invalid_options(self):
        with pytest.raises(OptionsError, match="invalid opts: Collide without Threaded"):
            _write(_open_close(), collide=True)

    def test_invalid_options_keeps_cause(self):
        with pytest.raises(OptionsError) as ei:
            _write(_open_close(), sandbox="namespace")
        assert isinstance(ei.value.__cause__, OptionsError)
        assert "UseTmpDir" in str(ei.value.__cause__)

    def test_unsupported_os(self):
        with pytest.raises(TargetError):
            _write(_open_close(), target=make_target(os="fuchsia"))

    def test_malformed_stream(self):
        stream = _open_close()[:-8]   # drop EOF
        with pytest.raises(StreamError) as ei:
            _write(stream)
        assert ei.value.offset == len(stream)

    def test_preprocessor_failure(self):
        with patch("crepro.toolchain.preprocess_header",
                   side_effect=ToolchainError("cpp failed", "stderr text")):
            with pytest.raises(ToolchainError) as ei:
                write(make_target(), _open_close(), Options(), "HEADER")
        assert ei.value.output == "stderr text"

    def test_independent_calls(self):
        a = _write(_open_close())
        b = _write(StreamWriter().call(GETPID).eof().to_bytes())
        assert a == _write(_open_close())
        assert "__NR_open" not in b


# ══════════════════════════════════════════════════════════════════════════════
# Real toolchain
# ══════════════════════════════════════════════════════════════════════════════

INCLUDES = (
    b"#include <stdint.h>\n"
    b"#include <string.h>\n"
    b"#include <unistd.h>\n"
    b"#include <sys/syscall.h>\n"
)

# cpp runs with -nostdinc, so system includes go in front of the output.
MINI_HEADER = """\
#define NONFAILING(...) __VA_ARGS__
NORETURN void doexit(int status);

#if defined(SYZ_DEBUG)
static void debug(const char* msg) { (void)msg; }
#endif
"""


@pytest.mark.skipif(shutil.which("cpp") is None or shutil.which("gcc") is None,
                    reason="cpp/gcc not installed")
def test_generated_program_compiles(tmp_path):
    from crepro.toolchain import build
    w = (StreamWriter()
         .copyin_const(0x20000000, 0x41, 1)
         .call(GETPID)
         .copyout(0x20000000, 1)
         .call(CLOSE, [ResultArg(2, addend=1000)])
         .eof())
    src = INCLUDES + write(make_target(), w.to_bytes(), Options(), MINI_HEADER)
    assert b"NORETURN" not in src
    path = tmp_path / "repro.c"
    path.write_bytes(src)
    assert build(make_target(cross_cflags=[]), "c", path)
