"""crepro target description — platform facts and the call-metadata table.

A target is loaded from a JSON document produced alongside the exec stream:

    {
      "os": "linux", "arch": "amd64", "ptr_size": 8,
      "c_arch": ["__x86_64__"],
      "syscalls": [
        {"id": 0, "name": "open",       "nr": 2,  "nargs": 3},
        {"id": 1, "name": "ioctl$TUN",  "nr": 16, "nargs": 3},
        {"id": 2, "name": "syz_test",   "nr": 0,  "nargs": 0}
      ]
    }

The drop lists (``placeholder_calls``, ``tun_calls``) belong to the program
representation that wrote the stream, so they travel with the target rather
than being baked into the call builder.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

SUPPORTED_OS = ("linux", "akaros")

DEFAULT_PLACEHOLDER_CALLS = frozenset({"syz_test"})
DEFAULT_TUN_CALLS         = frozenset({"syz_emit_ethernet", "syz_extract_tcp_res"})


class TargetError(Exception):
    pass


@dataclass(frozen=True)
class CallMeta:
    name:      str                  # variant name, e.g. "ioctl$TUNSETIFF"
    nr:        int
    call_name: str = ""             # base name, e.g. "ioctl"
    nargs:     Optional[int] = None

    def __post_init__(self) -> None:
        if not self.call_name:
            object.__setattr__(self, "call_name", self.name.split("$", 1)[0])


@dataclass
class Target:
    os:                  str = "linux"
    arch:                str = "amd64"
    ptr_size:            int = 8
    syscall_prefix:      str = "__NR_"
    pseudo_prefix:       str = "syz_"
    c_arch:              List[str] = field(default_factory=lambda: ["__x86_64__"])
    c_compiler_prefix:   str = ""
    cross_cflags:        List[str] = field(default_factory=lambda: ["-m64"])
    need_syscall_define: bool = True
    placeholder_calls:   frozenset = DEFAULT_PLACEHOLDER_CALLS
    tun_calls:           frozenset = DEFAULT_TUN_CALLS
    syscalls:            Dict[int, CallMeta] = field(default_factory=dict)

    def check(self) -> None:
        if self.os not in SUPPORTED_OS:
            raise TargetError(f"unsupported OS: {self.os}")

    def is_pseudo(self, meta: CallMeta) -> bool:
        return meta.call_name.startswith(self.pseudo_prefix)

    @classmethod
    def from_dict(cls, d: dict) -> "Target":
        syscalls: Dict[int, CallMeta] = {}
        for i, raw in enumerate(d.get("syscalls", [])):
            try:
                meta = CallMeta(
                    name=raw["name"],
                    nr=int(raw["nr"]),
                    call_name=raw.get("call_name", ""),
                    nargs=raw.get("nargs"),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise TargetError(f"bad syscall entry #{i}: {raw!r} ({e})")
            call_id = int(raw.get("id", i))
            if call_id in syscalls:
                raise TargetError(f"duplicate syscall id {call_id}")
            syscalls[call_id] = meta

        kwargs = {}
        for key in ("os", "arch", "syscall_prefix", "pseudo_prefix",
                    "c_compiler_prefix"):
            if key in d:
                kwargs[key] = str(d[key])
        for key in ("c_arch", "cross_cflags"):
            if key in d:
                kwargs[key] = list(d[key])
        for key in ("placeholder_calls", "tun_calls"):
            if key in d:
                kwargs[key] = frozenset(d[key])
        if "ptr_size" in d:
            kwargs["ptr_size"] = int(d["ptr_size"])
        if "need_syscall_define" in d:
            kwargs["need_syscall_define"] = bool(d["need_syscall_define"])
        return cls(syscalls=syscalls, **kwargs)


def load_target(path: str | Path) -> Target:
    try:
        doc = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise TargetError(f"{path}: not valid JSON: {e}")
    if not isinstance(doc, dict):
        raise TargetError(f"{path}: expected a JSON object")
    return Target.from_dict(doc)
