"""crepro generation options."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

SANDBOXES = ("", "none", "setuid", "namespace")


class OptionsError(Exception):
    pass


@dataclass(frozen=True)
class Options:
    threaded: bool = False
    collide:  bool = False
    repeat:   bool = False
    procs:    int  = 1
    sandbox:  str  = ""

    # Inject a fault into call #fault_call on its fault_nth allocation
    fault:      bool = False
    fault_call: int  = 0
    fault_nth:  int  = 0

    enable_tun:  bool = False
    use_tmp_dir: bool = False
    handle_segv: bool = False
    wait_repeat: bool = False
    debug:       bool = False

    # Print "executing program" before each run so a hang can be told
    # apart from a missing crash
    repro: bool = False

    def check(self) -> None:
        """Raise OptionsError for combinations the generator refuses."""
        if self.collide and not self.threaded:
            raise OptionsError("Collide without Threaded")
        if not self.repeat and self.procs > 1:
            raise OptionsError("Procs>1 without Repeat")
        if self.sandbox not in SANDBOXES:
            raise OptionsError(f"unknown sandbox mode: {self.sandbox!r}")
        if self.sandbox == "namespace" and not self.use_tmp_dir:
            # The namespace sandbox creates its work dir relative to cwd,
            # which breaks with procs>1 and on a second run.
            raise OptionsError("Sandbox=namespace without UseTmpDir")

    def defines(self) -> List[str]:
        """Feature macros the common header is preprocessed with."""
        defs: List[str] = []
        if self.sandbox:
            defs.append(f"SYZ_SANDBOX_{self.sandbox.upper()}")
        if self.threaded:
            defs.append("SYZ_THREADED")
        if self.collide:
            defs.append("SYZ_COLLIDE")
        if self.repeat:
            defs.append("SYZ_REPEAT")
        if self.fault:
            defs.append("SYZ_FAULT_INJECTION")
        if self.enable_tun:
            defs.append("SYZ_TUN_ENABLE")
        if self.use_tmp_dir:
            defs.append("SYZ_USE_TMP_DIR")
        if self.handle_segv:
            defs.append("SYZ_HANDLE_SEGV")
        if self.wait_repeat:
            defs.append("SYZ_WAIT_REPEAT")
        if self.debug:
            defs.append("SYZ_DEBUG")
        return defs
