from __future__ import annotations

import pytest

from crepro.target import Target, CallMeta

# call id → metadata, shared by every test that needs a call table
CALLS = {
    0: CallMeta("open", 2, nargs=3),
    1: CallMeta("read", 0, nargs=3),
    2: CallMeta("syz_test", 1000000, nargs=0),
    3: CallMeta("syz_emit_ethernet", 1000001, nargs=2),
    4: CallMeta("syz_open_dev$tty", 1000002, nargs=3),
    5: CallMeta("close", 3, nargs=1),
    6: CallMeta("ioctl$TUNSETIFF", 16, nargs=3),
    7: CallMeta("getpid", 39, nargs=0),
}

OPEN, READ, SYZ_TEST, SYZ_EMIT_ETHERNET, SYZ_OPEN_DEV, CLOSE, IOCTL, GETPID = range(8)


def make_target(**kwargs) -> Target:
    kwargs.setdefault("syscalls", dict(CALLS))
    return Target(**kwargs)


@pytest.fixture
def target() -> Target:
    return make_target()
