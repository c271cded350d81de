"""crepro post-processing — one pass over the assembled source.

  1. unwrap NONFAILING(...) guards     unless segv handling is on
  2. drop debug()/debug_dump_data()    unless debug output is on
  3. drop NORETURN hints               always
  4. collapse 3+ newlines to 2         always, to a fixed point

Guard and debug matching is line-oriented: a matching line holds exactly one
macro call statement, optionally indented.  A guard nested inside another
guard on the same line is not balanced and is outside what this pass handles.
"""
from __future__ import annotations

from crepro.options import Options

GUARD       = "NONFAILING"
DEBUG_CALLS = ("debug", "debug_dump_data")
HINTS       = ("NORETURN",)


def _split_indent(line: str) -> tuple[str, str]:
    body = line.lstrip("\t ")
    return line[:len(line) - len(body)], body


def _macro_body(body: str, macro: str) -> str | None:
    """Return the text between ``MACRO(`` and ``);`` or None if no match."""
    head = macro + "("
    if body.startswith(head) and body.endswith(");"):
        return body[len(head):-2]
    return None


def unwrap_guards(text: str) -> str:
    out = []
    for line in text.splitlines(keepends=True):
        content = line.rstrip("\n")
        indent, body = _split_indent(content)
        inner = _macro_body(body, GUARD)
        if inner is not None:
            line = f"{indent}{inner};" + line[len(content):]
        out.append(line)
    return "".join(out)


def strip_debug(text: str) -> str:
    out = []
    for line in text.splitlines(keepends=True):
        _, body = _split_indent(line.rstrip("\n"))
        if any(_macro_body(body, name) is not None for name in DEBUG_CALLS):
            continue
        out.append(line)
    return "".join(out)


def strip_hints(text: str) -> str:
    for hint in HINTS:
        text = text.replace(hint, "")
    return text


def collapse_blank_lines(text: str) -> str:
    while True:
        collapsed = text.replace("\n\n\n", "\n\n")
        if len(collapsed) == len(text):
            return collapsed
        text = collapsed


def postprocess(text: str, opts: Options) -> str:
    if not opts.handle_segv:
        text = unwrap_guards(text)
    if not opts.debug:
        text = strip_debug(text)
    text = strip_hints(text)
    return collapse_blank_lines(text)
