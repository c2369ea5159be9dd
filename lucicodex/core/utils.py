"""Shared helpers for command rendering, environment and output bounding."""

from __future__ import annotations

import os

# Per-command output cap. Keeps memory bounded on small routers.
MAX_OUTPUT_SIZE = 512 * 1024
TRUNCATION_MARKER = "\n... [output truncated] ..."
DEFAULT_PATH = "/usr/sbin:/usr/bin:/sbin:/bin"

_QUOTE_CHARS = frozenset(" \t\n'")

_NAMED_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def _quote(arg: str) -> str:
    """Double-quote with C-style escapes; other ASCII controls become \\xNN."""
    out = ['"']
    for ch in arg:
        code = ord(ch)
        if ch in _NAMED_ESCAPES:
            out.append(_NAMED_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif code < 0x80:
            out.append(f"\\x{code:02x}")
        elif code <= 0xFFFF:
            out.append(f"\\u{code:04x}")
        else:
            out.append(f"\\U{code:08x}")
    out.append('"')
    return "".join(out)


def format_command(argv: list[str]) -> str:
    """Render argv as a shell-like string for logging and policy matching only.

    The result is never parsed back into argv. Arguments containing a space,
    tab, newline or single quote are double-quoted with escapes.
    """
    if not argv:
        return ""
    parts = []
    for arg in argv:
        if any(ch in _QUOTE_CHARS for ch in arg):
            parts.append(_quote(arg))
        else:
            parts.append(arg)
    return " ".join(parts)


def minimal_env() -> dict[str, str]:
    """Environment for spawned commands: PATH only, so no credentials leak."""
    return {"PATH": os.environ.get("PATH") or DEFAULT_PATH}


def elevation_prefix(elevate_command: str) -> list[str]:
    """Split the configured elevation command on whitespace (no shell expansion)."""
    return elevate_command.split()


def truncate_output(output: str, max_bytes: int = MAX_OUTPUT_SIZE) -> tuple[str, bool]:
    """Truncate output to max_bytes, appending the truncation marker if needed.

    Cuts on a UTF-8 boundary. Returns the (possibly) truncated text and whether
    truncation happened.
    """
    encoded = output.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return output, False
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return truncated + TRUNCATION_MARKER, True


class OutputBuffer:
    """Bounded line accumulator for streamed command output.

    Owned by a single consumer thread; not thread-safe on its own.
    """

    def __init__(self, max_bytes: int = MAX_OUTPUT_SIZE):
        self.max_bytes = max_bytes
        self.truncated = False
        self._chunks: list[str] = []
        self._size = 0

    def append_line(self, line: str) -> None:
        if self.truncated:
            return
        text = line + "\n"
        encoded = text.encode("utf-8", errors="replace")
        room = self.max_bytes - self._size
        if len(encoded) <= room:
            self._chunks.append(text)
            self._size += len(encoded)
            return
        self._chunks.append(encoded[:room].decode("utf-8", errors="ignore"))
        self._size = self.max_bytes
        self.truncated = True

    def getvalue(self) -> str:
        text = "".join(self._chunks)
        if self.truncated:
            return text + TRUNCATION_MARKER
        return text

    def __len__(self) -> int:
        return self._size
