"""Output bounding: no tool text reaches the LLM unbounded."""

from __future__ import annotations

import os
import re
import tempfile

MAX_LINES = 2000
MAX_BYTES = 50 * 1024  # 50KB

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")


def truncate_output(
    text: str,
    max_lines: int = MAX_LINES,
    max_bytes: int = MAX_BYTES,
    spill_dir: str | None = None,
) -> str:
    """Bound text by line count and byte size, keeping the tail.

    Test runners, compilers, and linters put their verdict at the end, so
    the head is what gets dropped. When ``spill_dir`` is given, the full
    text is written there and the notice names the file.
    """
    if not text:
        return text

    lines = text.split("\n")
    total_bytes = len(text.encode("utf-8", errors="replace"))
    if len(lines) <= max_lines and total_bytes <= max_bytes:
        return text

    dropped_lines = max(0, len(lines) - max_lines)
    kept = "\n".join(lines[dropped_lines:])

    dropped_bytes = 0
    encoded = kept.encode("utf-8", errors="replace")
    if len(encoded) > max_bytes:
        dropped_bytes = len(encoded) - max_bytes
        kept = encoded[-max_bytes:].decode("utf-8", errors="ignore")

    skipped = []
    if dropped_lines:
        skipped.append(f"{dropped_lines} lines skipped")
    if dropped_bytes:
        skipped.append(f"{dropped_bytes} bytes skipped")
    notice = (
        f"[Output truncated: {', '.join(skipped)}. "
        f"Total: {len(lines)} lines, {total_bytes} bytes]"
    )
    if spill_dir:
        notice += f"\n[Full output saved to: {_spill(text, spill_dir)}]"
    return f"{notice}\n{kept}"


def _spill(text: str, spill_dir: str) -> str:
    directory = os.path.expanduser(spill_dir)
    os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="codeloop-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_output(text: str) -> str:
    """Drop control characters other than tab, newline, and carriage return."""
    return "".join(
        ch
        for ch in text
        if ch in "\t\n\r" or (ord(ch) >= 32 and not 0x7F <= ord(ch) < 0xA0)
    )
