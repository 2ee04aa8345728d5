"""Managed blocks inside configuration files owned by other programs.

A managed block is a region bracketed by ``# BEGIN flask-deploy: <key>`` and
``# END flask-deploy: <key>`` comment lines. Writing the same block twice is a
no-op; writing a different body replaces the region in place.
"""

import re
from dataclasses import dataclass
from textwrap import indent

MARKER = "flask-deploy"


def begin_marker(key: str) -> str:
    return f"# BEGIN {MARKER}: {key}"


def end_marker(key: str) -> str:
    return f"# END {MARKER}: {key}"


def render_block(key: str, body: str, prefix: str = "") -> str:
    lines = [begin_marker(key), body.rstrip("\n"), end_marker(key)]
    return indent("\n".join(lines), prefix) + "\n"


def find_block(text: str, key: str) -> tuple[int, int] | None:
    """:return: (start, end) character offsets of the whole block including the
    trailing newline, or None"""
    pattern = re.compile(
        rf"^[ \t]*{re.escape(begin_marker(key))}[ \t]*\n.*?^[ \t]*{re.escape(end_marker(key))}[ \t]*(\n|$)",
        re.MULTILINE | re.DOTALL,
    )
    match = pattern.search(text)
    return (match.start(), match.end()) if match else None


def _strip_comment(line: str) -> str:
    """Drops a trailing ``#`` comment, honouring quotes."""
    quote = None
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "#":
            return line[:i]
    return line


@dataclass
class ServerBlock:
    """Line span of a top-level ``server { ... }`` block."""

    start: int
    end: int
    catch_all: int | None = None


def parse_server_blocks(text: str) -> list[ServerBlock]:
    """Finds top-level server blocks and their ``location / {`` line, by brace depth."""
    blocks = []
    depth = 0
    current = None
    for lineno, raw in enumerate(text.splitlines()):
        line = _strip_comment(raw).strip()
        if depth == 0 and re.match(r"^server\s*\{", line):
            current = ServerBlock(start=lineno, end=lineno)
        elif current is not None and depth == 1 and re.match(r"^location\s+/\s*\{", line):
            if current.catch_all is None:
                current.catch_all = lineno
        depth += line.count("{") - line.count("}")
        if current is not None and depth == 0:
            current.end = lineno
            blocks.append(current)
            current = None
    return blocks


def upsert_block(text: str, key: str, body: str) -> tuple[str, bool]:
    """Appends or replaces a managed block at the end of a flat file (ini style).

    :return: (new_text, changed)
    """
    span = find_block(text, key)
    block = render_block(key, body)
    if span:
        if text[span[0] : span[1]].rstrip("\n") == block.rstrip("\n"):
            return text, False
        return text[: span[0]] + block + text[span[1] :], True
    if text and not text.endswith("\n"):
        text += "\n"
    return text + "\n" + block, True


def inject_location_block(text: str, key: str, body: str) -> tuple[str, bool]:
    """Puts a managed block in the first server block that has a catch-all
    ``location /``, immediately before that location. Falls back to the end of
    the first server block.

    :return: (new_text, changed)
    :raises ValueError: when the text contains no server block
    """
    span = find_block(text, key)
    if span:
        existing = text[span[0] : span[1]]
        prefix = existing[: len(existing) - len(existing.lstrip(" \t"))]
        block = render_block(key, body, prefix)
        if existing.rstrip("\n") == block.rstrip("\n"):
            return text, False
        return text[: span[0]] + block + text[span[1] :], True

    servers = parse_server_blocks(text)
    if not servers:
        raise ValueError("no server block found")
    target = next((s for s in servers if s.catch_all is not None), servers[0])
    lines = text.splitlines(keepends=True)
    if target.catch_all is not None:
        anchor = target.catch_all
        prefix = re.match(r"[ \t]*", lines[anchor]).group(0)
        block = render_block(key, body, prefix) + "\n"
    else:
        anchor = target.end
        closing = re.match(r"[ \t]*", lines[anchor]).group(0)
        block = "\n" + render_block(key, body, closing + "    ")
    lines.insert(anchor, block)
    return "".join(lines), True
