# tools/diff_engine.py — Splice v1
"""
Search/replace patcher behind <edit> operations.

parse_search_replace() pulls the blocks out of an <edit> body and
apply_edits() applies them in order against the working copy of one file.
An edit is all-or-nothing: the first block that cannot be placed fails the
whole file and leaves it as it was. Placement falls back from an exact
match to a stripped-line window, then to a window with one stray line.
"""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

# ── Fences ────────────────────────────────────────────────────────────────────

_PATTERNS = [
    # fenced: <<<<<<< SEARCH, =======, >>>>>>> REPLACE
    re.compile(
        r"<{7}\s*SEARCH\r?\n(.*?)\r?\n?={7}\r?\n(.*?)\r?\n?>{7}\s*REPLACE",
        re.DOTALL,
    ),
    # labelled: SEARCH: then REPLACE:, repeated
    re.compile(
        r"SEARCH:\s*\n(.*?)\nREPLACE:\s*\n(.*?)(?=\nSEARCH:|\Z)",
        re.DOTALL,
    ),
]


def parse_search_replace(text: str) -> List[Tuple[str, str]]:
    """(search, replace) pairs from the body of an <edit> block; first style that matches wins."""
    for pattern in _PATTERNS:
        found = pattern.findall(text or "")
        if found:
            return [(s.strip("\n"), r.strip("\n")) for s, r in found]
    return []


# ── Matching ──────────────────────────────────────────────────────────────────

def _window_match(lines: List[str], search_norm: List[str], tolerance: int) -> Optional[int]:
    """First start index whose stripped window differs from search_norm in ≤ tolerance lines."""
    span = len(search_norm)
    if span == 0 or span > len(lines):
        return None
    # tolerance only makes sense when the window is bigger than the slack
    if tolerance and span <= tolerance * 2:
        return None
    for i in range(len(lines) - span + 1):
        window = [l.strip() for l in lines[i: i + span]]
        misses = sum(1 for a, b in zip(window, search_norm) if a != b)
        if misses <= tolerance:
            return i
    return None


def _reindent(replace_block: str, original_indent: int) -> List[str]:
    lines = replace_block.splitlines()
    if not lines:
        return []
    first = next((l for l in lines if l.strip()), "")
    shift = original_indent - (len(first) - len(first.lstrip()))

    out = []
    for line in lines:
        if not line.strip():
            out.append("")
        elif shift > 0:
            out.append(" " * shift + line)
        elif shift < 0 and line.startswith(" " * -shift):
            out.append(line[-shift:])
        else:
            out.append(line)
    return out


def apply_patch(original_text: str, search_block: str, replace_block: str) -> Tuple[Optional[str], str]:
    """
    Returns (patched_text | None, reason).

    reason: "ok" | "appended" | "noop" | "no_match"
    """
    if not search_block.strip():
        if original_text.strip():
            return original_text.rstrip() + "\n\n" + replace_block.strip() + "\n", "appended"
        return replace_block.strip() + "\n", "appended"

    if search_block in original_text:
        result = original_text.replace(search_block, replace_block, 1)
        return result, ("noop" if result == original_text else "ok")

    lines = original_text.splitlines()
    search_norm = [l.strip() for l in search_block.splitlines()]
    trailing_nl = original_text.endswith("\n")

    for tolerance in (0, 1):
        idx = _window_match(lines, search_norm, tolerance)
        if idx is None:
            continue
        indent = len(lines[idx]) - len(lines[idx].lstrip())
        final = lines[:idx] + _reindent(replace_block, indent) + lines[idx + len(search_norm):]
        result = "\n".join(final) + ("\n" if trailing_nl else "")
        return result, ("noop" if result == original_text else "ok")

    return None, "no_match"


def apply_edits(original_text: str, blocks: List[Tuple[str, str]]) -> Tuple[Optional[str], str]:
    """Apply every block in order; any miss aborts the whole edit and returns (None, reason)."""
    if not blocks:
        return None, "no_blocks"
    working = original_text
    changed = False
    for n, (search, replace) in enumerate(blocks, 1):
        patched, reason = apply_patch(working, search, replace)
        if patched is None:
            return None, f"block {n}: {reason}"
        if reason != "noop":
            changed = True
        working = patched
    return working, ("ok" if changed else "noop")
