# agent/prompts.py — Splice v1
"""Prompt text for the generation and continuation calls."""
from __future__ import annotations

from typing import Optional

from agent.context import ContextBundle
from agent.intent import EditIntent, EditType

OUTPUT_FORMAT = """OUTPUT FORMAT (strict):
  Whole file (new file, or rewriting most of one):
    <file path="src/components/Header.jsx">
    ...complete file content...
    </file>
  Small change to an existing file:
    <edit path="src/components/Header.jsx">
    <<<<<<< SEARCH
    exact lines currently in the file
    =======
    replacement lines
    >>>>>>> REPLACE
    </edit>
  Remove a file:
    <delete path="src/components/Old.jsx" />
  New npm dependency:
    <package>framer-motion</package>

Rules:
  - Paths are relative to the project root.
  - Never truncate a file or write "rest unchanged"; every <file> is complete.
  - SEARCH text must match the current file exactly, including indentation.
  - Only touch files the request needs."""

_GUIDANCE = {
    EditType.CREATE:           "Build the project from the template files. Emit every file in full.",
    EditType.FULL_REBUILD:     "Rebuild the app around the request. Emit every file you change in full.",
    EditType.STYLE_CHANGE:     "This is a visual change. Prefer <edit> blocks on the component and its stylesheet.",
    EditType.FIX_BUG:          "Fix the reported problem with the smallest change that works.",
    EditType.REFACTOR:         "Keep behaviour identical. Move code, do not rewrite it.",
    EditType.ADD_FEATURE:      "Add the feature in new files where it makes sense and wire it into the existing ones.",
    EditType.UPDATE_COMPONENT: "Change the targeted component and nothing else.",
}


def generation_prompt(intent: EditIntent, bundle: ContextBundle, history_summary: str = "") -> str:
    lines = [
        f"REQUEST: {intent.request}",
        f"EDIT TYPE: {intent.type.value}",
        f"TARGET: {intent.target}",
        _GUIDANCE[intent.type],
    ]
    if intent.conservative:
        lines.append("Be conservative: do not delete any file; change as little as possible.")
    if intent.error_context:
        lines.append("ERROR LOCATIONS: " + ", ".join(intent.error_context))
    if history_summary:
        lines += ["", "PROJECT HISTORY:", history_summary]
    lines += ["", bundle.render(), "", OUTPUT_FORMAT]
    return "\n".join(lines)


def continuation_prompt(intent: EditIntent, path: str, original: Optional[str], partial: str) -> str:
    """Ask again for one file whose output was cut off."""
    lines = [
        f"Your previous answer was cut off while writing {path}.",
        f"REQUEST: {intent.request}",
        "Emit ONLY this one file, complete, from the first line to the last:",
        f'<file path="{path}">',
        "...",
        "</file>",
    ]
    if original is not None:
        lines += ["", f"CURRENT {path}:", original.rstrip("\n")]
    if partial.strip():
        lines += ["", "WHAT YOU HAD WRITTEN SO FAR:", partial.rstrip("\n")[-4000:]]
    return "\n".join(lines)
