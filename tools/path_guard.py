# tools/path_guard.py — Splice v1
"""
Path normalization + project-root jail.

Every path that reaches the manifest or the sandbox goes through
normalize_path() first:
  1. Backslashes → forward slashes, "./" prefixes and duplicate slashes removed
  2. Absolute paths under the sandbox project root are made relative
  3. Anything else absolute, drive-lettered, NUL-bearing or climbing out
     with ".." is rejected with PathSafetyViolation
"""
from __future__ import annotations

import posixpath
import re

from agent.errors import PathSafetyViolation

DEFAULT_PROJECT_ROOT = "/home/user/app"

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def normalize_path(path: str, project_root: str = DEFAULT_PROJECT_ROOT) -> str:
    """Return the project-relative POSIX form of *path* or raise PathSafetyViolation."""
    if path is None or not str(path).strip():
        raise PathSafetyViolation(str(path), "empty path")

    raw = str(path).strip().strip("\"'")
    if "\x00" in raw:
        raise PathSafetyViolation(raw, "NUL byte in path")

    p = raw.replace("\\", "/")
    root = (project_root or "").replace("\\", "/").rstrip("/")

    # ── Absolute forms ────────────────────────────────────────────────────────
    if _DRIVE_RE.match(p):
        raise PathSafetyViolation(raw, "drive-qualified path")
    if p.startswith("/"):
        if root and (p == root or p.startswith(root + "/")):
            p = p[len(root):].lstrip("/")
        else:
            raise PathSafetyViolation(raw, "absolute path outside project root")

    # ── Collapse and check for escapes ────────────────────────────────────────
    norm = posixpath.normpath(p)
    if norm in (".", ""):
        raise PathSafetyViolation(raw, "path resolves to the project root")
    if norm == ".." or norm.startswith("../"):
        raise PathSafetyViolation(raw, "path escapes project root")
    return norm


def is_safe(path: str, project_root: str = DEFAULT_PROJECT_ROOT) -> bool:
    try:
        normalize_path(path, project_root)
        return True
    except PathSafetyViolation:
        return False
