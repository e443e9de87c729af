# tools/code_parser.py — Splice v1
"""
Incremental parser for streamed model output.

Recognised tags (anything outside them is explanation text and ignored):

  <file path="src/App.jsx"> full content </file>           CREATE / REPLACE
  <edit path="src/App.jsx"> SEARCH/REPLACE blocks </edit>  REPLACE (patch)
  <delete path="src/Old.jsx" />                            DELETE
  <package>axios</package>
  <packages>
  react-router-dom
  framer-motion
  </packages>

feed() is called once per streamed chunk and returns the operations whose
closing tag arrived in that chunk, so file boundaries are known before the
stream ends. A tag split across chunks stays in the buffer until the rest
arrives. finish() reports the operation still open when the stream stopped;
its content is truncated and is never committed.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from tools.diff_engine import parse_search_replace


class Action(str, enum.Enum):
    CREATE  = "CREATE"
    REPLACE = "REPLACE"
    DELETE  = "DELETE"


@dataclass(frozen=True)
class CodeOperation:
    path:     str
    action:   Action
    content:  Optional[str] = None
    edits:    Tuple[Tuple[str, str], ...] = ()
    packages: Tuple[str, ...] = ()

    @property
    def is_patch(self) -> bool:
        return self.action is Action.REPLACE and self.content is None


@dataclass(frozen=True)
class OpenOperation:
    """An operation whose closing tag never arrived."""
    path:    str
    tag:     str
    partial: str


_OPEN_RE  = re.compile(r"<(file|edit|delete|packages|package)\b([^<>]*)>", re.IGNORECASE)
_ATTR_RE  = re.compile(r"""(\w+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_FENCE_RE = re.compile(r"^\s*```[\w.+-]*[ \t]*\n(.*?)\n?```\s*$", re.DOTALL)
_MAX_TAG_TAIL = 512


def _attrs(raw: str) -> dict:
    return {m.group(1).lower(): (m.group(2) if m.group(2) is not None else m.group(3))
            for m in _ATTR_RE.finditer(raw or "")}


def strip_fences(content: str) -> str:
    """Drop a markdown fence wrapping the whole file body."""
    m = _FENCE_RE.match(content)
    if m:
        return m.group(1) + "\n"
    return content


def _clean_body(body: str) -> str:
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    return strip_fences(body)


def split_package_names(body: str) -> List[str]:
    names: List[str] = []
    for token in re.split(r"[\s,]+", body or ""):
        token = token.strip().strip("`'\"")
        if token and token not in names:
            names.append(token)
    return names


@dataclass
class IncrementalParser:
    known_paths: Set[str] = field(default_factory=set)
    packages:    List[str] = field(default_factory=list)

    _buf:     str = ""
    _open:    Optional[Tuple[str, dict]] = None
    _scanned: int = 0
    _count:   int = 0

    # ── Public API ────────────────────────────────────────────────────────────

    def feed(self, chunk: str) -> List[CodeOperation]:
        self._buf += chunk or ""
        ops: List[CodeOperation] = []
        while True:
            if self._open is None:
                found, op = self._open_next()
                if not found:
                    break
                if op is not None:
                    ops.append(op)
                continue
            closed, op = self._close_current()
            if not closed:
                break
            if op is not None:
                ops.append(op)
        self._count += len(ops)
        return ops

    def finish(self) -> Optional[OpenOperation]:
        """Stream ended. Returns the still-open file/edit operation, if any."""
        if self._open is None:
            return None
        tag, attrs = self._open
        partial, self._open, self._buf = self._buf, None, ""
        if tag in ("package", "packages"):
            return None
        return OpenOperation(path=attrs.get("path", ""), tag=tag, partial=partial)

    @property
    def parsed_count(self) -> int:
        return self._count

    @property
    def in_operation(self) -> Optional[str]:
        """Path of the operation currently being received."""
        if self._open is None:
            return None
        return self._open[1].get("path")

    # ── Internals ─────────────────────────────────────────────────────────────

    def _open_next(self) -> Tuple[bool, Optional[CodeOperation]]:
        m = _OPEN_RE.search(self._buf)
        if m is None:
            # keep only a tail that might be the start of a split tag
            lt = self._buf.rfind("<")
            if lt == -1 or len(self._buf) - lt > _MAX_TAG_TAIL:
                self._buf = ""
            else:
                self._buf = self._buf[lt:]
            return False, None

        tag = m.group(1).lower()
        attrs = _attrs(m.group(2))
        self._buf = self._buf[m.end():]

        if tag == "delete":
            # complete on its opening tag; a stray </delete> is plain text
            path = attrs.get("path", "")
            return True, (CodeOperation(path=path, action=Action.DELETE) if path else None)

        self._open = (tag, attrs)
        self._scanned = 0
        return True, None

    def _close_current(self) -> Tuple[bool, Optional[CodeOperation]]:
        tag, attrs = self._open
        closing = f"</{tag}>"
        start = max(0, self._scanned - len(closing))
        m = re.compile(re.escape(closing), re.IGNORECASE).search(self._buf, start)
        if m is None:
            self._scanned = len(self._buf)
            return False, None

        body = self._buf[:m.start()]
        self._buf = self._buf[m.end():]
        self._open = None
        self._scanned = 0
        return True, self._build(tag, attrs, body)

    def _build(self, tag: str, attrs: dict, body: str) -> Optional[CodeOperation]:
        if tag in ("package", "packages"):
            for name in split_package_names(body):
                if name not in self.packages:
                    self.packages.append(name)
            return None

        path = attrs.get("path", "")
        if tag == "edit":
            return CodeOperation(
                path=path,
                action=Action.REPLACE,
                edits=tuple(parse_search_replace(body)),
            )

        declared = (attrs.get("action") or "").upper()
        if declared in (Action.CREATE.value, Action.REPLACE.value):
            action = Action(declared)
        else:
            action = Action.REPLACE if path in self.known_paths else Action.CREATE
        return CodeOperation(path=path, action=action, content=_clean_body(body))


def parse_operations(
    text: str, known_paths: Iterable[str] = ()
) -> Tuple[List[CodeOperation], List[str], Optional[OpenOperation]]:
    """One-shot parse of a complete response: (operations, packages, open_operation)."""
    parser = IncrementalParser(known_paths=set(known_paths))
    ops = parser.feed(text)
    return ops, list(parser.packages), parser.finish()
