# tools/manifest.py — Splice v1
"""
File manifest: one consistent snapshot of the project.

  files        path → FileEntry (content, size, mtime, role, imports)
  dep graph    local_imports (forward) / imported_by (reverse), resolved
               against the snapshot itself, never the live disk
  entry point  main.* / index.* / App.* under src/, else first match

A manifest is rebuilt from scratch by build_manifest() and never patched in
place. Paths are normalized by path_guard before they become keys.
"""
from __future__ import annotations

import posixpath
import re
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from agent.errors import PathSafetyViolation
from agent.logger import log
from tools.path_guard import DEFAULT_PROJECT_ROOT, normalize_path

CODE_EXTS    = {".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".vue", ".svelte"}
STYLE_EXTS   = {".css", ".scss", ".sass", ".less"}
RESOLVE_EXTS = (".tsx", ".ts", ".jsx", ".js", ".mjs", ".css", ".scss", ".json", ".vue", ".svelte")
ENTRY_CANDIDATES = (
    "src/main.tsx", "src/main.jsx", "src/main.ts", "src/main.js",
    "src/index.tsx", "src/index.jsx", "src/index.ts", "src/index.js",
    "src/App.tsx", "src/App.jsx", "index.html",
)
CONFIG_NAME_RE = re.compile(
    r"^(package\.json|tsconfig.*\.json|\.env.*|"
    r"(vite|tailwind|postcss|next|webpack|babel|eslint|jest|vitest)\.config\.\w+)$"
)

# ── Import extraction ─────────────────────────────────────────────────────────
_IMPORT_RE = [
    re.compile(r"""^\s*import\s+(?:[\w*{}\s,$]+\s+from\s+)?["']([^"']+)["']""", re.MULTILINE),
    re.compile(r"""^\s*export\s+[\w*{}\s,$]+\s+from\s+["']([^"']+)["']""", re.MULTILINE),
    re.compile(r"""\brequire\(\s*["']([^"']+)["']\s*\)"""),
    re.compile(r"""\bimport\(\s*["']([^"']+)["']\s*\)"""),
    re.compile(r"""^\s*@import\s+(?:url\()?["']([^"']+)["']""", re.MULTILINE),   # CSS
]


def extract_imports(content: str) -> List[str]:
    """Raw import specifiers in order of first appearance."""
    found: List[Tuple[int, str]] = []
    for pat in _IMPORT_RE:
        for m in pat.finditer(content or ""):
            found.append((m.start(), m.group(1)))
    seen: Dict[str, None] = {}
    for _, spec in sorted(found):
        seen.setdefault(spec, None)
    return list(seen)


def _resolve_local(spec: str, source: str, paths: Mapping[str, object]) -> Optional[str]:
    """'./Header' from src/App.jsx → 'src/Header.jsx' if that path is in the snapshot."""
    if spec.startswith("@/"):
        base = "src/" + spec[2:]
    elif spec.startswith("."):
        base = posixpath.normpath(posixpath.join(posixpath.dirname(source), spec))
    elif spec.startswith("/"):
        base = spec.lstrip("/")
    else:
        return None
    if base.startswith(".."):
        return None
    if base in paths:
        return base
    for ext in RESOLVE_EXTS:
        if base + ext in paths:
            return base + ext
    for ext in RESOLVE_EXTS:
        cand = f"{base}/index{ext}"
        if cand in paths:
            return cand
    return None


# ── Roles ─────────────────────────────────────────────────────────────────────

def classify_role(path: str, content: str = "") -> str:
    """component | page | style | config | entry | hook | utility | other"""
    p = PurePosixPath(path)
    name, suffix = p.name, p.suffix.lower()
    parts = [x.lower() for x in p.parts[:-1]]
    if CONFIG_NAME_RE.match(name):
        return "config"
    if suffix in STYLE_EXTS:
        return "style"
    if path in ENTRY_CANDIDATES[:8] or name == "index.html":
        return "entry"
    if suffix not in CODE_EXTS:
        return "other"
    if p.stem.startswith("use") and p.stem[3:4].isupper():
        return "hook"
    if "pages" in parts or "routes" in parts or ("app" in parts and p.stem == "page"):
        return "page"
    if "components" in parts or (p.stem[:1].isupper() and suffix in {".jsx", ".tsx", ".vue", ".svelte"}):
        return "component"
    if p.stem in ("App",):
        return "component"
    return "utility"


def _component_name(path: str, role: str) -> Optional[str]:
    if role not in ("component", "page", "entry"):
        return None
    stem = PurePosixPath(path).stem
    return stem if stem[:1].isupper() else None


# ─────────────────────────────────────────────────────────────────────────────
# Data structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FileEntry:
    path:          str
    content:       str
    size:          int
    mtime:         float
    role:          str = "other"
    imports:       Tuple[str, ...] = ()
    local_imports: Tuple[str, ...] = ()
    imported_by:   Tuple[str, ...] = ()
    component:     Optional[str] = None


@dataclass(frozen=True)
class FileManifest:
    files:       Mapping[str, FileEntry]
    entry_point: Optional[str] = None
    built_at:    float = field(default_factory=time.time)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def __getitem__(self, path: str) -> FileEntry:
        return self.files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths())

    def __len__(self) -> int:
        return len(self.files)

    def get(self, path: str) -> Optional[FileEntry]:
        return self.files.get(path)

    def paths(self) -> List[str]:
        return sorted(self.files)

    def content(self, path: str) -> Optional[str]:
        entry = self.files.get(path)
        return entry.content if entry else None

    def neighbours(self, path: str) -> Tuple[str, ...]:
        entry = self.files.get(path)
        if entry is None:
            return ()
        return tuple(sorted(set(entry.local_imports) | set(entry.imported_by)))


# ─────────────────────────────────────────────────────────────────────────────
# Builder
# ─────────────────────────────────────────────────────────────────────────────

def build_manifest(
    raw: Iterable[Tuple[str, str, float]],
    project_root: str = DEFAULT_PROJECT_ROOT,
) -> FileManifest:
    """
    Build a manifest from (path, content, mtime) triples.
    Unsafe paths are skipped with a warning; duplicate paths keep the last one.
    """
    contents: Dict[str, Tuple[str, float]] = {}
    for path, content, mtime in raw:
        try:
            rel = normalize_path(path, project_root)
        except PathSafetyViolation as e:
            log.warning(f"Manifest skip: {e}")
            continue
        contents[rel] = (content or "", float(mtime or 0.0))

    fwd: Dict[str, List[str]] = {}
    raw_imports: Dict[str, List[str]] = {}
    for rel, (content, _) in contents.items():
        specs = extract_imports(content) if PurePosixPath(rel).suffix.lower() in CODE_EXTS | STYLE_EXTS else []
        raw_imports[rel] = specs
        deps: List[str] = []
        for spec in specs:
            target = _resolve_local(spec, rel, contents)
            if target and target != rel and target not in deps:
                deps.append(target)
        fwd[rel] = deps

    rev: Dict[str, List[str]] = {rel: [] for rel in contents}
    for rel in sorted(fwd):
        for dep in fwd[rel]:
            rev[dep].append(rel)

    files: Dict[str, FileEntry] = {}
    for rel, (content, mtime) in contents.items():
        role = classify_role(rel, content)
        files[rel] = FileEntry(
            path=rel,
            content=content,
            size=len(content.encode("utf-8")),
            mtime=mtime,
            role=role,
            imports=tuple(raw_imports[rel]),
            local_imports=tuple(fwd[rel]),
            imported_by=tuple(sorted(rev[rel])),
            component=_component_name(rel, role),
        )

    entry = next((c for c in ENTRY_CANDIDATES if c in files), None)
    manifest = FileManifest(files=MappingProxyType(files), entry_point=entry)
    log.debug(f"Manifest built: {len(files)} files, entry={entry}")
    return manifest


def empty_manifest() -> FileManifest:
    return FileManifest(files=MappingProxyType({}))


# ─────────────────────────────────────────────────────────────────────────────
# Structure summary: file tree + component graph
# ─────────────────────────────────────────────────────────────────────────────

def file_tree(manifest: FileManifest) -> str:
    lines: List[str] = []
    seen_dirs: set = set()
    for path in manifest.paths():
        parts = path.split("/")
        for depth in range(len(parts) - 1):
            d = "/".join(parts[: depth + 1])
            if d not in seen_dirs:
                seen_dirs.add(d)
                lines.append("  " * depth + parts[depth] + "/")
        role = manifest[path].role
        lines.append("  " * (len(parts) - 1) + f"{parts[-1]}  [{role}]")
    return "\n".join(lines)


def component_graph(manifest: FileManifest) -> str:
    lines: List[str] = []
    for path in manifest.paths():
        entry = manifest[path]
        if entry.local_imports:
            lines.append(f"{path} -> {', '.join(entry.local_imports)}")
    return "\n".join(lines)


def structure_summary(manifest: FileManifest) -> str:
    """Text the model always sees: overall project shape, no file bodies."""
    if not len(manifest):
        return "PROJECT: (empty)"
    parts = [
        f"PROJECT: {len(manifest)} files, entry point: {manifest.entry_point or 'unknown'}",
        "FILE TREE:",
        file_tree(manifest),
    ]
    graph = component_graph(manifest)
    if graph:
        parts += ["IMPORT GRAPH:", graph]
    return "\n".join(parts)
