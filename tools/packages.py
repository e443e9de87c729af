# tools/packages.py — Splice v1
"""
npm package detection for written files.

  import x from "framer-motion"      → framer-motion
  import "@radix-ui/react-dialog/x"  → @radix-ui/react-dialog
  require("lodash/merge")            → lodash
  import fs from "node:fs"           → (builtin, ignored)
  import Header from "./Header"      → (local, ignored)

Known dependencies come from package.json (dependencies, devDependencies,
peerDependencies, optionalDependencies).
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Mapping, Optional, Set

from agent.logger import log
from tools.manifest import CODE_EXTS, extract_imports

NODE_BUILTINS = frozenset({
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
    "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
    "events", "fs", "fs/promises", "http", "http2", "https", "inspector",
    "module", "net", "os", "path", "perf_hooks", "process", "punycode",
    "querystring", "readline", "repl", "stream", "string_decoder", "sys",
    "timers", "tls", "trace_events", "tty", "url", "util", "v8", "vm",
    "wasi", "worker_threads", "zlib",
})

_NAME_RE = re.compile(r"^(@[a-z0-9][\w.-]*/)?[a-z0-9][\w.-]*$", re.IGNORECASE)
_NON_PACKAGE_PREFIXES = (".", "/", "@/", "~/", "#", "virtual:", "data:", "http:", "https:", "$")


@dataclass(frozen=True)
class PackageRequirement:
    name:   str
    source: str   # import specifier or "<package>" tag


def package_name(spec: str) -> Optional[str]:
    """Reduce an import specifier to its installable package name, or None."""
    spec = (spec or "").strip()
    if not spec or spec.startswith(_NON_PACKAGE_PREFIXES):
        return None
    if spec.startswith("node:"):
        return None
    parts = spec.split("/")
    if spec.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        name = "/".join(parts[:2])
    else:
        name = parts[0]
    if name in NODE_BUILTINS or spec in NODE_BUILTINS:
        return None
    # strip a version suffix from explicit tags: "axios@1.6" → "axios"
    if "@" in name[1:]:
        name = name[0] + name[1:].split("@", 1)[0]
    if not _NAME_RE.match(name):
        return None
    return name


def known_dependencies(package_json: Optional[str]) -> Set[str]:
    """Every dependency name declared in a package.json body."""
    if not package_json:
        return set()
    try:
        data = json.loads(package_json)
    except ValueError as e:
        log.warning(f"package.json unreadable ({e}) — treating as no dependencies.")
        return set()
    if not isinstance(data, dict):
        return set()
    names: Set[str] = set()
    for key in ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            names.update(section)
    return names


def detect_in_content(path: str, content: str) -> List[PackageRequirement]:
    if PurePosixPath(path).suffix.lower() not in CODE_EXTS:
        return []
    found: List[PackageRequirement] = []
    seen: Set[str] = set()
    for spec in extract_imports(content):
        name = package_name(spec)
        if name and name not in seen:
            seen.add(name)
            found.append(PackageRequirement(name=name, source=spec))
    return found


def required_packages(
    final_contents: Mapping[str, str],
    explicit: Iterable[str] = (),
    known: Iterable[str] = (),
) -> List[PackageRequirement]:
    """
    Deduplicated requirements across a whole turn.

    *final_contents* is path → content after every write of the turn, so a
    file overwritten later only contributes its last version.
    """
    known_set = set(known)
    out: Dict[str, PackageRequirement] = {}
    for path in sorted(final_contents):
        for req in detect_in_content(path, final_contents[path]):
            if req.name not in known_set:
                out.setdefault(req.name, req)
    for raw in explicit:
        name = package_name(raw)
        if name and name not in known_set:
            out.setdefault(name, PackageRequirement(name=name, source="<package>"))
    return sorted(out.values(), key=lambda r: r.name)
