# tools/sandbox.py — Splice v1
"""
Sandbox capability: the live project the pipeline edits.

Any object with write_file / delete_file / list_files / run_command works.
LocalSandbox implements it over a directory on this machine; remote
sandboxes only have to honour the same four calls.
"""
from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from agent.errors import PathSafetyViolation, SandboxUnavailable
from agent.logger import log
from tools.manifest import FileManifest, build_manifest
from tools.path_guard import DEFAULT_PROJECT_ROOT, normalize_path

IGNORE_DIRS = {".git", "node_modules", "dist", "build", ".next", ".splice", ".vite", "coverage"}
MAX_FILE_BYTES = 512_000


@dataclass(frozen=True)
class CommandResult:
    stdout:    str
    stderr:    str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Sandbox(Protocol):
    project_root: str

    def write_file(self, path: str, content: str) -> None:
        ...

    def delete_file(self, path: str) -> None:
        ...

    def list_files(self) -> FileManifest:
        ...

    def run_command(self, cmd: str, timeout: Optional[int] = None) -> CommandResult:
        ...


class LocalSandbox:
    """
    A directory on local disk.

    project_root is the path the model is told the project lives at
    (absolute paths under it are accepted and made relative); root is
    where the files actually are.
    """

    def __init__(self, root: str, project_root: str = DEFAULT_PROJECT_ROOT, command_timeout: int = 300):
        self.root = Path(root)
        self.project_root = project_root
        self.command_timeout = command_timeout

    def _require_root(self) -> Path:
        if not self.root.is_dir():
            raise SandboxUnavailable(f"sandbox root not found: {self.root}")
        return self.root

    def _resolve(self, path: str) -> Path:
        rel = normalize_path(path, self.project_root)
        root = self._require_root().resolve()
        full = root / rel
        # a symlink inside the project may still point outside it
        if not full.resolve().is_relative_to(root):
            raise PathSafetyViolation(path, "resolves outside the project root")
        return full

    # ── Files ─────────────────────────────────────────────────────────────────

    def write_file(self, path: str, content: str) -> None:
        full = self._resolve(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SandboxUnavailable(f"write failed for {path}: {e}") from e
        log.debug(f"sandbox write {path} ({len(content)} chars)")

    def delete_file(self, path: str) -> None:
        full = self._resolve(path)
        try:
            full.unlink()
        except FileNotFoundError:
            log.debug(f"sandbox delete {path}: already gone")
            return
        except OSError as e:
            raise SandboxUnavailable(f"delete failed for {path}: {e}") from e
        log.debug(f"sandbox delete {path}")

    def _walk(self) -> List[Tuple[str, str, float]]:
        root = self._require_root()
        out: List[Tuple[str, str, float]] = []
        for p in sorted(root.rglob("*")):
            rel_parts = p.relative_to(root).parts
            if not p.is_file() or any(d in IGNORE_DIRS for d in rel_parts):
                continue
            try:
                st = p.stat()
                if st.st_size > MAX_FILE_BYTES:
                    continue
                text = p.read_bytes().decode("utf-8")
            except UnicodeDecodeError:
                continue   # binary asset
            except OSError as e:
                log.debug(f"sandbox skip {p}: {e}")
                continue
            out.append(("/".join(rel_parts), text, st.st_mtime))
        return out

    def list_files(self) -> FileManifest:
        return build_manifest(self._walk(), project_root=self.project_root)

    # ── Commands ──────────────────────────────────────────────────────────────

    def run_command(self, cmd: str, timeout: Optional[int] = None) -> CommandResult:
        root = self._require_root()
        limit = timeout or self.command_timeout
        start = time.time()
        try:
            res = subprocess.run(
                cmd, shell=True, cwd=str(root),
                capture_output=True, text=True, timeout=limit,
            )
        except subprocess.TimeoutExpired as e:
            log.warning(f"Command timed out after {limit}s: {cmd}")
            return CommandResult(
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=f"timed out after {limit}s",
                exit_code=124,
            )
        except OSError as e:
            raise SandboxUnavailable(f"cannot run command: {e}") from e
        log.debug(f"sandbox cmd `{cmd}` → {res.returncode} in {time.time() - start:.1f}s")
        return CommandResult(stdout=res.stdout, stderr=res.stderr, exit_code=res.returncode)
