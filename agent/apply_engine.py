# agent/apply_engine.py â Splice v1
"""
Code Application Engine.

Phase machine per turn:

  RECEIVING     chunks fed to the incremental parser as they arrive;
                file boundaries are known before the stream ends
  VALIDATING    path jail, DELETE target must exist, conservative
                intents may not delete
  COMMITTING    one sandbox write at a time, in parse order; the abort
                signal is checked between writes
  POST_PROCESS  package detection on final contents â one batched
                install; restart decision
  DONE | FAILED

A file whose operation was still open when the stream ended is never
written with partial content: the engine asks for the whole file again
(max_continuations times) and otherwise leaves it untouched as INCOMPLETE.

Nothing is committed until the stream is fully received, so a timeout or
abort during RECEIVING leaves the project exactly as it was.
"""
from __future__ import annotations

import enum
import fnmatch
import threading
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from agent.config import DEFAULT_PIPELINE
from agent.errors import (
    CompletionError,
    PackageInstallFailure,
    ParseTruncation,
    PathSafetyViolation,
    SandboxUnavailable,
)
from agent.logger import log
from agent.prompts import continuation_prompt
from tools.code_parser import Action, CodeOperation, IncrementalParser, OpenOperation
from tools.diff_engine import apply_edits
from tools.manifest import FileManifest
from tools.packages import known_dependencies, required_packages
from tools.path_guard import normalize_path


class ApplyPhase(str, enum.Enum):
    RECEIVING    = "RECEIVING"
    VALIDATING   = "VALIDATING"
    COMMITTING   = "COMMITTING"
    POST_PROCESS = "POST_PROCESS"
    DONE         = "DONE"
    FAILED       = "FAILED"


class FileStatus(str, enum.Enum):
    APPLIED    = "APPLIED"
    SKIPPED    = "SKIPPED"
    FAILED     = "FAILED"
    INCOMPLETE = "INCOMPLETE"


@dataclass(frozen=True)
class FileOutcome:
    path:    str
    action:  Action
    status:  FileStatus
    message: str = ""


@dataclass(frozen=True)
class PackageInstallOutcome:
    requested: Tuple[str, ...] = ()
    attempted: bool = False
    success:   bool = True
    exit_code: Optional[int] = None
    error:     str = ""


@dataclass(frozen=True)
class RestartDecision:
    restart:   bool = False
    reasons:   Tuple[str, ...] = ()
    executed:  bool = False
    exit_code: Optional[int] = None


@dataclass
class ApplyResult:
    phase:    ApplyPhase = ApplyPhase.RECEIVING
    outcomes: List[FileOutcome] = field(default_factory=list)
    packages: PackageInstallOutcome = field(default_factory=PackageInstallOutcome)
    restart:  RestartDecision = field(default_factory=RestartDecision)
    warnings: List[str] = field(default_factory=list)
    error:    str = ""

    @property
    def succeeded(self) -> bool:
        return self.phase is ApplyPhase.DONE and any(
            o.status is FileStatus.APPLIED for o in self.outcomes
        )

    def with_status(self, status: FileStatus) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.status is status]

    def final_status(self, path: str) -> Optional[FileStatus]:
        """Status of the last operation on *path* this turn."""
        for o in reversed(self.outcomes):
            if o.path == path:
                return o.status
        return None


class TurnAborted(Exception):
    """Raised inside the engine when the abort signal fires."""


class TurnTimeout(Exception):
    """Raised inside the engine when the wall-clock limit passes."""


def _matches_any(path: str, patterns: Iterable[str]) -> bool:
    name = PurePosixPath(path).name
    return any(fnmatch.fnmatch(path, p) or fnmatch.fnmatch(name, p) for p in patterns)


# âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ
# Engine
# âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

class ApplyEngine:
    def __init__(
        self,
        manifest: FileManifest,
        sandbox,
        intent=None,
        settings: Optional[dict] = None,
        provider=None,
        model_id: str = "",
        abort: Optional[threading.Event] = None,
        lock: Optional[threading.Lock] = None,
    ):
        self.manifest = manifest
        self.sandbox = sandbox
        self.intent = intent
        self.settings = {**DEFAULT_PIPELINE, **(settings or {})}
        self.provider = provider
        self.model_id = model_id
        self.abort = abort or threading.Event()
        self.lock = lock or threading.Lock()
        self.project_root = getattr(sandbox, "project_root", self.settings["project_root"])

        self.result = ApplyResult()
        self.explicit_packages: List[str] = []
        self._working: Dict[str, Optional[str]] = {}
        self._written: List[str] = []
        self._touched: List[str] = []
        self._deadline: Optional[float] = None

    # ââ Helpers âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def _phase(self, phase: ApplyPhase) -> None:
        self.result.phase = phase
        log.debug(f"Apply phase â {phase.value}")

    def _warn(self, msg: str) -> None:
        self.result.warnings.append(msg)
        log.warning(msg)

    def _check(self) -> None:
        if self.abort.is_set():
            raise TurnAborted("turn cancelled")
        if self._deadline is not None and time.time() > self._deadline:
            raise TurnTimeout(f"completion timed out after {self.settings['completion_timeout']}s")

    def _current(self, path: str) -> Optional[str]:
        if path in self._working:
            return self._working[path]
        return self.manifest.content(path)

    def _fail(self, message: str) -> ApplyResult:
        self._phase(ApplyPhase.FAILED)
        self.result.error = message
        log.error(f"[red]Apply failed: {message}[/red]")
        return self.result

    # ââ RECEIVING âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def receive(self, chunks: Iterable[str]) -> Tuple[List[CodeOperation], Optional[OpenOperation]]:
        """Parse the stream incrementally. Raises TurnAborted / TurnTimeout / CompletionError."""
        self._phase(ApplyPhase.RECEIVING)
        parser = IncrementalParser(known_paths=set(self.manifest.paths()))
        ops: List[CodeOperation] = []
        try:
            for chunk in chunks:
                self._check()
                for op in parser.feed(chunk):
                    log.info(f"[dim]Parsed {op.action.value.lower()} {op.path}[/dim]")
                    ops.append(op)
            self._check()
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        pending = parser.finish()
        if getattr(chunks, "finish_reason", None) == "length":
            if pending is not None:
                log.warning(f"Output cap hit inside {pending.path}")
            else:
                log.debug("Output cap hit between operations")
        for name in parser.packages:
            if name not in self.explicit_packages:
                self.explicit_packages.append(name)
        return ops, pending

    def _continue(self, pending: OpenOperation) -> Optional[CodeOperation]:
        """Ask for the truncated file again; a complete <file> for the same path or None."""
        try:
            path = normalize_path(pending.path, self.project_root)
        except PathSafetyViolation:
            return None
        if self.provider is None:
            return None
        for attempt in range(int(self.settings["max_continuations"])):
            log.info(f"[yellow]Continuation {attempt + 1} for truncated {path}[/yellow]")
            prompt = continuation_prompt(self.intent, path, self._current(path), pending.partial)
            try:
                stream = self.provider.stream_completion(prompt, self.model_id, int(self.settings["max_tokens"]))
                ops, still_open = self.receive(stream)
            except CompletionError as e:
                log.warning(f"Continuation for {path} failed: {e}")
                return None
            for op in reversed(ops):
                if op.content is None or op.action is Action.DELETE:
                    continue
                try:
                    if normalize_path(op.path, self.project_root) == path:
                        return op
                except PathSafetyViolation:
                    continue
            if still_open is not None:
                pending = still_open
        return None

    # ââ VALIDATING ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def validate(self, op: CodeOperation) -> Tuple[Optional[str], Optional[FileOutcome]]:
        """(normalized path, None) when the op may proceed, else (None, skip outcome)."""
        try:
            path = normalize_path(op.path, self.project_root)
        except PathSafetyViolation as e:
            self._warn(str(e))
            return None, FileOutcome(op.path, op.action, FileStatus.SKIPPED, str(e))

        if op.action is Action.DELETE:
            if self.intent is not None and not self.intent.allows_delete:
                msg = f"delete of {path} skipped: intent is conservative"
                self._warn(msg)
                return None, FileOutcome(path, op.action, FileStatus.SKIPPED, msg)
            if self._current(path) is None:
                msg = f"delete of {path} skipped: not in project"
                self._warn(msg)
                return None, FileOutcome(path, op.action, FileStatus.SKIPPED, msg)
        return path, None

    # ââ COMMITTING ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def commit(self, op: CodeOperation, path: str) -> FileOutcome:
        """Raises SandboxUnavailable."""
        existing = self._current(path)

        if op.action is Action.DELETE:
            self.sandbox.delete_file(path)
            self._working[path] = None
            self._touched.append(path)
            if path in self._written:
                self._written.remove(path)
            log.info(f"[red]â deleted {path}[/red]")
            return FileOutcome(path, Action.DELETE, FileStatus.APPLIED)

        if op.content is not None:
            content = op.content
            action = Action.CREATE if existing is None else Action.REPLACE
        else:
            if existing is None:
                msg = f"edit target {path} does not exist"
                log.warning(msg)
                return FileOutcome(path, Action.REPLACE, FileStatus.FAILED, msg)
            patched, reason = apply_edits(existing, list(op.edits))
            if patched is None:
                msg = f"edit of {path} failed: {reason}"
                log.warning(msg)
                return FileOutcome(path, Action.REPLACE, FileStatus.FAILED, msg)
            content, action = patched, Action.REPLACE

        self.sandbox.write_file(path, content)
        self._working[path] = content
        self._touched.append(path)
        if path not in self._written:
            self._written.append(path)
        log.info(f"[green]â {action.value.lower()} {path}[/green]")
        return FileOutcome(path, action, FileStatus.APPLIED)

    # ââ POST_PROCESS ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def post_process(self) -> None:
        """Raises SandboxUnavailable."""
        self._phase(ApplyPhase.POST_PROCESS)
        final = {p: self._working[p] for p in self._written if self._working.get(p) is not None}
        known = known_dependencies(self._current("package.json"))
        reqs = required_packages(final, self.explicit_packages, known)
        names = tuple(r.name for r in reqs)

        packages = PackageInstallOutcome(requested=names)
        if names:
            cmd = self.settings["install_command"].format(packages=" ".join(names))
            log.info(f"[cyan]ð¦ Installing {', '.join(names)}[/cyan]")
            res = self.sandbox.run_command(cmd, timeout=int(self.settings["command_timeout"]))
            if res.ok:
                packages = PackageInstallOutcome(requested=names, attempted=True, exit_code=0)
            else:
                err = PackageInstallFailure(names, res.exit_code, res.stderr)
                self._warn(str(err))
                packages = PackageInstallOutcome(
                    requested=names, attempted=True, success=False,
                    exit_code=res.exit_code, error=(res.stderr or "")[-500:],
                )
        self.result.packages = packages

        reasons: List[str] = []
        if packages.attempted:
            reasons.append("packages installed" if packages.success else "package install attempted")
        config_hits = sorted({p for p in self._touched if _matches_any(p, self.settings["config_patterns"])})
        reasons += [f"config touched: {p}" for p in config_hits]

        decision = RestartDecision(restart=bool(reasons), reasons=tuple(reasons))
        cmd = self.settings.get("restart_command")
        if decision.restart and cmd:
            log.info(f"[cyan]â» Restarting dev server ({'; '.join(reasons)})[/cyan]")
            res = self.sandbox.run_command(cmd, timeout=int(self.settings["command_timeout"]))
            if not res.ok:
                self._warn(f"dev server restart exited {res.exit_code}")
            decision = RestartDecision(True, tuple(reasons), executed=True, exit_code=res.exit_code)
        self.result.restart = decision

    # ââ Drivers âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

    def run(self, operations: Sequence[CodeOperation]) -> Iterator[FileOutcome]:
        """VALIDATING â COMMITTING â POST_PROCESS for already-parsed operations."""
        ops = list(operations)
        for i, op in enumerate(ops):
            self._phase(ApplyPhase.VALIDATING)
            path, skipped = self.validate(op)
            if skipped is not None:
                self.result.outcomes.append(skipped)
                yield skipped
                continue

            self._phase(ApplyPhase.COMMITTING)
            if self.abort.is_set():
                self._fail("turn cancelled")
                return
            try:
                with self.lock:
                    outcome = self.commit(op, path)
            except SandboxUnavailable as e:
                failed = FileOutcome(path, op.action, FileStatus.FAILED, str(e))
                self.result.outcomes.append(failed)
                self._fail(f"sandbox unavailable: {e}")
                yield failed
                return
            except PathSafetyViolation as e:
                self._warn(str(e))
                outcome = FileOutcome(path, op.action, FileStatus.SKIPPED, str(e))
            self.result.outcomes.append(outcome)
            yield outcome

        try:
            self.post_process()
        except SandboxUnavailable as e:
            self._fail(f"sandbox unavailable: {e}")
            return
        self._phase(ApplyPhase.DONE)

    def stream(self, chunks: Iterable[str]) -> Iterator[FileOutcome]:
        """Full turn from a lazy chunk sequence; per-file outcomes as they commit."""
        self._deadline = time.time() + float(self.settings["completion_timeout"])
        try:
            ops, pending = self.receive(chunks)
            incomplete: Optional[FileOutcome] = None
            if pending is not None:
                trunc = ParseTruncation(pending.path)
                log.warning(f"[yellow]{trunc}[/yellow]")
                retry = self._continue(pending)
                if retry is not None:
                    ops.append(retry)
                else:
                    action = Action.REPLACE if pending.tag == "edit" or pending.path in self.manifest else Action.CREATE
                    incomplete = FileOutcome(
                        pending.path, action, FileStatus.INCOMPLETE,
                        f"{trunc}; original left untouched",
                    )
                    self.result.warnings.append(str(trunc))
        except TurnAborted as e:
            self._fail(str(e))
            return
        except TurnTimeout as e:
            self._fail(str(e))
            return
        except CompletionError as e:
            self._fail(f"completion failed: {e}")
            return
        self._deadline = None

        yield from self.run(ops)
        if incomplete is not None:
            self.result.outcomes.append(incomplete)
            yield incomplete
        self._summary()

    def _summary(self) -> None:
        counts = {s: len(self.result.with_status(s)) for s in FileStatus}
        log.info(
            f"[bold]Apply {self.result.phase.value}:[/bold] "
            + ", ".join(f"{n} {s.value.lower()}" for s, n in counts.items() if n)
        )


# âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ
# Functional entry points
# âââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ

def apply(
    operations: Sequence[CodeOperation],
    manifest: FileManifest,
    sandbox,
    intent=None,
    packages: Sequence[str] = (),
    settings: Optional[dict] = None,
    abort: Optional[threading.Event] = None,
) -> ApplyResult:
    """Apply already-parsed operations; starts at VALIDATING."""
    engine = ApplyEngine(manifest, sandbox, intent=intent, settings=settings, abort=abort)
    engine.explicit_packages = list(packages)
    for _ in engine.run(operations):
        pass
    engine._summary()
    return engine.result


def apply_stream(
    chunks: Iterable[str],
    manifest: FileManifest,
    sandbox,
    intent=None,
    settings: Optional[dict] = None,
    provider=None,
    model_id: str = "",
    abort: Optional[threading.Event] = None,
    lock: Optional[threading.Lock] = None,
) -> Tuple[ApplyEngine, Iterator[FileOutcome]]:
    """(engine, outcome iterator); engine.result is final once the iterator is exhausted."""
    engine = ApplyEngine(manifest, sandbox, intent=intent, settings=settings,
                         provider=provider, model_id=model_id, abort=abort, lock=lock)
    return engine, engine.stream(chunks)
