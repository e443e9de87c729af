# agent/session.py — Splice v1
"""
Session entry point.

  SessionManager.run_turn(request, model_id, session_id) → iterator of TurnEvent

  IntentDetermined → ContextBuilt → FileApplied × n → PackagesInstalled → Done
                                                                        ↘ Failed

One active turn per session: starting a turn sets the abort event of the
one in flight. The old turn notices at its next chunk or between two
writes and ends with Failed("turn cancelled"); whatever it already wrote
stays. Every turn starts from a fresh manifest listing.

Conversation state is per session, saved to .splice/sessions/<id>.json
after every turn and reloaded on first use.
"""
from __future__ import annotations

import enum
import os
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from agent.apply_engine import ApplyEngine, ApplyPhase, ApplyResult
from agent.config import load_config, pipeline_settings
from agent.context import select
from agent.errors import CompletionError, SandboxUnavailable, SearchNoMatch
from agent.intent import analyze
from agent.llm import default_model, select_provider
from agent.logger import log
from agent.prompts import generation_prompt
from runtime.state import ConversationState
from tools.search_plan import execute, require_matches


class TurnPhase(str, enum.Enum):
    INTENT_DETERMINED  = "IntentDetermined"
    CONTEXT_BUILT      = "ContextBuilt"
    FILE_APPLIED       = "FileApplied"
    PACKAGES_INSTALLED = "PackagesInstalled"
    DONE               = "Done"
    FAILED             = "Failed"


@dataclass(frozen=True)
class TurnEvent:
    phase: TurnPhase
    data:  dict = field(default_factory=dict)


@dataclass
class Session:
    id:       str
    sandbox:  object
    state:    ConversationState
    lock:     threading.Lock = field(default_factory=threading.Lock)
    abort:    Optional[threading.Event] = None
    turns_started: int = 0

    def begin_turn(self) -> threading.Event:
        """Cancel the in-flight turn (if any) and hand out a fresh abort event."""
        if self.abort is not None and not self.abort.is_set():
            log.info(f"[yellow]Session {self.id}: cancelling in-flight turn[/yellow]")
            self.abort.set()
        self.abort = threading.Event()
        self.turns_started += 1
        return self.abort

    def end_turn(self, abort: threading.Event) -> None:
        if self.abort is abort:
            self.abort = None


def _safe_id(session_id: str) -> str:
    return re.sub(r"[^\w.-]", "_", session_id or "default")[:80]


class SessionManager:
    def __init__(
        self,
        sandbox_factory: Callable[[str], object],
        cfg: Optional[dict] = None,
        state_dir: Optional[Path] = None,
        provider_factory: Callable = select_provider,
    ):
        self.sandbox_factory = sandbox_factory
        self.cfg = cfg
        self.state_dir = Path(state_dir) if state_dir else Path(os.getcwd()) / ".splice" / "sessions"
        self.provider_factory = provider_factory
        self._sessions: Dict[str, Session] = {}
        self._registry_lock = threading.Lock()

    # ── Sessions ──────────────────────────────────────────────────────────────

    def _config(self) -> dict:
        # hot reload unless pinned
        return self.cfg if self.cfg is not None else load_config()

    def state_path(self, session_id: str) -> Path:
        return self.state_dir / f"{_safe_id(session_id)}.json"

    def get(self, session_id: str = "default") -> Session:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                settings = pipeline_settings(self._config())
                state = ConversationState.load(
                    self.state_path(session_id),
                    session_id=session_id,
                    max_turns=settings["max_turns"],
                    summary_max_chars=settings["summary_max_chars"],
                )
                session = Session(id=session_id, sandbox=self.sandbox_factory(session_id), state=state)
                self._sessions[session_id] = session
                log.debug(f"Session {session_id} opened ({state.turn_count} prior turns)")
            return session

    def cancel(self, session_id: str = "default") -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.abort is None:
            return False
        session.abort.set()
        return True

    def _persist(self, session: Session) -> None:
        try:
            session.state.save(self.state_path(session.id))
        except OSError as e:
            log.warning(f"Session {session.id}: state not saved ({e})")

    # ── Turns ─────────────────────────────────────────────────────────────────

    def run_turn(self, request: str, model_id: Optional[str] = None,
                 session_id: str = "default") -> Iterator[TurnEvent]:
        """Cancels the session's in-flight turn now; the new one runs as the iterator is consumed."""
        session = self.get(session_id)
        abort = session.begin_turn()
        return self._turn(session, request, model_id, abort)

    def _turn(self, session: Session, request: str, model_id: Optional[str],
              abort: threading.Event) -> Iterator[TurnEvent]:
        cfg = self._config()
        settings = pipeline_settings(cfg)
        model_id = model_id or default_model(cfg)
        started = time.time()
        intent = None
        log.info(f"[bold yellow]⚙️ Turn {session.turns_started} ({session.id}): {request}[/bold yellow]")

        try:
            provider = self.provider_factory(model_id, cfg)

            with session.lock:
                manifest = session.sandbox.list_files()
            if abort.is_set():
                yield self._failed(session, intent, "turn cancelled")
                return

            intent = analyze(
                request, manifest, session.state,
                provider=provider, model_id=model_id,
                threshold=float(settings["confidence_threshold"]),
            )
            yield TurnEvent(TurnPhase.INTENT_DETERMINED, {
                "type":         intent.type.value,
                "confidence":   intent.confidence,
                "target":       intent.target,
                "conservative": intent.conservative,
                "queries":      intent.plan.terms(),
                "intent":       intent,
            })

            ranked = ()
            if not intent.bypasses_ranking:
                try:
                    ranked = require_matches(
                        execute(intent.plan, manifest, settings["decay"], settings["match_weights"]),
                        intent.plan,
                    )
                except SearchNoMatch as e:
                    log.warning(f"{e} — structure summary only")
            bundle = select(
                ranked, manifest, intent, int(settings["token_budget"]),
                chars_per_token=int(settings["chars_per_token"]),
                structure_reserve=float(settings["structure_reserve"]),
                template_files=settings["template_files"],
            )
            yield TurnEvent(TurnPhase.CONTEXT_BUILT, {
                "files":      bundle.paths(),
                "total_cost": bundle.total_cost,
                "budget":     bundle.budget,
                "degraded":   bundle.degraded,
                "bundle":     bundle,
            })
            if abort.is_set():
                yield self._failed(session, intent, "turn cancelled")
                return

            prompt = generation_prompt(intent, bundle, session.state.summarize().text)
            stream = provider.stream_completion(prompt, model_id, int(settings["max_tokens"]))
            engine = ApplyEngine(
                manifest, session.sandbox, intent=intent, settings=settings,
                provider=provider, model_id=model_id, abort=abort, lock=session.lock,
            )
            for outcome in engine.stream(stream):
                yield TurnEvent(TurnPhase.FILE_APPLIED, {
                    "path":    outcome.path,
                    "action":  outcome.action.value,
                    "status":  outcome.status.value,
                    "message": outcome.message,
                    "outcome": outcome,
                })

            result = engine.result
            if result.packages.attempted:
                yield TurnEvent(TurnPhase.PACKAGES_INSTALLED, {
                    "packages": list(result.packages.requested),
                    "success":  result.packages.success,
                    "restart":  result.restart.restart,
                    "outcome":  result.packages,
                })

            session.state.record_turn(intent, result)
            self._persist(session)
            if result.phase is ApplyPhase.DONE:
                log.info(f"[bold blue]🏁 Turn finished in {time.time() - started:.1f}s[/bold blue]")
                yield TurnEvent(TurnPhase.DONE, {
                    "result":  result,
                    "summary": session.state.summarize().text,
                })
            else:
                yield TurnEvent(TurnPhase.FAILED, {"error": result.error, "result": result})

        except (SandboxUnavailable, CompletionError) as e:
            yield self._failed(session, intent, str(e))
        except Exception as e:
            log.exception(f"Turn crashed: {e}")
            yield self._failed(session, intent, f"unexpected error: {e}")
        finally:
            session.end_turn(abort)

    def _failed(self, session: Session, intent, error: str) -> TurnEvent:
        result = ApplyResult(phase=ApplyPhase.FAILED, error=error)
        if intent is not None:
            session.state.record_turn(intent, result)
            self._persist(session)
        log.error(f"[red]Turn failed: {error}[/red]")
        return TurnEvent(TurnPhase.FAILED, {"error": error, "result": result})
