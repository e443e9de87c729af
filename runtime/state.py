# runtime/state.py — Splice v1
"""
Conversation state for one session.

  turns       ordered Turn records, appended after every application
  compacted   what older turns left behind once max_turns is exceeded:
              turn and edit-type counts, per-file touch counts,
              created / deleted files

summarize() turns both into a short digest for the intent classifier.
Persisted as JSON under .splice/sessions/<id>.json with an atomic replace.
"""
from __future__ import annotations

import json
import os
import tempfile
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from agent.logger import log

STATE_VERSION = 1


@dataclass(frozen=True)
class Turn:
    index:        int
    request:      str
    intent_type:  str
    confidence:   float
    conservative: bool
    phase:        str
    success:      bool
    files:        Tuple[Tuple[str, str, str], ...] = ()   # (path, action, status)
    packages:     Tuple[str, ...] = ()
    restarted:    bool = False
    at:           float = 0.0

    def applied(self) -> List[Tuple[str, str]]:
        return [(p, a) for p, a, s in self.files if s == "APPLIED"]


@dataclass
class CompactedHistory:
    turns:         int = 0
    successes:     int = 0
    files_applied: int = 0
    type_counts:   Dict[str, int] = field(default_factory=dict)
    file_touches:  Dict[str, int] = field(default_factory=dict)
    created:       List[str] = field(default_factory=list)
    deleted:       List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectEvolutionSummary:
    text:         str
    turn_count:   int
    type_counts:  Dict[str, int]
    file_touches: Dict[str, int]
    created:      Tuple[str, ...]
    deleted:      Tuple[str, ...]
    edit_style:   Optional[str] = None


def _fold(acc: CompactedHistory, turn: Turn) -> None:
    acc.turns += 1
    acc.type_counts[turn.intent_type] = acc.type_counts.get(turn.intent_type, 0) + 1
    if turn.success:
        acc.successes += 1
    applied = turn.applied()
    acc.files_applied += len(applied)
    for path, action in applied:
        acc.file_touches[path] = acc.file_touches.get(path, 0) + 1
        if action == "CREATE":
            if path in acc.deleted:
                acc.deleted.remove(path)
            if path not in acc.created:
                acc.created.append(path)
        elif action == "DELETE":
            if path in acc.created:
                acc.created.remove(path)
            if path not in acc.deleted:
                acc.deleted.append(path)


def _enum_value(v: Any) -> str:
    return str(getattr(v, "value", v))


class ConversationState:
    def __init__(self, session_id: str = "default", max_turns: int = 20, summary_max_chars: int = 1200):
        self.session_id = session_id
        self.max_turns = max(1, int(max_turns))
        self.summary_max_chars = int(summary_max_chars)
        self.turns: List[Turn] = []
        self.compacted = CompactedHistory()

    # ── Recording ─────────────────────────────────────────────────────────────

    @property
    def turn_count(self) -> int:
        return self.compacted.turns + len(self.turns)

    def record_turn(self, intent, result) -> Turn:
        """Append one Turn built from an EditIntent and an ApplyResult."""
        turn = Turn(
            index=self.turn_count + 1,
            request=(getattr(intent, "request", "") or "")[:200],
            intent_type=_enum_value(intent.type),
            confidence=float(intent.confidence),
            conservative=bool(intent.conservative),
            phase=_enum_value(result.phase),
            success=bool(result.succeeded),
            files=tuple(
                (o.path, _enum_value(o.action), _enum_value(o.status)) for o in result.outcomes
            ),
            packages=tuple(result.packages.requested if result.packages else ()),
            restarted=bool(result.restart and result.restart.restart),
            at=time.time(),
        )
        self.turns.append(turn)
        while len(self.turns) > self.max_turns:
            _fold(self.compacted, self.turns.pop(0))
        log.debug(f"State[{self.session_id}]: turn {turn.index} recorded ({turn.phase})")
        return turn

    def has_successful_turn(self) -> bool:
        return self.compacted.successes > 0 or any(t.success for t in self.turns)

    def recent_turns(self, n: int = 3) -> List[Turn]:
        return self.turns[-n:] if n > 0 else []

    # ── Digest ────────────────────────────────────────────────────────────────

    def _totals(self) -> CompactedHistory:
        acc = CompactedHistory(**json.loads(json.dumps(asdict(self.compacted))))
        for t in self.turns:
            _fold(acc, t)
        return acc

    def summarize(self) -> ProjectEvolutionSummary:
        acc = self._totals()
        style = None
        if acc.successes:
            per_turn = acc.files_applied / acc.successes
            style = "targeted" if per_turn <= 2 else "broad"

        lines: List[str] = []
        if acc.turns:
            lines.append(f"TURNS: {acc.turns} ({acc.successes} successful)")
            kinds = sorted(acc.type_counts.items(), key=lambda kv: (-kv[1], kv[0]))
            lines.append("EDIT TYPES: " + ", ".join(f"{k}×{n}" for k, n in kinds))
        if acc.created:
            lines.append("CREATED: " + ", ".join(acc.created))
        if acc.deleted:
            lines.append("DELETED: " + ", ".join(acc.deleted))
        hot = sorted(acc.file_touches.items(), key=lambda kv: (-kv[1], kv[0]))[:5]
        if hot:
            lines.append("MOST EDITED: " + ", ".join(f"{p} ({n})" for p, n in hot))
        for t in self.recent_turns(3):
            n = len(t.applied())
            lines.append(f"RECENT #{t.index}: {t.intent_type} '{t.request[:60]}' → {n} applied"
                         + ("" if t.success else f" ({t.phase})"))
        if style:
            lines.append(f"PREFERRED EDIT STYLE: {style} ({acc.files_applied / acc.successes:.1f} files/turn)")

        text = "\n".join(lines)
        cap = self.summary_max_chars
        if len(text) > cap:
            text = text[: max(0, cap - 1)] + "…"
        return ProjectEvolutionSummary(
            text=text,
            turn_count=acc.turns,
            type_counts=dict(acc.type_counts),
            file_touches=dict(acc.file_touches),
            created=tuple(acc.created),
            deleted=tuple(acc.deleted),
            edit_style=style,
        )

    # ── Persistence ───────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "version":    STATE_VERSION,
            "session_id": self.session_id,
            "max_turns":  self.max_turns,
            "turns":      [asdict(t) for t in self.turns],
            "compacted":  asdict(self.compacted),
        }

    @classmethod
    def from_dict(cls, data: dict, summary_max_chars: int = 1200) -> "ConversationState":
        state = cls(
            session_id=data.get("session_id", "default"),
            max_turns=data.get("max_turns", 20),
            summary_max_chars=summary_max_chars,
        )
        for raw in data.get("turns") or []:
            raw = dict(raw)
            raw["files"] = tuple(tuple(f) for f in raw.get("files") or ())
            raw["packages"] = tuple(raw.get("packages") or ())
            state.turns.append(Turn(**raw))
        comp = data.get("compacted") or {}
        state.compacted = CompactedHistory(
            turns=int(comp.get("turns", 0)),
            successes=int(comp.get("successes", 0)),
            files_applied=int(comp.get("files_applied", 0)),
            type_counts=dict(comp.get("type_counts") or {}),
            file_touches=dict(comp.get("file_touches") or {}),
            created=list(comp.get("created") or []),
            deleted=list(comp.get("deleted") or []),
        )
        return state

    def save(self, path: Path) -> None:
        """Persist atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".splice_state.", dir=str(path.parent), text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.to_dict(), handle, ensure_ascii=True, indent=2)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

    @classmethod
    def load(cls, path: Path, session_id: str = "default", max_turns: int = 20,
             summary_max_chars: int = 1200) -> "ConversationState":
        """Reload a saved session; a missing or unreadable file starts fresh."""
        path = Path(path)
        if not path.exists():
            return cls(session_id=session_id, max_turns=max_turns, summary_max_chars=summary_max_chars)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Session state unreadable ({e}) — starting fresh.")
            return cls(session_id=session_id, max_turns=max_turns, summary_max_chars=summary_max_chars)
        state = cls.from_dict(data, summary_max_chars=summary_max_chars)
        state.max_turns = max(1, int(max_turns))
        return state
