# agent/intent.py — Splice v1
"""
Edit Intent Analyzer.

  analyze(request, manifest, history) → EditIntent (exactly one)

Two signals are combined:
  1. Lexical cue tables (+ error-report detection, which is decisive)
  2. A JSON classification from the completion provider:
       {"type": "...", "target": "...", "confidence": 0.0-1.0,
        "queries": [{"term": "...", "role": "..."}]}
     Malformed output gets one retry with a shorter prompt. A second
     failure (or a transport error) degrades to the default
     UPDATE_COMPONENT intent.

Low confidence (< confidence_threshold) marks the intent conservative:
  - no successful turn yet  → FULL_REBUILD
  - otherwise               → UPDATE_COMPONENT with "main layout" /
                              "entry file" added to the plan

Plans hold 3–8 queries. Quoted and Capitalized/CamelCase tokens from the
request always come first, verbatim.
"""
from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from agent.errors import CompletionError, IntentAnalysisFailure
from agent.llm import complete, extract_json
from agent.logger import log
from tools.manifest import FileManifest
from tools.search_plan import SearchPlan, SearchQuery

MIN_QUERIES = 3
MAX_QUERIES = 8
PLAN_PADDING = ("App", "index", "main")
WIDEN_TERMS = (("main layout", "component"), ("entry file", "entry"))


class EditType(str, enum.Enum):
    CREATE           = "CREATE"
    UPDATE_COMPONENT = "UPDATE_COMPONENT"
    ADD_FEATURE      = "ADD_FEATURE"
    FIX_BUG          = "FIX_BUG"
    REFACTOR         = "REFACTOR"
    STYLE_CHANGE     = "STYLE_CHANGE"
    FULL_REBUILD     = "FULL_REBUILD"


@dataclass(frozen=True)
class EditIntent:
    type:          EditType
    target:        str
    confidence:    float
    plan:          SearchPlan = field(default_factory=SearchPlan)
    request:       str = ""
    conservative:  bool = False
    reasoning:     str = ""
    error_context: Tuple[str, ...] = ()

    @property
    def allows_delete(self) -> bool:
        return not self.conservative

    @property
    def bypasses_ranking(self) -> bool:
        return self.type in (EditType.CREATE, EditType.FULL_REBUILD)


# ─────────────────────────────────────────────────────────────────────────────
# Lexical cues
# ─────────────────────────────────────────────────────────────────────────────

_CUES: Dict[EditType, Tuple[str, ...]] = {
    EditType.FULL_REBUILD: (
        "rebuild", "start over", "from scratch", "redo everything", "rewrite everything",
        "rewrite the whole", "completely redesign", "brand new design", "scrap",
    ),
    EditType.CREATE: (
        "create an app", "create a new app", "new project", "build me", "build an app",
        "generate an app", "make me an app", "make me a website", "landing page for",
    ),
    EditType.FIX_BUG: (
        "fix", "bug", "broken", "error", "not working", "doesn't work", "does not work",
        "crash", "crashes", "issue", "wrong", "blank screen", "fails", "failing",
    ),
    EditType.REFACTOR: (
        "refactor", "clean up", "cleanup", "reorganize", "restructure", "extract",
        "split", "rename", "simplify", "move", "dedupe", "modularize",
    ),
    EditType.STYLE_CHANGE: (
        "color", "colour", "style", "styling", "css", "font", "padding", "margin",
        "spacing", "background", "theme", "dark mode", "light mode", "bold", "italic",
        "rounded", "shadow", "gradient", "border", "bigger", "smaller", "larger",
        "align", "center", "centered", "responsive", "tailwind", "hover", "animation",
        "blue", "red", "green", "yellow", "purple", "pink", "orange", "black", "white",
        "gray", "grey", "indigo", "teal",
    ),
    EditType.ADD_FEATURE: (
        "add", "create", "new", "include", "implement", "insert", "integrate",
        "introduce", "support for", "another",
    ),
    EditType.UPDATE_COMPONENT: (
        "change", "update", "modify", "edit", "replace", "tweak", "adjust", "set",
        "text", "title", "label", "heading", "copy", "wording", "swap",
    ),
}

# precedence when two types score the same
_PRECEDENCE = (
    EditType.FIX_BUG, EditType.FULL_REBUILD, EditType.STYLE_CHANGE, EditType.REFACTOR,
    EditType.ADD_FEATURE, EditType.UPDATE_COMPONENT, EditType.CREATE,
)

_STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "to", "of", "in", "on", "at", "for", "with",
    "by", "from", "into", "onto", "it", "its", "this", "that", "these", "those", "is",
    "are", "be", "was", "were", "can", "could", "would", "should", "please", "make",
    "i", "me", "my", "we", "our", "you", "your", "so", "some", "all", "any", "also",
    "just", "like", "want", "need", "let", "lets", "there", "here", "then", "than",
    "when", "where", "what", "which", "how", "more", "less", "very", "too", "now",
    "page", "app", "thing", "stuff", "instead", "use", "using",
}
_ACTION_WORDS = {
    "add", "create", "change", "update", "modify", "edit", "fix", "refactor", "remove",
    "delete", "replace", "move", "rename", "set", "put", "give", "turn", "show", "hide",
    "build", "implement", "include", "insert", "tweak", "adjust", "clean", "redo",
}
_STYLE_WORDS = set(_CUES[EditType.STYLE_CHANGE])

# ── Error reports ─────────────────────────────────────────────────────────────
_ERROR_PATTERNS = (
    "[plugin:vite", "failed to compile", "failed to resolve import", "module not found",
    "cannot find module", "unexpected token", "is not defined", "cannot read propert",
    "is not a function", "uncaught", "syntaxerror", "typeerror", "referenceerror",
    "traceback", "stack trace", "unterminated", "expected \"", "build failed",
)
_ERROR_REF_RE = re.compile(
    r"([\w@./-]+\.(?:jsx|tsx|js|ts|mjs|css|scss|json|vue|svelte|html))"
    r"(?::(\d+)(?::\d+)?|\s*\(?\s*line\s+(\d+))?",
    re.IGNORECASE,
)


def _has_cue(text: str, cue: str) -> bool:
    return re.search(r"(?<![\w-])" + re.escape(cue) + r"(?![\w-])", text) is not None


def detect_error_report(request: str) -> Tuple[str, ...]:
    """
    File references (with line numbers when present) from a pasted error.
    Empty tuple when the request is not an error report.
    """
    low = (request or "").lower()
    if not any(p in low for p in _ERROR_PATTERNS):
        return ()
    refs: List[str] = []
    for m in _ERROR_REF_RE.finditer(request):
        path = m.group(1).lstrip("./")
        if path.startswith(("node_modules/", "http")):
            continue
        line = m.group(2) or m.group(3)
        ref = f"{path}:{line}" if line else path
        if ref not in refs:
            refs.append(ref)
    return tuple(refs) or ("error",)


def lexical_classify(request: str) -> Tuple[EditType, float, Dict[EditType, int]]:
    low = (request or "").lower()
    hits = {t: sum(1 for c in cues if _has_cue(low, c)) for t, cues in _CUES.items()}
    ranked = sorted(_PRECEDENCE, key=lambda t: -hits[t])
    best, second = ranked[0], ranked[1]
    if hits[best] == 0:
        return EditType.UPDATE_COMPONENT, 0.3, hits
    conf = 0.45 + 0.15 * hits[best] - 0.1 * hits[second]
    return best, round(max(0.2, min(0.9, conf)), 3), hits


# ─────────────────────────────────────────────────────────────────────────────
# Plan construction
# ─────────────────────────────────────────────────────────────────────────────

_QUOTED_RE = re.compile(r"\"([^\"]{1,60})\"|(?<!\w)'([^']{1,60})'(?!\w)|`([^`]{1,60})`|“([^”]{1,60})”")
_CAP_RE    = re.compile(r"\b[A-Z][A-Za-z0-9]*\b|\b[a-z]+(?:[A-Z][a-z0-9]+)+\b")
_WORD_RE   = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


def _sentence_initial(text: str, pos: int) -> bool:
    before = text[:pos].rstrip()
    return not before or before[-1] in ".!?:;"


def verbatim_tokens(request: str) -> List[str]:
    """
    Quoted strings, then Capitalized / CamelCase identifiers, in request order.
    Only sentence-initial capitals go through the stopword and action lists,
    so component names like App or Page survive mid-sentence.
    """
    out: List[str] = []
    for m in _QUOTED_RE.finditer(request or ""):
        tok = next(g for g in m.groups() if g is not None).strip()
        if tok and tok not in out:
            out.append(tok)
    unquoted = _QUOTED_RE.sub(" ", request or "")
    for m in _CAP_RE.finditer(unquoted):
        tok = m.group(0)
        if len(tok) < 2:
            continue
        if _sentence_initial(unquoted, m.start()) and (
                tok.lower() in _STOPWORDS or tok.lower() in _ACTION_WORDS):
            continue
        if tok not in out:
            out.append(tok)
    return out


def keywords(request: str) -> List[str]:
    out: List[str] = []
    for w in _WORD_RE.findall(_QUOTED_RE.sub(" ", request or "")):
        lw = w.lower()
        if len(lw) < 3 or lw in _STOPWORDS or lw in _ACTION_WORDS:
            continue
        if lw not in out:
            out.append(lw)
    return out


def _role_for(term: str) -> str:
    if "/" in term or PurePosixPath(term).suffix:
        return "any"
    if term.lower() in _STYLE_WORDS:
        return "style"
    return "component"


def build_plan(
    request: str,
    model_queries: Sequence[Tuple[str, str]] = (),
    leading: Sequence[str] = (),
    reserved: Sequence[Tuple[str, str]] = (),
) -> SearchPlan:
    """
    leading   error-report file names, ahead of everything
    reserved  queries that must survive the 8-query cap (widened plans)
    """
    queries: List[SearchQuery] = []
    seen: set = set()

    def push(term: str, role: str) -> None:
        term = (term or "").strip()
        if term and term.lower() not in seen:
            seen.add(term.lower())
            queries.append(SearchQuery(term=term, role=role))

    for term in leading:
        push(term, "any")
    for term in verbatim_tokens(request):
        push(term, _role_for(term))
    for term, role in model_queries:
        push(term, role or _role_for(term))
    for term in keywords(request):
        push(term, _role_for(term))

    room = MAX_QUERIES - sum(1 for t, _ in reserved if t.lower() not in seen)
    queries = queries[:max(room, 0)]
    seen = {q.term.lower() for q in queries}
    for term, role in reserved:
        push(term, role)
    for term in PLAN_PADDING:
        if len(queries) >= MIN_QUERIES:
            break
        push(term, "entry" if term != "App" else "component")
    return SearchPlan(queries=tuple(queries[:MAX_QUERIES]))


# ─────────────────────────────────────────────────────────────────────────────
# Delegated classification
# ─────────────────────────────────────────────────────────────────────────────

def _manifest_outline(manifest: FileManifest, limit: int = 40) -> str:
    lines = []
    for path in manifest.paths()[:limit]:
        entry = manifest[path]
        tag = f" ({entry.component})" if entry.component else ""
        lines.append(f"  {path} [{entry.role}]{tag}")
    if len(manifest) > limit:
        lines.append(f"  … {len(manifest) - limit} more")
    return "\n".join(lines)


def _classifier_prompt(request: str, manifest: FileManifest, summary: str) -> str:
    types = ", ".join(t.value for t in EditType)
    return f"""Classify this edit request for an existing web project.

REQUEST: {request}

PROJECT FILES:
{_manifest_outline(manifest)}

PROJECT HISTORY:
{summary or "(no previous turns)"}

OUTPUT STRICT JSON with exactly these keys:
{{
  "type": one of [{types}],
  "target": "short description of what should change",
  "confidence": number between 0 and 1,
  "queries": [{{"term": "identifier or phrase to search for", "role": "component|style|config|entry|page|hook|utility|any"}}]
}}

Rules:
  - 3 to 8 queries, most important first.
  - Prefer component names, file names and visible text that appear in the project.
  - Return ONLY JSON. No markdown, no explanation.
"""


def _simple_prompt(request: str) -> str:
    types = "|".join(t.value for t in EditType)
    return (
        f'Request: "{request}"\n'
        f'Reply with one JSON object only: {{"type": "{types}", "target": "...", '
        f'"confidence": 0.0, "queries": [{{"term": "...", "role": "component"}}]}}'
    )


def parse_classification(raw: str) -> dict:
    """Validate classifier output; ValueError when unusable."""
    data = json.loads(extract_json(raw or ""))
    if not isinstance(data, dict):
        raise ValueError("classification is not an object")
    kind = str(data.get("type", "")).strip().upper()
    if kind not in EditType.__members__:
        raise ValueError(f"unknown edit type {kind!r}")
    try:
        conf = float(data.get("confidence", 0.0))
    except (TypeError, ValueError) as e:
        raise ValueError(f"bad confidence: {data.get('confidence')!r}") from e
    queries: List[Tuple[str, str]] = []
    for q in data.get("queries") or []:
        if isinstance(q, dict) and str(q.get("term", "")).strip():
            queries.append((str(q["term"]).strip(), str(q.get("role") or "").strip()))
        elif isinstance(q, str) and q.strip():
            queries.append((q.strip(), ""))
    return {
        "type":       EditType[kind],
        "target":     str(data.get("target") or "").strip(),
        "confidence": max(0.0, min(1.0, conf)),
        "queries":    queries,
    }


def classify_with_model(provider, model_id: str, request: str,
                        manifest: FileManifest, summary: str = "") -> dict:
    """One attempt, one simplified retry, then IntentAnalysisFailure."""
    prompts = (_classifier_prompt(request, manifest, summary), _simple_prompt(request))
    last_err = "unknown"
    for attempt, prompt in enumerate(prompts, 1):
        try:
            raw, _ = complete(provider, prompt, model_id, max_tokens=512)
        except CompletionError as e:
            raise IntentAnalysisFailure(f"classifier unreachable: {e}") from e
        try:
            return parse_classification(raw)
        except ValueError as e:
            last_err = str(e)
            log.debug(f"Intent classifier attempt {attempt} malformed: {e}")
    raise IntentAnalysisFailure(f"classifier output malformed twice: {last_err}")


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────

def default_intent(request: str, reason: str, leading: Sequence[str] = ()) -> EditIntent:
    return EditIntent(
        type=EditType.UPDATE_COMPONENT,
        target=request.strip()[:120],
        confidence=0.5,
        plan=build_plan(request, leading=leading),
        request=request,
        reasoning=reason,
    )


def analyze(
    request: str,
    manifest: FileManifest,
    history=None,
    provider=None,
    model_id: str = "",
    threshold: float = 0.5,
) -> EditIntent:
    log.info("[bold magenta]Intent: classifying request...[/bold magenta]")
    request = request or ""

    if not len(manifest):
        intent = EditIntent(
            type=EditType.CREATE,
            target=request.strip()[:120],
            confidence=1.0,
            plan=build_plan(request),
            request=request,
            reasoning="empty project",
        )
        _log_intent(intent)
        return intent

    errors = detect_error_report(request)
    ctx = tuple(r for r in errors if r != "error")
    leading = [PurePosixPath(r.split(":")[0]).name for r in ctx]
    if errors:
        lex_type, lex_conf = EditType.FIX_BUG, 0.9
    else:
        lex_type, lex_conf, _ = lexical_classify(request)
    if lex_type is EditType.CREATE:
        lex_type = EditType.ADD_FEATURE

    summary = ""
    if history is not None:
        summary = history.summarize().text

    model: Optional[dict] = None
    if provider is not None:
        try:
            model = classify_with_model(provider, model_id, request, manifest, summary)
        except IntentAnalysisFailure as e:
            log.warning(f"Intent classifier failed ({e}) — using default intent.")
            if lex_conf < 0.8:
                intent = replace(default_intent(request, str(e), leading), error_context=ctx)
                _log_intent(intent)
                return intent

    if model is None:
        kind, conf, target, reasoning = lex_type, lex_conf, request.strip()[:120], "lexical cues"
        model_queries: List[Tuple[str, str]] = []
    else:
        model_type = model["type"]
        if model_type is EditType.CREATE:
            model_type = EditType.ADD_FEATURE
        model_queries = model["queries"]
        target = model["target"] or request.strip()[:120]
        if model_type is lex_type:
            kind, conf, reasoning = model_type, max(model["confidence"], lex_conf), "model and cues agree"
        elif lex_conf > model["confidence"]:
            kind, conf, reasoning = lex_type, lex_conf, "cues outweigh model"
        else:
            kind, conf, reasoning = model_type, model["confidence"], "model classification"

    conservative = False
    reserved: List[Tuple[str, str]] = []
    if conf < threshold:
        conservative = True
        if history is None or not history.has_successful_turn():
            kind = EditType.FULL_REBUILD
            reasoning += f"; confidence {conf:.2f} < {threshold} with no prior success"
        else:
            kind = EditType.UPDATE_COMPONENT
            reserved = list(WIDEN_TERMS)
            if manifest.entry_point:
                reserved.append((PurePosixPath(manifest.entry_point).stem, "entry"))
            reasoning += f"; confidence {conf:.2f} < {threshold}, widened plan"

    intent = EditIntent(
        type=kind,
        target=target,
        confidence=round(conf, 3),
        plan=build_plan(request, model_queries, leading=leading, reserved=reserved),
        request=request,
        conservative=conservative,
        reasoning=reasoning,
        error_context=ctx,
    )
    _log_intent(intent)
    return intent


def _log_intent(intent: EditIntent) -> None:
    flag = " [yellow](conservative)[/yellow]" if intent.conservative else ""
    log.info(
        f"[magenta]Intent: {intent.type.value} @ {intent.confidence:.2f}{flag} — "
        f"{intent.target}[/magenta]"
    )
    log.info(f"[magenta]Plan: {intent.plan.terms()}[/magenta]")
