# agent/context.py — Splice v1
"""
Context Selector: the bounded slice of the project the model gets to see.

  cost(text)  = ceil(len(text) / chars_per_token)
  reserve     = ceil(budget × structure_reserve)   summary only
  files       admitted in ranked order while Σcost ≤ budget − reserve;
              admission stops at the first file that does not fit

CREATE / FULL_REBUILD skip ranking: summary + configured template files.
An empty ranking gives a summary-only bundle flagged degraded.

select() is pure: identical inputs give an identical bundle.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from agent.config import DEFAULT_PIPELINE
from agent.intent import EditIntent
from agent.logger import log
from tools.manifest import FileManifest, structure_summary
from tools.search_plan import RankedFile

_TRUNCATED = "\n… (structure truncated)"


@dataclass(frozen=True)
class ContextFile:
    path:    str
    content: str
    cost:    int
    score:   float = 0.0


@dataclass(frozen=True)
class ContextBundle:
    intent_type:  str
    summary:      str
    summary_cost: int
    files:        Tuple[ContextFile, ...]
    budget:       int
    total_cost:   int
    degraded:     bool = False
    omitted:      Tuple[str, ...] = ()

    def paths(self) -> List[str]:
        return [f.path for f in self.files]

    def render(self) -> str:
        parts = ["PROJECT STRUCTURE:", self.summary]
        if self.files:
            parts.append("")
            parts.append(f"RELEVANT FILES ({len(self.files)}):")
            for f in self.files:
                parts.append(f"--- {f.path} ---")
                parts.append(f.content.rstrip("\n"))
                parts.append(f"--- end {f.path} ---")
        if self.omitted:
            parts.append("")
            parts.append("NOT SHOWN (over budget): " + ", ".join(self.omitted))
        return "\n".join(parts)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    return math.ceil(len(text or "") / max(1, chars_per_token))


def _fit_summary(summary: str, reserve: int, chars_per_token: int) -> str:
    max_chars = reserve * max(1, chars_per_token)
    if len(summary) <= max_chars:
        return summary
    if max_chars <= len(_TRUNCATED):
        return summary[:max_chars]
    return summary[: max_chars - len(_TRUNCATED)] + _TRUNCATED


def select(
    ranked: Sequence[RankedFile],
    manifest: FileManifest,
    intent: EditIntent,
    token_budget: int,
    chars_per_token: int = DEFAULT_PIPELINE["chars_per_token"],
    structure_reserve: float = DEFAULT_PIPELINE["structure_reserve"],
    template_files: Optional[Sequence[str]] = None,
) -> ContextBundle:
    budget = max(0, int(token_budget))
    reserve = min(budget, math.ceil(budget * structure_reserve))

    summary = _fit_summary(structure_summary(manifest), reserve, chars_per_token)
    summary_cost = estimate_tokens(summary, chars_per_token)

    if intent.bypasses_ranking:
        templates = DEFAULT_PIPELINE["template_files"] if template_files is None else template_files
        candidates = [(p, 0.0) for p in templates if p in manifest]
        degraded = False
    else:
        candidates = [(r.path, r.score) for r in ranked if r.path in manifest]
        degraded = not candidates
        if degraded:
            log.warning("[yellow]Context: no ranked files — structure summary only[/yellow]")

    room = budget - reserve
    used = 0
    admitted: List[ContextFile] = []
    omitted: List[str] = []
    for i, (path, score) in enumerate(candidates):
        content = manifest[path].content
        cost = estimate_tokens(content, chars_per_token)
        if used + cost > room:
            omitted = [p for p, _ in candidates[i:]]
            break
        admitted.append(ContextFile(path=path, content=content, cost=cost, score=score))
        used += cost

    bundle = ContextBundle(
        intent_type=intent.type.value,
        summary=summary,
        summary_cost=summary_cost,
        files=tuple(admitted),
        budget=budget,
        total_cost=summary_cost + used,
        degraded=degraded,
        omitted=tuple(omitted),
    )
    log.info(
        f"[cyan]Context: {len(admitted)} file(s), {bundle.total_cost}/{budget} tokens"
        + (f", {len(omitted)} over budget" if omitted else "")
        + "[/cyan]"
    )
    return bundle
