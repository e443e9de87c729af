# tools/search_plan.py — Splice v1
"""
Search plan executor.

For every query term, in plan order, each manifest file is matched by the
strongest of three methods:

  exact      term appears verbatim in the path or content
  casefold   term appears ignoring case
  adjacent   file imports / is imported by a file that matched the same
             query directly (exact or casefold)

score(file) = Σ decay**index × weight[method]

Files that never match are left out entirely. Ordering is score desc,
then shorter path, then lexical path. Identical inputs always give the
identical ranking.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from agent.errors import SearchNoMatch
from agent.logger import log
from tools.manifest import FileManifest

DEFAULT_DECAY   = 0.8
DEFAULT_WEIGHTS = {"exact": 1.0, "casefold": 0.6, "adjacent": 0.3}


@dataclass(frozen=True)
class SearchQuery:
    term: str
    role: str = "component"   # component | style | config | entry | page | hook | utility | any


@dataclass(frozen=True)
class SearchPlan:
    queries: Tuple[SearchQuery, ...] = ()

    def __len__(self) -> int:
        return len(self.queries)

    def __iter__(self):
        return iter(self.queries)

    def terms(self) -> List[str]:
        return [q.term for q in self.queries]


@dataclass(frozen=True)
class Provenance:
    index:  int
    term:   str
    method: str
    role:   str = "component"


@dataclass(frozen=True)
class RankedFile:
    path:       str
    score:      float
    provenance: Tuple[Provenance, ...] = field(default_factory=tuple)


RankedFileSet = Tuple[RankedFile, ...]


def execute(
    plan: SearchPlan,
    manifest: FileManifest,
    decay: float = DEFAULT_DECAY,
    weights: Optional[Dict[str, float]] = None,
) -> RankedFileSet:
    """Run *plan* against *manifest* and return the ranked, non-empty file set."""
    w = dict(DEFAULT_WEIGHTS)
    w.update(weights or {})

    scores: Dict[str, float] = {}
    prov: Dict[str, List[Provenance]] = {}
    paths = manifest.paths()
    lowered = {p: manifest[p].content.lower() for p in paths}

    for index, query in enumerate(plan.queries):
        term = (query.term or "").strip()
        if not term:
            continue
        folded = term.lower()
        priority = decay ** index

        direct: Dict[str, str] = {}
        for path in paths:
            if term in path or term in manifest[path].content:
                direct[path] = "exact"
            elif folded in path.lower() or folded in lowered[path]:
                direct[path] = "casefold"

        matched: Dict[str, str] = dict(direct)
        for path in sorted(direct):
            for other in manifest.neighbours(path):
                if other not in matched:
                    matched[other] = "adjacent"

        for path in sorted(matched):
            method = matched[path]
            scores[path] = scores.get(path, 0.0) + priority * w[method]
            prov.setdefault(path, []).append(
                Provenance(index=index, term=term, method=method, role=query.role)
            )

    ranked = [
        RankedFile(path=p, score=round(s, 6), provenance=tuple(prov[p]))
        for p, s in scores.items()
        if round(s, 6) > 0
    ]
    ranked.sort(key=lambda r: (-r.score, len(r.path), r.path))

    if ranked:
        top = ", ".join(f"{r.path}={r.score:.3f}" for r in ranked[:5])
        log.info(f"[cyan]Search: {len(ranked)} file(s) matched — {top}[/cyan]")
    else:
        log.info(f"[yellow]Search: no matches for {plan.terms()}[/yellow]")
    return tuple(ranked)


def require_matches(ranked: RankedFileSet, plan: SearchPlan) -> RankedFileSet:
    if not ranked:
        raise SearchNoMatch(f"no file matched any of {plan.terms()}")
    return ranked
