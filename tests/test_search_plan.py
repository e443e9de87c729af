import pytest

from agent.errors import SearchNoMatch
from tools.manifest import build_manifest
from tools.search_plan import SearchPlan, SearchQuery, execute, require_matches


def _plan(*terms):
    return SearchPlan(tuple(SearchQuery(t) for t in terms))


def test_header_blue_ranking(manifest):
    ranked = execute(_plan("header", "color", "blue"), manifest)
    assert [(r.path, r.score) for r in ranked] == [
        ("src/components/styles.css", 1.8),
        ("src/components/Header.tsx", 1.24),
        ("src/App.jsx", 0.6),
        ("src/main.jsx", 0.3),
        ("src/components/Footer.jsx", 0.3),
    ]


def test_provenance_records_index_term_and_method(manifest):
    ranked = {r.path: r for r in execute(_plan("header", "color"), manifest)}
    header = ranked["src/components/Header.tsx"]
    assert [(p.index, p.term, p.method) for p in header.provenance] == [
        (0, "header", "exact"), (1, "color", "adjacent"),
    ]
    assert ranked["src/App.jsx"].provenance[0].method == "casefold"


def test_unmatched_files_are_left_out(manifest):
    paths = [r.path for r in execute(_plan("header"), manifest)]
    assert "src/utils/format.ts" not in paths
    assert "package.json" not in paths


def test_ranking_is_deterministic(manifest):
    plan = _plan("Footer", "App", "index")
    assert execute(plan, manifest) == execute(plan, manifest)


def test_custom_weights_and_decay(manifest):
    ranked = execute(_plan("FOOTER", "color"), manifest, decay=0.5,
                     weights={"casefold": 0.5, "adjacent": 0.0})
    scores = {r.path: r.score for r in ranked}
    # "FOOTER" only matches ignoring case; "color" is exact for styles.css at half priority
    assert scores["src/components/Footer.jsx"] == 0.5
    assert scores["src/App.jsx"] == 0.5
    assert scores["src/components/styles.css"] == 0.5
    assert "src/components/Header.tsx" not in scores


def test_ties_break_on_path_length_then_lexically():
    m = build_manifest([
        ("src/bb.js", "widget", 0),
        ("src/aa.js", "widget", 0),
        ("src/c/long.js", "widget", 0),
    ])
    assert [r.path for r in execute(_plan("widget"), m)] == ["src/aa.js", "src/bb.js", "src/c/long.js"]


def test_no_match_raises(manifest):
    plan = _plan("nonexistent-term-xyz")
    ranked = execute(plan, manifest)
    assert ranked == ()
    with pytest.raises(SearchNoMatch):
        require_matches(ranked, plan)


def test_blank_terms_are_skipped(manifest):
    assert execute(_plan("  ", ""), manifest) == ()
