import pytest

from agent.errors import CompletionError
from agent.intent import (
    EditType,
    analyze,
    build_plan,
    detect_error_report,
    lexical_classify,
    parse_classification,
    verbatim_tokens,
)
from conftest import FakeProvider, classification
from tools.manifest import empty_manifest


class _History:
    def __init__(self, success):
        self.success = success

    def has_successful_turn(self):
        return self.success

    def summarize(self):
        class _S:
            text = "1 turn so far"
        return _S()


# ── Lexical signals ───────────────────────────────────────────────────────────

def test_lexical_style_cue():
    kind, conf, hits = lexical_classify("Make the header blue")
    assert kind is EditType.STYLE_CHANGE
    assert conf == 0.6
    assert hits[EditType.STYLE_CHANGE] == 1


def test_lexical_no_cue_defaults_low():
    kind, conf, _ = lexical_classify("do the thing")
    assert (kind, conf) == (EditType.UPDATE_COMPONENT, 0.3)


def test_error_report_detection():
    refs = detect_error_report("Uncaught TypeError: x is not a function at src/App.jsx:12:5")
    assert refs == ("src/App.jsx:12",)
    assert detect_error_report("Build failed with no details") == ("error",)
    assert detect_error_report("make the header blue") == ()


def test_verbatim_tokens_keep_quotes_then_identifiers():
    tokens = verbatim_tokens('Change the "Get Started" button in HeroSection to say Hello')
    assert tokens == ["Get Started", "HeroSection", "Hello"]


def test_component_names_that_are_common_words_stay_verbatim():
    assert verbatim_tokens("Change the App header. Make the Page wider") == ["App", "Page"]
    assert build_plan("Change the App header background color to dark").terms() == [
        "App", "header", "background", "color", "dark",
    ]


# ── Plans ─────────────────────────────────────────────────────────────────────

def test_plan_is_padded_to_three():
    assert build_plan("make it blue").terms() == ["blue", "App", "index"]


def test_plan_is_capped_at_eight():
    plan = build_plan("navbar footer sidebar header modal button card hero banner carousel")
    assert len(plan) == 8
    assert plan.terms()[0] == "navbar"


def test_reserved_terms_survive_the_cap():
    plan = build_plan(
        "navbar footer sidebar header modal button card hero banner",
        reserved=[("main layout", "component"), ("entry file", "entry")],
    )
    assert len(plan) == 8
    assert plan.terms()[-2:] == ["main layout", "entry file"]


# ── analyze ───────────────────────────────────────────────────────────────────

def test_empty_project_is_create_without_model_call():
    provider = FakeProvider(classify=classification("STYLE_CHANGE"))
    intent = analyze("a portfolio site", empty_manifest(), provider=provider)
    assert intent.type is EditType.CREATE
    assert intent.confidence == 1.0
    assert intent.bypasses_ranking
    assert provider.classify_calls == 0


def test_model_and_cues_agree(manifest):
    provider = FakeProvider(classify=classification("STYLE_CHANGE", 0.9, ("header", "color", "blue")))
    intent = analyze("Make the header blue", manifest, provider=provider, model_id="fake/m")
    assert intent.type is EditType.STYLE_CHANGE
    assert intent.confidence == 0.9
    assert not intent.conservative
    assert intent.plan.terms() == ["header", "color", "blue"]
    assert provider.classify_calls == 1


def test_malformed_twice_degrades_to_default(manifest):
    provider = FakeProvider(classify=None)
    intent = analyze("tweak the header", manifest, provider=provider)
    assert provider.classify_calls == 2
    assert intent.type is EditType.UPDATE_COMPONENT
    assert intent.confidence == 0.5
    assert not intent.conservative
    assert "header" in intent.plan.terms()


def test_unreachable_classifier_degrades_to_default(manifest):
    provider = FakeProvider(classify=CompletionError("down"))
    intent = analyze("tweak the header", manifest, provider=provider)
    assert provider.classify_calls == 1
    assert intent.type is EditType.UPDATE_COMPONENT
    assert "unreachable" in intent.reasoning


def test_error_report_beats_failed_classifier(manifest):
    provider = FakeProvider(classify=None)
    intent = analyze("Uncaught TypeError: x is not a function at src/App.jsx:12:5",
                     manifest, provider=provider)
    assert intent.type is EditType.FIX_BUG
    assert intent.confidence == 0.9
    assert intent.error_context == ("src/App.jsx:12",)
    assert intent.plan.terms()[0] == "App.jsx"


def test_model_create_on_existing_project_is_add_feature(manifest):
    provider = FakeProvider(classify=classification("CREATE", 0.9, ("contact", "form")))
    intent = analyze("add a contact form", manifest, provider=provider)
    assert intent.type is EditType.ADD_FEATURE
    assert not intent.bypasses_ranking


def test_low_confidence_without_history_is_full_rebuild(manifest):
    provider = FakeProvider(classify=classification("UPDATE_COMPONENT", 0.2))
    intent = analyze("do the thing", manifest, history=_History(False), provider=provider)
    assert intent.type is EditType.FULL_REBUILD
    assert intent.conservative
    assert not intent.allows_delete
    assert intent.confidence == 0.3


def test_low_confidence_after_success_widens_plan(manifest):
    provider = FakeProvider(classify=classification("UPDATE_COMPONENT", 0.2))
    intent = analyze("do the thing", manifest, history=_History(True), provider=provider)
    assert intent.type is EditType.UPDATE_COMPONENT
    assert intent.conservative
    assert intent.plan.terms() == ["header", "main layout", "entry file", "main"]
    assert "1 turn so far" in provider.prompts[0]


def test_without_provider_uses_cues(manifest):
    intent = analyze("fix the broken footer", manifest)
    assert intent.type is EditType.FIX_BUG
    assert "footer" in intent.plan.terms()


# ── Classifier output ─────────────────────────────────────────────────────────

def test_parse_classification_accepts_fenced_json():
    raw = '```json\n{"type": "style_change", "target": "x", "confidence": 1.7, "queries": ["nav", {"term": "menu"}]}\n```'
    data = parse_classification(raw)
    assert data["type"] is EditType.STYLE_CHANGE
    assert data["confidence"] == 1.0
    assert data["queries"] == [("nav", ""), ("menu", "")]


@pytest.mark.parametrize("raw", ["not json", '{"type": "PAINT"}', '{"type": "FIX_BUG", "confidence": "high"}', "[1, 2]"])
def test_parse_classification_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_classification(raw)
