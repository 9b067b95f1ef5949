from opti_context.analysis.prompt_analyzer import PromptAnalyzer
from opti_context.analysis.prompt_context import (
    build_prompt_context,
    extract_constraints,
    resolve_severity,
    resolve_user_intent,
)
from opti_context.types import ProductId, PromptIntent

EXAMPLE_PROMPT = "How do I implement a custom handler in Configured Commerce? See FooHandler.cs"


def test_example_prompt_is_code_help_for_commerce() -> None:
    result = PromptAnalyzer().analyze(EXAMPLE_PROMPT)

    assert result.intent is PromptIntent.CODE_HELP
    assert "FooHandler.cs" in result.entities.files
    assert ProductId.CONFIGURED_COMMERCE in result.product_hints
    assert result.relevance >= 0.2
    assert "configured commerce" in result.keywords


def test_empty_prompt_yields_zero_relevance() -> None:
    analyzer = PromptAnalyzer()

    for prompt in ("", "   ", None):
        result = analyzer.analyze(prompt)  # type: ignore[arg-type]
        assert result.relevance == 0.0
        assert result.confidence == 0.0
        assert result.intent is PromptIntent.UNKNOWN
        assert result.keywords == ()


def test_relevance_and_confidence_stay_within_unit_interval() -> None:
    prompt = (
        "Optimizely episerver opti CMS handler chain extension point startup.cs appsettings.json "
        "content type visitor group commerce experimentation personalization feature flag a/b test"
    )
    result = PromptAnalyzer().analyze(prompt)

    assert 0.99 <= result.relevance <= 1.0
    assert 0.0 <= result.confidence <= 1.0
    assert set(result.signals) == {
        "direct_mentions",
        "domain_terms",
        "technical_patterns",
        "contextual_terms",
    }


def test_unrelated_prompt_scores_below_threshold() -> None:
    result = PromptAnalyzer().analyze("What is the weather like in Lisbon today?")

    assert result.relevance < 0.2
    assert result.product_hints == ()


def test_entity_extraction() -> None:
    entities = PromptAnalyzer.extract_entities(
        "Upgrade to CMS 12 from v11.2.3, see https://docs.example.com/page. and Startup.cs"
    )

    assert entities.urls == ("https://docs.example.com/page",)
    assert "Startup.cs" in entities.files
    assert "11.2.3" in entities.versions
    assert "12" in entities.versions


def test_initialize_is_idempotent() -> None:
    analyzer = PromptAnalyzer()
    analyzer.initialize()
    analyzer.initialize()

    assert analyzer.resolve_intent("where can i find documentation for blocks") is PromptIntent.DOCUMENTATION


def test_prompt_context_severity_versions_and_constraints() -> None:
    prompt = "Production is down! CMS 12 site throws an exception. Must not restart the server."
    analysis = PromptAnalyzer().analyze(prompt)

    context = build_prompt_context(prompt, analysis)

    assert context.severity == "critical"
    assert (ProductId.CMS_PAAS.value, "12") in context.versions
    assert "Must not restart the server." in context.constraints
    assert context.session_hints == {}


def test_prompt_context_helpers() -> None:
    assert resolve_severity("minor typo on the start page") == "low"
    assert resolve_severity("how do blocks work") is None
    assert resolve_user_intent("Migrate from CMS 11 to CMS 12", PromptIntent.CODE_HELP) == "migration"
    assert resolve_user_intent("anything", PromptIntent.TROUBLESHOOTING) == "troubleshooting"
    assert extract_constraints("Use blocks. Avoid inline styles.") == ["Avoid inline styles."]
