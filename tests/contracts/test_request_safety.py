from opti_context.formatting.formatter import SAFETY_DIRECTIVES, RequestFormatter
from opti_context.formatting.templates import TOOL_TEMPLATES
from opti_context.types import TokenBudget


def test_safety_directives_are_fixed() -> None:
    assert "Do not include secrets or PII in responses." in SAFETY_DIRECTIVES
    assert any("STOP and request a redacted version" in item for item in SAFETY_DIRECTIVES)
    assert any("cite sources" in item for item in SAFETY_DIRECTIVES)


def test_every_tool_has_a_template() -> None:
    assert set(TOOL_TEMPLATES) == {
        "optidev_context_analyzer",
        "optidev_code_analyzer",
        "optidev_debug_helper",
        "optidev_implementation_guide",
        "optidev_project_helper",
        "optidev_development_rules",
    }


def test_emitted_request_contract() -> None:
    request = RequestFormatter().format(
        "optidev_code_analyzer",
        "Review",
        [
            {"type": "code", "content": "<iframe src=x></iframe>token=abcdef123456", "relevance": 0.7},
            {"type": "documentation", "content": "see data:text/html;base64,PHNjcmlwdD4=", "relevance": 0.6},
            {"type": "analysis", "content": "z " * 600, "relevance": 0.2},
        ],
        token_budget=TokenBudget(max_context_tokens=40),
    )

    relevances = [block.relevance for block in request.context_blocks]
    assert relevances == sorted(relevances, reverse=True)
    assert sum(block.tokens_estimate for block in request.context_blocks) <= 40
    assert all(block.sanitized for block in request.context_blocks)
    joined = "\n".join(block.content for block in request.context_blocks)
    assert "<iframe" not in joined
    assert "abcdef123456" not in joined
    assert "base64" not in joined
    assert request.telemetry.dropped_blocks == 1
    assert request.token_estimate == request.telemetry.token_estimate
