from opti_context.analysis.prompt_analyzer import PromptAnalyzer
from opti_context.curation.curator import LOW_RELEVANCE_SUMMARY, ContextCurator
from opti_context.curation.scanner import DEFAULT_DESCRIPTION, MarkdownScanner
from opti_context.rules.merger import RuleMerger
from opti_context.types import BlockType, DocumentationItem, ProductId, RawRuleFile

EXAMPLE_PROMPT = "How do I implement a custom handler in Configured Commerce? See FooHandler.cs"

HANDLER_DOC = DocumentationItem(
    title="Handler chain pattern",
    url="https://docs.example.com/handler-chain",
    relevance=0.9,
    products=(ProductId.CONFIGURED_COMMERCE,),
    content=(
        "## Handler chain pattern\n"
        "Handlers run in order and may delegate to the next handler in the chain.\n\n"
        "```csharp\n"
        "public class CustomHandler : HandlerBase<Parameter, Result> { }\n"
        "```\n"
    ),
)
WEAK_DOC = DocumentationItem(
    title="Extension development",
    url="https://docs.example.com/extensions",
    relevance=0.4,
    products=(ProductId.CONFIGURED_COMMERCE,),
    content="Short.\n\n```js\nx()\n```\n",
)


def test_scanner_handles_fence_variants() -> None:
    text = "\n".join(
        [
            "# Setup",
            "Some intro text here.",
            "```python",
            "print('hi')",
            "```",
            "",
            "## Next",
            "~~~~js",
            "console.log(1)",
            "~~~",
            "still code",
            "~~~~",
        ]
    )

    blocks = MarkdownScanner().scan(text)

    assert [(block.language, block.description) for block in blocks] == [
        ("python", "Some intro text here."),
        ("js", "Next"),
    ]
    assert blocks[0].code == "print('hi')"
    assert blocks[1].code == "console.log(1)\n~~~\nstill code"
    assert all(block.closed for block in blocks)


def test_scanner_unclosed_block_and_nested_descriptions() -> None:
    unclosed = MarkdownScanner().scan("```ts\nconst a = 1;\n")
    assert len(unclosed) == 1
    assert unclosed[0].closed is False
    assert unclosed[0].code == "const a = 1;"
    assert unclosed[0].description == DEFAULT_DESCRIPTION

    text = "Intro paragraph line\n```\ninside earlier block long line\n```\n```js\nx()\n```"
    blocks = MarkdownScanner().scan(text)
    assert blocks[0].language == "text"
    assert blocks[1].description == "Intro paragraph line"


def test_curate_enriches_summary_with_strong_documentation() -> None:
    analysis = PromptAnalyzer().analyze(EXAMPLE_PROMPT)

    curated = ContextCurator().curate(
        analysis, [ProductId.CONFIGURED_COMMERCE], documentation=[WEAK_DOC, HANDLER_DOC]
    )

    assert curated.summary.startswith("Code assistance for Configured Commerce development")
    assert curated.summary.endswith("Key references: Handler chain pattern.")
    assert "Extension development" not in curated.summary
    assert curated.actionable_steps[0] == "Working with Configured Commerce"
    assert [link.title for link in curated.documentation] == [
        "Handler chain pattern",
        "Extension development",
    ]
    assert len(curated.code_examples) == 1
    example = curated.code_examples[0]
    assert example.language == "csharp"
    assert example.relevance == 0.72
    assert example.source == HANDLER_DOC.url


def test_rule_findings_are_prioritized_in_steps() -> None:
    rules = RuleMerger().analyze_files(
        [
            RawRuleFile("inline:0", "- use tabs", "text"),
            RawRuleFile("inline:1", "- use spaces", "text"),
        ]
    )
    analysis = PromptAnalyzer().analyze(EXAMPLE_PROMPT)

    curated = ContextCurator().curate(analysis, [ProductId.CONFIGURED_COMMERCE], rules)

    assert curated.actionable_steps[0] == "Resolve rule conflict: Conflicting indentation settings (tabs vs spaces)"
    assert curated.actionable_steps[1].startswith("Rule enhancement available: ")
    assert "(2 IDE rule files detected" in curated.summary
    assert curated.suggested_rules
    assert len(curated.best_practices) == len(set(curated.best_practices))


def test_low_relevance_response() -> None:
    analysis = PromptAnalyzer().analyze("What is the weather like in Lisbon today?")

    curated = ContextCurator.low_relevance_response(analysis)

    assert curated.summary == LOW_RELEVANCE_SUMMARY
    assert curated.product_context == []
    assert curated.actionable_steps == []
    assert curated.code_examples == []


def test_context_blocks_from_curated_response() -> None:
    analysis = PromptAnalyzer().analyze(EXAMPLE_PROMPT)
    curator = ContextCurator()
    curated = curator.curate(analysis, [ProductId.CONFIGURED_COMMERCE], documentation=[HANDLER_DOC])

    blocks = curator.to_context_blocks(curated)

    assert blocks[0].type is BlockType.SUMMARY
    assert blocks[0].relevance == 0.95
    assert {block.type for block in blocks} == {
        BlockType.SUMMARY,
        BlockType.CODE,
        BlockType.DOCUMENTATION,
        BlockType.ANALYSIS,
    }
    code = next(block for block in blocks if block.type is BlockType.CODE)
    assert code.content.startswith("```csharp\n")
    assert all(not block.sanitized for block in blocks)
