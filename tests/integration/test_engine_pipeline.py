import asyncio
import time
from pathlib import Path

from langchain_core.embeddings import Embeddings

from opti_context.config import PipelineConfig
from opti_context.curation.curator import LOW_RELEVANCE_SUMMARY
from opti_context.docs.retriever import select_retriever
from opti_context.pipeline.engine import ContextAnalysisEngine, coerce_request
from opti_context.types import BlockType, ContextAnalysisRequest, ProductId, TokenBudget

EXAMPLE_PROMPT = "How do I implement a custom handler in Configured Commerce? See FooHandler.cs"


class SlowRetriever:
    mode = "slow"

    async def fetch(self, products, query=None):
        await asyncio.sleep(5)
        return []


class BrokenRetriever:
    mode = "broken"

    async def fetch(self, products, query=None):
        raise RuntimeError("documentation backend unavailable")


class SlowQueryEmbeddings(Embeddings):
    def embed_documents(self, texts):
        return [[1.0, 0.0] for _ in texts]

    def embed_query(self, text):
        time.sleep(1.0)
        return [1.0, 0.0]


class BrokenDetector:
    def detect(self, project_path):
        raise PermissionError("filesystem unavailable")


def test_example_prompt_end_to_end() -> None:
    engine = ContextAnalysisEngine()

    response = asyncio.run(engine.analyze(EXAMPLE_PROMPT))

    assert response.detected_products[0] is ProductId.CONFIGURED_COMMERCE
    assert response.prompt_analysis.intent.value == "code-help"
    assert response.prompt_context.user_intent == "code-help"
    assert response.curated_context.summary.startswith("Code assistance for Configured Commerce")
    assert response.curated_context.code_examples
    assert response.documentation
    assert response.rule_analysis is None
    assert response.diagnostics is None
    assert engine.session_snapshot().recent_products == (ProductId.CONFIGURED_COMMERCE,)


def test_repeated_prompt_is_served_from_cache() -> None:
    engine = ContextAnalysisEngine(PipelineConfig(debug=True))

    first = asyncio.run(engine.analyze(EXAMPLE_PROMPT))
    second = asyncio.run(engine.analyze(ContextAnalysisRequest(prompt=EXAMPLE_PROMPT)))

    assert first.diagnostics is not None and first.diagnostics.cache_hit is False
    assert "prompt_analysis" in first.diagnostics.timings
    assert second.diagnostics is not None and second.diagnostics.cache_hit is True
    assert second.curated_context == first.curated_context
    assert second.diagnostics.relevance_breakdown == first.prompt_analysis.signals
    assert len(engine.cache) == 1
    assert len(engine.session) == 2


def test_mutating_a_response_does_not_leak_into_cache_hits() -> None:
    engine = ContextAnalysisEngine()

    first = asyncio.run(engine.analyze(EXAMPLE_PROMPT))
    steps = list(first.curated_context.actionable_steps)
    first.curated_context.actionable_steps.append("caller edit")
    second = asyncio.run(engine.analyze(EXAMPLE_PROMPT))

    assert second.curated_context.actionable_steps == steps
    assert "caller edit" not in second.curated_context.actionable_steps


def test_low_relevance_prompt_short_circuits() -> None:
    engine = ContextAnalysisEngine(PipelineConfig(debug=True))

    response = asyncio.run(engine.analyze("What is the weather like in Lisbon today?"))

    assert response.detected_products == []
    assert response.curated_context.summary == LOW_RELEVANCE_SUMMARY
    assert response.detection is None
    assert response.documentation == []
    assert response.diagnostics is not None
    assert "product_detection" not in response.diagnostics.timings


def test_documentation_timeout_degrades_to_no_docs() -> None:
    engine = ContextAnalysisEngine(
        PipelineConfig(doc_fetch_timeout_seconds=0.05), retriever=SlowRetriever()
    )

    response = asyncio.run(engine.analyze(EXAMPLE_PROMPT))

    assert response.documentation == []
    assert response.curated_context.code_examples == []
    assert response.curated_context.documentation == []
    assert response.detected_products == [ProductId.CONFIGURED_COMMERCE]


def test_blocking_embedder_cannot_stall_past_doc_timeout() -> None:
    engine = ContextAnalysisEngine(
        PipelineConfig(doc_fetch_timeout_seconds=0.1),
        retriever=select_retriever(SlowQueryEmbeddings()),
    )

    async def _timed() -> tuple[float, list]:
        await engine.initialize()
        started = time.perf_counter()
        response = await engine.analyze(EXAMPLE_PROMPT)
        return time.perf_counter() - started, response.documentation

    elapsed, documentation = asyncio.run(_timed())

    assert engine.retriever_mode == "enhanced"
    assert documentation == []
    assert elapsed < 0.8


def test_collaborator_failures_never_propagate(tmp_path: Path) -> None:
    engine = ContextAnalysisEngine(
        retriever=BrokenRetriever(),
        project_detector=BrokenDetector(),
    )

    response = asyncio.run(engine.analyze({"prompt": EXAMPLE_PROMPT, "projectPath": str(tmp_path)}))

    assert response.detected_products == [ProductId.CONFIGURED_COMMERCE]
    assert response.detection is not None and response.detection.context == "prompt"
    assert response.documentation == []
    assert response.rule_analysis is not None
    assert response.rule_analysis.found_files == []


def test_missing_project_path_still_answers(tmp_path: Path) -> None:
    engine = ContextAnalysisEngine()

    response = asyncio.run(
        engine.analyze(ContextAnalysisRequest(prompt=EXAMPLE_PROMPT, project_path=str(tmp_path / "nope")))
    )

    assert response.detected_products == [ProductId.CONFIGURED_COMMERCE]
    assert response.rule_analysis is not None
    assert response.rule_analysis.merge_notes == ["No rule files found; proposing a new .cursorrules"]


def test_project_rules_flow_into_request(tmp_path: Path) -> None:
    (tmp_path / ".cursorrules").write_text("- Use tabs for indentation\n", encoding="utf-8")
    (tmp_path / "Extensions").mkdir()
    engine = ContextAnalysisEngine()

    response, request = asyncio.run(
        engine.analyze_and_format(
            ContextAnalysisRequest(prompt=EXAMPLE_PROMPT, project_path=str(tmp_path)),
            token_budget=TokenBudget(max_context_tokens=2000),
        )
    )

    assert response.detection is not None and response.detection.context == "hybrid"
    assert response.rule_analysis is not None
    assert "indentation=tabs" in response.rule_analysis.normalized_directives
    types = [block.type for block in request.context_blocks]
    assert BlockType.RULES in types
    assert BlockType.DETECTION_EVIDENCE in types
    assert sum(block.tokens_estimate for block in request.context_blocks) <= 2000
    relevances = [block.relevance for block in request.context_blocks]
    assert relevances == sorted(relevances, reverse=True)
    assert request.correlation_id is not None
    assert request.correlation_id.startswith("optidev_context_analyzer-")
    assert "[optimizely:product=configured-commerce]" in request.tags
    assert "[intent:code-help]" in request.tags


def test_initialize_is_concurrent_and_idempotent() -> None:
    engine = ContextAnalysisEngine()

    async def _twice() -> None:
        await engine.initialize()
        await engine.initialize()

    asyncio.run(_twice())

    assert engine.retriever_mode == "basic"


def test_coerce_request_variants() -> None:
    assert coerce_request("hello").prompt == "hello"

    mapped = coerce_request({"prompt": "p", "projectPath": "/srv", "ideRules": ["- a"], "toolName": "t"})
    assert mapped == ContextAnalysisRequest(prompt="p", project_path="/srv", ide_rules=["- a"], tool_name="t")

    snake = coerce_request({"prompt": "p", "project_path": "/x"})
    assert snake.project_path == "/x"
