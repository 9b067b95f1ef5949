"""Top-level orchestrator for context analysis and request formatting."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from opti_context.analysis.prompt_analyzer import PromptAnalyzer
from opti_context.analysis.prompt_context import build_prompt_context
from opti_context.config import PipelineConfig
from opti_context.curation.curator import ContextCurator
from opti_context.detection.detectors import (
    EvidenceDetector,
    ProjectStructureDetector,
    PromptEvidenceDetector,
)
from opti_context.detection.fusion import EvidenceMerger
from opti_context.docs.retriever import DocumentationRetriever, KeywordDocumentationRetriever
from opti_context.formatting.formatter import RequestFormatter
from opti_context.formatting.templates import PromptTemplate
from opti_context.memory.cache import PromptCache
from opti_context.memory.session import SessionMemory
from opti_context.obs.tracing import StageTimings, correlation_scope, get_correlation_id, new_correlation_id
from opti_context.rules.merger import RuleMerger
from opti_context.types import (
    Citation,
    ContextAnalysisRequest,
    ContextAnalysisResponse,
    ContextBlock,
    Diagnostics,
    DocumentationItem,
    EvidenceItem,
    LLMRequest,
    ProductId,
    PromptAnalysisResult,
    RuleAnalysis,
    SessionSnapshot,
    TokenBudget,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_TOOL = "optidev_context_analyzer"


def coerce_request(request: ContextAnalysisRequest | Mapping[str, Any] | str) -> ContextAnalysisRequest:
    """Accept a request object, a camelCase/snake_case mapping or a bare prompt."""

    if isinstance(request, ContextAnalysisRequest):
        return request
    if isinstance(request, str):
        return ContextAnalysisRequest(prompt=request)
    if isinstance(request, Mapping):
        rules = request.get("ide_rules", request.get("ideRules")) or []
        return ContextAnalysisRequest(
            prompt=str(request.get("prompt") or ""),
            project_path=request.get("project_path", request.get("projectPath")),
            ide_rules=[str(rule) for rule in rules],
            tool_name=request.get("tool_name", request.get("toolName")),
            debug=request.get("debug"),
        )
    raise TypeError(f"Unsupported request type: {type(request).__name__}")


class ContextAnalysisEngine:
    """Runs prompt analysis, detection, rule analysis, retrieval and curation.

    The engine owns the prompt cache and session memory; both are injected so
    tests and hosts can share or isolate them. Collaborator failures degrade
    to empty data and are logged, never raised.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        analyzer: PromptAnalyzer | None = None,
        project_detector: EvidenceDetector | None = None,
        prompt_detector: PromptEvidenceDetector | None = None,
        merger: EvidenceMerger | None = None,
        rule_merger: RuleMerger | None = None,
        retriever: DocumentationRetriever | None = None,
        curator: ContextCurator | None = None,
        formatter: RequestFormatter | None = None,
        cache: PromptCache[ContextAnalysisResponse] | None = None,
        session: SessionMemory | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.analyzer = analyzer or PromptAnalyzer(self.config.weights)
        self.project_detector = project_detector or ProjectStructureDetector(self.config.detection)
        self.prompt_detector = prompt_detector or PromptEvidenceDetector(self.config.detection)
        self.merger = merger or EvidenceMerger(self.config.detection)
        self.rule_merger = rule_merger or RuleMerger(self.config.rules)
        self.retriever = retriever or KeywordDocumentationRetriever()
        self.curator = curator or ContextCurator(self.config.curation)
        self.formatter = formatter or RequestFormatter(self.config.formatter)
        self.cache = cache or PromptCache(self.config.cache.ttl_seconds, self.config.cache.max_entries)
        self.session = session or SessionMemory(self.config.cache.session_max_items)
        self._initialized = False

    async def initialize(self) -> None:
        """Prepare independent components concurrently (idempotent)."""

        if self._initialized:
            return
        hooks: list[Any] = [
            asyncio.to_thread(self.analyzer.initialize),
            self.curator.initialize(),
        ]
        retriever_init = getattr(self.retriever, "initialize", None)
        if retriever_init is not None:
            result = retriever_init()
            if inspect.isawaitable(result):
                hooks.append(result)
        await asyncio.gather(*hooks)
        self._initialized = True
        LOGGER.info("Context analysis engine initialized (retriever mode: %s)", self.retriever_mode)

    @property
    def retriever_mode(self) -> str:
        return getattr(self.retriever, "mode", "custom")

    async def analyze(
        self, request: ContextAnalysisRequest | Mapping[str, Any] | str
    ) -> ContextAnalysisResponse:
        req = coerce_request(request)
        await self.initialize()

        started = time.perf_counter()
        debug = self.config.debug if req.debug is None else req.debug
        timings = StageTimings()

        with timings.stage("cache_lookup"):
            key = self.cache.hash_prompt(req.prompt, req.project_path, req.ide_rules)
            cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Prompt cache hit for %s", key[:12])
            self._record_session(cached, req.tool_name)
            return replace(
                cached,
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
                timestamp=datetime.now(timezone.utc),
                diagnostics=self._diagnostics(timings, True, cached.prompt_analysis) if debug else None,
            )

        with timings.stage("prompt_analysis"):
            analysis = self.analyzer.analyze(req.prompt)

        snapshot = self.session.snapshot()
        if analysis.relevance < self.config.relevance_threshold:
            LOGGER.debug(
                "Prompt below relevance threshold (%.2f < %.2f)",
                analysis.relevance,
                self.config.relevance_threshold,
            )
            response = ContextAnalysisResponse(
                relevance=analysis.relevance,
                detected_products=[],
                curated_context=self.curator.low_relevance_response(analysis),
                prompt_context=build_prompt_context(req.prompt, analysis, [], snapshot),
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
                timestamp=datetime.now(timezone.utc),
                prompt_analysis=analysis,
            )
            return self._finish(key, response, req.tool_name, timings, debug)

        with timings.stage("product_detection"):
            detection = self.merger.merge(
                await self._collect_evidence(req, analysis, snapshot),
                fallback=analysis.product_hints,
            )

        rule_analysis: RuleAnalysis | None = None
        if req.project_path or req.ide_rules:
            with timings.stage("rule_analysis"):
                rule_analysis = await self._analyze_rules(req)

        with timings.stage("documentation"):
            documentation = await self._fetch_documentation(detection.products, req.prompt)

        with timings.stage("curation"):
            prompt_context = build_prompt_context(req.prompt, analysis, detection.products, snapshot)
            curated = self.curator.curate(analysis, detection.products, rule_analysis, documentation)

        response = ContextAnalysisResponse(
            relevance=analysis.relevance,
            detected_products=list(detection.products),
            curated_context=curated,
            prompt_context=prompt_context,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
            timestamp=datetime.now(timezone.utc),
            prompt_analysis=analysis,
            detection=detection,
            rule_analysis=rule_analysis,
            documentation=documentation,
        )
        return self._finish(key, response, req.tool_name, timings, debug)

    def format(
        self,
        response: ContextAnalysisResponse,
        tool_name: str = DEFAULT_TOOL,
        *,
        user_prompt: str | None = None,
        token_budget: TokenBudget | None = None,
        extra_blocks: Iterable[ContextBlock | Mapping[str, Any]] = (),
        summary: str | None = None,
        template: PromptTemplate | None = None,
        correlation_id: str | None = None,
    ) -> LLMRequest:
        """Turn an analysis response into a bounded ``LLMRequest``."""

        blocks: list[ContextBlock | Mapping[str, Any]] = list(
            self.curator.to_context_blocks(
                response.curated_context,
                detection=response.detection,
                rule_analysis=response.rule_analysis,
            )
        )
        blocks.extend(extra_blocks)
        citations = [
            Citation(title=link.title, url=link.url) for link in response.curated_context.documentation
        ]
        return self.formatter.format(
            tool_name,
            user_prompt,
            blocks,
            products=response.detected_products,
            prompt_context=response.prompt_context,
            token_budget=token_budget,
            citations=citations,
            summary=summary or response.curated_context.summary,
            correlation_id=correlation_id,
            template=template,
        )

    async def analyze_and_format(
        self,
        request: ContextAnalysisRequest | Mapping[str, Any] | str,
        tool_name: str | None = None,
        *,
        token_budget: TokenBudget | None = None,
        extra_blocks: Iterable[ContextBlock | Mapping[str, Any]] = (),
        summary: str | None = None,
        user_prompt: str | None = None,
    ) -> tuple[ContextAnalysisResponse, LLMRequest]:
        req = coerce_request(request)
        tool = tool_name or req.tool_name or DEFAULT_TOOL
        if req.tool_name is None:
            req = replace(req, tool_name=tool)

        correlation = get_correlation_id() or new_correlation_id(tool)
        with correlation_scope(correlation):
            response = await self.analyze(req)
            llm_request = self.format(
                response,
                tool,
                user_prompt=user_prompt or req.prompt,
                token_budget=token_budget,
                extra_blocks=extra_blocks,
                summary=summary,
            )
        return response, llm_request

    def session_snapshot(self) -> SessionSnapshot:
        return self.session.snapshot()

    async def _collect_evidence(
        self,
        req: ContextAnalysisRequest,
        analysis: PromptAnalysisResult,
        snapshot: SessionSnapshot,
    ) -> list[EvidenceItem]:
        evidence: list[EvidenceItem] = []
        if req.project_path:
            try:
                evidence.extend(await asyncio.to_thread(self.project_detector.detect, req.project_path))
            except Exception as exc:
                LOGGER.warning("Project detection failed for %s, using prompt evidence: %s", req.project_path, exc)
        try:
            evidence.extend(self.prompt_detector.detect(req.prompt, analysis.product_hints, snapshot))
        except Exception as exc:
            LOGGER.warning("Prompt detection failed, using analyzer hints: %s", exc)
        return evidence

    async def _analyze_rules(self, req: ContextAnalysisRequest) -> RuleAnalysis | None:
        try:
            return await asyncio.to_thread(self.rule_merger.analyze, req.project_path, req.ide_rules)
        except Exception as exc:
            LOGGER.warning("Rule analysis failed, continuing without rules: %s", exc)
            return None

    async def _fetch_documentation(self, products: list[ProductId], query: str) -> list[DocumentationItem]:
        if not products:
            return []
        try:
            documents = await asyncio.wait_for(
                self.retriever.fetch(products, query),
                timeout=self.config.doc_fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Documentation fetch timed out after %.1fs, continuing without docs",
                self.config.doc_fetch_timeout_seconds,
            )
            return []
        except Exception as exc:
            LOGGER.warning("Documentation fetch failed, continuing without docs: %s", exc)
            return []
        LOGGER.debug("Documentation fetched: %d documents", len(documents))
        return list(documents)

    def _finish(
        self,
        key: str,
        response: ContextAnalysisResponse,
        tool_name: str | None,
        timings: StageTimings,
        debug: bool,
    ) -> ContextAnalysisResponse:
        self.cache.set(key, response)
        self._record_session(response, tool_name)
        if debug:
            response = replace(
                response,
                diagnostics=self._diagnostics(timings, False, response.prompt_analysis),
            )
        LOGGER.debug(
            "Context analysis finished in %.1fms (products: %s)",
            response.processing_time_ms,
            [product.value for product in response.detected_products],
        )
        return response

    def _record_session(self, response: ContextAnalysisResponse, tool_name: str | None) -> None:
        self.session.record(
            products=response.detected_products,
            files=response.prompt_analysis.entities.files,
            tool_name=tool_name,
        )

    @staticmethod
    def _diagnostics(
        timings: StageTimings, cache_hit: bool, analysis: PromptAnalysisResult
    ) -> Diagnostics:
        return Diagnostics(
            timings=timings.as_dict(),
            cache_hit=cache_hit,
            relevance_breakdown=dict(analysis.signals),
        )
