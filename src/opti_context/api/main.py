"""FastAPI entrypoint for analysis, formatting and tool endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ValidationError

from opti_context.config import load_config_from_env
from opti_context.docs.embedder import HashingEmbedder
from opti_context.docs.retriever import select_retriever
from opti_context.pipeline.engine import DEFAULT_TOOL, ContextAnalysisEngine
from opti_context.tools.builtin import register_builtin_tools
from opti_context.tools.registry import ToolRegistry
from opti_context.types import ContextAnalysisRequest, ContextAnalysisResponse, TokenBudget

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)


def _create_retriever() -> Any:
    mode = os.getenv("OPTI_CONTEXT_RETRIEVER", "basic").lower()
    embedder = HashingEmbedder() if mode == "enhanced" else None
    return select_retriever(embedder)


class AnalyzeRequest(BaseModel):
    prompt: str = Field(min_length=1)
    project_path: str | None = None
    ide_rules: list[str] = Field(default_factory=list)
    tool_name: str | None = None
    debug: bool | None = None


class FormatRequest(AnalyzeRequest):
    user_prompt: str | None = None
    max_context_tokens: int | None = Field(default=None, ge=1)
    drop_low_relevance_first: bool = False


app = FastAPI(title="Opti Context", version="0.1.0")

_config = load_config_from_env()
_engine = ContextAnalysisEngine(_config, retriever=_create_retriever())
_registry = ToolRegistry()
register_builtin_tools(_registry, _engine)


def _to_analysis_request(request: AnalyzeRequest) -> ContextAnalysisRequest:
    return ContextAnalysisRequest(
        prompt=request.prompt,
        project_path=request.project_path,
        ide_rules=request.ide_rules,
        tool_name=request.tool_name,
        debug=request.debug,
    )


def _response_body(response: ContextAnalysisResponse) -> dict[str, Any]:
    curated = response.curated_context
    body: dict[str, Any] = {
        "relevance": response.relevance,
        "detectedProducts": [product.value for product in response.detected_products],
        "curatedContext": {
            "relevance": curated.relevance,
            "productContext": [product.value for product in curated.product_context],
            "summary": curated.summary,
            "actionableSteps": curated.actionable_steps,
            "codeExamples": [asdict(example) for example in curated.code_examples],
            "documentation": [asdict(link) for link in curated.documentation],
            "bestPractices": curated.best_practices,
            "suggestedRules": [asdict(rule) for rule in curated.suggested_rules],
        },
        "promptContext": {
            "userIntent": response.prompt_context.user_intent,
            "severity": response.prompt_context.severity,
            "versions": [
                {"product": product, "version": version}
                for product, version in response.prompt_context.versions
            ],
            "constraints": response.prompt_context.constraints,
            "targetProducts": [product.value for product in response.prompt_context.target_products],
        },
        "processingTime": response.processing_time_ms,
        "timestamp": response.timestamp.isoformat(),
    }
    if response.rule_analysis is not None:
        rules = response.rule_analysis
        body["ruleAnalysis"] = {
            "foundFiles": rules.found_files,
            "normalizedDirectives": rules.normalized_directives,
            "mergeNotes": rules.merge_notes,
            "conflicts": [asdict(conflict) for conflict in rules.conflicts],
            "lintWarnings": rules.lint_warnings,
            "proposedCursorRules": rules.proposed_cursor_rules,
            "proposedCursorRulesDiff": rules.proposed_cursor_rules_diff,
        }
    if response.diagnostics is not None:
        body["diagnostics"] = {
            "timings": response.diagnostics.timings,
            "cacheHit": response.diagnostics.cache_hit,
            "relevanceBreakdown": response.diagnostics.relevance_breakdown,
        }
    return body


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "retriever_mode": _engine.retriever_mode,
        "cache_entries": len(_engine.cache),
        "tools": len(_registry.specs()),
    }


@app.post("/analyze")
async def analyze(request: AnalyzeRequest) -> dict[str, Any]:
    try:
        response = await _engine.analyze(_to_analysis_request(request))
    except Exception as exc:
        LOGGER.exception("Analysis failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return _response_body(response)


@app.post("/format")
async def format_request(request: FormatRequest) -> dict[str, Any]:
    budget = (
        TokenBudget(request.max_context_tokens, request.drop_low_relevance_first)
        if request.max_context_tokens is not None
        else None
    )
    try:
        _, llm_request = await _engine.analyze_and_format(
            _to_analysis_request(request),
            request.tool_name or DEFAULT_TOOL,
            token_budget=budget,
            user_prompt=request.user_prompt,
        )
    except Exception as exc:
        LOGGER.exception("Formatting failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return llm_request.to_payload()


@app.get("/tools")
def list_tools() -> dict[str, Any]:
    return {
        "items": [
            {
                "name": spec.name,
                "description": spec.description,
                "tags": spec.tags,
                "input_schema": spec.args_schema.model_json_schema(),
            }
            for spec in _registry.specs()
        ]
    }


@app.post("/tools/{name}")
async def run_tool(name: str, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        llm_request = await _registry.aexecute(name, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False)
        raise HTTPException(status_code=422, detail=detail) from exc
    except Exception as exc:
        LOGGER.exception("Tool %s failed", name)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return llm_request.to_payload()


@app.get("/session")
def session() -> dict[str, Any]:
    snapshot = _engine.session_snapshot()
    return {
        "recentProducts": [product.value for product in snapshot.recent_products],
        "recentFiles": list(snapshot.recent_files),
        "recentTools": list(snapshot.recent_tools),
        "entries": len(snapshot.entries),
    }
