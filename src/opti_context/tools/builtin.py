"""Built-in optidev tools backed by the context analysis engine."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from opti_context.pipeline.engine import ContextAnalysisEngine
from opti_context.tools.registry import ToolRegistry, ToolSpec
from opti_context.types import BlockType, ContextAnalysisRequest, ContextBlock, LLMRequest, TokenBudget


class ToolInputBase(BaseModel):
    user_prompt: str | None = None
    project_path: str | None = None
    max_context_tokens: int | None = Field(default=None, ge=1)
    drop_low_relevance_first: bool = False

    def token_budget(self) -> TokenBudget | None:
        if self.max_context_tokens is None:
            return None
        return TokenBudget(self.max_context_tokens, self.drop_low_relevance_first)


class ContextAnalyzerInput(ToolInputBase):
    prompt: str = Field(min_length=1)
    ide_rules: list[str] = Field(default_factory=list)


class CodeAnalyzerInput(ToolInputBase):
    code_snippet: str = Field(min_length=1)
    language: str | None = None
    file_path: str | None = None


class DebugHelperInput(ToolInputBase):
    bug_description: str = Field(min_length=1)
    error_messages: list[str] = Field(default_factory=list)
    code_context: str | None = None


class ImplementationGuideInput(ToolInputBase):
    requirements: str = Field(min_length=1)


class ProjectHelperInput(ToolInputBase):
    request_type: Literal["setup", "migration", "configuration", "best-practices"] = "setup"
    project_details: str = Field(min_length=1)


class DevelopmentRulesInput(ToolInputBase):
    ide_rules: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_rule_source(self) -> "DevelopmentRulesInput":
        if not self.project_path and not self.ide_rules:
            raise ValueError("project_path or ide_rules is required")
        return self


def register_builtin_tools(registry: ToolRegistry, engine: ContextAnalysisEngine) -> None:
    """Register the optidev tool set.

    Tools:
    - `optidev_context_analyzer`: curated context for a free-form prompt.
    - `optidev_code_analyzer`: review a code snippet in product context.
    - `optidev_debug_helper`: triage a bug report and error messages.
    - `optidev_implementation_guide`: plan an implementation from requirements.
    - `optidev_project_helper`: setup, migration and configuration guidance.
    - `optidev_development_rules`: consolidate and audit IDE rules.
    """

    async def _context(input_data: ContextAnalyzerInput) -> LLMRequest:
        request = ContextAnalysisRequest(
            prompt=input_data.prompt,
            project_path=input_data.project_path,
            ide_rules=input_data.ide_rules,
            tool_name="optidev_context_analyzer",
        )
        _, llm_request = await engine.analyze_and_format(
            request,
            token_budget=input_data.token_budget(),
            user_prompt=input_data.user_prompt,
        )
        return llm_request

    async def _code(input_data: CodeAnalyzerInput) -> LLMRequest:
        language = input_data.language or "text"
        location = f" from {input_data.file_path}" if input_data.file_path else ""
        prompt = (
            f"{input_data.user_prompt or 'Review this Optimizely code'}{location}\n\n"
            f"{input_data.code_snippet}"
        )
        block = ContextBlock(
            type=BlockType.CODE,
            title=f"Submitted code{location}",
            content=f"```{language}\n{input_data.code_snippet}\n```",
            source=input_data.file_path,
            relevance=0.9,
        )
        _, llm_request = await engine.analyze_and_format(
            ContextAnalysisRequest(prompt=prompt, project_path=input_data.project_path),
            "optidev_code_analyzer",
            token_budget=input_data.token_budget(),
            extra_blocks=[block],
            summary="Review the code for correctness, security and product best practices.",
            user_prompt=input_data.user_prompt or "Review the submitted code.",
        )
        return llm_request

    async def _debug(input_data: DebugHelperInput) -> LLMRequest:
        report = [input_data.bug_description]
        report.extend(f"Error: {message}" for message in input_data.error_messages)
        blocks = [
            ContextBlock(
                type=BlockType.ANALYSIS,
                title="Bug report",
                content="\n".join(report),
                relevance=0.95,
            )
        ]
        if input_data.code_context:
            blocks.append(
                ContextBlock(
                    type=BlockType.CODE,
                    title="Code context",
                    content=input_data.code_context,
                    relevance=0.9,
                )
            )
        _, llm_request = await engine.analyze_and_format(
            ContextAnalysisRequest(prompt="\n".join(report), project_path=input_data.project_path),
            "optidev_debug_helper",
            token_budget=input_data.token_budget(),
            extra_blocks=blocks,
            summary="Diagnose and resolve the bug with steps and code-level guidance.",
            user_prompt=input_data.user_prompt or input_data.bug_description,
        )
        return llm_request

    async def _implementation(input_data: ImplementationGuideInput) -> LLMRequest:
        block = ContextBlock(
            type=BlockType.ANALYSIS,
            title="Requirements",
            content=input_data.requirements,
            relevance=0.95,
        )
        _, llm_request = await engine.analyze_and_format(
            ContextAnalysisRequest(prompt=input_data.requirements, project_path=input_data.project_path),
            "optidev_implementation_guide",
            token_budget=input_data.token_budget(),
            extra_blocks=[block],
            summary="Produce an implementation plan for the requirements.",
            user_prompt=input_data.user_prompt or input_data.requirements,
        )
        return llm_request

    async def _project(input_data: ProjectHelperInput) -> LLMRequest:
        prompt = f"Optimizely {input_data.request_type} help: {input_data.project_details}"
        block = ContextBlock(
            type=BlockType.ANALYSIS,
            title=f"Project {input_data.request_type} request",
            content=input_data.project_details,
            relevance=0.9,
        )
        _, llm_request = await engine.analyze_and_format(
            ContextAnalysisRequest(prompt=prompt, project_path=input_data.project_path),
            "optidev_project_helper",
            token_budget=input_data.token_budget(),
            extra_blocks=[block],
            summary=f"Provide {input_data.request_type} guidance with prioritized steps.",
            user_prompt=input_data.user_prompt or prompt,
        )
        return llm_request

    async def _rules(input_data: DevelopmentRulesInput) -> LLMRequest:
        prompt = input_data.user_prompt or "Review the IDE development rules for this Optimizely project."
        response = await engine.analyze(
            ContextAnalysisRequest(
                prompt=prompt,
                project_path=input_data.project_path,
                ide_rules=input_data.ide_rules,
                tool_name="optidev_development_rules",
            )
        )
        blocks: list[ContextBlock] = []
        analysis = response.rule_analysis
        if analysis is not None:
            blocks.append(
                ContextBlock(
                    type=BlockType.RULES,
                    title="Proposed .cursorrules",
                    content=analysis.proposed_cursor_rules,
                    relevance=0.9,
                )
            )
            if analysis.proposed_cursor_rules_diff:
                blocks.append(
                    ContextBlock(
                        type=BlockType.RULES,
                        title="Proposed .cursorrules diff",
                        content=analysis.proposed_cursor_rules_diff,
                        relevance=0.8,
                    )
                )
            findings = [f"Conflict: {item.description} ({item.resolution})" for item in analysis.conflicts]
            findings.extend(f"Lint: {warning}" for warning in analysis.lint_warnings)
            findings.extend(f"Note: {note}" for note in analysis.merge_notes)
            if findings:
                blocks.append(
                    ContextBlock(
                        type=BlockType.ANALYSIS,
                        title="Rule findings",
                        content="\n".join(f"- {item}" for item in findings),
                        relevance=0.85,
                    )
                )
        return engine.format(
            response,
            "optidev_development_rules",
            user_prompt=prompt,
            token_budget=input_data.token_budget(),
            extra_blocks=blocks,
        )

    registry.register(
        ToolSpec(
            name="optidev_context_analyzer",
            description="Analyze a prompt and return curated Optimizely context as an LLM request.",
            args_schema=ContextAnalyzerInput,
            handler=_context,
            tags=["context", "analysis"],
        )
    )
    registry.register(
        ToolSpec(
            name="optidev_code_analyzer",
            description="Review a code snippet with Optimizely product context.",
            args_schema=CodeAnalyzerInput,
            handler=_code,
            tags=["code"],
        )
    )
    registry.register(
        ToolSpec(
            name="optidev_debug_helper",
            description="Triage an Optimizely bug report with error messages and code context.",
            args_schema=DebugHelperInput,
            handler=_debug,
            tags=["debug"],
        )
    )
    registry.register(
        ToolSpec(
            name="optidev_implementation_guide",
            description="Plan an Optimizely implementation from requirements or a ticket.",
            args_schema=ImplementationGuideInput,
            handler=_implementation,
            tags=["planning"],
        )
    )
    registry.register(
        ToolSpec(
            name="optidev_project_helper",
            description="Setup, migration and configuration guidance for Optimizely projects.",
            args_schema=ProjectHelperInput,
            handler=_project,
            tags=["project"],
        )
    )
    registry.register(
        ToolSpec(
            name="optidev_development_rules",
            description="Audit IDE rule files and propose a consolidated .cursorrules.",
            args_schema=DevelopmentRulesInput,
            handler=_rules,
            tags=["rules"],
        )
    )
