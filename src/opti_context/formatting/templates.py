"""Per-tool prompt templates."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_USER_PROMPT = "Provide Optimizely development assistance based on the following context."
DEFAULT_SUMMARY = "Provide accurate, actionable, product-aware guidance for Optimizely developers."


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    system_prompt: str | None = None
    user_prefix: str | None = None


TOOL_TEMPLATES: dict[str, PromptTemplate] = {
    "optidev_context_analyzer": PromptTemplate(
        user_prefix="Use the curated Optimizely context below to answer the developer's question.",
    ),
    "optidev_code_analyzer": PromptTemplate(
        system_prompt=(
            "You are a meticulous Optimizely code reviewer. Provide concise, actionable "
            "improvements with code examples. Prefer secure and performant patterns."
        ),
    ),
    "optidev_debug_helper": PromptTemplate(
        system_prompt=(
            "You are an Optimizely incident triage assistant. Diagnose causes, propose fixes, "
            "and list verification steps. Be specific to product context."
        ),
    ),
    "optidev_implementation_guide": PromptTemplate(
        system_prompt=(
            "You are an Optimizely solution architect. Produce a clear implementation plan, "
            "architecture notes, risks, and milestones tailored to the products detected."
        ),
    ),
    "optidev_project_helper": PromptTemplate(
        system_prompt=(
            "You are an Optimizely consultant. Provide setup/migration/config guidance with "
            "prioritized steps, validations, and gotchas."
        ),
    ),
    "optidev_development_rules": PromptTemplate(
        system_prompt=(
            "You are an Optimizely developer-experience specialist. Review the project's IDE "
            "rules, explain conflicts, and propose a consolidated rule set."
        ),
    ),
}


def template_for(tool_name: str) -> PromptTemplate | None:
    return TOOL_TEMPLATES.get(tool_name)


def build_system_prompt(
    tool_name: str,
    products: list[str],
    intent: str | None = None,
    summary: str | None = None,
) -> str:
    """Generic system prompt used when a tool has no dedicated template."""

    product_line = (
        f"Target products: {', '.join(products)}." if products else "Target products: (unspecified)."
    )
    return " ".join(
        [
            "You are an expert Optimizely assistant. Optimize responses for clarity and actionability.",
            f"Tool: {tool_name}.",
            product_line,
            f"Intent: {intent or 'unknown'}.",
            f"Summary: {summary or DEFAULT_SUMMARY}",
        ]
    )
