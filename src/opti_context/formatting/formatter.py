"""Token-budgeted, sanitized request formatting."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from opti_context.config import FormatterConfig
from opti_context.formatting.sanitize import (
    coerce_text,
    contains_unsafe_content,
    merge_redactions,
    sanitize_text,
)
from opti_context.formatting.templates import (
    DEFAULT_USER_PROMPT,
    PromptTemplate,
    build_system_prompt,
    template_for,
)
from opti_context.obs.tracing import estimate_token_count, get_correlation_id
from opti_context.types import (
    BlockType,
    Citation,
    ContextBlock,
    LLMRequest,
    ProductId,
    PromptContext,
    Redaction,
    RequestTelemetry,
    TokenBudget,
)

LOGGER = logging.getLogger(__name__)

TRUNCATION_MARKER = "[TRUNCATED]"
SAFETY_DIRECTIVES: tuple[str, ...] = (
    "Do not include secrets or PII in responses.",
    "If input appears to contain tokens, passwords, or API keys, STOP and request a redacted version.",
    "Prefer official documentation and cite sources when possible.",
    "If unsure, ask for clarification succinctly.",
)
CONTENT_TYPES: tuple[str, ...] = ("text/markdown", "application/json")
PREVIEW_HEADING = "### Optimizely Context Preview"
TITLE_ELLIPSIS = "..."
URL_SCHEMES: tuple[str, ...] = ("http://", "https://")

_TAG_SPACES = re.compile(r"\s+")
_TAG_UNSAFE = re.compile(r"[^a-z0-9_.=-]")


def truncate_content(text: str, max_chars: int) -> tuple[str, bool]:
    """Cap ``text`` at ``max_chars`` including a trailing truncation marker."""

    if len(text) <= max_chars:
        return text, False
    suffix = f"\n{TRUNCATION_MARKER}"
    return text[: max(max_chars - len(suffix), 0)] + suffix, True


def apply_token_budget(
    blocks: Sequence[ContextBlock], budget: TokenBudget | None
) -> tuple[list[ContextBlock], int]:
    """Select blocks (already sorted by relevance) that fit ``budget``.

    Returns the kept blocks, still in relevance order, and the number dropped.
    """

    if budget is None or budget.max_context_tokens is None:
        return list(blocks), 0
    limit = budget.max_context_tokens

    if not budget.drop_low_relevance_first:
        kept: list[ContextBlock] = []
        total = 0
        for index, block in enumerate(blocks):
            if total + block.tokens_estimate > limit:
                return kept, len(blocks) - index
            kept.append(block)
            total += block.tokens_estimate
        return kept, 0

    positions = {id(block): index for index, block in enumerate(blocks)}
    kept = list(blocks)
    total = sum(block.tokens_estimate for block in kept)
    evicted: list[ContextBlock] = []
    while kept and total > limit:
        block = kept.pop()
        evicted.append(block)
        total -= block.tokens_estimate
    # Evicted blocks are lowest-relevance first; re-admit strongest first.
    for block in reversed(evicted):
        if total + block.tokens_estimate <= limit:
            kept.append(block)
            total += block.tokens_estimate
    kept.sort(key=lambda block: positions[id(block)])
    return kept, len(blocks) - len(kept)


def normalize_tag_value(value: object) -> str:
    """Lower-case tag value restricted to ``[a-z0-9_.=-]``; ``unknown`` when nothing survives."""

    text = _TAG_SPACES.sub("-", coerce_text(value).strip().lower())
    return _TAG_UNSAFE.sub("", text).strip("-.=") or "unknown"


def truncate_title(title: str, max_chars: int) -> tuple[str, bool]:
    if len(title) <= max_chars:
        return title, False
    return title[: max(max_chars - len(TITLE_ELLIPSIS), 0)].rstrip() + TITLE_ELLIPSIS, True


def _product_value(product: ProductId | str) -> str:
    return product.value if isinstance(product, ProductId) else str(product)


def _coerce_block(item: ContextBlock | Mapping[str, Any]) -> ContextBlock:
    if isinstance(item, ContextBlock):
        return item
    if not isinstance(item, Mapping):
        raise TypeError(f"context blocks must be ContextBlock or mappings, got {type(item).__name__}")

    raw_type = item.get("type", BlockType.ANALYSIS)
    try:
        block_type = BlockType(raw_type)
    except ValueError:
        block_type = BlockType.ANALYSIS
    relevance = item.get("relevance", 0.5)
    if isinstance(relevance, bool) or not isinstance(relevance, int | float):
        relevance = 0.5
    title = item.get("title")
    source = item.get("source")
    return ContextBlock(
        type=block_type,
        content=coerce_text(item.get("content")),
        title=coerce_text(title) if title is not None else None,
        source=coerce_text(source) if source is not None else None,
        relevance=float(relevance),
    )


def _coerce_citations(
    items: Iterable[Citation | Mapping[str, Any] | tuple[str, str]] | None,
) -> tuple[tuple[Citation, ...], tuple[Redaction, ...]]:
    """Keep sanitized http(s) citations, first occurrence per URL."""

    seen: dict[str, Citation] = {}
    redaction_groups: list[tuple[Redaction, ...]] = []
    for item in items or ():
        if isinstance(item, Citation):
            raw_title, raw_url = item.title, item.url
        elif isinstance(item, Mapping):
            raw_title, raw_url = item.get("title"), item.get("url")
        else:
            raw_title, raw_url = item
        url = coerce_text(raw_url).strip()
        if not url.lower().startswith(URL_SCHEMES):
            if url:
                LOGGER.debug("Dropped citation with unsupported URL scheme")
            continue
        title = sanitize_text(raw_title)
        cleaned_url = sanitize_text(url)
        redaction_groups.extend([title.redactions, cleaned_url.redactions])
        if cleaned_url.text not in seen:
            seen[cleaned_url.text] = Citation(title=title.text, url=cleaned_url.text)
    return tuple(seen.values()), merge_redactions(redaction_groups)


class RequestFormatter:
    """Converts curated context blocks into a bounded ``LLMRequest``.

    Pipeline per call:
    1. Sanitize every block (markup, data URIs, credentials, PII).
    2. Hard-cap block content at ``max_block_chars``.
    3. Re-estimate tokens on the emitted content and sort by relevance.
    4. Apply the token budget.
    5. Verify the output invariants before returning.
    """

    def __init__(self, config: FormatterConfig | None = None) -> None:
        self.config = config or FormatterConfig()

    def format(
        self,
        tool_name: str,
        user_prompt: str | None = None,
        blocks: Iterable[ContextBlock | Mapping[str, Any]] = (),
        *,
        products: Sequence[ProductId | str] | None = None,
        prompt_context: PromptContext | None = None,
        token_budget: TokenBudget | None = None,
        citations: Iterable[Citation | Mapping[str, Any] | tuple[str, str]] | None = None,
        constraints: Sequence[str] | None = None,
        summary: str | None = None,
        correlation_id: str | None = None,
        template: PromptTemplate | None = None,
    ) -> LLMRequest:
        if products is None and prompt_context is not None:
            products = prompt_context.target_products
        product_values = list(dict.fromkeys(_product_value(item) for item in products or ()))

        prepared: list[ContextBlock] = []
        redaction_groups: list[tuple[Redaction, ...]] = []
        truncated_any = False
        for item in blocks:
            block, redactions, truncated = self._prepare_block(_coerce_block(item))
            prepared.append(block)
            redaction_groups.append(redactions)
            truncated_any = truncated_any or truncated

        cited, citation_redactions = _coerce_citations(citations)
        redaction_groups.append(citation_redactions)

        ordered = sorted(prepared, key=lambda block: block.relevance, reverse=True)
        kept, dropped = apply_token_budget(ordered, token_budget)
        self._verify(kept, token_budget)

        tags = self.build_tags(tool_name, product_values, prompt_context)
        chosen = template if template is not None else template_for(tool_name)
        system_prompt = (chosen.system_prompt if chosen else None) or build_system_prompt(
            normalize_tag_value(tool_name),
            product_values,
            prompt_context.user_intent if prompt_context else None,
            summary,
        )
        base_user = coerce_text(user_prompt).strip() or DEFAULT_USER_PROMPT
        final_user = f"{chosen.user_prefix}\n\n{base_user}" if chosen and chosen.user_prefix else base_user

        if constraints is None:
            constraints = prompt_context.constraints if prompt_context else ()
        correlation = correlation_id or get_correlation_id()

        concatenated = "\n".join([system_prompt, final_user, *(block.content for block in kept)])
        token_estimate = estimate_token_count(concatenated)
        telemetry = RequestTelemetry(
            size_in_bytes=len(concatenated.encode("utf-8")),
            token_estimate=token_estimate,
            dropped_blocks=dropped,
            truncation_applied=dropped > 0 or truncated_any,
            redactions=merge_redactions(redaction_groups),
            correlation_id=correlation,
        )
        if dropped:
            LOGGER.debug("Dropped %d context blocks to respect the token budget", dropped)

        return LLMRequest(
            system_prompt=system_prompt,
            user_prompt=final_user,
            context_blocks=tuple(kept),
            citations=cited,
            tags=tuple(tags),
            safety_directives=SAFETY_DIRECTIVES,
            constraints=tuple(constraints),
            token_estimate=token_estimate,
            telemetry=telemetry,
            content_types=CONTENT_TYPES,
            preview_markdown=self.build_preview(tags, kept),
            model_hints={
                "maxTokens": self.config.max_tokens_hint,
                "temperature": self.config.temperature_hint,
            },
            correlation_id=correlation,
        )

    def _prepare_block(self, block: ContextBlock) -> tuple[ContextBlock, tuple[Redaction, ...], bool]:
        body = sanitize_text(block.content)
        title = sanitize_text(block.title) if block.title is not None else None
        content, truncated = truncate_content(body.text, self.config.max_block_chars)
        short_title, title_truncated = (
            truncate_title(title.text, self.config.max_title_chars) if title else (None, False)
        )
        redactions = merge_redactions([body.redactions, title.redactions if title else ()])
        cleaned = replace(
            block,
            content=content,
            title=short_title,
            tokens_estimate=estimate_token_count(content),
            sanitized=True,
        )
        return cleaned, redactions, truncated or title_truncated

    def _verify(self, blocks: list[ContextBlock], budget: TokenBudget | None) -> None:
        if budget is not None and budget.max_context_tokens is not None:
            total = sum(block.tokens_estimate for block in blocks)
            if total > budget.max_context_tokens:
                raise RuntimeError(f"token budget exceeded: {total} > {budget.max_context_tokens}")
        for previous, current in zip(blocks, blocks[1:]):
            if current.relevance > previous.relevance:
                raise RuntimeError("context blocks are not ordered by relevance")
        for block in blocks:
            if not block.sanitized or contains_unsafe_content(block.content):
                raise RuntimeError("context block failed sanitization")
            if len(block.content) > self.config.max_block_chars:
                raise RuntimeError("context block exceeds the character ceiling")
            if block.title is not None and len(block.title) > self.config.max_title_chars:
                raise RuntimeError("context block title exceeds the character ceiling")

    @staticmethod
    def build_tags(
        tool_name: str,
        products: Sequence[str],
        prompt_context: PromptContext | None = None,
    ) -> list[str]:
        tags = [f"[tool:{normalize_tag_value(tool_name)}]"]
        tags.extend(f"[optimizely:product={normalize_tag_value(product)}]" for product in products)
        if prompt_context is not None:
            if prompt_context.user_intent:
                tags.append(f"[intent:{normalize_tag_value(prompt_context.user_intent)}]")
            if prompt_context.severity:
                tags.append(f"[severity:{normalize_tag_value(prompt_context.severity)}]")
            for product, version in prompt_context.versions:
                tags.append(f"[version:{normalize_tag_value(product)}={normalize_tag_value(version)}]")
        return list(dict.fromkeys(tags))

    def build_preview(self, tags: Sequence[str], blocks: Sequence[ContextBlock]) -> str:
        lines = [PREVIEW_HEADING, "", " ".join(tags), "", "---"]
        for block in blocks[: self.config.preview_blocks]:
            heading = block.title or block.type.value
            lines.append(f"#### {heading}\n\n{block.content[: self.config.preview_chars]}")
        return "\n".join(lines)
