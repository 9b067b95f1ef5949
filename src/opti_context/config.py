"""Configuration models for the context curation pipeline."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class RelevanceWeights(BaseModel):
    """Weight table for prompt relevance and confidence scoring.

    Each signal class contributes ``count * weight`` capped at its share of
    the total score. The defaults are heuristic tuning constants and may need
    recalibration against a real prompt corpus.
    """

    direct_mention: float = Field(default=0.4, ge=0.0, le=1.0)
    direct_mention_cap: float = Field(default=0.4, ge=0.0, le=1.0)
    domain_term: float = Field(default=0.1, ge=0.0, le=1.0)
    domain_term_cap: float = Field(default=0.3, ge=0.0, le=1.0)
    technical_pattern: float = Field(default=0.1, ge=0.0, le=1.0)
    technical_pattern_cap: float = Field(default=0.2, ge=0.0, le=1.0)
    contextual_term: float = Field(default=0.05, ge=0.0, le=1.0)
    contextual_term_cap: float = Field(default=0.1, ge=0.0, le=1.0)

    confidence_relevance_factor: float = Field(default=0.6, ge=0.0, le=1.0)
    confidence_keyword: float = Field(default=0.05, ge=0.0, le=1.0)
    confidence_keyword_cap: float = Field(default=0.25, ge=0.0, le=1.0)
    confidence_product_hint: float = Field(default=0.1, ge=0.0, le=1.0)
    confidence_product_hint_cap: float = Field(default=0.15, ge=0.0, le=1.0)


class DetectionConfig(BaseModel):
    """Configures evidence weights and product fusion."""

    project_multiplier: float = Field(default=1.0, ge=0.0)
    prompt_multiplier: float = Field(default=0.8, ge=0.0)

    file_weight: float = Field(default=4.0, ge=0.0)
    directory_weight: float = Field(default=3.0, ge=0.0)
    dependency_weight: float = Field(default=5.0, ge=0.0)
    prompt_term_weight: float = Field(default=2.0, ge=0.0)
    prompt_hint_weight: float = Field(default=5.0, ge=0.0)
    session_weight: float = Field(default=1.0, ge=0.0)

    max_products: int = Field(default=3, ge=1)
    max_scan_entries: int = Field(default=50, ge=1)
    confidence_scale: float = Field(default=10.0, gt=0.0)


class RuleConfig(BaseModel):
    """Configures rule discovery and consolidation limits."""

    max_depth: int = Field(default=3, ge=0)
    max_directives_per_file: int = Field(default=50, ge=1)
    max_normalized_directives: int = Field(default=100, ge=1)
    max_directive_chars: int = Field(default=240, ge=20)
    low_relevance_threshold: float = Field(default=0.3, ge=0.0, le=1.0)


class CurationConfig(BaseModel):
    """Configures curated response generation."""

    enrichment_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_code_examples: int = Field(default=5, ge=0)
    max_documentation_links: int = Field(default=3, ge=0)
    min_code_chars: int = Field(default=10, ge=0)
    code_relevance_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    max_rule_steps: int = Field(default=2, ge=0)
    max_suggested_rules: int = Field(default=5, ge=0)

    # Relevance assigned to generated (non-document) context blocks.
    summary_block_relevance: float = Field(default=0.95, ge=0.0, le=1.0)
    rules_block_relevance: float = Field(default=0.85, ge=0.0, le=1.0)
    practices_block_relevance: float = Field(default=0.6, ge=0.0, le=1.0)
    evidence_block_relevance: float = Field(default=0.5, ge=0.0, le=1.0)


class FormatterConfig(BaseModel):
    """Configures request formatting bounds."""

    max_block_chars: int = Field(default=4000, ge=32)
    max_title_chars: int = Field(default=160, ge=8)
    max_tokens_hint: int = Field(default=1200, ge=1)
    temperature_hint: float = Field(default=0.3, ge=0.0, le=2.0)
    preview_blocks: int = Field(default=4, ge=0)
    preview_chars: int = Field(default=1000, ge=0)


class CacheConfig(BaseModel):
    """Configures the prompt cache and session memory bounds."""

    ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_entries: int = Field(default=256, ge=1)
    session_max_items: int = Field(default=10, ge=1)


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration."""

    relevance_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    doc_fetch_timeout_seconds: float = Field(default=5.0, gt=0.0)
    debug: bool = False

    weights: RelevanceWeights = Field(default_factory=RelevanceWeights)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    rules: RuleConfig = Field(default_factory=RuleConfig)
    curation: CurationConfig = Field(default_factory=CurationConfig)
    formatter: FormatterConfig = Field(default_factory=FormatterConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


def load_config_from_env(base: PipelineConfig | None = None) -> PipelineConfig:
    """Overlay environment overrides onto ``base`` (or the defaults)."""

    config = (base or PipelineConfig()).model_copy(deep=True)

    debug = os.getenv("OPTI_CONTEXT_DEBUG")
    if debug is not None:
        config.debug = debug.strip().lower() in {"1", "true", "yes", "on"}

    threshold = os.getenv("RELEVANCE_THRESHOLD")
    if threshold:
        config.relevance_threshold = float(threshold)

    timeout = os.getenv("DOC_FETCH_TIMEOUT")
    if timeout:
        config.doc_fetch_timeout_seconds = float(timeout)

    max_block_chars = os.getenv("MAX_BLOCK_CHARS")
    if max_block_chars:
        config.formatter = config.formatter.model_copy(
            update={"max_block_chars": int(max_block_chars)}
        )

    ttl = os.getenv("CACHE_TTL")
    if ttl:
        config.cache = config.cache.model_copy(update={"ttl_seconds": float(ttl)})

    return PipelineConfig.model_validate(config.model_dump())
