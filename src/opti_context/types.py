"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class ProductId(str, Enum):
    """Closed set of supported product variants."""

    CONFIGURED_COMMERCE = "configured-commerce"
    COMMERCE_CONNECT = "commerce-connect"
    CMS_PAAS = "cms-paas"
    CMS_SAAS = "cms-saas"
    CMP = "cmp"
    DXP = "dxp"
    WEB_EXPERIMENTATION = "web-experimentation"
    FEATURE_EXPERIMENTATION = "feature-experimentation"
    DATA_PLATFORM = "data-platform"
    CONNECT_PLATFORM = "connect-platform"
    RECOMMENDATIONS = "recommendations"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: dict[ProductId, str] = {
    ProductId.CONFIGURED_COMMERCE: "Configured Commerce",
    ProductId.COMMERCE_CONNECT: "Commerce Connect",
    ProductId.CMS_PAAS: "CMS (PaaS)",
    ProductId.CMS_SAAS: "CMS (SaaS)",
    ProductId.CMP: "Content Marketing Platform",
    ProductId.DXP: "Digital Experience Platform",
    ProductId.WEB_EXPERIMENTATION: "Web Experimentation",
    ProductId.FEATURE_EXPERIMENTATION: "Feature Experimentation",
    ProductId.DATA_PLATFORM: "Data Platform",
    ProductId.CONNECT_PLATFORM: "Connect Platform",
    ProductId.RECOMMENDATIONS: "Recommendations",
}


class PromptIntent(str, Enum):
    CODE_HELP = "code-help"
    DOCUMENTATION = "documentation"
    TROUBLESHOOTING = "troubleshooting"
    BEST_PRACTICES = "best-practices"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class EvidenceSource(str, Enum):
    PROJECT = "project"
    PROMPT = "prompt"


class RuleTier(str, Enum):
    """Precedence tiers, strongest first: explicit > shared > inferred."""

    EXPLICIT = "explicit"
    SHARED = "shared"
    INFERRED = "inferred"


class BlockType(str, Enum):
    RULES = "rules"
    DETECTION_EVIDENCE = "detection-evidence"
    CODE = "code"
    DOCUMENTATION = "documentation"
    ANALYSIS = "analysis"
    SUMMARY = "summary"


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value!r}")


@dataclass(frozen=True, slots=True)
class PromptEntities:
    """Entities mentioned in a prompt, deduplicated in order of appearance."""

    files: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    classes: tuple[str, ...] = ()
    versions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PromptAnalysisResult:
    """Outcome of one prompt analysis; immutable once produced."""

    relevance: float
    keywords: tuple[str, ...]
    intent: PromptIntent
    product_hints: tuple[ProductId, ...]
    entities: PromptEntities
    confidence: float
    signals: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_unit_interval("relevance", self.relevance)
        _check_unit_interval("confidence", self.confidence)


@dataclass(frozen=True, slots=True)
class EvidenceItem:
    """A weighted signal tying a product to a detector observation."""

    source: EvidenceSource
    product: ProductId
    weight: float
    detail: str
    kind: str = "content"

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"evidence weight must be non-negative, got {self.weight!r}")


@dataclass(slots=True)
class ProductDetection:
    """Ranked products with the evidence that produced them."""

    products: list[ProductId]
    scores: dict[ProductId, float]
    confidence: float
    evidence: list[EvidenceItem]
    context: str
    suggested_actions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RawRuleFile:
    """A rule source as read from disk or supplied inline."""

    relative_path: str
    content: str
    kind: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class RuleRecord:
    id: str
    directive: str
    precedence_rank: int
    origin_file: str
    normalized_form: str
    tier: RuleTier
    section: str | None = None


@dataclass(slots=True)
class RuleConflict:
    type: str
    description: str
    severity: str
    directive_ids: tuple[str, ...]
    resolution: str


@dataclass(slots=True)
class RuleEnhancement:
    type: str
    priority: str
    suggestion: str
    rationale: str
    implementation: str


@dataclass(slots=True)
class RuleAnalysis:
    """Consolidated view over every discovered rule source."""

    found_files: list[str]
    existing_rules: list[RuleRecord]
    normalized_directives: list[str]
    merge_notes: list[str]
    suggested_enhancements: list[RuleEnhancement]
    conflicts: list[RuleConflict]
    lint_warnings: list[str]
    proposed_cursor_rules: str
    proposed_cursor_rules_diff: str
    relevance: float = 0.0


@dataclass(slots=True)
class DocumentationItem:
    title: str
    content: str
    url: str
    relevance: float = 0.0
    products: tuple[ProductId, ...] = ()
    last_updated: str | None = None


@dataclass(slots=True)
class CodeExample:
    language: str
    code: str
    description: str
    source: str
    relevance: float


@dataclass(slots=True)
class DocumentationLink:
    title: str
    url: str
    description: str
    relevance: float
    last_updated: str | None = None


@dataclass(slots=True)
class CuratedResponse:
    relevance: float
    product_context: list[ProductId]
    summary: str
    actionable_steps: list[str]
    code_examples: list[CodeExample]
    documentation: list[DocumentationLink]
    best_practices: list[str]
    suggested_rules: list[RuleEnhancement] = field(default_factory=list)


@dataclass(slots=True)
class PromptContext:
    """Extended request context derived from the prompt and session."""

    user_intent: str
    severity: str | None = None
    versions: list[tuple[str, str]] = field(default_factory=list)
    artifacts: list[tuple[str, str]] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    target_products: list[ProductId] = field(default_factory=list)
    session_hints: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ContextBlock:
    """A titled unit of curated context destined for the final request.

    ``content`` is raw until the formatter emits a copy with
    ``sanitized=True``.
    """

    type: BlockType
    content: str
    title: str | None = None
    source: str | None = None
    relevance: float = 0.5
    tokens_estimate: int = 0
    sanitized: bool = False

    def __post_init__(self) -> None:
        _check_unit_interval("relevance", self.relevance)
        if self.tokens_estimate < 0:
            raise ValueError("tokens_estimate must be non-negative")


@dataclass(frozen=True, slots=True)
class Citation:
    title: str
    url: str


@dataclass(slots=True)
class TokenBudget:
    max_context_tokens: int | None = None
    drop_low_relevance_first: bool = False


@dataclass(frozen=True, slots=True)
class Redaction:
    type: str
    count: int


@dataclass(frozen=True, slots=True)
class RequestTelemetry:
    size_in_bytes: int
    token_estimate: int
    dropped_blocks: int
    truncation_applied: bool
    redactions: tuple[Redaction, ...] = ()
    correlation_id: str | None = None


@dataclass(frozen=True, slots=True)
class LLMRequest:
    """Bounded, sanitized payload handed to a language model caller."""

    system_prompt: str
    user_prompt: str
    context_blocks: tuple[ContextBlock, ...]
    citations: tuple[Citation, ...]
    tags: tuple[str, ...]
    safety_directives: tuple[str, ...]
    constraints: tuple[str, ...]
    token_estimate: int
    telemetry: RequestTelemetry
    content_types: tuple[str, ...]
    preview_markdown: str
    model_hints: dict[str, float | int] | None = None
    correlation_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Return the wire shape consumed by protocol and HTTP callers."""

        payload: dict[str, Any] = {
            "systemPrompt": self.system_prompt,
            "userPrompt": self.user_prompt,
            "contextBlocks": [
                {
                    "type": block.type.value,
                    "title": block.title,
                    "content": block.content,
                    "source": block.source,
                    "relevance": block.relevance,
                    "tokensEstimate": block.tokens_estimate,
                }
                for block in self.context_blocks
            ],
            "citations": [asdict(citation) for citation in self.citations],
            "tags": list(self.tags),
            "safetyDirectives": list(self.safety_directives),
            "constraints": list(self.constraints),
            "modelHints": self.model_hints,
            "tokenEstimate": self.token_estimate,
            "contentTypes": list(self.content_types),
            "previewMarkdown": self.preview_markdown,
            "telemetry": {
                "sizeInBytes": self.telemetry.size_in_bytes,
                "tokenEstimate": self.telemetry.token_estimate,
                "droppedBlocks": self.telemetry.dropped_blocks,
                "truncationApplied": self.telemetry.truncation_applied,
                "redactions": [asdict(item) for item in self.telemetry.redactions],
            },
        }
        if self.correlation_id is not None:
            payload["correlationId"] = self.correlation_id
            payload["telemetry"]["correlationId"] = self.correlation_id
        return payload


@dataclass(slots=True)
class ContextAnalysisRequest:
    prompt: str
    project_path: str | None = None
    ide_rules: list[str] = field(default_factory=list)
    tool_name: str | None = None
    debug: bool | None = None


@dataclass(slots=True)
class Diagnostics:
    timings: dict[str, float] = field(default_factory=dict)
    cache_hit: bool = False
    relevance_breakdown: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ContextAnalysisResponse:
    relevance: float
    detected_products: list[ProductId]
    curated_context: CuratedResponse
    prompt_context: PromptContext
    processing_time_ms: float
    timestamp: datetime
    prompt_analysis: PromptAnalysisResult
    detection: ProductDetection | None = None
    rule_analysis: RuleAnalysis | None = None
    documentation: list[DocumentationItem] = field(default_factory=list)
    diagnostics: Diagnostics | None = None


@dataclass(frozen=True, slots=True)
class SessionEntry:
    products: tuple[ProductId, ...]
    files: tuple[str, ...]
    tool_name: str | None
    timestamp: float


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view over recent session entries, newest first."""

    entries: tuple[SessionEntry, ...] = ()
    recent_products: tuple[ProductId, ...] = ()
    recent_files: tuple[str, ...] = ()
    recent_tools: tuple[str, ...] = ()


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
