"""Prompt relevance scoring, intent resolution and entity extraction."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from opti_context.config import RelevanceWeights
from opti_context.obs.tracing import Timer
from opti_context.types import (
    ProductId,
    PromptAnalysisResult,
    PromptEntities,
    PromptIntent,
)

LOGGER = logging.getLogger(__name__)

DIRECT_MENTIONS: tuple[str, ...] = ("optimizely", "episerver", "opti")

DOMAIN_TERMS: tuple[str, ...] = (
    "optimizely", "episerver", "opti",
    "configured commerce", "commerce connect", "insite", "spire",
    "b2b commerce", "ecommerce", "shopping cart", "product catalog",
    "pricing", "inventory", "order management",
    "cms", "content management", "episerver cms", "optimizely cms",
    "content types", "blocks", "pages", "properties",
    "episerver ui", "cms admin", "content area",
    "experimentation", "a/b test", "ab test", "feature flag",
    "experiment", "variation", "audience", "targeting",
    "conversion", "funnel", "rollout",
    "dxp", "digital experience", "personalization",
    "visitor groups", "recommendations",
    "handler", "pipeline", "extension", "blueprint",
    "startup.cs", "appsettings", "web.config",
    "ioc container", "dependency injection",
)

TECHNICAL_PATTERNS: tuple[str, ...] = (
    r"handler.*chain",
    r"extension.*point",
    r"startup\.cs",
    r"appsettings.*json",
    r"content.*type",
    r"visitor.*group",
)

CONTEXTUAL_TERMS: tuple[str, ...] = (
    "commerce", "cms", "experimentation", "personalization",
    "a/b test", "feature flag", "content management",
)

PRODUCT_TERMS: dict[ProductId, tuple[str, ...]] = {
    ProductId.CONFIGURED_COMMERCE: (
        "configured commerce", "insite", "spire", "b2b commerce",
        "handler", "pipeline", "extension", "blueprint",
        "product catalog", "pricing", "inventory", "cart",
        "checkout", "order", "customer", "account",
    ),
    ProductId.COMMERCE_CONNECT: (
        "commerce connect", "connector", "integration",
        "synchronization", "product sync", "order sync",
    ),
    ProductId.CMS_PAAS: (
        "cms", "episerver cms", "optimizely cms", "content management",
        "content types", "blocks", "pages", "properties",
        "startup.cs", "iservicecollection", "mvc",
    ),
    ProductId.CMS_SAAS: (
        "cms saas", "cloud cms", "headless cms",
        "content graph", "optimizely graph",
    ),
    ProductId.CMP: (
        "content marketing", "campaign", "orchestration",
        "marketing automation", "content calendar",
    ),
    ProductId.DXP: (
        "dxp", "digital experience", "personalization",
        "visitor groups", "content recommendations",
    ),
    ProductId.WEB_EXPERIMENTATION: (
        "web experimentation", "a/b test", "ab test",
        "experiment", "variation", "audience targeting",
        "javascript sdk", "optimizely x",
    ),
    ProductId.FEATURE_EXPERIMENTATION: (
        "feature experimentation", "feature flag", "rollout",
        "sdk", "datafile", "user context",
    ),
    ProductId.DATA_PLATFORM: (
        "data platform", "customer data", "analytics",
        "event tracking", "data warehouse", "segments",
    ),
    ProductId.CONNECT_PLATFORM: (
        "connect platform", "integration", "webhook",
        "api gateway", "data sync",
    ),
    ProductId.RECOMMENDATIONS: (
        "recommendations", "product recommendations",
        "recommendation engine", "personalized content",
    ),
}

# Ordered: the first intent with a matching pattern wins.
INTENT_PATTERNS: tuple[tuple[PromptIntent, tuple[str, ...]], ...] = (
    (
        PromptIntent.CODE_HELP,
        (
            r"how\s+to\s+(implement|create|write|build|develop)",
            r"can\s+you\s+(help|show|write|create)",
            r"example\s+of|sample\s+code|code\s+example",
            r"(implement|implementation|developing|building)",
        ),
    ),
    (
        PromptIntent.DOCUMENTATION,
        (
            r"where\s+(can\s+i\s+find|is\s+the)\s+documentation",
            r"documentation\s+(for|about)",
            r"api\s+(reference|documentation)",
            r"\bdocs\b|documentation",
        ),
    ),
    (
        PromptIntent.TROUBLESHOOTING,
        (
            r"(error|issue|problem|bug|not\s+working|failing|broken)",
            r"why\s+(is|does|doesn't|isn't)",
            r"\b(fix|solve|resolve|debug)",
            r"(troubleshoot|diagnose)",
        ),
    ),
    (
        PromptIntent.BEST_PRACTICES,
        (
            r"best\s+practices?",
            r"recommended\s+(approach|way|method)",
            r"should\s+i|what's\s+the\s+best\s+way",
            r"(convention|standard|guideline)",
        ),
    ),
    (
        PromptIntent.CONFIGURATION,
        (
            r"(configure|configuration|setup|set\s+up|install|installation)",
            r"(setting|settings|config)",
        ),
    ),
)

_URL_PATTERN = re.compile(r"https?://[^\s<>\"'()\[\]]+", re.IGNORECASE)
_FILE_PATTERN = re.compile(
    r"(?<![\w/.-])((?:[\w-]+/)*[\w-]+(?:\.[\w-]+)*\."
    r"(?:cs|cshtml|razor|ascx|aspx|ts|tsx|js|jsx|mjs|cjs|json|config|xml|md|py"
    r"|scss|css|less|yml|yaml|csproj|sln|html|vue|sql))\b"
)
_CLASS_PATTERN = re.compile(r"\b(I?[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+)\b")
_VERSION_PATTERN = re.compile(r"(?<![\w.])v?(\d+\.\d+(?:\.\d+)*)(?![\w.]*\w)")
_PRODUCT_VERSION_PATTERN = re.compile(
    r"\b(?:cms|commerce|episerver|optimizely|\.net|net)\s+v?(\d{1,2})\b", re.IGNORECASE
)
_TRAILING_PUNCTUATION = ".,;:!?"


def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![\w]){re.escape(term.lower())}(?![\w])")


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


class PromptAnalyzer:
    """Scores a prompt's domain relevance and extracts intent and entities.

    Relevance is a capped weighted sum of four independent signal classes
    (direct mentions, domain-term density, technical patterns, contextual
    co-occurrence). Each class is reported in ``signals`` so the score is
    auditable per class. The analyzer never raises for odd input; the worst
    case is a zero-relevance result.
    """

    def __init__(self, weights: RelevanceWeights | None = None) -> None:
        self.weights = weights or RelevanceWeights()
        self._direct: list[re.Pattern[str]] = []
        self._domain: list[tuple[str, re.Pattern[str]]] = []
        self._technical: list[re.Pattern[str]] = []
        self._contextual: list[re.Pattern[str]] = []
        self._products: dict[ProductId, list[re.Pattern[str]]] = {}
        self._intents: list[tuple[PromptIntent, list[re.Pattern[str]]]] = []
        self._initialized = False

    def initialize(self) -> None:
        """Compile the keyword and pattern tables (idempotent)."""

        if self._initialized:
            return
        self._direct = [_term_pattern(term) for term in DIRECT_MENTIONS]
        self._domain = [(term, _term_pattern(term)) for term in DOMAIN_TERMS]
        self._technical = [re.compile(pattern, re.IGNORECASE) for pattern in TECHNICAL_PATTERNS]
        self._contextual = [_term_pattern(term) for term in CONTEXTUAL_TERMS]
        self._products = {
            product: [_term_pattern(term) for term in terms]
            for product, terms in PRODUCT_TERMS.items()
        }
        self._intents = [
            (intent, [re.compile(pattern, re.IGNORECASE) for pattern in patterns])
            for intent, patterns in INTENT_PATTERNS
        ]
        self._initialized = True
        LOGGER.debug("Prompt analyzer tables compiled (%d domain terms)", len(self._domain))

    def analyze(self, prompt: str) -> PromptAnalysisResult:
        self.initialize()
        text = prompt if isinstance(prompt, str) else str(prompt or "")
        normalized = text.lower().strip()

        if not normalized:
            return PromptAnalysisResult(
                relevance=0.0,
                keywords=(),
                intent=PromptIntent.UNKNOWN,
                product_hints=(),
                entities=PromptEntities(),
                confidence=0.0,
                signals=self._empty_signals(),
            )

        with Timer() as timer:
            signals = self.score_signals(normalized)
            relevance = _clamp(sum(signals.values()))
            keywords = self.extract_keywords(normalized)
            intent = self.resolve_intent(normalized)
            product_hints = self.identify_product_hints(normalized)
            entities = self.extract_entities(text)
            confidence = self.score_confidence(relevance, len(keywords), len(product_hints))

        LOGGER.debug(
            "Prompt analysed: relevance=%.2f intent=%s keywords=%d hints=%d in %.1fms",
            relevance,
            intent.value,
            len(keywords),
            len(product_hints),
            timer.elapsed_ms,
        )
        return PromptAnalysisResult(
            relevance=relevance,
            keywords=keywords,
            intent=intent,
            product_hints=product_hints,
            entities=entities,
            confidence=confidence,
            signals=signals,
        )

    def score_signals(self, normalized: str) -> dict[str, float]:
        """Return each signal class's capped contribution."""

        self.initialize()
        w = self.weights
        direct = sum(1 for pattern in self._direct if pattern.search(normalized))
        domain = sum(1 for _, pattern in self._domain if pattern.search(normalized))
        technical = sum(1 for pattern in self._technical if pattern.search(normalized))
        contextual = sum(1 for pattern in self._contextual if pattern.search(normalized))
        return {
            "direct_mentions": min(direct * w.direct_mention, w.direct_mention_cap),
            "domain_terms": min(domain * w.domain_term, w.domain_term_cap),
            "technical_patterns": min(technical * w.technical_pattern, w.technical_pattern_cap),
            "contextual_terms": min(contextual * w.contextual_term, w.contextual_term_cap),
        }

    def extract_keywords(self, normalized: str) -> tuple[str, ...]:
        self.initialize()
        return tuple(term for term, pattern in self._domain if pattern.search(normalized))

    def resolve_intent(self, normalized: str) -> PromptIntent:
        self.initialize()
        for intent, patterns in self._intents:
            if any(pattern.search(normalized) for pattern in patterns):
                return intent
        return PromptIntent.UNKNOWN

    def identify_product_hints(self, normalized: str) -> tuple[ProductId, ...]:
        self.initialize()
        return tuple(
            product
            for product, patterns in self._products.items()
            if any(pattern.search(normalized) for pattern in patterns)
        )

    def score_confidence(self, relevance: float, keyword_count: int, hint_count: int) -> float:
        w = self.weights
        confidence = relevance * w.confidence_relevance_factor
        confidence += min(keyword_count * w.confidence_keyword, w.confidence_keyword_cap)
        confidence += min(hint_count * w.confidence_product_hint, w.confidence_product_hint_cap)
        return _clamp(confidence)

    @staticmethod
    def extract_entities(text: str) -> PromptEntities:
        urls = _dedupe(match.rstrip(_TRAILING_PUNCTUATION) for match in _URL_PATTERN.findall(text))
        without_urls = _URL_PATTERN.sub(" ", text)
        files = _dedupe(_FILE_PATTERN.findall(without_urls))
        classes = _dedupe(_CLASS_PATTERN.findall(without_urls))
        versions = _dedupe(
            [*_VERSION_PATTERN.findall(without_urls), *_PRODUCT_VERSION_PATTERN.findall(without_urls)]
        )
        return PromptEntities(files=files, urls=urls, classes=classes, versions=versions)

    @staticmethod
    def _empty_signals() -> dict[str, float]:
        return {
            "direct_mentions": 0.0,
            "domain_terms": 0.0,
            "technical_patterns": 0.0,
            "contextual_terms": 0.0,
        }
