"""Assemble curated responses and context blocks from analysis results."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from opti_context.config import CurationConfig
from opti_context.curation.scanner import MarkdownScanner
from opti_context.types import (
    BlockType,
    CodeExample,
    ContextBlock,
    CuratedResponse,
    DocumentationItem,
    DocumentationLink,
    ProductDetection,
    ProductId,
    PromptAnalysisResult,
    PromptIntent,
    RuleAnalysis,
)

LOGGER = logging.getLogger(__name__)

LOW_RELEVANCE_SUMMARY = (
    "This query does not appear to be related to Optimizely development. "
    "The assistant specializes in providing context for Optimizely-specific questions."
)

SUMMARY_TEMPLATES: dict[PromptIntent, str] = {
    PromptIntent.CODE_HELP: (
        "Code assistance {products}{rules} - analyzing development requirements "
        "and providing implementation guidance."
    ),
    PromptIntent.DOCUMENTATION: (
        "Documentation search {products}{rules} - providing relevant documentation "
        "and reference materials."
    ),
    PromptIntent.TROUBLESHOOTING: (
        "Troubleshooting support {products}{rules} - helping diagnose and resolve "
        "development issues."
    ),
    PromptIntent.BEST_PRACTICES: (
        "Best practices guidance {products}{rules} - sharing recommended approaches and patterns."
    ),
    PromptIntent.CONFIGURATION: (
        "Configuration help {products}{rules} - assisting with setup and configuration tasks."
    ),
    PromptIntent.UNKNOWN: (
        "Development assistance {products}{rules} - providing contextual guidance and support."
    ),
}

INTENT_STEPS: dict[PromptIntent, tuple[str, ...]] = {
    PromptIntent.CODE_HELP: (
        "Review relevant code examples and implementation patterns",
        "Check official documentation for API references",
        "Consider best practices for your specific use case",
    ),
    PromptIntent.TROUBLESHOOTING: (
        "Identify the specific error or issue",
        "Check logs and error messages for additional context",
        "Review recent changes that might have caused the issue",
    ),
    PromptIntent.BEST_PRACTICES: (
        "Review established patterns and conventions",
        "Consider performance and maintainability implications",
        "Validate approach against official recommendations",
    ),
    PromptIntent.CONFIGURATION: (
        "Confirm the target environment and product version",
        "Apply configuration changes in a non-production environment first",
        "Verify the change against the official configuration reference",
    ),
}
DEFAULT_STEPS: tuple[str, ...] = (
    "Gather more specific requirements",
    "Review relevant documentation and examples",
)

PRODUCT_PRACTICES: tuple[tuple[frozenset[ProductId], tuple[str, ...]], ...] = (
    (
        frozenset({ProductId.CONFIGURED_COMMERCE}),
        (
            "Follow handler chain patterns for extending commerce functionality",
            "Use proper dependency injection in your extensions",
            "Implement proper error handling and logging",
        ),
    ),
    (
        frozenset({ProductId.CMS_PAAS, ProductId.CMS_SAAS}),
        (
            "Use content types and properties appropriately",
            "Follow MVC patterns in your implementations",
            "Implement proper caching strategies",
        ),
    ),
    (
        frozenset({ProductId.WEB_EXPERIMENTATION, ProductId.FEATURE_EXPERIMENTATION}),
        (
            "Implement proper event tracking and analytics",
            "Use feature flags to control experiment rollouts",
            "Ensure proper audience targeting and segmentation",
        ),
    ),
)
GENERAL_PRACTICES: tuple[str, ...] = (
    "Follow Optimizely naming conventions and coding standards",
    "Implement comprehensive error handling and logging",
    "Write maintainable and well-documented code",
)

_HEADING_MARKS = re.compile(r"#+\s*")


def _product_names(products: Sequence[ProductId]) -> str:
    return ", ".join(product.display_name for product in products)


class ContextCurator:
    """Builds a ``CuratedResponse`` from already-fetched inputs.

    Every generator here is a pure function of its arguments; no network or
    disk access happens in this class.
    """

    def __init__(
        self,
        config: CurationConfig | None = None,
        scanner: MarkdownScanner | None = None,
    ) -> None:
        self.config = config or CurationConfig()
        self.scanner = scanner or MarkdownScanner()

    async def initialize(self) -> None:
        LOGGER.debug("Context curator ready (enrichment threshold %.2f)", self.config.enrichment_threshold)

    def curate(
        self,
        analysis: PromptAnalysisResult,
        products: Sequence[ProductId],
        rule_analysis: RuleAnalysis | None = None,
        documentation: Sequence[DocumentationItem] | None = None,
    ) -> CuratedResponse:
        docs = list(documentation or [])
        suggested = list(rule_analysis.suggested_enhancements) if rule_analysis else []
        return CuratedResponse(
            relevance=analysis.relevance,
            product_context=list(products),
            summary=self.generate_summary(analysis, products, rule_analysis, docs),
            actionable_steps=self.generate_actionable_steps(analysis, products, rule_analysis),
            code_examples=self.extract_code_examples(docs),
            documentation=self.format_documentation_links(docs),
            best_practices=self.generate_best_practices(products, rule_analysis),
            suggested_rules=suggested[: self.config.max_suggested_rules],
        )

    @staticmethod
    def low_relevance_response(analysis: PromptAnalysisResult) -> CuratedResponse:
        return CuratedResponse(
            relevance=analysis.relevance,
            product_context=[],
            summary=LOW_RELEVANCE_SUMMARY,
            actionable_steps=[],
            code_examples=[],
            documentation=[],
            best_practices=[],
        )

    def generate_summary(
        self,
        analysis: PromptAnalysisResult,
        products: Sequence[ProductId],
        rule_analysis: RuleAnalysis | None = None,
        documentation: Sequence[DocumentationItem] = (),
    ) -> str:
        product_text = (
            f"for {_product_names(products)} development" if products else "for Optimizely development"
        )
        rule_text = ""
        if rule_analysis is not None and rule_analysis.found_files:
            rule_text = (
                f" ({len(rule_analysis.found_files)} IDE rule files detected with "
                f"{rule_analysis.relevance:.1f} relevance)"
            )
        template = SUMMARY_TEMPLATES.get(analysis.intent, SUMMARY_TEMPLATES[PromptIntent.UNKNOWN])
        summary = template.format(products=product_text, rules=rule_text)

        strong = [
            doc.title for doc in documentation if doc.relevance >= self.config.enrichment_threshold
        ]
        if strong:
            summary += " Key references: " + ", ".join(dict.fromkeys(strong)) + "."
        return summary

    def generate_actionable_steps(
        self,
        analysis: PromptAnalysisResult,
        products: Sequence[ProductId],
        rule_analysis: RuleAnalysis | None = None,
    ) -> list[str]:
        steps: list[str] = []
        if rule_analysis is not None:
            for conflict in rule_analysis.conflicts[:1]:
                steps.append(f"Resolve rule conflict: {conflict.description}")
            for enhancement in rule_analysis.suggested_enhancements[: self.config.max_rule_steps]:
                steps.append(f"Rule enhancement available: {enhancement.suggestion}")

        if products:
            steps.append(f"Working with {_product_names(products)}")
        steps.extend(INTENT_STEPS.get(analysis.intent, DEFAULT_STEPS))
        return list(dict.fromkeys(steps))

    def generate_best_practices(
        self,
        products: Sequence[ProductId],
        rule_analysis: RuleAnalysis | None = None,
    ) -> list[str]:
        practices: list[str] = []
        if rule_analysis is not None:
            for enhancement in rule_analysis.suggested_enhancements[:2]:
                practices.append(f"{enhancement.suggestion}: {enhancement.rationale}")

        selected = set(products)
        for group, entries in PRODUCT_PRACTICES:
            if selected & group:
                practices.extend(entries)

        if rule_analysis is not None and rule_analysis.found_files and rule_analysis.relevance < 0.5:
            practices.append(
                "Consider adding Optimizely-specific IDE configurations for better development experience"
            )
        practices.extend(GENERAL_PRACTICES)
        return list(dict.fromkeys(practices))

    def extract_code_examples(self, documentation: Sequence[DocumentationItem]) -> list[CodeExample]:
        examples: list[CodeExample] = []
        for doc in documentation:
            if not doc.content:
                continue
            base = doc.relevance if doc.relevance > 0 else 1.0
            for block in self.scanner.iter_blocks(doc.content):
                if len(block.code) <= self.config.min_code_chars:
                    continue
                examples.append(
                    CodeExample(
                        language=block.language,
                        code=block.code,
                        description=block.description,
                        source=doc.url or doc.title or "Documentation",
                        relevance=round(base * self.config.code_relevance_factor, 4),
                    )
                )
        examples.sort(key=lambda example: example.relevance, reverse=True)
        return examples[: self.config.max_code_examples]

    def format_documentation_links(
        self, documentation: Sequence[DocumentationItem]
    ) -> list[DocumentationLink]:
        links = [
            DocumentationLink(
                title=doc.title,
                url=doc.url,
                description=self._describe(doc),
                relevance=doc.relevance,
                last_updated=doc.last_updated,
            )
            for doc in documentation
            if doc.title and doc.url
        ]
        links.sort(key=lambda link: link.relevance, reverse=True)
        return links[: self.config.max_documentation_links]

    @staticmethod
    def _describe(doc: DocumentationItem) -> str:
        for paragraph in doc.content.split("\n\n"):
            cleaned = _HEADING_MARKS.sub("", paragraph).strip()
            if len(cleaned) > 50 and not cleaned.startswith(("```", "~~~")):
                return cleaned[:150] + "..."
        names = _product_names(doc.products) if doc.products else "Optimizely"
        return f"Documentation for {names} development"

    def to_context_blocks(
        self,
        curated: CuratedResponse,
        *,
        detection: ProductDetection | None = None,
        rule_analysis: RuleAnalysis | None = None,
    ) -> list[ContextBlock]:
        """Flatten a curated response into raw blocks for the formatter."""

        blocks: list[ContextBlock] = []
        summary_lines = [curated.summary]
        if curated.actionable_steps:
            summary_lines.append("")
            summary_lines.extend(f"{i}. {step}" for i, step in enumerate(curated.actionable_steps, 1))
        blocks.append(
            ContextBlock(
                type=BlockType.SUMMARY,
                title="Summary",
                content="\n".join(summary_lines),
                relevance=self.config.summary_block_relevance,
            )
        )

        if rule_analysis is not None and rule_analysis.normalized_directives:
            blocks.append(
                ContextBlock(
                    type=BlockType.RULES,
                    title="Project rules",
                    content="\n".join(f"- {item}" for item in rule_analysis.normalized_directives),
                    source=", ".join(rule_analysis.found_files) or None,
                    relevance=self.config.rules_block_relevance,
                )
            )

        for example in curated.code_examples:
            blocks.append(
                ContextBlock(
                    type=BlockType.CODE,
                    title=example.description,
                    content=f"```{example.language}\n{example.code}\n```",
                    source=example.source,
                    relevance=min(max(example.relevance, 0.0), 1.0),
                )
            )

        for link in curated.documentation:
            blocks.append(
                ContextBlock(
                    type=BlockType.DOCUMENTATION,
                    title=link.title,
                    content=f"{link.description}\n{link.url}",
                    source=link.url,
                    relevance=min(max(link.relevance, 0.0), 1.0),
                )
            )

        if curated.best_practices:
            blocks.append(
                ContextBlock(
                    type=BlockType.ANALYSIS,
                    title="Best practices",
                    content="\n".join(f"- {item}" for item in curated.best_practices),
                    relevance=self.config.practices_block_relevance,
                )
            )

        if detection is not None and detection.evidence:
            blocks.append(
                ContextBlock(
                    type=BlockType.DETECTION_EVIDENCE,
                    title="Detection evidence",
                    content="\n".join(f"- {item.detail}" for item in detection.evidence),
                    relevance=self.config.evidence_block_relevance,
                )
            )
        return blocks
