"""Fusion of project- and prompt-derived product evidence."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from opti_context.config import DetectionConfig
from opti_context.types import EvidenceItem, EvidenceSource, ProductDetection, ProductId

LOGGER = logging.getLogger(__name__)


class EvidenceMerger:
    """Fuses evidence from several detectors into a ranked product list.

    Fusion process:
    1. Accumulate ``weight * source_multiplier`` per product (structural
       evidence counts fully, prompt evidence is discounted).
    2. Rank by score, then by evidence count, then by product id.
    3. Keep the top ``max_products``.
    """

    def __init__(self, config: DetectionConfig | None = None) -> None:
        self.config = config or DetectionConfig()

    def multiplier(self, source: EvidenceSource) -> float:
        if source is EvidenceSource.PROJECT:
            return self.config.project_multiplier
        return self.config.prompt_multiplier

    def merge(
        self,
        evidence: Iterable[EvidenceItem],
        *,
        fallback: Iterable[ProductId] = (),
    ) -> ProductDetection:
        items = list(evidence)
        scores: dict[ProductId, float] = {}
        counts: dict[ProductId, int] = {}
        for item in items:
            scores[item.product] = scores.get(item.product, 0.0) + item.weight * self.multiplier(
                item.source
            )
            counts[item.product] = counts.get(item.product, 0) + 1

        ranked = sorted(
            (product for product, score in scores.items() if score > 0),
            key=lambda product: (-scores[product], -counts[product], product.value),
        )
        products = ranked[: self.config.max_products]

        if not products:
            products = list(dict.fromkeys(fallback))[: self.config.max_products]
            context = "fallback" if products else "none"
        else:
            sources = {item.source for item in items}
            if sources == {EvidenceSource.PROJECT}:
                context = "ide"
            elif sources == {EvidenceSource.PROMPT}:
                context = "prompt"
            else:
                context = "hybrid"

        top = scores.get(products[0], 0.0) if products else 0.0
        confidence = min(top / self.config.confidence_scale, 1.0)

        LOGGER.debug(
            "Merged %d evidence items into %s (confidence %.2f)",
            len(items),
            [product.value for product in products],
            confidence,
        )
        return ProductDetection(
            products=products,
            scores=scores,
            confidence=confidence,
            evidence=items,
            context=context,
            suggested_actions=suggest_actions(products),
        )


def suggest_actions(products: list[ProductId]) -> list[str]:
    if not products:
        return [
            "Provide more specific context about the product you are working with",
            "Check that the project uses a supported product",
        ]

    actions = [
        "Focus on " + ", ".join(product.display_name for product in products)
        + " documentation and patterns"
    ]
    if ProductId.CONFIGURED_COMMERCE in products:
        actions.append("Review handler chain patterns and extension development guidelines")
    if ProductId.CMS_PAAS in products or ProductId.CMS_SAAS in products:
        actions.append("Check content type definitions and MVC implementation patterns")
    if (
        ProductId.WEB_EXPERIMENTATION in products
        or ProductId.FEATURE_EXPERIMENTATION in products
    ):
        actions.append("Verify SDK implementation and event tracking setup")
    return actions
