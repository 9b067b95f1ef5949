"""Derive the extended prompt context used for tagging and curation."""

from __future__ import annotations

import re

from opti_context.types import (
    ProductId,
    PromptAnalysisResult,
    PromptContext,
    PromptIntent,
    SessionSnapshot,
)

# Checked strongest first.
SEVERITY_LADDER: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "critical",
        re.compile(
            r"\b(production\s+(is\s+)?down|outage|data\s+loss|security\s+breach|critical)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "high",
        re.compile(r"\b(urgent|asap|crash(es|ing)?|exception|500\s+error|blocker|blocking)\b", re.IGNORECASE),
    ),
    (
        "medium",
        re.compile(r"\b(error|bug|failing|fails|broken|not\s+working|regression)\b", re.IGNORECASE),
    ),
    ("low", re.compile(r"\b(minor|cosmetic|typo|nice\s+to\s+have)\b", re.IGNORECASE)),
)

# Refinements applied when the base intent is too generic to be useful.
EXTENDED_INTENTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("migration", re.compile(r"\b(migrat\w*|upgrad\w*|port(ing)?\s+to)\b", re.IGNORECASE)),
    ("performance", re.compile(r"\b(performance|slow|latency|optimi[sz]e\s+speed|memory\s+leak)\b", re.IGNORECASE)),
    ("security", re.compile(r"\b(security|vulnerab\w*|xss|csrf|injection|auth(entication|orization)?)\b", re.IGNORECASE)),
    ("feature", re.compile(r"\b(new\s+feature|add\s+(a\s+)?feature|feature\s+request)\b", re.IGNORECASE)),
    ("content", re.compile(r"\b(content\s+(model|modelling|modeling|editor|authoring))\b", re.IGNORECASE)),
)

_CONSTRAINT_PATTERN = re.compile(
    r"\b(must|must\s+not|should\s+not|shouldn't|without|only|avoid|do\s+not|don't|never)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

_VERSION_PRODUCTS: tuple[tuple[re.Pattern[str], ProductId], ...] = (
    (re.compile(r"\bcms\s+v?(\d{1,2}(?:\.\d+)*)\b", re.IGNORECASE), ProductId.CMS_PAAS),
    (re.compile(r"\bcommerce\s+v?(\d{1,2}(?:\.\d+)*)\b", re.IGNORECASE), ProductId.CONFIGURED_COMMERCE),
)


def resolve_severity(prompt: str) -> str | None:
    for level, pattern in SEVERITY_LADDER:
        if pattern.search(prompt):
            return level
    return None


def resolve_user_intent(prompt: str, intent: PromptIntent) -> str:
    if intent not in (PromptIntent.UNKNOWN, PromptIntent.CODE_HELP, PromptIntent.CONFIGURATION):
        return intent.value
    for name, pattern in EXTENDED_INTENTS:
        if pattern.search(prompt):
            return name
    return intent.value


def extract_constraints(prompt: str) -> list[str]:
    constraints: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(prompt):
        sentence = sentence.strip()
        if sentence and _CONSTRAINT_PATTERN.search(sentence) and sentence not in constraints:
            constraints.append(sentence)
    return constraints


def extract_versions(prompt: str, analysis: PromptAnalysisResult) -> list[tuple[str, str]]:
    versions: list[tuple[str, str]] = []
    attributed: set[str] = set()
    for pattern, product in _VERSION_PRODUCTS:
        for match in pattern.finditer(prompt):
            pair = (product.value, match.group(1))
            if pair not in versions:
                versions.append(pair)
            attributed.add(match.group(1))
    for version in analysis.entities.versions:
        if version not in attributed:
            versions.append(("platform", version))
    return versions


def build_prompt_context(
    prompt: str,
    analysis: PromptAnalysisResult,
    products: list[ProductId] | None = None,
    session: SessionSnapshot | None = None,
) -> PromptContext:
    """Return the extended context for ``prompt`` given its analysis."""

    text = prompt if isinstance(prompt, str) else str(prompt or "")
    entities = analysis.entities
    artifacts: list[tuple[str, str]] = [
        *(("file", value) for value in entities.files),
        *(("class", value) for value in entities.classes),
        *(("url", value) for value in entities.urls),
    ]

    session_hints: dict[str, object] = {}
    if session is not None and session.entries:
        session_hints = {
            "recent_products": [product.value for product in session.recent_products],
            "recent_files": list(session.recent_files),
            "recent_tools": list(session.recent_tools),
        }

    return PromptContext(
        user_intent=resolve_user_intent(text, analysis.intent),
        severity=resolve_severity(text),
        versions=extract_versions(text, analysis),
        artifacts=artifacts,
        constraints=extract_constraints(text),
        target_products=list(products if products is not None else analysis.product_hints),
        session_hints=session_hints,
    )
