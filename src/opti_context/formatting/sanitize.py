"""Safety sanitization for context block content."""

from __future__ import annotations

import re
from dataclasses import dataclass

from opti_context.types import Redaction

DATA_URI_MARKER = "[DATA_URI_REDACTED]"
API_KEY_MARKER = "[API_KEY_REDACTED]"
EMAIL_MARKER = "[REDACTED_EMAIL]"
PHONE_MARKER = "[REDACTED_PHONE]"
CARD_MARKER = "[REDACTED_CC]"


@dataclass(frozen=True, slots=True)
class SanitizationRule:
    type: str
    pattern: re.Pattern[str]
    replacement: str


# Markup rules are re-applied until the text stops changing so that nested
# fragments cannot reassemble into a tag after one removal.
MARKUP_RULES: tuple[SanitizationRule, ...] = (
    SanitizationRule(
        "script",
        re.compile(r"<\s*(script|iframe)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL),
        "",
    ),
    SanitizationRule("script", re.compile(r"<\s*/?\s*(script|iframe)\b[^>]*>?", re.IGNORECASE), ""),
    SanitizationRule(
        "style",
        re.compile(r"<\s*style\b[^>]*>.*?<\s*/\s*style\s*>", re.IGNORECASE | re.DOTALL),
        "",
    ),
    SanitizationRule(
        "event_handler",
        re.compile(r"\son\w+\s*=\s*(\"[^\"]*\"|'[^']*')", re.IGNORECASE),
        "",
    ),
    SanitizationRule("javascript_uri", re.compile(r"javascript\s*:", re.IGNORECASE), ""),
)

REDACTION_RULES: tuple[SanitizationRule, ...] = (
    SanitizationRule(
        "data_uri",
        re.compile(r"\bdata:(?:[\w.+-]+/[\w.+-]+)?(?:;[\w.+-]+(?:=[\w.+-]+)?)*,[^\s\"'<>)\]]*", re.IGNORECASE),
        DATA_URI_MARKER,
    ),
    SanitizationRule(
        "data_uri",
        re.compile(r"\bdata:[\w.+-]+/[\w.+-]+[^\s\"'<>)\]]*", re.IGNORECASE),
        DATA_URI_MARKER,
    ),
    SanitizationRule(
        "api_key",
        re.compile(r"\bBearer\s+[A-Za-z0-9\-_.~+/]{16,}=*"),
        f"Bearer {API_KEY_MARKER}",
    ),
    SanitizationRule("api_key", re.compile(r"\bsk-[A-Za-z0-9_-]{16,}"), API_KEY_MARKER),
    SanitizationRule("api_key", re.compile(r"\bAKIA[0-9A-Z]{16}\b"), API_KEY_MARKER),
    SanitizationRule("api_key", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{30,}\b"), API_KEY_MARKER),
    SanitizationRule(
        "api_key",
        re.compile(
            r"(?i)\b((?:api[_-]?key|client[_-]?secret|secret|access[_-]?token|token|password|passwd)"
            r"\s*[:=]\s*[\"']?)(?!\[API_KEY_REDACTED\])[^\s\"',;]{6,}"
        ),
        rf"\1{API_KEY_MARKER}",
    ),
    SanitizationRule(
        "api_key",
        re.compile(r"\b(?=[A-Za-z0-9]*\d)(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{32,}\b"),
        API_KEY_MARKER,
    ),
    SanitizationRule(
        "email",
        re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
        EMAIL_MARKER,
    ),
    SanitizationRule(
        "phone",
        re.compile(r"(?<![\w+])(?:\+\d{1,3}[\s-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}\b"),
        PHONE_MARKER,
    ),
    SanitizationRule(
        "credit_card",
        re.compile(r"\b(?:\d[ -]?){12,18}\d\b"),
        CARD_MARKER,
    ),
)

_UNSAFE = (
    re.compile(r"<\s*/?\s*(script|iframe)\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bdata:(?:[\w.+-]+/[\w.+-]+|,)", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class SanitizationResult:
    text: str
    redactions: tuple[Redaction, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.redactions)


def coerce_text(value: object) -> str:
    """Best-effort conversion of arbitrary block content to ``str``."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def sanitize_text(value: object) -> SanitizationResult:
    """Strip active markup, then mask data URIs, credentials and PII."""

    text = coerce_text(value)
    counts: dict[str, int] = {}

    while True:
        before = text
        for rule in MARKUP_RULES:
            text, hits = rule.pattern.subn(rule.replacement, text)
            if hits:
                counts[rule.type] = counts.get(rule.type, 0) + hits
        if text == before:
            break

    for rule in REDACTION_RULES:
        text, hits = rule.pattern.subn(rule.replacement, text)
        if hits:
            counts[rule.type] = counts.get(rule.type, 0) + hits

    return SanitizationResult(
        text=text,
        redactions=tuple(Redaction(type=name, count=count) for name, count in counts.items()),
    )


def contains_unsafe_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in _UNSAFE)


def merge_redactions(groups: list[tuple[Redaction, ...]]) -> tuple[Redaction, ...]:
    totals: dict[str, int] = {}
    for group in groups:
        for item in group:
            totals[item.type] = totals.get(item.type, 0) + item.count
    return tuple(Redaction(type=name, count=count) for name, count in totals.items())
