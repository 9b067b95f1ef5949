"""Rule normalization, precedence, conflict detection and consolidation."""

from __future__ import annotations

import difflib
import logging
import re
from collections.abc import Iterable
from pathlib import Path

from opti_context.config import RuleConfig
from opti_context.rules.reader import RuleFileReader, RuleParserRegistry
from opti_context.types import (
    RawRuleFile,
    RuleAnalysis,
    RuleConflict,
    RuleEnhancement,
    RuleRecord,
    RuleTier,
)

LOGGER = logging.getLogger(__name__)

PROPOSED_FILE = ".cursorrules"

# Exact-path precedence, strongest first.
PRECEDENCE_BY_PATH: dict[str, tuple[RuleTier, int]] = {
    ".cursorrules": (RuleTier.EXPLICIT, 60),
    ".cursor/mcp.json": (RuleTier.EXPLICIT, 50),
    ".cursor-rules": (RuleTier.EXPLICIT, 40),
    "cursor-rules.md": (RuleTier.SHARED, 30),
    ".vscode/settings.json": (RuleTier.INFERRED, 20),
    ".vscode/extensions.json": (RuleTier.INFERRED, 20),
}

# Prefix precedence for recursively discovered sources.
PRECEDENCE_BY_PREFIX: tuple[tuple[str, RuleTier, int], ...] = (
    ("inline:", RuleTier.EXPLICIT, 70),
    (".cursor/", RuleTier.SHARED, 28),
    ("rules/", RuleTier.SHARED, 25),
    ("docs/", RuleTier.SHARED, 22),
    (".vscode/", RuleTier.INFERRED, 20),
)

WORKSPACE_PRECEDENCE = (RuleTier.INFERRED, 10)
DEFAULT_PRECEDENCE = (RuleTier.INFERRED, 5)

# Settings keys that express the same preference as a canonical directive.
KEY_ALIASES: dict[str, str] = {
    "editor.insertspaces=true": "indentation=spaces",
    "editor.insertspaces=false": "indentation=tabs",
    "prettier.usetabs=true": "indentation=tabs",
    "prettier.usetabs=false": "indentation=spaces",
    "prettier.singlequote=true": "quotes=single",
    "prettier.singlequote=false": "quotes=double",
    "prettier.semi=true": "semicolons=always",
    "prettier.semi=false": "semicolons=never",
    "formatonsave=true": "editor.formatonsave=true",
    "formatonsave=false": "editor.formatonsave=false",
}

# Undotted keys that are settings even when written in a text rule file.
SETTING_KEYS = frozenset(
    {
        "indentation",
        "quotes",
        "semicolons",
        "formatonsave",
        "tabsize",
        "tabwidth",
        "usetabs",
        "printwidth",
        "singlequote",
        "semi",
        "trailingcomma",
        "endofline",
    }
)

# Free-text phrasings mapped onto canonical key=value directives.
SYNONYMS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(enable |always )?format(ting)? (code )?on save( enabled)?"), "editor.formatonsave=true"),
    (
        re.compile(r"(disable|never|do not|don't) format(ting)? (code )?on save|format(ting)? on save disabled"),
        "editor.formatonsave=false",
    ),
    (re.compile(r"(use|prefer) tabs( for indentation)?|indent with tabs"), "indentation=tabs"),
    (re.compile(r"(use|prefer) (\d+ )?spaces( for indentation)?|indent with (\d+ )?spaces"), "indentation=spaces"),
    (re.compile(r"(use|prefer) single quotes"), "quotes=single"),
    (re.compile(r"(use|prefer) double quotes"), "quotes=double"),
    (re.compile(r"(always )?(use|require) semicolons"), "semicolons=always"),
    (re.compile(r"(never use|no|avoid|omit) semicolons"), "semicolons=never"),
)

# Free-text directive pairs that cannot both hold.
ANTAGONISTIC_PAIRS: tuple[tuple[re.Pattern[str], re.Pattern[str], str], ...] = (
    (
        re.compile(r"\bprefer class components\b"),
        re.compile(r"\bprefer (functional|function) components\b"),
        "component style",
    ),
    (
        re.compile(r"\b(use|prefer) default exports?\b"),
        re.compile(r"\b(use|prefer) named exports?\b|\bavoid default exports?\b"),
        "export style",
    ),
    (
        re.compile(r"^(allow|use) (the )?any( type)?\b"),
        re.compile(r"^(avoid|never use|disallow|no) (the )?any( type)?\b"),
        "any type usage",
    ),
)

DOMAIN_TERMS: tuple[str, ...] = (
    "optimizely",
    "episerver",
    "commerce",
    "cms",
    "dxp",
    "experimentation",
    "blueprint",
    "extension",
    "handler",
    "pipeline",
    "content-type",
    "block",
    "template",
    "personalization",
    "visitor-group",
    "ab-test",
    "feature-flag",
)

_PLACEHOLDERS = frozenset({"", "todo", "tbd", "n/a", "none", "null", "...", "-"})
_WHITESPACE = re.compile(r"\s+")
_KEY_VALUE = re.compile(r"^([a-z_@][\w.@/-]*)\s*[:=]\s*(.*)$")
_SETTING_KEY = re.compile(r"^[a-z_@][\w.@/-]*$")
_URL_START = re.compile(r"^[a-z][\w+.-]*://")


def precedence_for(relative_path: str) -> tuple[RuleTier, int]:
    if relative_path in PRECEDENCE_BY_PATH:
        return PRECEDENCE_BY_PATH[relative_path]
    for prefix, tier, rank in PRECEDENCE_BY_PREFIX:
        if relative_path.startswith(prefix):
            return tier, rank
    if relative_path.endswith(".code-workspace"):
        return WORKSPACE_PRECEDENCE
    return DEFAULT_PRECEDENCE


def normalize_directive(text: str, structured: bool = False) -> str:
    """Canonical comparison form: collapsed whitespace, lower case, aliases applied.

    ``key: value`` lines become ``key=value`` settings only when they come
    from a structured source, use a dotted key or name a known setting.
    Anything else (``Naming: use PascalCase``) stays free text.
    """

    value = _WHITESPACE.sub(" ", (text or "").replace("`", "").strip()).lower().strip(" .;")
    match = _KEY_VALUE.match(value)
    if match and not _URL_START.match(value):
        key = match.group(1).removeprefix("settings.")
        raw_value = match.group(2).strip().strip("\"'")
        if structured or "." in key or key in SETTING_KEYS or not raw_value:
            value = f"{key}={raw_value}"
            return KEY_ALIASES.get(value, value)
    for pattern, canonical in SYNONYMS:
        if pattern.fullmatch(value):
            return canonical
    return value


def _split_key(normalized: str) -> tuple[str, str] | None:
    if "=" not in normalized:
        return None
    key, value = normalized.split("=", 1)
    if not _SETTING_KEY.match(key):
        return None
    return key, value


def _is_dead(normalized: str) -> bool:
    if normalized in _PLACEHOLDERS:
        return True
    pair = _split_key(normalized)
    return pair is not None and pair[1].strip() in _PLACEHOLDERS


def _domain_terms(content: str) -> list[str]:
    lowered = content.lower()
    return [term for term in DOMAIN_TERMS if term in lowered]


class RuleMerger:
    """Consolidates rule sources into a single auditable ``RuleAnalysis``.

    Records are ranked by precedence (explicit > shared > inferred, then by
    the per-file rank). Duplicates keep their strongest occurrence; when two
    directives contradict, the higher-ranked one wins and the other is
    reported as overridden.
    """

    def __init__(
        self,
        config: RuleConfig | None = None,
        reader: RuleFileReader | None = None,
        parsers: RuleParserRegistry | None = None,
    ) -> None:
        self.config = config or RuleConfig()
        self.parsers = parsers or RuleParserRegistry()
        self.reader = reader or RuleFileReader(self.config, self.parsers)

    def analyze(
        self,
        project_path: str | Path | None = None,
        inline_rules: list[str] | None = None,
    ) -> RuleAnalysis:
        outcome = self.reader.read(project_path, inline_rules)
        return self.analyze_files(outcome.files, skipped=outcome.skipped)

    def analyze_files(
        self,
        files: Iterable[RawRuleFile],
        skipped: Iterable[str] = (),
    ) -> RuleAnalysis:
        sources = list(files)
        lint_warnings = [f"Skipped unreadable rule file {path}" for path in skipped]
        enhancements: list[RuleEnhancement] = []

        records: list[RuleRecord] = []
        for source in sources:
            parsed = self._parse(source, lint_warnings)
            if not parsed and len(source.content.strip()) < 5:
                enhancements.append(
                    RuleEnhancement(
                        type="cleanup",
                        priority="low",
                        suggestion=f"Remove empty rule file {source.relative_path}",
                        rationale="Empty rule files add noise",
                        implementation=f"Delete {source.relative_path}",
                    )
                )
            records.extend(parsed)

        records.sort(key=lambda record: -record.precedence_rank)
        kept, notes, cleanups = self._deduplicate(records)
        conflicts, overridden = self._detect_conflicts(kept)
        effective = [record for record in kept if record.id not in overridden]

        for record in kept:
            if record.id in overridden:
                cleanups.append(
                    RuleEnhancement(
                        type="cleanup",
                        priority="low",
                        suggestion=f"Remove overridden directive '{record.directive}' from {record.origin_file}",
                        rationale=overridden[record.id],
                        implementation=f"Delete the directive from {record.origin_file}",
                    )
                )
        for conflict in conflicts:
            notes.append(conflict.resolution)

        relevance = self._relevance(sources)
        lint_warnings.extend(self._lint(sources, records))
        enhancements = self._enhancements(sources, relevance) + enhancements + cleanups

        if sources:
            strongest = max(sources, key=lambda source: precedence_for(source.relative_path)[1])
            notes.insert(0, f"Primary source: {strongest.relative_path}")
            notes.insert(1, f"Merged {len(records)} directives from {len(sources)} sources")
        else:
            notes.append(f"No rule files found; proposing a new {PROPOSED_FILE}")

        normalized = list(
            dict.fromkeys(record.normalized_form for record in effective)
        )[: self.config.max_normalized_directives]
        proposed = self.render_proposed_rules(effective)
        diff = self.render_diff(sources, proposed)

        LOGGER.debug(
            "Rule analysis: %d sources, %d records, %d conflicts",
            len(sources),
            len(records),
            len(conflicts),
        )
        return RuleAnalysis(
            found_files=[source.relative_path for source in sources],
            existing_rules=records,
            normalized_directives=normalized,
            merge_notes=notes,
            suggested_enhancements=enhancements,
            conflicts=conflicts,
            lint_warnings=lint_warnings,
            proposed_cursor_rules=proposed,
            proposed_cursor_rules_diff=diff,
            relevance=relevance,
        )

    def _parse(self, source: RawRuleFile, lint_warnings: list[str]) -> list[RuleRecord]:
        try:
            parsed = self.parsers.parse(source)
        except ValueError as exc:
            LOGGER.warning("Could not parse rule file %s: %s", source.relative_path, exc)
            lint_warnings.append(f"Could not parse {source.relative_path}: {exc}")
            return []

        tier, rank = precedence_for(source.relative_path)
        structured = self.parsers.parser_for(source.relative_path).kind == "json"
        return [
            RuleRecord(
                id=f"{source.relative_path}:{item.line}",
                directive=item.text,
                precedence_rank=rank,
                origin_file=source.relative_path,
                normalized_form=normalize_directive(item.text, structured),
                tier=tier,
                section=item.section,
            )
            for item in parsed[: self.config.max_directives_per_file]
        ]

    def _deduplicate(
        self, records: list[RuleRecord]
    ) -> tuple[list[RuleRecord], list[str], list[RuleEnhancement]]:
        kept: list[RuleRecord] = []
        notes: list[str] = []
        cleanups: list[RuleEnhancement] = []
        first_seen: dict[str, RuleRecord] = {}

        for record in records:
            if _is_dead(record.normalized_form):
                cleanups.append(
                    RuleEnhancement(
                        type="cleanup",
                        priority="low",
                        suggestion=f"Remove empty directive in {record.origin_file} ({record.id})",
                        rationale="The directive has no value and no effect",
                        implementation=f"Delete line {record.id.rsplit(':', 1)[-1]} of {record.origin_file}",
                    )
                )
                continue
            existing = first_seen.get(record.normalized_form)
            if existing is not None:
                notes.append(
                    f"Deduplicated '{record.normalized_form}' from {record.origin_file}; "
                    f"kept {existing.origin_file}"
                )
                cleanups.append(
                    RuleEnhancement(
                        type="cleanup",
                        priority="low",
                        suggestion=f"Remove duplicate directive '{record.directive}' from {record.origin_file}",
                        rationale=f"Already defined in {existing.origin_file}",
                        implementation=f"Keep the directive in {existing.origin_file} only",
                    )
                )
                continue
            first_seen[record.normalized_form] = record
            kept.append(record)
        return kept, notes, cleanups

    def _detect_conflicts(
        self, records: list[RuleRecord]
    ) -> tuple[list[RuleConflict], dict[str, str]]:
        conflicts: list[RuleConflict] = []
        overridden: dict[str, str] = {}
        winners_by_key: dict[str, RuleRecord] = {}

        # ``records`` is already strongest-first, so the first holder of a key wins.
        for record in records:
            pair = _split_key(record.normalized_form)
            if pair is None:
                continue
            key, value = pair
            winner = winners_by_key.get(key)
            if winner is None:
                winners_by_key[key] = record
                continue
            if winner.normalized_form == record.normalized_form:
                continue
            kept_value = winner.normalized_form.split("=", 1)[1]
            conflicts.append(
                self._conflict(winner, record, f"Conflicting {key} settings ({kept_value} vs {value})")
            )
            overridden[record.id] = f"Overridden by {winner.origin_file}"

        for first, second, label in ANTAGONISTIC_PAIRS:
            side_a = [record for record in records if first.search(record.normalized_form)]
            side_b = [record for record in records if second.search(record.normalized_form)]
            if side_a and side_b:
                winner, loser = sorted(
                    (side_a[0], side_b[0]),
                    key=lambda record: (-record.precedence_rank, records.index(record)),
                )
                conflicts.append(self._conflict(winner, loser, f"Contradicting {label} directives"))
                overridden[loser.id] = f"Overridden by {winner.origin_file}"
        return conflicts, overridden

    @staticmethod
    def _conflict(winner: RuleRecord, loser: RuleRecord, description: str) -> RuleConflict:
        return RuleConflict(
            type="contradiction",
            description=description,
            severity="warning",
            directive_ids=(winner.id, loser.id),
            resolution=(
                f"Kept '{winner.directive}' from {winner.origin_file} over "
                f"'{loser.directive}' from {loser.origin_file} (higher precedence)"
            ),
        )

    @staticmethod
    def _relevance(sources: list[RawRuleFile]) -> float:
        if not sources:
            return 0.0
        total_relevance = 0.0
        total_terms = 0
        for source in sources:
            terms = _domain_terms(source.content)
            total_relevance += len(terms) / max(len(source.content) / 100, 1)
            total_terms += len(terms)
        average = total_relevance / len(sources)
        density = total_terms / len(sources)
        return min((average + density) / 2, 1.0)

    def _lint(self, sources: list[RawRuleFile], records: list[RuleRecord]) -> list[str]:
        warnings: list[str] = []
        combined = "\n".join(source.content for source in sources).lower()
        has_eslint = "eslint" in combined
        has_prettier = "prettier" in combined
        if has_eslint and not has_prettier:
            warnings.append("ESLint is configured without Prettier; formatting rules may drift")
        if has_prettier and not has_eslint:
            warnings.append("Prettier is configured without ESLint; code quality rules are not enforced")
        for record in records:
            if len(record.directive) > self.config.max_directive_chars:
                warnings.append(
                    f"Directive {record.id} exceeds {self.config.max_directive_chars} characters; consider splitting it"
                )
        return warnings

    def _enhancements(self, sources: list[RawRuleFile], relevance: float) -> list[RuleEnhancement]:
        combined = "\n".join(source.content for source in sources).lower()
        enhancements: list[RuleEnhancement] = []
        if relevance < self.config.low_relevance_threshold:
            enhancements.append(
                RuleEnhancement(
                    type="add",
                    priority="high",
                    suggestion="Add Optimizely-specific file associations and snippets",
                    rationale="Current rules have low Optimizely relevance",
                    implementation="Add file associations for .cs, .tsx, .cshtml files with Optimizely context",
                )
            )
        if "typescript" not in combined:
            enhancements.append(
                RuleEnhancement(
                    type="add",
                    priority="medium",
                    suggestion="Add TypeScript support for modern Optimizely development",
                    rationale="TypeScript improves development experience with Optimizely SDKs",
                    implementation="Configure TypeScript compiler options and IntelliSense",
                )
            )
        if "eslint" not in combined and "prettier" not in combined:
            enhancements.append(
                RuleEnhancement(
                    type="add",
                    priority="medium",
                    suggestion="Add code quality tools (ESLint, Prettier)",
                    rationale="Consistent code quality improves maintainability",
                    implementation="Configure ESLint rules for React/TypeScript and Prettier formatting",
                )
            )
        if not any(source.relative_path == PROPOSED_FILE for source in sources):
            enhancements.append(
                RuleEnhancement(
                    type="add",
                    priority="medium",
                    suggestion=f"Create a consolidated {PROPOSED_FILE} with key directives",
                    rationale="Centralize IDE behavior for Cursor and MCP integration",
                    implementation=(
                        f"Create {PROPOSED_FILE} at repo root with sections for project context, "
                        "editor settings, lint/format, and MCP tool hints."
                    ),
                )
            )
        return enhancements

    @staticmethod
    def render_proposed_rules(records: list[RuleRecord]) -> str:
        sections: dict[str, list[str]] = {
            "Project Context": [],
            "Editor": [],
            "TypeScript": [],
            "Linting": [],
            "MCP": [],
        }
        for record in records:
            form = record.normalized_form
            line = f"- {record.directive.strip()}"
            if record.origin_file.endswith("mcp.json") or "mcp" in form:
                sections["MCP"].append(line)
            elif "eslint" in form or "prettier" in form or "lint" in form:
                sections["Linting"].append(line)
            elif "typescript" in form or "tsconfig" in form:
                sections["TypeScript"].append(line)
            elif form.startswith(("editor.", "files.", "indentation=", "quotes=", "semicolons=")):
                sections["Editor"].append(line)
            else:
                sections["Project Context"].append(line)

        defaults = {
            "Project Context": "- Optimizely development project; prefer official Optimizely patterns",
            "Editor": "- editor.formatOnSave=true",
            "TypeScript": "- Prefer TypeScript with strict mode for SDK integrations",
            "Linting": "- Use ESLint with Prettier for consistent formatting",
            "MCP": "- Use the optidev_* tools for Optimizely context",
        }
        lines = [f"# {PROPOSED_FILE}", ""]
        for title, entries in sections.items():
            lines.append(f"## {title}")
            lines.extend(list(dict.fromkeys(entries)) or [defaults[title]])
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    @staticmethod
    def render_diff(sources: list[RawRuleFile], proposed: str) -> str:
        on_disk = [source for source in sources if not source.relative_path.startswith("inline:")]
        if on_disk:
            strongest = max(on_disk, key=lambda source: precedence_for(source.relative_path)[1])
            before = strongest.content.splitlines()
            from_file = f"a/{strongest.relative_path}"
        else:
            before = []
            from_file = "/dev/null"
        diff = difflib.unified_diff(
            before,
            proposed.splitlines(),
            fromfile=from_file,
            tofile=f"b/{PROPOSED_FILE}",
            lineterm="",
        )
        return "\n".join(diff)
