"""Rule-file discovery and per-format directive parsing."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from opti_context.config import RuleConfig
from opti_context.types import RawRuleFile

LOGGER = logging.getLogger(__name__)

KNOWN_RULE_FILES: tuple[str, ...] = (
    ".cursorrules",
    ".cursor-rules",
    "cursor-rules.md",
    ".cursor/mcp.json",
    ".vscode/settings.json",
    ".vscode/extensions.json",
)

# (start directory, file-name pattern) pairs walked up to ``RuleConfig.max_depth``.
RECURSIVE_RULE_LOCATIONS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("rules", re.compile(r"\.(md|json)$", re.IGNORECASE)),
    ("docs", re.compile(r"\.rules\.md$", re.IGNORECASE)),
    (".cursor", re.compile(r"\.(json|md)$", re.IGNORECASE)),
)

_BULLET = re.compile(r"^(?:[-*+]|\d+[.)])\s+(.*)$")
_KEY_VALUE = re.compile(r"^[A-Za-z_@][\w.@/-]*\s*[:=]\s*\S")
_FENCE = re.compile(r"^(```|~~~)")
_URL_START = re.compile(r"^[A-Za-z][\w+.-]*://")
_JSON_LINE_COMMENT = re.compile(r"^\s*//.*$", re.MULTILINE)


@dataclass(frozen=True, slots=True)
class ParsedDirective:
    text: str
    line: int
    section: str | None = None


@dataclass(slots=True)
class ReadOutcome:
    files: list[RawRuleFile] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class RuleParser(ABC):
    """Base parser turning one rule source into directives."""

    kind: str = "text"

    @abstractmethod
    def parse(self, rule_file: RawRuleFile) -> list[ParsedDirective]:
        """Return the directives found in ``rule_file``."""


class TextRuleParser(RuleParser):
    """Markdown/plain rule files: bullets, numbered items and ``key: value`` lines."""

    kind = "text"

    def parse(self, rule_file: RawRuleFile) -> list[ParsedDirective]:
        directives: list[ParsedDirective] = []
        section: str | None = None
        in_fence = False
        for number, raw_line in enumerate(rule_file.content.splitlines(), start=1):
            line = raw_line.strip()
            if _FENCE.match(line):
                in_fence = not in_fence
                continue
            if in_fence or not line:
                continue
            if line.startswith("#"):
                section = line.lstrip("#").strip() or None
                continue
            bullet = _BULLET.match(line)
            if bullet:
                directives.append(ParsedDirective(bullet.group(1).strip(), number, section))
            elif line in {"-", "*", "+"}:
                directives.append(ParsedDirective("", number, section))
            elif _KEY_VALUE.match(line) and not _URL_START.match(line):
                directives.append(ParsedDirective(line, number, section))
        return directives


class JsonRuleParser(RuleParser):
    """JSON settings files flattened into ``dotted.key=value`` directives."""

    kind = "json"

    def parse(self, rule_file: RawRuleFile) -> list[ParsedDirective]:
        payload: Any = json.loads(_JSON_LINE_COMMENT.sub("", rule_file.content) or "{}")
        directives: list[ParsedDirective] = []
        self._flatten(payload, "", directives)
        return directives

    def _flatten(self, value: Any, prefix: str, out: list[ParsedDirective]) -> None:
        if isinstance(value, dict):
            if not value and prefix:
                out.append(ParsedDirective(f"{prefix}=", len(out) + 1))
            for key, item in value.items():
                self._flatten(item, f"{prefix}.{key}" if prefix else str(key), out)
            return
        if isinstance(value, list):
            rendered = json.dumps(value, sort_keys=True) if value else ""
            out.append(ParsedDirective(f"{prefix}={rendered}", len(out) + 1))
            return
        if value is None:
            out.append(ParsedDirective(f"{prefix}=", len(out) + 1))
            return
        rendered = json.dumps(value) if isinstance(value, bool) else str(value)
        out.append(ParsedDirective(f"{prefix}={rendered}", len(out) + 1))


class RuleParserRegistry:
    """Maps rule file names to parser implementations."""

    def __init__(self) -> None:
        self._json = JsonRuleParser()
        self._text = TextRuleParser()

    def parser_for(self, relative_path: str) -> RuleParser:
        lowered = relative_path.lower()
        if lowered.endswith((".json", ".code-workspace")):
            return self._json
        return self._text

    def parse(self, rule_file: RawRuleFile) -> list[ParsedDirective]:
        return self.parser_for(rule_file.relative_path).parse(rule_file)


class RuleFileReader:
    """Discovers and reads rule files under a project root.

    Missing files are skipped silently; unreadable ones are skipped with a
    warning recorded in ``ReadOutcome.skipped``.
    """

    def __init__(
        self,
        config: RuleConfig | None = None,
        parsers: RuleParserRegistry | None = None,
    ) -> None:
        self.config = config or RuleConfig()
        self.parsers = parsers or RuleParserRegistry()

    def discover(self, project_path: str | Path) -> list[str]:
        root = Path(project_path)
        if not root.is_dir():
            return []

        found: list[str] = [name for name in KNOWN_RULE_FILES if (root / name).is_file()]
        found.extend(sorted(p.name for p in root.glob("*.code-workspace") if p.is_file()))

        for directory, pattern in RECURSIVE_RULE_LOCATIONS:
            start = root / directory
            if start.is_dir():
                for path in self._walk(start, pattern, depth=0):
                    relative = path.relative_to(root).as_posix()
                    if relative not in found:
                        found.append(relative)
        return found

    def read(
        self,
        project_path: str | Path | None,
        inline_rules: list[str] | None = None,
    ) -> ReadOutcome:
        outcome = ReadOutcome()
        for index, text in enumerate(inline_rules or []):
            if isinstance(text, str) and text.strip():
                outcome.files.append(RawRuleFile(relative_path=f"inline:{index}", content=text, kind="text"))

        if project_path is None:
            return outcome

        root = Path(project_path)
        for relative in self.discover(root):
            path = root / relative
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                LOGGER.warning("Skipping unreadable rule file %s: %s", path, exc)
                outcome.skipped.append(relative)
                continue
            outcome.files.append(
                RawRuleFile(
                    relative_path=relative,
                    content=content,
                    kind=self.parsers.parser_for(relative).kind,
                    path=path,
                )
            )
        LOGGER.debug("Read %d rule sources from %s", len(outcome.files), root)
        return outcome

    def _walk(self, directory: Path, pattern: re.Pattern[str], depth: int) -> list[Path]:
        if depth > self.config.max_depth:
            return []
        try:
            entries = sorted(directory.iterdir(), key=lambda item: item.name)
        except OSError as exc:
            LOGGER.warning("Cannot list rule directory %s: %s", directory, exc)
            return []
        matches: list[Path] = []
        for entry in entries:
            if entry.is_dir():
                matches.extend(self._walk(entry, pattern, depth + 1))
            elif pattern.search(entry.name):
                matches.append(entry)
        return matches
