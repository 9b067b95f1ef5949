"""Line-oriented scanner for fenced code blocks in markdown."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

_OPEN_FENCE = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})\s*(?P<info>[^`]*)$")
_HEADING = re.compile(r"^#+\s*")

DEFAULT_DESCRIPTION = "Code example from documentation"


@dataclass(frozen=True, slots=True)
class FencedBlock:
    language: str
    code: str
    description: str
    start_line: int
    closed: bool = True


class MarkdownScanner:
    """Extracts fenced code blocks with their nearest description.

    A block closes on a fence of the same character at least as long as the
    opener. An unclosed block runs to the end of the document and is
    reported with ``closed=False``.
    """

    def __init__(self, description_chars: int = 100, min_description_chars: int = 10) -> None:
        self.description_chars = description_chars
        self.min_description_chars = min_description_chars

    def scan(self, text: str) -> list[FencedBlock]:
        return list(self.iter_blocks(text))

    def iter_blocks(self, text: str) -> Iterator[FencedBlock]:
        lines = (text or "").splitlines()
        index = 0
        while index < len(lines):
            opener = _OPEN_FENCE.match(lines[index])
            if opener is None:
                index += 1
                continue

            fence = opener.group("fence")
            info = opener.group("info").strip()
            language = info.split()[0] if info else "text"
            body: list[str] = []
            closed = False
            cursor = index + 1
            while cursor < len(lines):
                candidate = lines[cursor].strip()
                if candidate.startswith(fence[0] * len(fence)) and not candidate.strip(fence[0]):
                    closed = True
                    break
                body.append(lines[cursor])
                cursor += 1

            yield FencedBlock(
                language=language,
                code="\n".join(body).strip(),
                description=self._describe(lines[:index]),
                start_line=index + 1,
                closed=closed,
            )
            index = cursor + 1

    def _describe(self, preceding: list[str]) -> str:
        in_fence = False
        for line in reversed(preceding):
            stripped = line.strip()
            if _OPEN_FENCE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            if stripped.startswith("#") or len(stripped) > self.min_description_chars:
                return _HEADING.sub("", stripped)[: self.description_chars]
        return DEFAULT_DESCRIPTION
