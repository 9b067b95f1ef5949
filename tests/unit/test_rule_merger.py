import json
from pathlib import Path

from opti_context.config import RuleConfig
from opti_context.rules.merger import RuleMerger, normalize_directive, precedence_for
from opti_context.rules.reader import JsonRuleParser, RuleFileReader, TextRuleParser
from opti_context.types import RawRuleFile, RuleTier


def _write(root: Path, relative: str, content: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_contradicting_directives_across_files(tmp_path: Path) -> None:
    _write(tmp_path, ".cursorrules", "# Style\n- Use tabs for indentation\n- prefer class components\n-\n")
    _write(
        tmp_path,
        ".vscode/settings.json",
        json.dumps({"editor.insertSpaces": True, "editor.formatOnSave": True}),
    )

    analysis = RuleMerger().analyze(tmp_path)

    assert analysis.found_files == [".cursorrules", ".vscode/settings.json"]
    assert len(analysis.conflicts) == 1
    conflict = analysis.conflicts[0]
    assert conflict.description == "Conflicting indentation settings (tabs vs spaces)"
    assert conflict.directive_ids[0].startswith(".cursorrules:")
    assert "indentation=tabs" in analysis.normalized_directives
    assert "indentation=spaces" not in analysis.normalized_directives
    assert analysis.merge_notes[0] == "Primary source: .cursorrules"

    cleanups = [item.suggestion for item in analysis.suggested_enhancements if item.type == "cleanup"]
    assert any(item.startswith("Remove empty directive in .cursorrules") for item in cleanups)
    assert any("Remove overridden directive 'editor.insertSpaces=true'" in item for item in cleanups)


def test_duplicates_keep_strongest_source(tmp_path: Path) -> None:
    _write(tmp_path, ".cursorrules", "- Use tabs for indentation\n")

    analysis = RuleMerger().analyze(tmp_path, ["- use   TABS for indentation."])

    assert analysis.found_files == ["inline:0", ".cursorrules"]
    assert analysis.normalized_directives == ["indentation=tabs"]
    assert "Deduplicated 'indentation=tabs' from .cursorrules; kept inline:0" in analysis.merge_notes
    assert not analysis.conflicts


def test_antagonistic_free_text_directives() -> None:
    analysis = RuleMerger().analyze_files(
        [
            RawRuleFile("inline:0", "- Prefer functional components", "text"),
            RawRuleFile("rules/react.md", "- Prefer class components", "text"),
        ]
    )

    assert [conflict.description for conflict in analysis.conflicts] == [
        "Contradicting component style directives"
    ]
    assert analysis.conflicts[0].directive_ids == ("inline:0:1", "rules/react.md:1")
    assert "prefer class components" not in analysis.normalized_directives


def test_proposed_rules_and_diff_against_strongest_source(tmp_path: Path) -> None:
    _write(tmp_path, ".cursorrules", "- Use tabs for indentation\n- Use ESLint with the recommended config\n")

    analysis = RuleMerger().analyze(tmp_path)

    assert analysis.proposed_cursor_rules.startswith("# .cursorrules\n")
    assert "## Editor\n- Use tabs for indentation" in analysis.proposed_cursor_rules
    assert "## Linting\n- Use ESLint with the recommended config" in analysis.proposed_cursor_rules
    diff_lines = analysis.proposed_cursor_rules_diff.splitlines()
    assert diff_lines[0] == "--- a/.cursorrules"
    assert diff_lines[1] == "+++ b/.cursorrules"
    assert "ESLint is configured without Prettier; formatting rules may drift" in analysis.lint_warnings


def test_no_sources_proposes_new_file() -> None:
    analysis = RuleMerger().analyze_files([])

    assert analysis.found_files == []
    assert analysis.relevance == 0.0
    assert analysis.merge_notes == ["No rule files found; proposing a new .cursorrules"]
    assert analysis.proposed_cursor_rules_diff.startswith("--- /dev/null\n+++ b/.cursorrules")
    suggestions = [item.suggestion for item in analysis.suggested_enhancements]
    assert suggestions[0] == "Add Optimizely-specific file associations and snippets"
    assert "Create a consolidated .cursorrules with key directives" in suggestions


def test_unreadable_and_malformed_files_become_warnings(tmp_path: Path) -> None:
    (tmp_path / ".cursorrules").write_bytes(b"\xff\xfe\x00broken")
    _write(tmp_path, ".vscode/settings.json", "{ not json")

    analysis = RuleMerger().analyze(tmp_path)

    assert "Skipped unreadable rule file .cursorrules" in analysis.lint_warnings
    assert any(warning.startswith("Could not parse .vscode/settings.json") for warning in analysis.lint_warnings)
    assert analysis.found_files == [".vscode/settings.json"]


def test_empty_rule_file_gets_cleanup(tmp_path: Path) -> None:
    _write(tmp_path, ".cursor-rules", "\n")

    analysis = RuleMerger().analyze(tmp_path)

    assert any(
        item.suggestion == "Remove empty rule file .cursor-rules" for item in analysis.suggested_enhancements
    )


def test_recursive_discovery_is_bounded(tmp_path: Path) -> None:
    _write(tmp_path, "rules/frontend/react.md", "- prefer hooks\n")
    _write(tmp_path, "rules/1/2/3/kept.md", "- kept\n")
    _write(tmp_path, "rules/1/2/3/4/too-deep.md", "- too deep\n")
    _write(tmp_path, "docs/team.rules.md", "- team rule\n")
    _write(tmp_path, "docs/readme.md", "- not a rule file\n")
    _write(tmp_path, "editor.code-workspace", '{"settings": {"editor.tabSize": 2}}')

    found = RuleFileReader(RuleConfig(max_depth=3)).discover(tmp_path)

    assert "editor.code-workspace" in found
    assert "rules/frontend/react.md" in found
    assert "rules/1/2/3/kept.md" in found
    assert "rules/1/2/3/4/too-deep.md" not in found
    assert "docs/team.rules.md" in found
    assert "docs/readme.md" not in found
    assert RuleFileReader().discover(tmp_path / "missing") == []


def test_text_parser_sections_and_fences() -> None:
    content = "\n".join(
        [
            "# Editor",
            "- Use 2 spaces",
            "1. Always use semicolons",
            "tabSize: 2",
            "https://example.com/not-a-directive",
            "```",
            "- inside a fence",
            "```",
            "plain prose is ignored",
        ]
    )

    parsed = TextRuleParser().parse(RawRuleFile(".cursorrules", content, "text"))

    assert [(item.text, item.line, item.section) for item in parsed] == [
        ("Use 2 spaces", 2, "Editor"),
        ("Always use semicolons", 3, "Editor"),
        ("tabSize: 2", 4, "Editor"),
    ]


def test_json_parser_flattens_and_strips_comments() -> None:
    content = '// workspace settings\n{"editor": {"formatOnSave": false, "rulers": [80]}, "todo": null}'

    parsed = JsonRuleParser().parse(RawRuleFile(".vscode/settings.json", content, "json"))

    assert [item.text for item in parsed] == [
        "editor.formatOnSave=false",
        "editor.rulers=[80]",
        "todo=",
    ]


def test_normalization_and_precedence() -> None:
    assert normalize_directive("  Use   Tabs. ") == "indentation=tabs"
    assert normalize_directive("settings.editor.tabSize: 2") == "editor.tabsize=2"
    assert normalize_directive("prettier.singleQuote=true") == "quotes=single"
    assert normalize_directive("https://example.com") == "https://example.com"
    assert normalize_directive("`Format on save`") == "editor.formatonsave=true"

    assert precedence_for("inline:0") == (RuleTier.EXPLICIT, 70)
    assert precedence_for(".cursorrules") == (RuleTier.EXPLICIT, 60)
    assert precedence_for("rules/react.md") == (RuleTier.SHARED, 25)
    assert precedence_for("team.code-workspace") == (RuleTier.INFERRED, 10)
    assert precedence_for("misc/other.md") == (RuleTier.INFERRED, 5)


def test_labelled_prose_bullets_are_not_settings(tmp_path: Path) -> None:
    _write(
        tmp_path,
        ".cursorrules",
        "- Naming: use PascalCase for classes\n- Naming: prefix interfaces with I\n- indentation: tabs\n",
    )
    _write(tmp_path, ".vscode/settings.json", json.dumps({"editor.insertSpaces": True}))

    analysis = RuleMerger().analyze(tmp_path)

    assert [conflict.description for conflict in analysis.conflicts] == [
        "Conflicting indentation settings (tabs vs spaces)"
    ]
    assert "naming: use pascalcase for classes" in analysis.normalized_directives
    assert "naming: prefix interfaces with i" in analysis.normalized_directives
    assert "- Naming: use PascalCase for classes" in analysis.proposed_cursor_rules
    assert "- Naming: prefix interfaces with I" in analysis.proposed_cursor_rules
    assert normalize_directive("Naming: use PascalCase") == "naming: use pascalcase"
    assert normalize_directive("naming=pascal", structured=True) == "naming=pascal"
