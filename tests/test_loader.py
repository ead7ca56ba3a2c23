from __future__ import annotations

import io
import shutil
from pathlib import Path

import pytest

from corpus_excludes.errors import ConfigError, DuplicateExclusionError, LoadError
from corpus_excludes.loader import (
    collect_definition_files,
    load_directory,
    parse_exclude_dsl,
    parse_exclude_toml,
    suite_name_for,
)


FIXTURES = Path(__file__).resolve().parent / "fixtures" / "excludes"


def _copy_fixtures(tmp_path: Path) -> Path:
    root = tmp_path / "excludes"
    shutil.copytree(FIXTURES, root)
    return root


def test_loads_repo_fixture_definitions() -> None:
    result = load_directory(FIXTURES)
    registry = result.registry
    assert result.ok
    assert registry.suites() == ["TestThread", "TestTranscode"]
    assert len(registry.reasons_for("TestThread")) == 43
    assert len(registry.reasons_for("TestTranscode")) == 27
    assert registry.is_excluded("TestThread", "test_exit") == "exits the whole process"
    assert registry.is_excluded("TestThread", "test_handle_interrupt") == "hangs"
    assert (
        registry.is_excluded("TestThread", "test_handle_interrupted?")
        == "needs investigation"
    )
    assert (
        registry.is_excluded("TestTranscode", "test_pseudo_encoding_inspect(UTF-16)")
        == "needs investigation"
    )
    assert (
        registry.is_excluded("TestTranscode", "test_unicode_public_review_issue_121")
        == "broken via charset replacement"
    )
    assert registry.is_excluded("TestTranscode", "test_ascii") is None


def test_fixture_order_matches_file_order() -> None:
    registry = load_directory(FIXTURES).registry
    first, second = list(registry.reasons_for("TestTranscode"))[:2]
    assert first == ("test_Big5_UAO", "needs investigation")
    assert second == ("test_TIS_620", "needs investigation")


def test_dsl_symbol_and_string_forms() -> None:
    text = "\n".join(
        [
            "# leading comment",
            "",
            "exclude :test_plain, \"plain\"",
            "exclude :'test_quoted(UTF-16)', 'single'",
            'exclude :"test_dq, with comma", "double"',
            'exclude "test_string_name", "string name"  # trailing comment',
            'exclude(:test_parens, "parens")',
            r'exclude :test_escape, "say \"hi\" #1"',
            r"exclude :test_bang!, 'it\'s'",
        ]
    )
    definition = parse_exclude_dsl(text, "TestForms", source="TestForms.rb")
    pairs = [(entry.test_id, entry.reason) for entry in definition.entries]
    assert pairs == [
        ("test_plain", "plain"),
        ("test_quoted(UTF-16)", "single"),
        ("test_dq, with comma", "double"),
        ("test_string_name", "string name"),
        ("test_parens", "parens"),
        ("test_escape", 'say "hi" #1'),
        ("test_bang!", "it's"),
    ]
    assert definition.entries[0].line == 3
    assert definition.entries[0].source == "TestForms.rb"


def test_dsl_codepoint_escapes_in_double_quotes() -> None:
    text = "\n".join(
        [
            r'exclude :"test_\u00e9", "unicode"',
            r'exclude :"test_\u{1F600}", "braced"',
            r'exclude :"test_\x41", "hex"',
            r"exclude :'test_\u00e9', 'single quotes keep escapes'",
        ]
    )
    definition = parse_exclude_dsl(text, "TestEscapes")
    assert [entry.test_id for entry in definition.entries] == [
        "test_\u00e9",
        "test_\U0001f600",
        "test_A",
        "test_\\u00e9",
    ]


@pytest.mark.parametrize(
    ("line", "message"),
    [
        ("exclude :test_a", "missing reason"),
        ("exclude :test_a,", "missing reason"),
        ("exclude :test_a, # nothing", "missing reason"),
        ("exclude :'test_a, \"r\"", "unterminated string literal"),
        ('exclude :test_a, "reason', "unterminated string literal"),
        ("exclude :test_a, reason", "reason must be a string literal"),
        ('exclude :test_a "reason"', "expected ','"),
        ('exclude :test_a, "r" extra', "unexpected trailing content"),
        ('exclude(:test_a, "r"', "unterminated argument list"),
        ('include :test_a, "r"', "expected an exclude statement"),
        ('exclude test_a, "r"', "expected a test name"),
        ('exclude: test_a, "r"', "expected a test name"),
        (r'exclude :"test_\u00e", "r"', "invalid escape sequence"),
        (r'exclude :"test_\u{110000}", "r"', "invalid escape sequence"),
    ],
)
def test_dsl_malformed_lines(line: str, message: str) -> None:
    text = 'exclude :test_ok, "fine"\n' + line + "\n"
    with pytest.raises(LoadError, match=message) as excinfo:
        parse_exclude_dsl(text, "TestBad", source="excludes/TestBad.rb")
    err = excinfo.value
    assert err.source == "excludes/TestBad.rb"
    assert err.line == 2
    assert err.record == line.strip()
    assert "excludes/TestBad.rb:2" in str(err)


def test_toml_definitions() -> None:
    text = (
        "[[exclude]]\n"
        'test = "test_pseudo_encoding_inspect(UTF-32)"\n'
        'reason = "needs investigation"\n'
        "\n"
        "[[exclude]]\n"
        'test = "test_fallback"\n'
        'reason = ""\n'
    )
    definition = parse_exclude_toml(text, "TestTranscode", source="TestTranscode.toml")
    assert [(e.test_id, e.reason) for e in definition.entries] == [
        ("test_pseudo_encoding_inspect(UTF-32)", "needs investigation"),
        ("test_fallback", ""),
    ]


def test_toml_without_records_is_empty_suite() -> None:
    definition = parse_exclude_toml("", "TestEmpty")
    assert definition.entries == ()


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('[[exclude]]\ntest = "test_a"\n', "missing reason"),
        ('[[exclude]]\nreason = "r"\n', "missing test name"),
        ('[[exclude]]\ntest = 1\nreason = "r"\n', "test must be a string"),
        ('[[exclude]]\ntest = "t"\nreason = 3\n', "reason must be a string"),
        ('exclude = "nope"\n', "array of tables"),
        ("[[exclude]\n", "invalid TOML"),
    ],
)
def test_toml_malformed(text: str, message: str) -> None:
    with pytest.raises(LoadError, match=message) as excinfo:
        parse_exclude_toml(text, "TestBad", source="TestBad.toml")
    assert excinfo.value.source == "TestBad.toml"


def test_suite_name_from_nested_path(tmp_path: Path) -> None:
    root = tmp_path / "excludes"
    path = root / "Psych" / "TestYAML.rb"
    assert suite_name_for(path, root) == "Psych::TestYAML"
    assert suite_name_for(root / "TestThread.rb", root) == "TestThread"


def test_nested_directories_and_mixed_formats(tmp_path: Path) -> None:
    root = _copy_fixtures(tmp_path)
    (root / "Psych").mkdir()
    (root / "Psych" / "TestYAML.rb").write_text('exclude :test_load, "psych"\n')
    (root / "TestEmpty.rb").write_text("# nothing excluded yet\n")
    (root / "TestArray.toml").write_text(
        '[[exclude]]\ntest = "test_pack"\nreason = "pack"\n'
    )
    (root / "README.md").write_text("not a definition")
    registry = load_directory(root).registry
    assert registry.suites() == [
        "Psych::TestYAML",
        "TestArray",
        "TestEmpty",
        "TestThread",
        "TestTranscode",
    ]
    assert registry.is_excluded("Psych::TestYAML", "test_load") == "psych"
    assert registry.is_excluded("TestArray", "test_pack") == "pack"
    assert registry.has_suite("TestEmpty")
    assert registry.is_excluded("TestEmpty", "test_load") is None


def test_collect_definition_files_is_sorted(tmp_path: Path) -> None:
    root = _copy_fixtures(tmp_path)
    files = collect_definition_files(root)
    assert [path.name for path in files] == ["TestThread.rb", "TestTranscode.rb"]


def test_missing_directory_is_load_error(tmp_path: Path) -> None:
    with pytest.raises(LoadError, match="not found"):
        load_directory(tmp_path / "missing")


def test_strict_mode_names_offending_file(tmp_path: Path) -> None:
    root = _copy_fixtures(tmp_path)
    bad = root / "TestBroken.rb"
    bad.write_text('exclude :test_ok, "ok"\nexclude :test_bad\n')
    with pytest.raises(LoadError) as excinfo:
        load_directory(root)
    assert excinfo.value.source == str(bad)
    assert excinfo.value.line == 2
    assert excinfo.value.record == "exclude :test_bad"


def test_best_effort_skips_broken_files(tmp_path: Path) -> None:
    root = _copy_fixtures(tmp_path)
    (root / "TestBroken.rb").write_text('exclude :test_bad, "unterminated\n')
    log = io.StringIO()
    result = load_directory(root, mode="best-effort", log_handle=log)
    assert not result.ok
    assert len(result.errors) == 1
    assert "TestBroken.rb" in str(result.errors[0])
    assert "TestBroken.rb" in log.getvalue()
    assert not result.registry.has_suite("TestBroken")
    assert result.registry.is_excluded("TestThread", "test_exit") is not None


def test_duplicate_within_file(tmp_path: Path) -> None:
    root = tmp_path / "excludes"
    root.mkdir()
    (root / "TestThread.rb").write_text(
        'exclude :test_exit, "one"\nexclude :test_exit, "two"\n'
    )
    with pytest.raises(DuplicateExclusionError) as excinfo:
        load_directory(root)
    assert excinfo.value.line == 2
    registry = load_directory(root, duplicates="last").registry
    assert registry.is_excluded("TestThread", "test_exit") == "two"


def test_duplicate_across_formats_for_same_suite(tmp_path: Path) -> None:
    root = tmp_path / "excludes"
    root.mkdir()
    (root / "TestThread.rb").write_text('exclude :test_exit, "rb"\n')
    (root / "TestThread.toml").write_text(
        '[[exclude]]\ntest = "test_exit"\nreason = "toml"\n'
    )
    with pytest.raises(DuplicateExclusionError):
        load_directory(root)
    result = load_directory(root, mode="best-effort", log_handle=io.StringIO())
    assert result.registry.is_excluded("TestThread", "test_exit") == "rb"
    assert len(result.errors) == 1
    last = load_directory(root, duplicates="last").registry
    assert last.is_excluded("TestThread", "test_exit") == "toml"


def test_unknown_mode_is_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_directory(tmp_path, mode="lenient")  # type: ignore[arg-type]
