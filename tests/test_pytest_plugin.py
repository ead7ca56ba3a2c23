from __future__ import annotations

import json
from pathlib import Path

import pytest

pytest_plugins = ("pytester",)

PLUGIN = "corpus_excludes.pytest_plugin"

CORPUS = """
import pytest


class TestTranscode:
    def test_fallback(self):
        raise AssertionError("fallback is not implemented")

    @pytest.mark.parametrize("enc", ["UTF-16", "UTF-32"])
    def test_pseudo_encoding_inspect(self, enc):
        assert enc == "UTF-32"

    def test_ascii(self):
        assert True


def test_module_level():
    raise AssertionError("excluded by module stem")
"""

EXCLUDES_RB = """\
exclude :test_fallback, "fallback not implemented"
exclude :'test_pseudo_encoding_inspect[UTF-16]', "needs investigation"
exclude :test_never_collected, "gone upstream"
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "CORPUS_EXCLUDES_DIR",
        "CORPUS_EXCLUDES_MODE",
        "CORPUS_EXCLUDES_DUPLICATES",
        "CORPUS_EXCLUDES_SUMMARY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def corpus(pytester: pytest.Pytester) -> Path:
    pytester.makepyfile(test_corpus=CORPUS)
    excludes = pytester.path / "excludes"
    excludes.mkdir()
    (excludes / "TestTranscode.rb").write_text(EXCLUDES_RB)
    (excludes / "test_corpus.toml").write_text(
        '[[exclude]]\ntest = "test_module_level"\nreason = "module function"\n'
    )
    return excludes


def test_excluded_tests_are_skipped_with_reason(
    pytester: pytest.Pytester, corpus: Path
) -> None:
    result = pytester.runpytest("-p", PLUGIN, "--corpus-excludes", str(corpus), "-rs")
    result.assert_outcomes(passed=2, skipped=3)
    for reason in ("fallback not implemented", "needs investigation", "module function"):
        result.stdout.fnmatch_lines([f"*excluded: {reason}*"])
    result.stdout.fnmatch_lines(
        [
            "*3 skipped by exclusions, 4 configured, 1 stale*",
            "*stale: TestTranscode#test_never_collected: gone upstream*",
        ]
    )


def test_deselected_tests_are_not_counted_as_skipped(
    pytester: pytest.Pytester, corpus: Path, monkeypatch
) -> None:
    out_dir = pytester.path / "summary"
    monkeypatch.setenv("CORPUS_EXCLUDES_SUMMARY", str(out_dir))
    result = pytester.runpytest(
        "-p",
        PLUGIN,
        "--corpus-excludes",
        str(corpus),
        "-k",
        "test_ascii or test_fallback",
    )
    result.assert_outcomes(passed=1, skipped=1, deselected=3)
    result.stdout.fnmatch_lines(["*1 skipped by exclusions, 4 configured, 3 stale*"])
    payload = json.loads((out_dir / "summary.json").read_text())
    assert [entry["test"] for entry in payload["skipped_tests"]] == ["test_fallback"]


def test_plugin_inactive_without_directory(
    pytester: pytest.Pytester, corpus: Path
) -> None:
    result = pytester.runpytest("-p", PLUGIN)
    result.assert_outcomes(passed=2, failed=3)


def test_environment_variable_enables_plugin(
    pytester: pytest.Pytester, corpus: Path, monkeypatch
) -> None:
    monkeypatch.setenv("CORPUS_EXCLUDES_DIR", str(corpus))
    result = pytester.runpytest("-p", PLUGIN)
    result.assert_outcomes(passed=2, skipped=3)


def test_malformed_definitions_are_usage_error(
    pytester: pytest.Pytester, corpus: Path
) -> None:
    (corpus / "TestBroken.rb").write_text("exclude :test_x\n")
    result = pytester.runpytest("-p", PLUGIN, "--corpus-excludes", str(corpus))
    assert result.ret == pytest.ExitCode.USAGE_ERROR
    result.stderr.fnmatch_lines(["*corpus-excludes:*TestBroken.rb:1: missing reason*"])

    result = pytester.runpytest(
        "-p",
        PLUGIN,
        "--corpus-excludes",
        str(corpus),
        "--corpus-excludes-mode",
        "best-effort",
    )
    result.assert_outcomes(passed=2, skipped=3)


def test_summary_written_when_configured(
    pytester: pytest.Pytester, corpus: Path, monkeypatch
) -> None:
    out_dir = pytester.path / "summary"
    monkeypatch.setenv("CORPUS_EXCLUDES_SUMMARY", str(out_dir))
    result = pytester.runpytest("-p", PLUGIN, "--corpus-excludes", str(corpus))
    result.assert_outcomes(passed=2, skipped=3)
    payload = json.loads((out_dir / "summary.json").read_text())
    assert payload["skipped"] == 3
    assert [entry["test"] for entry in payload["stale"]] == ["test_never_collected"]
