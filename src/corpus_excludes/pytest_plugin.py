"""pytest plugin: skip collected tests listed in exclusion definitions.

Enabled with ``--corpus-excludes DIR`` or the ``CORPUS_EXCLUDES_DIR``
environment variable. The suite of a test is its class name, or the module
stem for plain test functions; the test id is the pytest item name, so
parametrized ids such as ``test_inspect[UTF-16]`` are matched verbatim.
"""

from __future__ import annotations

import os

import pytest

from corpus_excludes.config import ENV_DIR, load_config
from corpus_excludes.errors import ExcludesError
from corpus_excludes.loader import LOAD_MODES, load_directory
from corpus_excludes.registry import DUPLICATE_POLICIES
from corpus_excludes.report import RunReport

_REPORT_KEY = pytest.StashKey[RunReport]()
_SUMMARY_DIR_KEY = pytest.StashKey[object]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("corpus-excludes", "per-suite test exclusions")
    group.addoption(
        "--corpus-excludes",
        dest="corpus_excludes_dir",
        default=None,
        help="Directory of exclusion definition files.",
    )
    group.addoption(
        "--corpus-excludes-mode",
        dest="corpus_excludes_mode",
        choices=LOAD_MODES,
        default=None,
        help="strict aborts on malformed files; best-effort ignores them.",
    )
    group.addoption(
        "--corpus-excludes-duplicates",
        dest="corpus_excludes_duplicates",
        choices=DUPLICATE_POLICIES,
        default=None,
        help="Policy for a test id declared twice in one suite.",
    )


def suite_and_test_id(item: pytest.Item) -> tuple[str, str]:
    cls = getattr(item, "cls", None)
    if cls is not None:
        return cls.__name__, item.name
    return item.path.stem, item.name


def pytest_configure(config: pytest.Config) -> None:
    option_dir = config.getoption("corpus_excludes_dir")
    if not option_dir and not os.environ.get(ENV_DIR, "").strip():
        return
    try:
        settings = load_config(config.rootpath).with_overrides(
            excludes_dir=option_dir,
            mode=config.getoption("corpus_excludes_mode"),
            duplicates=config.getoption("corpus_excludes_duplicates"),
        )
        result = load_directory(
            settings.excludes_dir, mode=settings.mode, duplicates=settings.duplicates
        )
    except ExcludesError as exc:
        raise pytest.UsageError(f"corpus-excludes: {exc}") from exc
    config.stash[_REPORT_KEY] = RunReport(result.registry)
    config.stash[_SUMMARY_DIR_KEY] = settings.summary_dir


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    report = config.stash.get(_REPORT_KEY, None)
    if report is None:
        return
    for item in items:
        reason = report.registry.is_excluded(*suite_and_test_id(item))
        if reason is not None:
            item.add_marker(pytest.mark.skip(reason=f"excluded: {reason}"))


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_setup(item: pytest.Item):
    # Deselected items never reach setup, so only tests that run are recorded.
    report = item.config.stash.get(_REPORT_KEY, None)
    if report is not None:
        report.check(*suite_and_test_id(item))
    yield


def pytest_terminal_summary(terminalreporter, exitstatus, config: pytest.Config) -> None:
    report = config.stash.get(_REPORT_KEY, None)
    if report is None:
        return
    summary = report.summary()
    terminalreporter.section("corpus excludes")
    terminalreporter.write_line(
        f"{summary['skipped']} skipped by exclusions, "
        f"{summary['configured_total']} configured, {len(summary['stale'])} stale"
    )
    for entry in summary["stale"]:
        terminalreporter.write_line(
            f"stale: {entry['suite']}#{entry['test']}: {entry['reason']}"
        )
    summary_dir = config.stash.get(_SUMMARY_DIR_KEY, None)
    if summary_dir is not None:
        json_path, _ = report.write(summary_dir)
        terminalreporter.write_line(f"wrote {json_path}")
