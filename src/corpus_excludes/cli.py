import argparse
import json
import sys
from pathlib import Path
from typing import Any

from corpus_excludes.config import ExcludesConfig, load_config
from corpus_excludes.errors import ConfigError, LoadError
from corpus_excludes.loader import LOAD_MODES, LoadResult, load_directory
from corpus_excludes.log import emit_line, open_log_file
from corpus_excludes.registry import DUPLICATE_POLICIES, ExclusionRegistry


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dir",
        dest="excludes_dir",
        type=Path,
        default=None,
        help="Excludes directory (default: [tool.corpus-excludes] or test/excludes).",
    )
    parser.add_argument(
        "--mode",
        choices=LOAD_MODES,
        default=None,
        help="strict aborts on the first malformed file; best-effort skips it.",
    )
    parser.add_argument(
        "--duplicates",
        choices=DUPLICATE_POLICIES,
        default=None,
        help="Reject duplicate test ids or let the last declaration win.",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON output.")


def _resolve_config(args: argparse.Namespace) -> ExcludesConfig:
    return load_config().with_overrides(
        excludes_dir=args.excludes_dir,
        mode=args.mode,
        duplicates=args.duplicates,
    )


def _load(config: ExcludesConfig) -> LoadResult:
    result = load_directory(
        config.excludes_dir, mode=config.mode, duplicates=config.duplicates
    )
    for error in result.errors:
        print(f"warning: {error}", file=sys.stderr)
    return result


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def check(config: ExcludesConfig, as_json: bool) -> int:
    """Validate every definition file, reporting all failures, not just the first."""
    result = _load(config.with_overrides(mode="best-effort"))
    registry = result.registry
    if as_json:
        _emit_json(
            {
                "files": len(result.files),
                "suites": len(registry.suites()),
                "exclusions": len(registry),
                "errors": [str(error) for error in result.errors],
            }
        )
    else:
        emit_line(
            f"{len(result.files)} files, {len(registry.suites())} suites, "
            f"{len(registry)} exclusions"
        )
    return 0 if result.ok else 1


def query(registry: ExclusionRegistry, suite: str, test_id: str, as_json: bool) -> int:
    reason = registry.is_excluded(suite, test_id)
    if as_json:
        _emit_json(
            {
                "suite": suite,
                "test": test_id,
                "excluded": reason is not None,
                "reason": reason,
            }
        )
    elif reason is None:
        emit_line(f"{suite}#{test_id}: not excluded")
    else:
        emit_line(f"{suite}#{test_id}: {reason}")
    return 0 if reason is not None else 1


def list_exclusions(
    registry: ExclusionRegistry, suite: str | None, as_json: bool
) -> int:
    suites = [suite] if suite is not None else registry.suites()
    if suite is not None and not registry.has_suite(suite):
        print(f"Unknown suite: {suite}", file=sys.stderr)
    if as_json:
        _emit_json(
            {
                name: [
                    {"test": test_id, "reason": reason}
                    for test_id, reason in registry.reasons_for(name)
                ]
                for name in suites
            }
        )
        return 0
    for name in suites:
        reasons = registry.reasons_for(name)
        emit_line(f"{name} ({len(reasons)})")
        for test_id, reason in reasons:
            emit_line(f"  {test_id}: {reason}")
    return 0


def read_seen_file(path: Path) -> set[tuple[str, str]]:
    seen: set[tuple[str, str]] = set()
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        suite, sep, test_id = stripped.partition("#")
        if not sep:
            continue
        seen.add((suite, test_id))
    return seen


def stale(
    registry: ExclusionRegistry,
    seen_path: Path,
    as_json: bool,
    log_file: Path | None = None,
) -> int:
    try:
        seen = read_seen_file(seen_path)
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Failed to read {seen_path}: {exc}", file=sys.stderr)
        return 2
    entries = registry.stale(seen)
    with open_log_file(log_file) as log_handle:
        if as_json:
            payload = [
                {"suite": entry.suite, "test": entry.test_id, "reason": entry.reason}
                for entry in entries
            ]
            emit_line(json.dumps(payload, indent=2, sort_keys=True), log_handle)
            return 0
        for entry in entries:
            emit_line(f"{entry.suite}#{entry.test_id}: {entry.reason}", log_handle)
        emit_line(f"{len(entries)} stale exclusions", log_handle)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="corpus-excludes",
        description="Inspect per-suite test exclusion definitions.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check", help="Validate every exclusion definition file"
    )
    _add_common(check_parser)

    query_parser = subparsers.add_parser(
        "query", help="Show whether one test is excluded and why"
    )
    query_parser.add_argument("suite")
    query_parser.add_argument("test")
    _add_common(query_parser)

    list_parser = subparsers.add_parser("list", help="List configured exclusions")
    list_parser.add_argument("suite", nargs="?", default=None)
    _add_common(list_parser)

    stale_parser = subparsers.add_parser(
        "stale", help="List exclusions for tests that never ran"
    )
    stale_parser.add_argument(
        "--seen",
        type=Path,
        required=True,
        help="File with one 'Suite#test' line per test encountered.",
    )
    stale_parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also append the stale listing to this file.",
    )
    _add_common(stale_parser)

    args = parser.parse_args(argv)

    try:
        config = _resolve_config(args)
        if args.command == "check":
            return check(config, args.json)
        registry = _load(config).registry
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2
    except LoadError as exc:
        print(f"Failed to load exclusions: {exc}", file=sys.stderr)
        return 1

    if args.command == "query":
        return query(registry, args.suite, args.test, args.json)
    if args.command == "list":
        return list_exclusions(registry, args.suite, args.json)
    if args.command == "stale":
        return stale(registry, args.seen, args.json, args.log_file)

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
