"""Read per-suite exclusion files into registry definitions.

Two formats are understood, picked by file suffix:

``.rb``
    The excludes DSL, one statement per line::

        exclude :test_exit, "exits the whole process"
        exclude :'test_pseudo_encoding_inspect(UTF-16)', "needs investigation"

    The file is tokenized, never evaluated.

``.toml``
    An array of ``[[exclude]]`` tables with ``test`` and ``reason`` keys.

The suite name comes from the file path relative to the excludes root, with
directories joined by ``::`` (``Psych/TestYAML.rb`` -> ``Psych::TestYAML``).
"""

from __future__ import annotations

import io
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from corpus_excludes.errors import ConfigError, DuplicateExclusionError, LoadError
from corpus_excludes.log import log_line
from corpus_excludes.registry import (
    DUPLICATE_POLICIES,
    DuplicatePolicy,
    ExclusionEntry,
    ExclusionRegistry,
    SuiteDefinition,
    load,
)

LoadMode = Literal["strict", "best-effort"]
LOAD_MODES: tuple[str, ...] = ("strict", "best-effort")
DEFINITION_SUFFIXES: tuple[str, ...] = (".rb", ".toml")

_KEYWORD_RE = re.compile(r"exclude\b")
_BARE_SYMBOL_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*[?!=]?")
_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "s": " ",
    "e": "\x1b",
}
_CODEPOINT_ESCAPE_RE = re.compile(
    r"u\{([0-9A-Fa-f]{1,6})\}|u([0-9A-Fa-f]{4})|x([0-9A-Fa-f]{1,2})"
)


@dataclass
class LoadResult:
    registry: ExclusionRegistry
    files: list[Path] = field(default_factory=list)
    errors: list[LoadError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class _LineScanner:
    def __init__(self, text: str, *, source: str, line: int) -> None:
        self.text = text
        self.pos = 0
        self.source = source
        self.line = line

    def fail(self, message: str) -> LoadError:
        return LoadError(
            message, source=self.source, line=self.line, record=self.text.strip()
        )

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in " \t":
            self.pos += 1

    def at_end(self) -> bool:
        self.skip_ws()
        return self.pos >= len(self.text) or self.text[self.pos] == "#"

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def quoted(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                nxt = self.text[self.pos + 1]
                if quote == "'":
                    chars.append(nxt if nxt in "\\'" else "\\" + nxt)
                    self.pos += 2
                    continue
                match = _CODEPOINT_ESCAPE_RE.match(self.text, self.pos + 1)
                if match is not None:
                    digits = next(group for group in match.groups() if group)
                    try:
                        chars.append(chr(int(digits, 16)))
                    except ValueError:
                        raise self.fail("invalid escape sequence") from None
                    self.pos = match.end()
                    continue
                if nxt in "ux":
                    raise self.fail("invalid escape sequence")
                chars.append(_ESCAPES.get(nxt, nxt))
                self.pos += 2
                continue
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise self.fail("unterminated string literal")

    def test_name(self) -> str:
        ch = self.peek()
        if ch == ":":
            self.pos += 1
            if self.peek() in ("'", '"'):
                return self.quoted()
            match = _BARE_SYMBOL_RE.match(self.text, self.pos)
            if match is None:
                raise self.fail("invalid symbol")
            self.pos = match.end()
            return match.group(0)
        if ch in ("'", '"'):
            return self.quoted()
        raise self.fail("expected a test name")

    def reason(self) -> str:
        self.skip_ws()
        if self.at_end():
            raise self.fail("missing reason")
        if self.peek() != ",":
            raise self.fail("expected ',' after test name")
        self.pos += 1
        if self.at_end():
            raise self.fail("missing reason")
        if self.peek() not in ("'", '"'):
            raise self.fail("reason must be a string literal")
        return self.quoted()


def _parse_statement(text: str, *, source: str, line: int) -> tuple[str, str] | None:
    scanner = _LineScanner(text, source=source, line=line)
    if scanner.at_end():
        return None
    match = _KEYWORD_RE.match(text, scanner.pos)
    if match is None:
        raise scanner.fail("expected an exclude statement")
    scanner.pos = match.end()
    scanner.skip_ws()
    parenthesized = scanner.peek() == "("
    if parenthesized:
        scanner.pos += 1
        scanner.skip_ws()
    elif scanner.pos == match.end():
        raise scanner.fail("expected a test name")
    test_id = scanner.test_name()
    reason = scanner.reason()
    scanner.skip_ws()
    if parenthesized:
        if scanner.peek() != ")":
            raise scanner.fail("unterminated argument list")
        scanner.pos += 1
    if not scanner.at_end():
        raise scanner.fail("unexpected trailing content")
    return test_id, reason


def parse_exclude_dsl(
    text: str, suite: str, *, source: str = "<string>"
) -> SuiteDefinition:
    entries: list[ExclusionEntry] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        parsed = _parse_statement(raw, source=source, line=lineno)
        if parsed is None:
            continue
        test_id, reason = parsed
        entries.append(ExclusionEntry(suite, test_id, reason, source, lineno))
    return SuiteDefinition(suite, tuple(entries), source)


def parse_exclude_toml(
    text: str, suite: str, *, source: str = "<string>"
) -> SuiteDefinition:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise LoadError(f"invalid TOML ({exc})", source=source) from exc
    records = data.get("exclude", [])
    if not isinstance(records, list):
        raise LoadError("'exclude' must be an array of tables", source=source)
    entries: list[ExclusionEntry] = []
    for record in records:
        if not isinstance(record, dict):
            raise LoadError("unparseable record", source=source, record=repr(record))
        test_id = record.get("test")
        reason = record.get("reason")
        if not isinstance(test_id, str):
            raise LoadError(
                "missing test name" if test_id is None else "test must be a string",
                source=source,
                record=repr(record),
            )
        if reason is None:
            raise LoadError("missing reason", source=source, record=repr(record))
        if not isinstance(reason, str):
            raise LoadError(
                "reason must be a string", source=source, record=repr(record)
            )
        entries.append(ExclusionEntry(suite, test_id, reason, source))
    return SuiteDefinition(suite, tuple(entries), source)


def suite_name_for(path: Path, root: Path) -> str:
    try:
        rel = path.resolve().relative_to(root.resolve())
    except ValueError:
        rel = Path(path.name)
    return "::".join(rel.with_suffix("").parts)


def load_definition_file(path: Path, root: Path | None = None) -> SuiteDefinition:
    suite = suite_name_for(path, root if root is not None else path.parent)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise LoadError(f"unreadable definition file ({exc})", source=path) from exc
    if path.suffix == ".toml":
        return parse_exclude_toml(text, suite, source=str(path))
    if path.suffix == ".rb":
        return parse_exclude_dsl(text, suite, source=str(path))
    raise LoadError(f"unsupported definition format {path.suffix!r}", source=path)


def collect_definition_files(root: Path) -> list[Path]:
    if not root.is_dir():
        raise LoadError("excludes directory not found", source=root)
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix in DEFINITION_SUFFIXES
    )


def _check_duplicates(
    definition: SuiteDefinition, seen: set[tuple[str, str]]
) -> None:
    local: set[str] = set()
    for entry in definition.entries:
        key = (entry.suite, entry.test_id)
        if entry.test_id in local or key in seen:
            raise DuplicateExclusionError(
                entry.suite,
                entry.test_id,
                source=entry.source or definition.source,
                line=entry.line,
            )
        local.add(entry.test_id)


def load_directory(
    root: Path,
    *,
    mode: LoadMode = "strict",
    duplicates: DuplicatePolicy = "reject",
    log_handle: io.TextIOBase | None = None,
) -> LoadResult:
    """Load every definition file under ``root`` into one registry.

    In ``strict`` mode the first malformed file aborts the load. In
    ``best-effort`` mode a failing file is logged, recorded in
    ``LoadResult.errors`` and contributes no suite.
    """
    if mode not in LOAD_MODES:
        raise ConfigError(f"Unknown load mode: {mode!r}")
    if duplicates not in DUPLICATE_POLICIES:
        raise ConfigError(f"Unknown duplicate policy: {duplicates!r}")
    files = collect_definition_files(root)
    definitions: list[SuiteDefinition] = []
    errors: list[LoadError] = []
    seen: set[tuple[str, str]] = set()
    for path in files:
        try:
            definition = load_definition_file(path, root)
            if duplicates == "reject":
                _check_duplicates(definition, seen)
        except LoadError as exc:
            if mode == "strict":
                raise
            errors.append(exc)
            log_line(log_handle, f"excludes: ignoring {path}: {exc}")
            continue
        seen.update((entry.suite, entry.test_id) for entry in definition.entries)
        definitions.append(definition)
    registry = load(definitions, duplicates=duplicates)
    return LoadResult(registry=registry, files=files, errors=errors)


def load_registry(root: Path, **kwargs: Any) -> ExclusionRegistry:
    return load_directory(root, **kwargs).registry
