"""Immutable (suite, test id) -> reason lookup for corpus test runs."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

from corpus_excludes.errors import ConfigError, DuplicateExclusionError, LoadError

DuplicatePolicy = Literal["reject", "last"]
DUPLICATE_POLICIES: tuple[str, ...] = ("reject", "last")


@dataclass(frozen=True)
class ExclusionEntry:
    suite: str
    test_id: str
    reason: str
    source: str | None = field(default=None, compare=False)
    line: int | None = field(default=None, compare=False)


@dataclass(frozen=True)
class SuiteDefinition:
    suite: str
    entries: tuple[ExclusionEntry, ...] = ()
    source: str | None = None


class SuiteReasons(Sequence[tuple[str, str]]):
    """Declaration-ordered ``(test_id, reason)`` view over one suite."""

    __slots__ = ("_entries",)

    def __init__(self, entries: tuple[ExclusionEntry, ...]) -> None:
        self._entries = entries

    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return [(entry.test_id, entry.reason) for entry in self._entries[index]]
        entry = self._entries[index]
        return entry.test_id, entry.reason

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        for entry in self._entries:
            yield entry.test_id, entry.reason

    def __repr__(self) -> str:
        return f"SuiteReasons({list(self)!r})"


_EMPTY = SuiteReasons(())


class ExclusionRegistry:
    """Read-only after construction; safe to share between reader threads."""

    __slots__ = ("_suites", "_index")

    def __init__(
        self, suites: Mapping[str, Iterable[ExclusionEntry]] | None = None
    ) -> None:
        ordered: dict[str, tuple[ExclusionEntry, ...]] = {}
        index: dict[str, Mapping[str, str]] = {}
        for name, entries in (suites or {}).items():
            frozen = tuple(entries)
            reasons: dict[str, str] = {}
            for entry in frozen:
                if entry.test_id in reasons:
                    raise DuplicateExclusionError(
                        name, entry.test_id, source=entry.source, line=entry.line
                    )
                reasons[entry.test_id] = entry.reason
            ordered[name] = frozen
            index[name] = MappingProxyType(reasons)
        object.__setattr__(self, "_suites", MappingProxyType(ordered))
        object.__setattr__(self, "_index", MappingProxyType(index))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    @classmethod
    def from_entries(
        cls,
        triples: Iterable[tuple[str, str, str] | ExclusionEntry],
        *,
        duplicates: DuplicatePolicy = "reject",
    ) -> ExclusionRegistry:
        grouped: dict[str, list[ExclusionEntry]] = {}
        for item in triples:
            if isinstance(item, ExclusionEntry):
                entry = item
            else:
                entry = _entry_from_record(item, None)
            grouped.setdefault(entry.suite, []).append(entry)
        return load(
            (
                SuiteDefinition(name, tuple(entries))
                for name, entries in grouped.items()
            ),
            duplicates=duplicates,
        )

    def is_excluded(self, suite: str, test_id: str) -> str | None:
        reasons = self._index.get(suite)
        if reasons is None:
            return None
        return reasons.get(test_id)

    def reasons_for(self, suite: str) -> SuiteReasons:
        entries = self._suites.get(suite)
        if entries is None:
            return _EMPTY
        return SuiteReasons(entries)

    def has_suite(self, suite: str) -> bool:
        return suite in self._suites

    def suites(self) -> list[str]:
        return sorted(self._suites)

    def entries(self) -> Iterator[ExclusionEntry]:
        for name in self.suites():
            yield from self._suites[name]

    def stale(self, encountered: Iterable[tuple[str, str]]) -> list[ExclusionEntry]:
        """Return configured exclusions whose test never showed up in a run."""
        seen = set(encountered)
        return [
            entry
            for entry in self.entries()
            if (entry.suite, entry.test_id) not in seen
        ]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._suites.values())

    def __repr__(self) -> str:
        return f"ExclusionRegistry(suites={len(self._suites)}, exclusions={len(self)})"


def _entry_from_record(record: Any, suite: str | None) -> ExclusionEntry:
    if isinstance(record, ExclusionEntry):
        return record
    if not isinstance(record, (tuple, list)):
        raise LoadError("unparseable record", record=repr(record))
    items = list(record)
    if suite is not None:
        items.insert(0, suite)
    if len(items) < 3 or items[2] is None:
        raise LoadError("missing reason", record=repr(tuple(record)))
    if len(items) > 3:
        raise LoadError("unexpected fields in record", record=repr(tuple(record)))
    name, test_id, reason = items
    for label, value in (("suite", name), ("test id", test_id), ("reason", reason)):
        if not isinstance(value, str):
            raise LoadError(f"{label} must be a string", record=repr(tuple(record)))
    return ExclusionEntry(name, test_id, reason)


def _coerce_definition(definition: Any) -> SuiteDefinition:
    if isinstance(definition, SuiteDefinition):
        for entry in definition.entries:
            if entry.suite != definition.suite:
                raise LoadError(
                    f"entry belongs to suite {entry.suite!r}, not {definition.suite!r}",
                    source=entry.source or definition.source,
                    line=entry.line,
                    record=entry.test_id,
                )
            if not isinstance(entry.test_id, str) or not isinstance(entry.reason, str):
                raise LoadError(
                    "test id and reason must be strings",
                    source=entry.source or definition.source,
                    line=entry.line,
                    record=repr(entry.test_id),
                )
        return definition
    try:
        suite, records = definition
    except (TypeError, ValueError):
        raise LoadError(
            "unparseable suite definition", record=repr(definition)
        ) from None
    if not isinstance(suite, str):
        raise LoadError("suite must be a string", record=repr(suite))
    entries = tuple(_entry_from_record(record, suite) for record in records)
    return SuiteDefinition(suite, entries)


def load(
    definitions: Iterable[SuiteDefinition | tuple[str, Iterable[Any]]],
    *,
    duplicates: DuplicatePolicy = "reject",
) -> ExclusionRegistry:
    """Build a registry from per-suite definitions.

    Definitions are applied in iteration order. With ``duplicates="reject"``
    a repeated test id within one suite raises ``DuplicateExclusionError``;
    with ``"last"`` the last declared reason wins and the entry keeps the
    position of its first declaration.
    """
    if duplicates not in DUPLICATE_POLICIES:
        raise ConfigError(f"Unknown duplicate policy: {duplicates!r}")
    suites: dict[str, dict[str, ExclusionEntry]] = {}
    for raw in definitions:
        definition = _coerce_definition(raw)
        bucket = suites.setdefault(definition.suite, {})
        for entry in definition.entries:
            if entry.test_id in bucket and duplicates == "reject":
                raise DuplicateExclusionError(
                    definition.suite,
                    entry.test_id,
                    source=entry.source or definition.source,
                    line=entry.line,
                )
            bucket[entry.test_id] = entry
    return ExclusionRegistry(
        {name: tuple(bucket.values()) for name, bucket in suites.items()}
    )
