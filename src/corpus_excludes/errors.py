from __future__ import annotations

from pathlib import Path


class ExcludesError(Exception):
    """Base error for exclusion registry failures."""


class ConfigError(ExcludesError):
    """Invalid configuration value."""


class LoadError(ExcludesError):
    """Malformed exclusion definition or rejected record."""

    def __init__(
        self,
        message: str,
        *,
        source: Path | str | None = None,
        line: int | None = None,
        record: str | None = None,
    ) -> None:
        self.message = message
        self.source = str(source) if source is not None else None
        self.line = line
        self.record = record
        super().__init__(self._format())

    def _format(self) -> str:
        location = self.source or "<definitions>"
        if self.line is not None:
            location = f"{location}:{self.line}"
        text = f"{location}: {self.message}"
        if self.record is not None:
            text = f"{text}: {self.record!r}"
        return text


class DuplicateExclusionError(LoadError):
    """A test identifier was declared twice for the same suite."""

    def __init__(
        self,
        suite: str,
        test_id: str,
        *,
        source: Path | str | None = None,
        line: int | None = None,
    ) -> None:
        self.suite = suite
        self.test_id = test_id
        super().__init__(
            f"duplicate exclusion for {suite}#{test_id}",
            source=source,
            line=line,
            record=test_id,
        )
