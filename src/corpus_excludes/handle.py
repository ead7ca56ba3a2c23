"""Hot-reloadable reference to the current exclusion registry."""

from __future__ import annotations

import io
import threading
from collections.abc import Callable
from pathlib import Path

from corpus_excludes.loader import collect_definition_files, load_directory
from corpus_excludes.log import log_line
from corpus_excludes.registry import ExclusionRegistry

Signature = tuple[tuple[str, int, int], ...]


def definitions_signature(root: Path) -> Signature:
    entries: list[tuple[str, int, int]] = []
    for path in collect_definition_files(root):
        stat = path.stat()
        entries.append((str(path), stat.st_mtime_ns, stat.st_size))
    return tuple(entries)


class RegistryHandle:
    """Readers take ``handle.current``; reloads publish a new registry.

    A registry is never mutated after it is published, so readers need no
    lock. Only writers serialize on ``_reload_lock``. A failed reload keeps
    the previous registry in place and re-raises.
    """

    def __init__(
        self,
        build: Callable[[], ExclusionRegistry],
        *,
        signature: Callable[[], object] | None = None,
        log_handle: io.TextIOBase | None = None,
    ) -> None:
        self._build = build
        self._signature = signature
        self._log_handle = log_handle
        self._reload_lock = threading.Lock()
        self._generation = 0
        self._last_signature = signature() if signature is not None else None
        self.current: ExclusionRegistry = build()

    @classmethod
    def for_directory(
        cls,
        root: Path,
        *,
        mode: str = "strict",
        duplicates: str = "reject",
        log_handle: io.TextIOBase | None = None,
    ) -> RegistryHandle:
        def build() -> ExclusionRegistry:
            return load_directory(
                root, mode=mode, duplicates=duplicates, log_handle=log_handle
            ).registry

        return cls(
            build, signature=lambda: definitions_signature(root), log_handle=log_handle
        )

    @property
    def generation(self) -> int:
        return self._generation

    def reload(self) -> ExclusionRegistry:
        with self._reload_lock:
            try:
                signature = self._signature() if self._signature is not None else None
                registry = self._build()
            except Exception as exc:
                log_line(
                    self._log_handle,
                    f"excludes: reload failed, keeping previous: {exc}",
                )
                raise
            self.current = registry
            self._last_signature = signature
            self._generation += 1
            log_line(
                self._log_handle,
                f"excludes: reloaded generation {self._generation} "
                f"({len(registry)} exclusions)",
            )
            return registry

    def refresh_if_changed(self) -> bool:
        if self._signature is None:
            return False
        if self._signature() == self._last_signature:
            return False
        self.reload()
        return True
