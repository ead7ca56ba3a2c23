from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from corpus_excludes.errors import ConfigError
from corpus_excludes.loader import LOAD_MODES
from corpus_excludes.registry import DUPLICATE_POLICIES

TOOL_TABLE = "corpus-excludes"
DEFAULT_EXCLUDES_DIR = Path("test") / "excludes"

ENV_DIR = "CORPUS_EXCLUDES_DIR"
ENV_MODE = "CORPUS_EXCLUDES_MODE"
ENV_DUPLICATES = "CORPUS_EXCLUDES_DUPLICATES"
ENV_SUMMARY = "CORPUS_EXCLUDES_SUMMARY"


@dataclass(frozen=True)
class ExcludesConfig:
    excludes_dir: Path
    mode: str = "strict"
    duplicates: str = "reject"
    summary_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.mode not in LOAD_MODES:
            raise ConfigError(
                f"Invalid mode {self.mode!r} (expected one of {', '.join(LOAD_MODES)})"
            )
        if self.duplicates not in DUPLICATE_POLICIES:
            raise ConfigError(
                f"Invalid duplicates policy {self.duplicates!r} "
                f"(expected one of {', '.join(DUPLICATE_POLICIES)})"
            )

    def with_overrides(self, **overrides: Any) -> ExcludesConfig:
        values = {key: value for key, value in overrides.items() if value is not None}
        for key in ("excludes_dir", "summary_dir"):
            if key in values:
                values[key] = Path(values[key])
        return replace(self, **values)


def find_project_root(start: Path) -> Path:
    for parent in [start] + list(start.parents):
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return start


def _load_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def _tool_table(pyproject: dict[str, Any], path: Path) -> dict[str, Any]:
    table = pyproject.get("tool", {}).get(TOOL_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[tool.{TOOL_TABLE}] in {path} must be a table")
    unknown = set(table) - {"excludes-dir", "mode", "duplicates", "summary-dir"}
    if unknown:
        raise ConfigError(
            f"Unknown keys in [tool.{TOOL_TABLE}] of {path}: "
            f"{', '.join(sorted(unknown))}"
        )
    for key, value in table.items():
        if not isinstance(value, str):
            raise ConfigError(
                f"[tool.{TOOL_TABLE}] {key} in {path} must be a string, "
                f"got {type(value).__name__}"
            )
    return table


def load_config(
    start: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ExcludesConfig:
    """Resolve configuration: defaults, then pyproject.toml, then environment."""
    env = os.environ if environ is None else environ
    root = find_project_root((start or Path.cwd()).resolve())
    pyproject_path = root / "pyproject.toml"
    table = _tool_table(_load_toml(pyproject_path), pyproject_path)

    excludes_dir = root / table.get("excludes-dir", str(DEFAULT_EXCLUDES_DIR))
    summary_raw = table.get("summary-dir")
    config = ExcludesConfig(
        excludes_dir=excludes_dir,
        mode=str(table.get("mode", "strict")),
        duplicates=str(table.get("duplicates", "reject")),
        summary_dir=root / summary_raw if summary_raw else None,
    )

    env_dir = env.get(ENV_DIR, "").strip()
    env_summary = env.get(ENV_SUMMARY, "").strip()
    return config.with_overrides(
        excludes_dir=Path(env_dir).expanduser() if env_dir else None,
        mode=env.get(ENV_MODE, "").strip().lower() or None,
        duplicates=env.get(ENV_DUPLICATES, "").strip().lower() or None,
        summary_dir=Path(env_summary).expanduser() if env_summary else None,
    )
