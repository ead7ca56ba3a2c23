from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from corpus_excludes.registry import ExclusionRegistry


@dataclass(frozen=True)
class SkipRecord:
    suite: str
    test_id: str
    reason: str


class RunReport:
    """Collects what a runner skipped and which exclusions it never met."""

    def __init__(self, registry: ExclusionRegistry) -> None:
        self.registry = registry
        self._lock = threading.Lock()
        self._skips: list[SkipRecord] = []
        self._seen: set[tuple[str, str]] = set()

    def record_seen(self, suite: str, test_id: str) -> None:
        with self._lock:
            self._seen.add((suite, test_id))

    def record_skip(self, suite: str, test_id: str) -> SkipRecord:
        reason = self.registry.is_excluded(suite, test_id)
        if reason is None:
            raise ValueError(f"{suite}#{test_id} is not excluded; refusing silent skip")
        record = SkipRecord(suite, test_id, reason)
        with self._lock:
            self._seen.add((suite, test_id))
            self._skips.append(record)
        return record

    def check(self, suite: str, test_id: str) -> str | None:
        """Consult the registry for one test and record the outcome."""
        if self.registry.is_excluded(suite, test_id) is None:
            self.record_seen(suite, test_id)
            return None
        return self.record_skip(suite, test_id).reason

    @property
    def skips(self) -> list[SkipRecord]:
        with self._lock:
            return list(self._skips)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            skips = list(self._skips)
            seen = set(self._seen)
        configured = {
            suite: len(self.registry.reasons_for(suite))
            for suite in self.registry.suites()
        }
        stale = self.registry.stale(seen)
        return {
            "skipped": len(skips),
            "skipped_tests": [
                {"suite": rec.suite, "test": rec.test_id, "reason": rec.reason}
                for rec in skips
            ],
            "configured": configured,
            "configured_total": len(self.registry),
            "stale": [
                {"suite": entry.suite, "test": entry.test_id, "reason": entry.reason}
                for entry in stale
            ],
        }

    def write(self, output_dir: Path) -> tuple[Path, Path]:
        payload = self.summary()
        output_dir.mkdir(parents=True, exist_ok=True)
        json_path = output_dir / "summary.json"
        json_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        md_path = output_dir / "summary.md"
        md_path.write_text(render_markdown(payload))
        return json_path, md_path


def _md_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def render_markdown(payload: dict[str, Any]) -> str:
    lines = [
        "# Exclusion summary",
        "",
        "| Metric | Value |",
        "| --- | --- |",
        f"| Skipped | {payload['skipped']} |",
        f"| Configured | {payload['configured_total']} |",
        f"| Stale | {len(payload['stale'])} |",
    ]
    for title, key in (("Skipped", "skipped_tests"), ("Stale", "stale")):
        if not payload[key]:
            continue
        lines.extend(
            ["", f"## {title}", "", "| Suite | Test | Reason |", "| --- | --- | --- |"]
        )
        for item in payload[key]:
            lines.append(
                f"| {_md_cell(item['suite'])} | {_md_cell(item['test'])} "
                f"| {_md_cell(item['reason'])} |"
            )
    return "\n".join(lines) + "\n"
