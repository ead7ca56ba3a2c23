"""Timestamped status lines, plus CLI output teed to a log file."""

from __future__ import annotations

import contextlib
import datetime as dt
import io
import sys
from pathlib import Path
from typing import Iterator


def timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def log_line(handle: io.TextIOBase | None, message: str) -> None:
    if handle is None:
        handle = sys.stderr
    handle.write(f"[{timestamp()}] {message}\n")
    handle.flush()


def emit_line(
    line: str,
    log_handle: io.TextIOBase | None = None,
    *,
    echo: bool = True,
) -> None:
    if echo:
        print(line)
    if log_handle is not None:
        log_handle.write(line + "\n")
        log_handle.flush()


@contextlib.contextmanager
def open_log_file(path: Path | None) -> Iterator[io.TextIOBase | None]:
    if path is None:
        yield None
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("a", buffering=1)
    try:
        yield handle
    finally:
        handle.close()
