"""Scan the tail of runtime log files for error lines."""

from __future__ import annotations

import re
from pathlib import Path

from wayfinder.core.logging import get_logger
from wayfinder.core.state import DiagnosticsEntry

logger = get_logger("tools.logs")

TAIL_BYTES = 64 * 1024
MAX_LOG_FILES = 20
ERROR_RE = re.compile(
    r"\b(?:ERROR|FATAL|CRITICAL|PANIC)\b|^\s*(?:Fatal|Panic|panic):|Traceback \(most recent call last\)|\b\w+(?:Error|Exception):"
)
_SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", ".sdd"}


def find_log_files(root_dir: str | Path, exclude: set[Path] | None = None) -> list[Path]:
    root = Path(root_dir)
    skip = {p.resolve() for p in (exclude or set())}
    found = []
    for path in sorted(root.rglob("*.log")):
        if any(part in _SKIP_DIRS for part in path.relative_to(root).parts) or path.resolve() in skip:
            continue
        if path.is_file():
            found.append(path)
        if len(found) >= MAX_LOG_FILES:
            break
    return found


def _tail(path: Path, max_bytes: int) -> str:
    size = path.stat().st_size
    with path.open("rb") as fh:
        fh.seek(max(0, size - max_bytes))
        return fh.read().decode("utf-8", errors="replace")


def scan_recent_logs(
    root_dir: str | Path,
    since: float = 0.0,
    max_bytes: int = TAIL_BYTES,
    exclude: set[Path] | None = None,
) -> list[DiagnosticsEntry]:
    """Runtime diagnostics from ``*.log`` files modified at or after *since*."""
    root = Path(root_dir)
    entries: list[DiagnosticsEntry] = []
    for path in find_log_files(root, exclude):
        try:
            if path.stat().st_mtime < since:
                continue
            content = _tail(path, max_bytes)
        except OSError as exc:
            logger.debug("Could not read log %s: %s", path, exc)
            continue
        rel = path.relative_to(root).as_posix()
        for line in content.splitlines():
            if line.strip() and ERROR_RE.search(line):
                entries.append(DiagnosticsEntry(source="runtime", file=rel, message=line.strip()[:500]))
    if entries:
        logger.info("Log scan found %d error lines", len(entries))
    return entries
