"""Diagnostics aggregator.

Turns raw build/test/lint output into ``DiagnosticsEntry`` records and folds
them into the run's diagnostics log. Merging is keyed on
(source, file, message, line), so the same failure seen twice becomes one
entry with ``occurrence_count == 2`` instead of a duplicate.
"""

from __future__ import annotations

import re
import time

from wayfinder.core.state import DiagnosticsEntry

# path(line,col): error TS2304: msg   |   path:line:col - error TS2304: msg
COMPILER_RE = re.compile(
    r"^(.+?)[(:](\d+)[,:](\d+)(?:[):]+)?\s+(?:-\s+)?(error|warning)\s+(?:[A-Z]+\d+:\s+)?(.+)$",
    re.IGNORECASE,
)
# path:line: error: msg  (mypy, pylint-ish)
LINE_SEVERITY_RE = re.compile(r"^(.+?):(\d+)(?::(\d+))?: (error|warning|note): (.+)$")
# path.go:line:col: msg
GO_RE = re.compile(r"^(.+?\.go):(\d+):(\d+): (.+)$")
# pytest short summary
PYTEST_FAILED_RE = re.compile(r"^(FAILED|ERROR) (\S+?)(?:::(\S+))?(?: - (.+))?$")
PY_TRACE_FILE_RE = re.compile(r'^\s*File "(.+?)", line (\d+)')
PY_EXCEPTION_RE = re.compile(r"^(\w+(?:Error|Exception)): (.+)$")
JEST_FAIL_RE = re.compile(r"^\s*FAIL\s+(\S+)")
JEST_BULLET_RE = re.compile(r"^\s*●\s+(.+)$")
GENERIC_ERROR_RE = re.compile(r"\b(error|failed|failure|exception|panic)\b", re.IGNORECASE)

_SOURCE_PRIORITY = {"syntax": 0, "build": 1, "lsp": 2, "test": 3, "lint": 4, "runtime": 5}

MAX_ENTRIES_PER_OUTPUT = 50


def _entry(source: str, file: str, message: str, line: str | None = None,
           col: str | None = None, severity: str = "error", now: float | None = None) -> DiagnosticsEntry:
    stamp = now if now is not None else time.time()
    location = None
    if line:
        location = f"{line}:{col}" if col else line
    return DiagnosticsEntry(
        source=source,
        file=file.strip(),
        location=location,
        message=message.strip()[:500],
        severity=severity.lower(),
        first_seen_at=stamp,
        last_seen_at=stamp,
    )


def parse_diagnostics(output: str, source: str, now: float | None = None) -> list[DiagnosticsEntry]:
    """Parse compiler, type-checker and test-runner output into entries."""
    entries: list[DiagnosticsEntry] = []
    pending_trace_file: tuple[str, str] | None = None
    current_jest_file = ""

    for raw in (output or "").splitlines():
        line = raw.rstrip()
        if not line.strip():
            continue

        m = COMPILER_RE.match(line)
        if m:
            entries.append(_entry(source, m.group(1), m.group(5), m.group(2), m.group(3), m.group(4), now))
            continue

        m = LINE_SEVERITY_RE.match(line)
        if m:
            entries.append(_entry(source, m.group(1), m.group(5), m.group(2), m.group(3), m.group(4), now))
            continue

        m = GO_RE.match(line)
        if m:
            entries.append(_entry(source, m.group(1), m.group(4), m.group(2), m.group(3), "error", now))
            continue

        m = PYTEST_FAILED_RE.match(line)
        if m:
            message = m.group(4) or (f"{m.group(1).lower()}: {m.group(3)}" if m.group(3) else m.group(1).lower())
            entries.append(_entry("test" if source == "test" else source, m.group(2), message, now=now))
            continue

        m = PY_TRACE_FILE_RE.match(line)
        if m:
            pending_trace_file = (m.group(1), m.group(2))
            continue

        m = PY_EXCEPTION_RE.match(line.strip())
        if m and pending_trace_file:
            file, lineno = pending_trace_file
            entries.append(_entry(source, file, f"{m.group(1)}: {m.group(2)}", lineno, now=now))
            pending_trace_file = None
            continue

        m = JEST_FAIL_RE.match(line)
        if m:
            current_jest_file = m.group(1)
            entries.append(_entry(source, current_jest_file, "test suite failed", now=now))
            continue

        m = JEST_BULLET_RE.match(line)
        if m:
            entries.append(_entry(source, current_jest_file, m.group(1), now=now))
            continue

        if len(entries) >= MAX_ENTRIES_PER_OUTPUT:
            break

    return entries[:MAX_ENTRIES_PER_OUTPUT]


def fallback_entry(output: str, source: str, command: str, now: float | None = None) -> DiagnosticsEntry:
    """Single entry for a failed command whose output matched no known format."""
    message = ""
    for line in (output or "").splitlines():
        if GENERIC_ERROR_RE.search(line):
            message = line.strip()
            break
    if not message:
        lines = [ln.strip() for ln in (output or "").splitlines() if ln.strip()]
        message = lines[-1] if lines else f"`{command}` failed with no output"
    return _entry(source, "", message, now=now)


def _key(entry: DiagnosticsEntry) -> tuple[str, str, str, int | None]:
    return (entry.source, entry.file, entry.message, entry.line)


def merge_diagnostics(
    existing: list[DiagnosticsEntry],
    incoming: list[DiagnosticsEntry],
    now: float | None = None,
) -> list[DiagnosticsEntry]:
    """Fold *incoming* into *existing*; returns a new list, most recent first."""
    stamp = now if now is not None else time.time()
    merged: dict[tuple, DiagnosticsEntry] = {}
    for entry in existing:
        merged[_key(entry)] = entry.model_copy()

    for entry in incoming:
        key = _key(entry)
        if key in merged:
            current = merged[key]
            current.occurrence_count += 1
            current.last_seen_at = stamp
        else:
            fresh = entry.model_copy()
            fresh.first_seen_at = stamp
            fresh.last_seen_at = stamp
            fresh.occurrence_count = 1
            merged[key] = fresh

    return sorted(merged.values(), key=lambda e: e.last_seen_at, reverse=True)


def get_primary_failure(log: list[DiagnosticsEntry]) -> DiagnosticsEntry | None:
    """Most actionable error: compile-time problems before test failures, newest first."""
    errors = [e for e in log if e.severity == "error"]
    if not errors:
        return None
    return sorted(
        errors,
        key=lambda e: (_SOURCE_PRIORITY.get(e.source, 9), -e.last_seen_at),
    )[0]


def summarize_diagnostics(log: list[DiagnosticsEntry], limit: int = 5) -> str:
    if not log:
        return "No diagnostics recorded."
    lines = []
    for entry in log[:limit]:
        where = entry.file or "?"
        if entry.location:
            where = f"{where}:{entry.location}"
        repeat = f" (x{entry.occurrence_count})" if entry.occurrence_count > 1 else ""
        lines.append(f"- [{entry.source}/{entry.severity}] {where}: {entry.message}{repeat}")
    if len(log) > limit:
        lines.append(f"- ... {len(log) - limit} more")
    return "\n".join(lines)


def classify_failure(output: str, timed_out: bool = False) -> str:
    """Bucket a failed command as timeout / compilation / test_failure / runtime."""
    if timed_out:
        return "timeout"
    text = (output or "").lower()
    if any(marker in text for marker in ("syntaxerror", "error ts", "cannot find module", "compile", "error[e")):
        return "compilation"
    if any(marker in text for marker in ("failed", "assert", "expected", "tests failed", "● ")):
        return "test_failure"
    return "runtime"
