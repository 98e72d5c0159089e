"""Project-wide diagnostics providers (type checkers / compilers).

Each provider declares which repos it supports and turns its tool's output
into ``DiagnosticsEntry`` records with source ``lsp``. A missing tool simply
yields no entries.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from wayfinder.core.logging import get_logger
from wayfinder.core.state import DiagnosticsEntry
from wayfinder.tools.commands import CommandResult, run_command

logger = get_logger("tools.diagnostics")

PROVIDER_TIMEOUT_SECONDS = 60

TSC_RE = re.compile(r"^(.+?)\((\d+),(\d+)\): (error|warning|info) (TS\d+): (.+)$")
MYPY_RE = re.compile(r"^(.+?):(\d+): (error|warning|note): (.+)$")
GO_VET_RE = re.compile(r"^(.+?):(\d+):(\d+): (.+)$")


def _rel(root: Path, file: str) -> str:
    path = (root / file.strip()).resolve()
    try:
        return path.relative_to(root.resolve()).as_posix()
    except ValueError:
        return file.strip()


def _lsp_entry(file: str, line: int | str, col: int | str | None, severity: str, message: str) -> DiagnosticsEntry:
    location = f"{line}:{col}" if col not in (None, "") else str(line)
    return DiagnosticsEntry(
        source="lsp",
        file=file,
        location=location,
        message=message.strip(),
        severity="error" if severity == "error" else "warning",
    )


def parse_tsc_output(output: str, root: Path) -> list[DiagnosticsEntry]:
    entries = []
    for line in output.splitlines():
        m = TSC_RE.match(line.strip())
        if m:
            file, lineno, col, severity, code, message = m.groups()
            entries.append(_lsp_entry(_rel(root, file), lineno, col, severity, f"{code}: {message}"))
    return entries


def parse_mypy_output(output: str, root: Path) -> list[DiagnosticsEntry]:
    entries = []
    for line in output.splitlines():
        m = MYPY_RE.match(line.strip())
        if m:
            file, lineno, severity, message = m.groups()
            entries.append(_lsp_entry(_rel(root, file), lineno, None, severity, message))
    return entries


def parse_go_vet_output(output: str, root: Path) -> list[DiagnosticsEntry]:
    entries = []
    for line in output.splitlines():
        m = GO_VET_RE.match(line.strip())
        if m:
            file, lineno, col, message = m.groups()
            entries.append(_lsp_entry(_rel(root, file), lineno, col, "error", message))
    return entries


def parse_cargo_output(output: str, root: Path) -> list[DiagnosticsEntry]:
    entries = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if payload.get("reason") != "compiler-message" or not payload.get("message"):
            continue
        message = payload["message"]
        spans = message.get("spans") or []
        if not spans:
            continue
        span = next((s for s in spans if s.get("is_primary")), spans[0])
        entries.append(_lsp_entry(
            span.get("file_name", ""),
            span.get("line_start", 0),
            span.get("column_start"),
            "error" if message.get("level") == "error" else "warning",
            message.get("message", ""),
        ))
    return entries


@dataclass(frozen=True)
class DiagnosticsProvider:
    name: str
    markers: tuple[str, ...]
    command: str
    parse: Callable[[str, Path], list[DiagnosticsEntry]]
    use_stderr: bool = False

    def supports(self, root: Path) -> bool:
        return any((root / marker).exists() for marker in self.markers)

    def output_of(self, result: CommandResult) -> str:
        return result.stderr if self.use_stderr else result.stdout


PROVIDERS: list[DiagnosticsProvider] = [
    DiagnosticsProvider("tsc", ("tsconfig.json",), "tsc --noEmit --pretty false", parse_tsc_output),
    DiagnosticsProvider(
        "mypy", ("requirements.txt", "pyproject.toml"),
        "mypy . --no-error-summary --no-pretty", parse_mypy_output,
    ),
    DiagnosticsProvider("go-vet", ("go.mod",), "go vet ./...", parse_go_vet_output, use_stderr=True),
    DiagnosticsProvider("cargo-check", ("Cargo.toml",), "cargo check --message-format=json", parse_cargo_output),
]


def run_project_diagnostics(root_dir: str | Path) -> list[DiagnosticsEntry]:
    """Run every provider that supports the repo and collect their entries."""
    root = Path(root_dir)
    entries: list[DiagnosticsEntry] = []
    for provider in PROVIDERS:
        if not provider.supports(root):
            continue
        result = run_command(provider.command, root, timeout_seconds=PROVIDER_TIMEOUT_SECONDS)
        if result.exit_code in (126, 127) or result.timed_out:
            logger.info("Diagnostics provider %s unavailable: %s", provider.name, result.stderr[:200])
            continue
        found = provider.parse(provider.output_of(result), root)
        logger.info("Diagnostics provider %s | %d entries", provider.name, len(found))
        entries.extend(found)
    return entries
