"""Verification policy: command detection, per-profile selection, fast path, functional checks."""

from __future__ import annotations

import json
import re
from pathlib import Path

from wayfinder.core.logging import get_logger
from wayfinder.core.state import (
    DetectedCommands,
    DiagnosticsEntry,
    ExecutionProfile,
    FunctionalCheck,
    VerificationRun,
)

logger = get_logger("core.verification")

_IGNORED_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", ".sdd", "dist", "build"}
_PY_ENTRYPOINTS = ("app.py", "main.py", "manage.py")

FUNCTIONAL_PATTERNS: list[re.Pattern] = [
    re.compile(r"\bnpm\s+run\s+dev\b"),
    re.compile(r"\bnpm\s+start\b"),
    re.compile(r"\byarn\s+(dev|start)\b"),
    re.compile(r"\bpnpm\s+(dev|start)\b"),
    re.compile(r"\bpython3?\s+app\.py\b"),
    re.compile(r"\bpython3?\s+main\.py\b"),
    re.compile(r"\bpython3?\s+-m\s+[\w.]+"),
    re.compile(r"\bflet\s+run\b"),
    re.compile(r"\bgo\s+run\s+\."),
    re.compile(r"\bcargo\s+run\b"),
    re.compile(r"\bnode\s+[\w/.-]+\.js\b"),
    re.compile(r"\bts-node\s+[\w/.-]+\.ts\b"),
    re.compile(r"\bvite\b"),
]

FAST_PATH_LIMITS: dict[ExecutionProfile, tuple[str, bool]] = {
    # profile → (settings attribute holding the file limit, require clean run)
    ExecutionProfile.SMOKE: ("fast_path_max_files_smoke", True),
    ExecutionProfile.YOLO: ("fast_path_max_files_yolo", False),
}


# ---------------------------------------------------------------------------
# Command detection
# ---------------------------------------------------------------------------

def _has_files(root: Path, pattern: str) -> list[str]:
    hits = []
    for path in root.rglob(pattern):
        rel = path.relative_to(root)
        if any(part in _IGNORED_DIRS for part in rel.parts):
            continue
        hits.append(rel.as_posix())
        if len(hits) >= 50:
            break
    return hits


def _package_manager(root: Path) -> str:
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (root / "yarn.lock").exists():
        return "yarn"
    if (root / "bun.lockb").exists():
        return "bun"
    return "npm"


def _script_command(pm: str, script: str) -> str:
    if pm == "npm":
        return "npm test" if script == "test" else f"npm run {script}"
    return f"{pm} {script}" if pm != "bun" else f"bun run {script}"


def _exec_command(pm: str, command: str) -> str:
    return {"npm": "npx", "pnpm": "pnpm exec", "yarn": "yarn", "bun": "bunx"}[pm] + f" {command}"


def _detect_node(root: Path) -> DetectedCommands | None:
    pkg_path = root / "package.json"
    if not pkg_path.is_file():
        return None
    try:
        pkg = json.loads(pkg_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable package.json (%s); skipping node detection", exc)
        return None

    scripts = pkg.get("scripts") or {}
    deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
    is_vite = "vite" in deps or (root / "vite.config.ts").exists() or (root / "vite.config.js").exists()
    pm = _package_manager(root)

    primary_test = _script_command(pm, "test") if "test" in scripts else None
    if "dev" in scripts:
        smoke_test = _script_command(pm, "dev")
    elif "start" in scripts:
        smoke_test = _script_command(pm, "start")
    else:
        smoke_test = None
    build = _script_command(pm, "build") if "build" in scripts else None
    lint = _script_command(pm, "lint") if "lint" in scripts else None

    if lint:
        syntax = lint
    elif (root / "tsconfig.json").exists():
        syntax = _exec_command(pm, "tsc --noEmit")
    else:
        syntax = None

    return DetectedCommands(
        stack="vite_frontend" if is_vite else "node",
        build_command=build,
        primary_test=primary_test,
        smoke_test=smoke_test,
        lint_command=lint,
        syntax_check_command=syntax,
        diagnostic_command=build or primary_test or lint,
        service_commands=[smoke_test] if smoke_test else [],
    )


def _detect_python(root: Path) -> DetectedCommands | None:
    py_files = _has_files(root, "*.py")
    if not ((root / "pyproject.toml").exists() or (root / "requirements.txt").exists() or py_files):
        return None
    entry = next((name for name in _PY_ENTRYPOINTS if name in py_files), None)
    return DetectedCommands(
        stack="python",
        primary_test="pytest",
        smoke_test=f"python {entry}" if entry else None,
        lint_command="pylint",
        syntax_check_command="python3 -m compileall . -q",
        diagnostic_command="pytest",
    )


def detect_commands(root_dir: str | Path) -> DetectedCommands:
    """Best-effort stack detection for *root_dir*."""
    root = Path(root_dir)

    detected = _detect_node(root) or _detect_python(root)
    if detected:
        return detected

    if (root / "Cargo.toml").exists():
        return DetectedCommands(
            stack="rust",
            build_command="cargo build",
            primary_test="cargo test",
            smoke_test="cargo run",
            lint_command="cargo clippy",
            syntax_check_command="cargo check",
            diagnostic_command="cargo check",
        )

    if (root / "Package.swift").exists() or _has_files(root, "*.swift"):
        return DetectedCommands(
            stack="swift",
            build_command="swift build",
            primary_test="swift test",
            syntax_check_command="swift build",
            diagnostic_command="swift build",
        )

    if (root / "go.mod").exists():
        return DetectedCommands(
            stack="go",
            build_command="go build ./...",
            primary_test="go test ./...",
            smoke_test="go run .",
            lint_command="go vet ./...",
            diagnostic_command="go test ./...",
        )

    return DetectedCommands()


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def select_commands(
    detected: DetectedCommands,
    profile: ExecutionProfile,
    files_changed: int,
) -> list[tuple[str, str]]:
    """Return ``(kind, command)`` pairs to run, deduplicated, in order."""
    picks: list[tuple[str, str | None]] = []

    if files_changed > 0:
        picks.append(("syntax", detected.syntax_check_command))

    if profile == ExecutionProfile.STRICT:
        picks += [
            ("test", detected.primary_test),
            ("build", detected.build_command),
            ("lint", detected.lint_command),
        ]
    elif profile == ExecutionProfile.FAST:
        picks += [
            ("diagnostic", detected.diagnostic_command),
            ("test", detected.primary_test),
        ]
    elif profile == ExecutionProfile.SMOKE:
        picks.append(("smoke", detected.smoke_test or detected.diagnostic_command or detected.primary_test))
    else:
        picks.append(("diagnostic", detected.diagnostic_command or detected.primary_test or detected.smoke_test))

    selected: list[tuple[str, str]] = []
    seen: set[str] = set()
    for kind, command in picks:
        if command and command not in seen:
            seen.add(command)
            selected.append((kind, command))

    if not any(kind != "syntax" for kind, _ in selected):
        for kind, command in (
            ("test", detected.primary_test),
            ("smoke", detected.smoke_test),
            ("diagnostic", detected.diagnostic_command),
            ("build", detected.build_command),
        ):
            if command and command not in seen:
                selected.append((kind, command))
                break

    return selected


# ---------------------------------------------------------------------------
# Fast path
# ---------------------------------------------------------------------------

def can_use_fast_path(
    profile: ExecutionProfile,
    files_changed: int,
    all_passed: bool,
    run_diagnostics: list[DiagnosticsEntry],
    settings,
) -> bool:
    """True when a small, clean change may skip the oracle's final judgment."""
    limits = FAST_PATH_LIMITS.get(profile)
    if limits is None or files_changed == 0 or not all_passed:
        return False
    attr, require_clean = limits
    if files_changed > getattr(settings, attr):
        return False
    if require_clean and any(d.source in ("build", "test") and d.severity == "error" for d in run_diagnostics):
        return False
    return True


# ---------------------------------------------------------------------------
# Functional checks
# ---------------------------------------------------------------------------

def is_functional_command(command: str) -> bool:
    lower = command.lower()
    if "test" in lower or "lint" in lower or "build" in lower:
        return False
    return any(p.search(lower) for p in FUNCTIONAL_PATTERNS)


def record_functional_check(command: str, exit_code: int, node: str) -> list[FunctionalCheck]:
    if not is_functional_command(command):
        return []
    return [FunctionalCheck(command=command, exit_code=exit_code, node=node)]


def derive_functional_status(checks: list[FunctionalCheck], window: int = 3) -> bool:
    """The goal looks functionally met when any of the last *window* functional checks exited 0."""
    return any(check.exit_code == 0 for check in checks[-window:])


def run_signature(runs: list[VerificationRun]) -> str:
    """Fingerprint of a verification batch: ``pass`` or the last failure's command and output tail."""
    failing = [r for r in runs if not r.passed]
    if not failing:
        return "pass"
    last = failing[-1]
    return f"{last.command}:{last.exit_code}:{last.output.strip()[-200:]}"[:256]
