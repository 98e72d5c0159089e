"""Tool set handed to the Coder's oracle, bound to one Coder visit.

Every tool returns a string for the ToolMessage and records its side effects
(file-change ledger, patch fingerprints, budget charges, functional checks,
test runs) on the shared :class:`CoderSession`.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from langchain_core.tools import tool

from wayfinder.core.brief import forbidden_match
from wayfinder.core.budget import (
    CommandPolicy,
    charge_command,
    charge_test_run,
    looks_like_heavy_command,
    looks_like_install,
    policy_for,
)
from wayfinder.core.logging import get_logger
from wayfinder.core.state import (
    Budget,
    DetectedCommands,
    ExecutionProfile,
    FunctionalCheck,
    VerificationRun,
)
from wayfinder.core.verification import is_functional_command, record_functional_check
from wayfinder.tools.commands import run_command as execute_command
from wayfinder.tools.commands import truncate
from wayfinder.tools.filesystem import (
    PatchError,
    PathEscapeError,
    apply_patch,
    list_files as list_repo_files,
    read_text,
    write_text,
)

logger = get_logger("tools.coder_tools")

MAX_IDENTICAL_PATCHES = 2


def patch_fingerprint(path: str, diff: str) -> str:
    return hashlib.sha256(f"{path}:{diff}".encode("utf-8")).hexdigest()[:16]


@dataclass
class CoderSession:
    root_dir: Path
    budget: Budget
    profile: ExecutionProfile = ExecutionProfile.FAST
    detected: DetectedCommands | None = None
    file_changes: dict[str, str] = field(default_factory=dict)
    patch_fingerprints: dict[str, int] = field(default_factory=dict)
    functional_checks: list[FunctionalCheck] = field(default_factory=list)
    test_results: list[VerificationRun] = field(default_factory=list)
    forbidden_paths: list[str] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)
    commands_run: int = 0
    tests_run: int = 0

    @property
    def policy(self) -> CommandPolicy:
        return policy_for(self.profile)

    def record_change(self, path: str, created: bool) -> None:
        if path not in self.file_changes or self.file_changes[path] != "created":
            self.file_changes[path] = "created" if created else "modified"

    def refuse_forbidden(self, path: str) -> str | None:
        """Error text for an edit to a forbidden path, recording the violation; None when allowed."""
        pattern = forbidden_match(path, self.forbidden_paths)
        if pattern is None:
            return None
        if path not in self.violations:
            self.violations.append(path)
        logger.warning("Forbidden path edit refused: %s (matches %s)", path, pattern)
        return f"ERROR: {path} is a forbidden path ({pattern}). Editing it is a policy violation."


def build_coder_tools(session: CoderSession) -> list:
    """Create the six Coder tools as closures over *session*."""

    @tool
    def read_file(path: str) -> str:
        """Read a UTF-8 text file. Path is relative to the repository root."""
        try:
            return truncate(read_text(session.root_dir, path))
        except (FileNotFoundError, PathEscapeError, OSError) as exc:
            return f"ERROR: {exc}"

    @tool
    def list_files(pattern: str = "**/*") -> str:
        """List repository files matching a glob pattern (default: all files)."""
        try:
            hits = list_repo_files(session.root_dir, pattern)
        except (OSError, ValueError) as exc:
            return f"ERROR: {exc}"
        return "\n".join(hits) if hits else "(no files matched)"

    @tool
    def write_file(path: str, content: str) -> str:
        """Create or overwrite a file with the given content."""
        refused = session.refuse_forbidden(path)
        if refused:
            return refused
        try:
            created = write_text(session.root_dir, path, content)
        except (PathEscapeError, OSError) as exc:
            return f"ERROR: {exc}"
        session.record_change(path, created)
        return f"[OK] {'created' if created else 'wrote'} {path} ({len(content)} chars)"

    @tool
    def write_patch(path: str, diff: str) -> str:
        """Apply a unified diff (with @@ hunk headers) to a file."""
        refused = session.refuse_forbidden(path)
        if refused:
            return refused
        fingerprint = patch_fingerprint(path, diff)
        seen = session.patch_fingerprints.get(fingerprint, 0)
        if seen >= MAX_IDENTICAL_PATCHES:
            logger.warning("Refusing repeated patch %s for %s (applied %d times)", fingerprint, path, seen)
            return (
                f"ERROR: this exact patch to {path} was already applied {seen} times. "
                "Re-read the file and try a different change."
            )
        try:
            created = apply_patch(session.root_dir, path, diff)
        except (PatchError, PathEscapeError, OSError) as exc:
            return f"ERROR: patch failed for {path}: {exc}"
        session.patch_fingerprints[fingerprint] = seen + 1
        session.record_change(path, created)
        return f"[OK] patched {path}"

    @tool
    def run_command(command: str) -> str:
        """Run a shell command in the repository root (charged to the command budget)."""
        policy = session.policy
        if session.budget.commands_exhausted:
            return "ERROR: command budget exhausted for this run."
        if session.commands_run >= policy.max_commands:
            return f"ERROR: command limit for profile '{session.profile}' reached ({policy.max_commands})."
        if looks_like_install(command) and not policy.allow_package_installs:
            logger.info("Install refused under profile %s: %s", session.profile, command)
            return f"ERROR: package installs are not allowed under profile '{session.profile}'."
        if not policy.allow_app_run and (looks_like_heavy_command(command) or is_functional_command(command)):
            logger.info("App run refused under profile %s: %s", session.profile, command)
            return (
                f"ERROR: starting the app or heavy tooling is not allowed under profile '{session.profile}'. "
                "The verifier runs the smoke check."
            )

        session.budget = charge_command(session.budget, command, node="coder")
        session.commands_run += 1
        result = execute_command(command, session.root_dir)
        session.functional_checks.extend(record_functional_check(command, result.exit_code, node="coder"))
        return result.render()

    @tool
    def run_tests(command: str = "") -> str:
        """Run the project's tests (or the given test command); charged to the test-run budget."""
        command = command.strip() or (session.detected.primary_test if session.detected else "") or ""
        if not command:
            return "ERROR: no test command detected; pass one explicitly."
        if session.budget.test_runs_exhausted:
            return "ERROR: test-run budget exhausted for this run."
        if session.tests_run >= session.policy.max_test_runs:
            return f"ERROR: test-run limit for profile '{session.profile}' reached."

        session.budget = charge_test_run(session.budget, command, node="coder")
        session.tests_run += 1
        result = execute_command(command, session.root_dir)
        session.test_results.append(VerificationRun(
            command=command,
            kind="test",
            exit_code=result.exit_code,
            passed=result.passed,
            output=result.combined_output[-4000:],
            timed_out=result.timed_out,
        ))
        return result.render()

    return [read_file, list_files, write_file, write_patch, run_command, run_tests]

