"""Tests for wayfinder.core.verification."""

from __future__ import annotations

import json

from wayfinder.core.state import (
    DetectedCommands,
    DiagnosticsEntry,
    ExecutionProfile,
    FunctionalCheck,
    VerificationRun,
)
from wayfinder.core.verification import (
    can_use_fast_path,
    derive_functional_status,
    detect_commands,
    is_functional_command,
    record_functional_check,
    run_signature,
    select_commands,
)


def _write_package(root, scripts, deps=None):
    (root / "package.json").write_text(json.dumps({"scripts": scripts, "devDependencies": deps or {}}))


class TestDetectCommands:
    def test_vite_project(self, tmp_path):
        _write_package(
            tmp_path,
            {"test": "vitest", "build": "vite build", "lint": "eslint .", "dev": "vite"},
            {"vite": "^5.0.0"},
        )
        detected = detect_commands(tmp_path)
        assert detected.stack == "vite_frontend"
        assert detected.primary_test == "npm test"
        assert detected.smoke_test == "npm run dev"
        assert detected.build_command == "npm run build"
        assert detected.syntax_check_command == "npm run lint"
        assert detected.diagnostic_command == "npm run build"
        assert detected.service_commands == ["npm run dev"]

    def test_pnpm_lockfile_switches_package_manager(self, tmp_path):
        _write_package(tmp_path, {"test": "jest", "start": "node server.js"})
        (tmp_path / "pnpm-lock.yaml").write_text("")
        detected = detect_commands(tmp_path)
        assert detected.stack == "node"
        assert detected.primary_test == "pnpm test"
        assert detected.smoke_test == "pnpm start"

    def test_typescript_without_lint_uses_tsc(self, tmp_path):
        _write_package(tmp_path, {"test": "jest"})
        (tmp_path / "tsconfig.json").write_text("{}")
        assert detect_commands(tmp_path).syntax_check_command == "npx tsc --noEmit"

    def test_python_project(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\nname='x'\n")
        (tmp_path / "app.py").write_text("print('hi')\n")
        detected = detect_commands(tmp_path)
        assert detected.stack == "python"
        assert detected.primary_test == "pytest"
        assert detected.syntax_check_command == "python3 -m compileall . -q"
        assert detected.smoke_test == "python app.py"

    def test_rust_project(self, tmp_path):
        (tmp_path / "Cargo.toml").write_text("[package]\nname='x'\n")
        detected = detect_commands(tmp_path)
        assert detected.stack == "rust"
        assert detected.primary_test == "cargo test"

    def test_unknown_project(self, tmp_path):
        detected = detect_commands(tmp_path)
        assert detected.stack == "unknown"
        assert select_commands(detected, ExecutionProfile.STRICT, 3) == []


class TestSelectCommands:
    DETECTED = DetectedCommands(
        stack="node",
        build_command="npm run build",
        primary_test="npm test",
        smoke_test="npm run dev",
        lint_command="npm run lint",
        syntax_check_command="npm run lint",
        diagnostic_command="npm run build",
    )

    def test_strict_runs_everything_once(self):
        assert select_commands(self.DETECTED, ExecutionProfile.STRICT, 2) == [
            ("syntax", "npm run lint"),
            ("test", "npm test"),
            ("build", "npm run build"),
        ]

    def test_fast_without_changes_skips_syntax(self):
        assert select_commands(self.DETECTED, ExecutionProfile.FAST, 0) == [
            ("diagnostic", "npm run build"),
            ("test", "npm test"),
        ]

    def test_smoke_prefers_smoke_command(self):
        assert select_commands(self.DETECTED, ExecutionProfile.SMOKE, 0) == [("smoke", "npm run dev")]

    def test_yolo_runs_one_diagnostic(self):
        assert select_commands(self.DETECTED, ExecutionProfile.YOLO, 0) == [("diagnostic", "npm run build")]

    def test_syntax_only_selection_gets_a_fallback(self):
        detected = DetectedCommands(syntax_check_command="check", smoke_test="run")
        assert select_commands(detected, ExecutionProfile.STRICT, 1) == [("syntax", "check"), ("smoke", "run")]


class TestFastPath:
    def test_smoke_small_clean_change(self, settings):
        assert can_use_fast_path(ExecutionProfile.SMOKE, 2, True, [], settings)

    def test_smoke_limits(self, settings):
        assert not can_use_fast_path(ExecutionProfile.SMOKE, 4, True, [], settings)
        assert not can_use_fast_path(ExecutionProfile.SMOKE, 0, True, [], settings)
        assert not can_use_fast_path(ExecutionProfile.SMOKE, 1, False, [], settings)

    def test_smoke_requires_no_build_errors(self, settings):
        diag = [DiagnosticsEntry(source="build", message="boom")]
        assert not can_use_fast_path(ExecutionProfile.SMOKE, 1, True, diag, settings)

    def test_yolo_tolerates_diagnostics(self, settings):
        diag = [DiagnosticsEntry(source="build", message="boom")]
        assert can_use_fast_path(ExecutionProfile.YOLO, 5, True, diag, settings)
        assert not can_use_fast_path(ExecutionProfile.YOLO, 6, True, diag, settings)

    def test_other_profiles_never_fast_path(self, settings):
        assert not can_use_fast_path(ExecutionProfile.FAST, 1, True, [], settings)
        assert not can_use_fast_path(ExecutionProfile.STRICT, 1, True, [], settings)


class TestFunctionalChecks:
    def test_functional_command_recognition(self):
        assert is_functional_command("npm run dev")
        assert is_functional_command("python app.py")
        assert is_functional_command("go run .")
        assert not is_functional_command("npm test")
        assert not is_functional_command("python -m pytest")
        assert not is_functional_command("ls -la")

    def test_record(self):
        [check] = record_functional_check("npm start", 0, "coder")
        assert (check.command, check.exit_code, check.node) == ("npm start", 0, "coder")
        assert record_functional_check("npm run build", 0, "coder") == []

    def test_derive_status_uses_recent_window(self):
        def checks(*codes):
            return [FunctionalCheck(command="npm start", exit_code=c) for c in codes]

        assert derive_functional_status(checks(1, 1, 0, 1, 1))
        assert not derive_functional_status(checks(0, 1, 1, 1))
        assert not derive_functional_status([])


class TestRunSignature:
    def test_all_passing(self):
        assert run_signature([VerificationRun(command="pytest", exit_code=0, passed=True)]) == "pass"
        assert run_signature([]) == "pass"

    def test_last_failure_wins(self):
        runs = [
            VerificationRun(command="lint", exit_code=1, passed=False, output="style"),
            VerificationRun(command="pytest", exit_code=1, passed=False, output="  1 failed \n"),
        ]
        assert run_signature(runs) == "pytest:1:1 failed"

    def test_bounded_length(self):
        run = VerificationRun(command="x" * 300, exit_code=2, passed=False)
        assert len(run_signature([run])) == 256
