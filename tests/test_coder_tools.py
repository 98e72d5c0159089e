"""Tests for the Coder's tool set and its session bookkeeping."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from wayfinder.core.state import Budget, DetectedCommands, ExecutionProfile
from wayfinder.tools.coder_tools import CoderSession, build_coder_tools


def _budget(**overrides):
    values = dict(max_commands=10, max_test_runs=3, max_web_requests=5)
    values.update(overrides)
    return Budget(**values)


@pytest.fixture
def session(settings, tmp_path):
    return CoderSession(root_dir=tmp_path, budget=_budget(), profile=ExecutionProfile.FAST)


def _tools(session):
    return {t.name: t for t in build_coder_tools(session)}


class TestFileTools:
    def test_tool_names(self, session):
        assert sorted(_tools(session)) == [
            "list_files", "read_file", "run_command", "run_tests", "write_file", "write_patch",
        ]

    def test_write_then_read(self, session, tmp_path):
        tools = _tools(session)
        assert tools["write_file"].invoke({"path": "src/a.py", "content": "x = 1\n"}).startswith("[OK] created")
        assert tools["write_file"].invoke({"path": "src/a.py", "content": "x = 2\n"}).startswith("[OK] wrote")
        assert session.file_changes == {"src/a.py": "created"}
        assert tools["read_file"].invoke({"path": "src/a.py"}) == "x = 2\n"

    def test_existing_file_is_modified(self, session, tmp_path):
        (tmp_path / "b.py").write_text("old\n")
        _tools(session)["write_file"].invoke({"path": "b.py", "content": "new\n"})
        assert session.file_changes == {"b.py": "modified"}

    def test_errors_are_returned_not_raised(self, session):
        tools = _tools(session)
        assert tools["read_file"].invoke({"path": "missing.py"}).startswith("ERROR:")
        assert tools["write_file"].invoke({"path": "../escape.py", "content": "x"}).startswith("ERROR:")
        assert session.file_changes == {}

    def test_list_files(self, session, tmp_path):
        tools = _tools(session)
        assert tools["list_files"].invoke({}) == "(no files matched)"
        (tmp_path / "a.py").write_text("")
        assert tools["list_files"].invoke({"pattern": "*.py"}) == "a.py"


class TestWritePatch:
    DIFF = "@@ -0,0 +1 @@\n+line\n"

    def test_identical_patch_refused_after_two_applications(self, session, tmp_path):
        patch = _tools(session)["write_patch"]
        assert patch.invoke({"path": "notes.txt", "diff": self.DIFF}) == "[OK] patched notes.txt"
        assert patch.invoke({"path": "notes.txt", "diff": self.DIFF}) == "[OK] patched notes.txt"
        refused = patch.invoke({"path": "notes.txt", "diff": self.DIFF})

        assert refused.startswith("ERROR: this exact patch")
        assert (tmp_path / "notes.txt").read_text() == "line\nline\n"
        assert list(session.patch_fingerprints.values()) == [2]
        assert session.file_changes == {"notes.txt": "created"}

    def test_bad_patch(self, session, tmp_path):
        (tmp_path / "f.txt").write_text("a\n")
        result = _tools(session)["write_patch"].invoke({"path": "f.txt", "diff": "@@ -1 +1 @@\n-zzz\n+b\n"})
        assert result.startswith("ERROR: patch failed for f.txt")
        assert session.patch_fingerprints == {}


class TestRunCommand:
    def test_runs_and_charges(self, session):
        result = _tools(session)["run_command"].invoke({"command": "echo hi"})
        assert result == "[OK] echo hi\nhi"
        assert session.budget.commands_used == 1
        assert session.budget.command_history[0].node == "coder"
        assert session.commands_run == 1

    def test_install_refused_under_fast(self, session):
        result = _tools(session)["run_command"].invoke({"command": "pip install requests"})
        assert "not allowed" in result
        assert session.budget.commands_used == 0

    def test_profile_command_limit(self, settings, tmp_path):
        session = CoderSession(root_dir=tmp_path, budget=_budget(), profile=ExecutionProfile.SMOKE)
        run = _tools(session)["run_command"]
        for _ in range(3):
            assert run.invoke({"command": "true"}).startswith("[OK]")
        assert "command limit" in run.invoke({"command": "true"})
        assert session.budget.commands_used == 3

    @pytest.mark.parametrize("command", ["npx playwright install chromium", "python3 app.py", "npm run dev"])
    def test_app_run_refused_under_smoke(self, settings, tmp_path, command):
        session = CoderSession(root_dir=tmp_path, budget=_budget(), profile=ExecutionProfile.SMOKE)
        result = _tools(session)["run_command"].invoke({"command": command})
        assert result.startswith("ERROR: starting the app or heavy tooling is not allowed")
        assert session.budget.commands_used == 0
        assert session.functional_checks == []

    def test_heavy_command_allowed_under_yolo(self, settings, tmp_path):
        session = CoderSession(root_dir=tmp_path, budget=_budget(), profile=ExecutionProfile.YOLO)
        with patch("wayfinder.tools.coder_tools.execute_command") as execute:
            execute.return_value.exit_code = 0
            execute.return_value.render.return_value = "[OK] npx playwright install"
            result = _tools(session)["run_command"].invoke({"command": "npx playwright install"})
        assert result == "[OK] npx playwright install"
        assert session.budget.commands_used == 1

    def test_budget_exhausted(self, settings, tmp_path):
        session = CoderSession(root_dir=tmp_path, budget=_budget(max_commands=1, commands_used=1))
        assert "budget exhausted" in _tools(session)["run_command"].invoke({"command": "true"})

    def test_functional_check_recorded(self, session, tmp_path):
        (tmp_path / "app.py").write_text("print('up')\n")
        _tools(session)["run_command"].invoke({"command": "python3 app.py"})
        [check] = session.functional_checks
        assert check.command == "python3 app.py"
        assert check.node == "coder"


class TestRunTests:
    def test_needs_a_command(self, session):
        assert _tools(session)["run_tests"].invoke({}).startswith("ERROR: no test command")

    def test_detected_command_used(self, settings, tmp_path):
        session = CoderSession(
            root_dir=tmp_path, budget=_budget(), detected=DetectedCommands(primary_test="true"),
        )
        assert _tools(session)["run_tests"].invoke({}).startswith("[OK] true")
        [run] = session.test_results
        assert run.passed and run.kind == "test"
        assert session.budget.test_runs_used == 1
        assert session.budget.commands_used == 0

    def test_failure_recorded(self, session):
        _tools(session)["run_tests"].invoke({"command": "echo 'FAILED tests/test_a.py::test_x' && false"})
        [run] = session.test_results
        assert not run.passed
        assert "FAILED tests/test_a.py::test_x" in run.output

    def test_test_budget_exhausted(self, settings, tmp_path):
        session = CoderSession(root_dir=tmp_path, budget=_budget(max_test_runs=1, test_runs_used=1))
        assert "budget exhausted" in _tools(session)["run_tests"].invoke({"command": "true"})


class TestForbiddenPaths:
    @pytest.fixture
    def guarded(self, settings, tmp_path):
        return CoderSession(root_dir=tmp_path, budget=_budget(), forbidden_paths=["migrations/", ".env"])

    def test_write_file_refused(self, guarded, tmp_path):
        result = _tools(guarded)["write_file"].invoke({"path": "migrations/0002.py", "content": "x"})
        assert result == "ERROR: migrations/0002.py is a forbidden path (migrations/). Editing it is a policy violation."
        assert not (tmp_path / "migrations").exists()
        assert guarded.violations == ["migrations/0002.py"]
        assert guarded.file_changes == {}

    def test_write_patch_refused(self, guarded, tmp_path):
        (tmp_path / ".env").write_text("KEY=1\n")
        result = _tools(guarded)["write_patch"].invoke({"path": ".env", "diff": "@@ -1 +1 @@\n-KEY=1\n+KEY=2\n"})
        assert result.startswith("ERROR: .env is a forbidden path")
        assert (tmp_path / ".env").read_text() == "KEY=1\n"
        assert guarded.violations == [".env"]
        assert guarded.patch_fingerprints == {}

    def test_other_paths_allowed(self, guarded):
        assert _tools(guarded)["write_file"].invoke({"path": "src/app.py", "content": "x"}).startswith("[OK]")
        assert guarded.violations == []
