"""Tests for the Snitch node's issue log, risk register and blocklist writes."""

from __future__ import annotations

from wayfinder.core.nodes import snitch_node
from wayfinder.core.risk import OPEN_TICKETS_DIR, is_ticket_blocked, sdd_root
from wayfinder.core.state import (
    Budget,
    CommandRecord,
    FailureRecord,
    PlanDecision,
    ProjectBrief,
    RunState,
    TerminalStatus,
)


def _brief():
    return ProjectBrief(goal="Fix login redirect", ticket_id="07-login", ticket="# Fix login redirect")


class TestSnitchNode:
    def test_stuck_run_writes_everything(self, ctx, tmp_path):
        state = RunState(
            brief=_brief(),
            plan=PlanDecision(next="snitch", reason="Max steps limit reached", source="guard"),
            terminal_status=TerminalStatus.ABORTED_STUCK,
            same_error_count=3,
            failure_history=[FailureRecord(step="verifier", error="AssertionError: 302 != 200", kind="test_failure")],
        )
        updates = snitch_node(state, ctx)

        assert updates["done"] is False
        assert updates["terminal_status"] == TerminalStatus.ABORTED_STUCK
        assert updates["issues"] == ["Max steps limit reached"]
        assert updates["risks"] == ["R-001"]
        assert updates["messages"][0].content == "[snitch] aborted_stuck: Max steps limit reached"

        issues = (sdd_root(tmp_path) / "issues.md").read_text()
        assert "**Reason:** Max steps limit reached" in issues
        assert "**Status:** aborted_stuck" in issues
        assert "[verifier] (test_failure)" in issues

        register = (sdd_root(tmp_path) / "risk_register.md").read_text()
        assert "| R-001 | Agent Logic |" in register

        tickets = list((sdd_root(tmp_path) / OPEN_TICKETS_DIR).glob("*-tech-debt-*.md"))
        assert len(tickets) == 1
        assert is_ticket_blocked(tmp_path, "07-login")

    def test_defaults_without_plan(self, ctx, tmp_path):
        updates = snitch_node(RunState(brief=_brief()), ctx)
        assert updates["terminal_status"] == TerminalStatus.ABORTED_CONSTRAINT
        assert updates["issues"] == ["Run stopped without a reason"]
        assert updates["risks"] == []
        assert not (sdd_root(tmp_path) / "risk_register.md").exists()
        assert not is_ticket_blocked(tmp_path, "07-login")

    def test_budget_abort_records_medium_risk_without_ticket(self, ctx, tmp_path):
        state = RunState(
            brief=_brief(),
            plan=PlanDecision(next="snitch", reason="Budget exhausted", source="guard"),
            terminal_status=TerminalStatus.ABORTED_CONSTRAINT,
            budget=Budget(max_commands=3, max_test_runs=1, max_web_requests=1, commands_used=3),
        )
        updates = snitch_node(state, ctx)
        assert updates["risks"] == ["R-001"]
        assert not (sdd_root(tmp_path) / OPEN_TICKETS_DIR).exists()
        assert not is_ticket_blocked(tmp_path, "07-login")

    def test_rerun_commands_reach_register(self, ctx, tmp_path):
        history = [CommandRecord(command="npm test", node="coder") for _ in range(4)]
        state = RunState(
            brief=ProjectBrief(goal="Fix flaky suite"),
            plan=PlanDecision(next="snitch", reason="Oracle gave up"),
            budget=Budget(max_commands=10, max_test_runs=5, max_web_requests=1, command_history=history),
        )
        updates = snitch_node(state, ctx)
        assert updates["risks"] == ["R-001"]
        register = (sdd_root(tmp_path) / "risk_register.md").read_text()
        assert "Command 'npm test' was re-run 4 times." in register

    def test_existing_issues_and_risks_are_kept(self, ctx):
        state = RunState(
            brief=ProjectBrief(goal="x"),
            plan=PlanDecision(next="ask_human", reason="Need credentials"),
            issues=["earlier"],
            risks=["R-009"],
        )
        updates = snitch_node(state, ctx)
        assert updates["issues"] == ["earlier", "Need credentials"]
        assert updates["risks"] == ["R-009"]
