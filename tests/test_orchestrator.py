"""Tests for graph routing and end-to-end workflow runs with a scripted oracle."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage

from wayfinder.core.brief import load_brief
from wayfinder.core.orchestrator import (
    _route_after_planner,
    _route_after_verifier,
    build_graph,
    initial_state,
    run_workflow,
)
from wayfinder.core.project_memory import load_project_memory
from wayfinder.core.risk import OPEN_TICKETS_DIR, sdd_root
from wayfinder.core.state import (
    DetectedCommands,
    ExecutionProfile,
    PlanDecision,
    ProjectBrief,
    ResearchFinding,
    RunState,
    TerminalStatus,
)


def _planned(next_node, **overrides):
    return RunState(plan=PlanDecision(next=next_node), **overrides)


class TestRouting:
    @pytest.mark.parametrize("next_node,expected", [
        ("done", "done"),
        ("snitch", "snitch"),
        ("ask_human", "snitch"),
        ("researcher", "researcher"),
        ("coder", "coder"),
        ("verifier", "verifier"),
        (" Coder ", "coder"),
    ])
    def test_after_planner(self, next_node, expected):
        assert _route_after_planner(_planned(next_node)) == expected

    def test_unknown_without_research_goes_to_researcher(self):
        assert _route_after_planner(_planned("deploy")) == "researcher"

    def test_unknown_with_research_goes_to_coder(self):
        state = _planned("deploy", research_results=[ResearchFinding(statement="x")])
        assert _route_after_planner(state) == "coder"

    def test_no_plan(self):
        assert _route_after_planner(RunState()) == "researcher"

    def test_after_verifier(self):
        assert _route_after_verifier(RunState(done=False)) == "planner"
        assert _route_after_verifier(RunState(done=True)) == "done"
        ticketed = RunState(done=True, brief=ProjectBrief(ticket_path="/t/open/1-a.md"))
        assert _route_after_verifier(ticketed) == "ticket_closer"


class TestGraph:
    def test_all_nodes_registered(self, ctx):
        graph = build_graph(ctx)
        assert set(graph.nodes) == {"planner", "researcher", "coder", "verifier", "snitch", "ticket_closer"}

    def test_initial_state(self):
        state = initial_state(ProjectBrief(goal="Do it"), ExecutionProfile.YOLO)
        assert state.run_profile == ExecutionProfile.YOLO
        assert state.messages[0].content == "Do it"
        assert state.step_count == 0


class TestRunWorkflow:
    @pytest.mark.asyncio
    async def test_planner_finishes_immediately(self, ctx, oracle):
        oracle.push("planner", {"next": "done", "reason": "already implemented"})
        final, report = await run_workflow(ProjectBrief(goal="Add a README badge"), ctx)

        assert final.done is True
        assert final.terminal_status == TerminalStatus.DONE_SUCCESS
        assert final.step_count == 1
        assert report.status == "success"
        assert report.stop_reason == "already implemented"
        assert not report.failed

    @pytest.mark.asyncio
    async def test_ticket_run_goes_coder_verifier_closer(self, ctx, oracle, tmp_path):
        ticket = sdd_root(tmp_path) / OPEN_TICKETS_DIR / "01-hello.md"
        ticket.parent.mkdir(parents=True)
        ticket.write_text("# Write hello file\n")
        brief = load_brief(tmp_path, ticket_path=ticket)

        oracle.push("planner", {"next": "coder", "reason": "simple"})
        oracle.push(
            "coder",
            AIMessage(content="", tool_calls=[{
                "name": "write_file", "args": {"path": "hello.txt", "content": "hello\n"}, "id": "c1",
            }]),
            AIMessage(content="wrote hello.txt"),
        )

        final, report = await run_workflow(brief, ctx)

        assert oracle.roles_called() == ["planner", "coder", "coder"]
        assert (tmp_path / "hello.txt").read_text() == "hello\n"
        assert final.file_changes == {"hello.txt": "created"}
        assert final.terminal_status == TerminalStatus.DONE_PARTIAL
        assert final.verification_summary == "no verification available"
        closed = ticket.parent.parent / "closed" / "01-hello.md"
        assert closed.exists() and not ticket.exists()
        assert final.brief.ticket_path == str(closed)
        assert report.status == "partial"
        assert report.ticket_id == "01-hello"

    @pytest.mark.asyncio
    async def test_snitch_run_is_failed(self, ctx, oracle, tmp_path):
        oracle.push("planner", {"next": "snitch", "reason": "ticket needs credentials"})
        final, report = await run_workflow(ProjectBrief(goal="Deploy the api"), ctx)

        assert final.terminal_status == TerminalStatus.ABORTED_CONSTRAINT
        assert final.issues == ["ticket needs credentials"]
        assert (sdd_root(tmp_path) / "issues.md").exists()
        assert report.failed

    @pytest.mark.asyncio
    async def test_recursion_limit_aborts_stuck(self, ctx, oracle, settings):
        settings.recursion_limit = 2
        settings.offline_mode = True
        oracle.push("planner", *[{"next": "researcher"}] * 5)
        final, report = await run_workflow(ProjectBrief(goal="Loop forever"), ctx)

        assert final.terminal_status == TerminalStatus.ABORTED_STUCK
        assert final.plan.reason == "Graph recursion limit reached"
        assert final.issues == ["Graph recursion limit reached"]
        assert report.status == "failed"

    @pytest.mark.asyncio
    async def test_recursion_limit_keeps_work_done(self, ctx, oracle, settings, tmp_path):
        settings.recursion_limit = 6
        for i in range(4):
            oracle.push("planner", {"next": "coder", "reason": f"write file {i}"})
            oracle.push(
                "coder",
                AIMessage(content="", tool_calls=[{
                    "name": "write_file", "args": {"path": f"f{i}.txt", "content": "x\n"}, "id": f"c{i}",
                }]),
                AIMessage(content=f"wrote f{i}.txt"),
            )
            oracle.push("verifier", {"status": "fail", "summary": "not yet"})

        detected = DetectedCommands(stack="python", primary_test="true")
        with patch("wayfinder.core.nodes.verifier.detect_commands", return_value=detected):
            final, report = await run_workflow(
                ProjectBrief(goal="Write numbered files"), ctx, run_profile=ExecutionProfile.FAST,
            )

        assert (tmp_path / "f0.txt").exists()
        assert final.terminal_status == TerminalStatus.ABORTED_STUCK
        assert "f0.txt" in final.file_changes
        assert final.step_count >= 1
        assert final.budget is not None and final.budget.test_runs_used >= 1
        assert "f0.txt" in report.files_changed
        assert report.steps == final.step_count
        assert "Graph recursion limit reached" in (sdd_root(tmp_path) / "issues.md").read_text()

    @pytest.mark.asyncio
    async def test_graph_receives_state_model(self, ctx):
        compiled = MagicMock()
        compiled.stream.return_value = iter([])
        with patch("wayfinder.core.orchestrator.compile_graph", return_value=compiled):
            final, _ = await run_workflow(ProjectBrief(goal="x"), ctx)

        sent = compiled.stream.call_args.args[0]
        assert isinstance(sent, RunState)
        assert sent.messages[0].content == "x"
        assert compiled.stream.call_args.kwargs == {"stream_mode": "values"}
        assert final.brief.goal == "x"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, ctx):
        compiled = MagicMock()
        compiled.stream.side_effect = RuntimeError("boom")
        with patch("wayfinder.core.orchestrator.compile_graph", return_value=compiled):
            final, report = await run_workflow(ProjectBrief(goal="x"), ctx, run_profile=ExecutionProfile.FAST)

        assert report.status == "error"
        assert report.error == "boom"
        assert final.run_profile == ExecutionProfile.FAST

    @pytest.mark.asyncio
    async def test_run_outcome_is_remembered(self, ctx, oracle, tmp_path):
        oracle.push("planner", {"next": "snitch", "reason": "ticket needs credentials"})
        await run_workflow(ProjectBrief(goal="Deploy the api"), ctx)

        [run] = load_project_memory(tmp_path).runs
        assert run.goal == "Deploy the api"
        assert run.outcome == "failed"
        assert run.lesson == "ticket needs credentials"

    @pytest.mark.asyncio
    async def test_dry_run_leaves_memory_untouched(self, ctx, oracle, settings, tmp_path):
        settings.dry_run = True
        oracle.push("planner", {"next": "done"})
        await run_workflow(ProjectBrief(goal="x"), ctx)
        assert load_project_memory(tmp_path).runs == []
