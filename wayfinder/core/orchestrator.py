"""LangGraph orchestrator for the agent workflow.

    planner ──▶ researcher ──▶ planner
       │──────▶ coder ───────▶ verifier
       │──────▶ verifier ──▶ planner | ticket_closer | END
       │──────▶ snitch ──▶ END
       └──────▶ END
"""

from __future__ import annotations

import asyncio
import time
import uuid
from functools import partial

from langchain_core.messages import HumanMessage
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger
from wayfinder.core.nodes import (
    coder_node,
    planner_node,
    researcher_node,
    snitch_node,
    ticket_closer_node,
    verifier_node,
)
from wayfinder.core.project_memory import append_run_summary, summary_from_report
from wayfinder.core.run_report import RunReport
from wayfinder.core.state import ExecutionProfile, NextNode, PlanDecision, ProjectBrief, RunState, TerminalStatus

logger = get_logger("core.orchestrator")


def _route_after_planner(state: RunState) -> str:
    next_node = (state.plan.next if state.plan else "").strip().lower()
    if next_node == NextNode.DONE:
        return "done"
    if next_node in (NextNode.SNITCH, NextNode.ASK_HUMAN):
        return "snitch"
    if next_node in (NextNode.RESEARCHER, NextNode.CODER, NextNode.VERIFIER):
        return next_node
    logger.warning("Unknown planner decision '%s' - defaulting", next_node)
    return "coder" if state.research_results else "researcher"


def _route_after_verifier(state: RunState) -> str:
    if not state.done:
        return "planner"
    if state.brief.ticket_path:
        return "ticket_closer"
    return "done"


def build_graph(ctx: RunContext) -> StateGraph:
    """Construct the workflow graph with every node bound to *ctx*."""
    graph = StateGraph(RunState)

    graph.add_node("planner", partial(planner_node, ctx=ctx))
    graph.add_node("researcher", partial(researcher_node, ctx=ctx))
    graph.add_node("coder", partial(coder_node, ctx=ctx))
    graph.add_node("verifier", partial(verifier_node, ctx=ctx))
    graph.add_node("snitch", partial(snitch_node, ctx=ctx))
    graph.add_node("ticket_closer", partial(ticket_closer_node, ctx=ctx))

    graph.set_entry_point("planner")

    graph.add_conditional_edges(
        "planner",
        _route_after_planner,
        {"researcher": "researcher", "coder": "coder", "verifier": "verifier", "snitch": "snitch", "done": END},
    )
    graph.add_edge("researcher", "planner")
    graph.add_edge("coder", "verifier")
    graph.add_conditional_edges(
        "verifier",
        _route_after_verifier,
        {"planner": "planner", "ticket_closer": "ticket_closer", "done": END},
    )
    graph.add_edge("snitch", END)
    graph.add_edge("ticket_closer", END)

    return graph


def compile_graph(ctx: RunContext):
    graph = build_graph(ctx)
    return graph.compile()


def initial_state(brief: ProjectBrief, run_profile: ExecutionProfile | None = None) -> RunState:
    return RunState(
        brief=brief,
        run_profile=run_profile,
        messages=[HumanMessage(content=brief.goal or "(no goal)")],
    )


def _stream_run(compiled, state: RunState, config: dict, latest: dict) -> None:
    """Drive the graph to completion, keeping the newest full state in ``latest["values"]``."""
    for values in compiled.stream(state, config, stream_mode="values"):
        latest["values"] = values


def _as_state(values, fallback: RunState) -> RunState:
    if values is None:
        return fallback
    if isinstance(values, RunState):
        return values
    return RunState(**values)


def _abort_on_recursion(state: RunState, ctx: RunContext) -> RunState:
    """Mark *state* stuck and let the snitch record it, keeping the work done so far."""
    aborted = state.model_copy(update={
        "done": False,
        "terminal_status": TerminalStatus.ABORTED_STUCK,
        "plan": PlanDecision(next="snitch", reason="Graph recursion limit reached", source="guard"),
    })
    updates = snitch_node(aborted, ctx)
    notes = updates.pop("messages", [])
    return aborted.model_copy(update={**updates, "messages": aborted.messages + notes})


async def run_workflow(
    brief: ProjectBrief,
    ctx: RunContext,
    run_profile: ExecutionProfile | None = None,
) -> tuple[RunState, RunReport]:
    """Execute the workflow for *brief*; always returns a final state and a report."""
    settings = ctx.settings
    run_id = uuid.uuid4().hex[:8]
    compiled = compile_graph(ctx)
    state = initial_state(brief, run_profile)

    logger.info(
        "Starting workflow %s | goal: %s | ticket: %s | profile: %s",
        run_id, brief.goal[:100], brief.ticket_id or "-", run_profile.value if run_profile else "auto",
    )

    started = time.monotonic()
    error = ""
    latest: dict = {}
    try:
        await asyncio.to_thread(
            _stream_run, compiled, state, {"recursion_limit": settings.recursion_limit}, latest,
        )
        final_state = _as_state(latest.get("values"), state)
    except GraphRecursionError:
        logger.error("Workflow %s hit the recursion limit (%d)", run_id, settings.recursion_limit)
        final_state = _abort_on_recursion(_as_state(latest.get("values"), state), ctx)
    except Exception as exc:
        logger.exception("Workflow %s failed", run_id)
        final_state = _as_state(latest.get("values"), state)
        error = str(exc)

    duration = time.monotonic() - started
    report = RunReport.from_state(run_id, final_state, duration, error)
    if not settings.dry_run:
        append_run_summary(ctx.root, summary_from_report(report, brief.goal))
    logger.info(
        "Workflow complete | %s | status: %s | steps: %d | files: %d",
        run_id, report.status, final_state.step_count, final_state.file_change_count,
    )
    return final_state, report
