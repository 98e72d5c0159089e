"""Coder node: bounded tool-calling loop against the repository."""
from __future__ import annotations

from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage

from wayfinder.agents.models import load_prompt
from wayfinder.agents.oracle import OracleError, message_text
from wayfinder.core.budget import initial_budget
from wayfinder.core.context import RunContext
from wayfinder.core.diagnostics import get_primary_failure
from wayfinder.core.logging import get_logger
from wayfinder.core.state import ExecutionProfile, RunState, TaskScope
from wayfinder.core.verification import run_signature
from wayfinder.tools.coder_tools import CoderSession, build_coder_tools
from wayfinder.tools.commands import truncate

from ._helpers import node_note, recent_notes, render_brief, render_findings, render_state_digest

logger = get_logger("core.nodes.coder")

TOOL_RESULT_MAX_CHARS = 8000


def coder_turn_limit(state: RunState, max_turns: int) -> int:
    """Tool rounds allowed for one visit; tiny tasks and smoke runs get fewer."""
    if state.effective_profile == ExecutionProfile.SMOKE:
        return max(3, max_turns // 3)
    if state.scope == TaskScope.TINY:
        return max(3, max_turns // 2)
    return max_turns


def _task_prompt(state: RunState) -> str:
    parts = [
        render_brief(state.brief),
        f"## Current state\n{render_state_digest(state)}",
        f"## Research findings\n{render_findings(state)}",
    ]
    primary = get_primary_failure(state.diagnostics_log)
    if primary:
        where = f"{primary.file}:{primary.location}" if primary.location else primary.file or "(unknown file)"
        parts.append(f"## Fix this first\n[{primary.source}] {where}\n{primary.message}")
    failing = [t for t in state.test_results if not t.passed]
    if failing:
        last = failing[-1]
        parts.append(f"## Last failing command\n$ {last.command}\n{last.output[-3000:]}")
    notes = recent_notes(state.messages)
    if notes:
        parts.append(f"## Recent notes\n{notes}")
    parts.append("Make the smallest change that moves the goal forward, then stop calling tools.")
    return "\n\n".join(parts)


def coder_node(state: RunState, ctx: RunContext) -> dict:
    """Let the oracle read, edit and run commands until it stops calling tools."""
    settings = ctx.settings
    session = CoderSession(
        root_dir=ctx.root,
        budget=state.budget or initial_budget(state.effective_profile, state.scope or TaskScope.NORMAL),
        profile=state.effective_profile,
        detected=state.detected_commands,
        file_changes=dict(state.file_changes),
        patch_fingerprints=dict(state.patch_fingerprints),
        forbidden_paths=list(state.brief.forbidden_paths),
    )
    tools = build_coder_tools(session)
    tool_map = {t.name: t for t in tools}
    transcript = [SystemMessage(content=load_prompt("coder")), HumanMessage(content=_task_prompt(state))]

    max_turns = coder_turn_limit(state, settings.max_coder_turns)
    summary = ""
    for turn in range(max_turns):
        try:
            response = ctx.oracle.complete("coder", transcript, tools=tools)
        except OracleError as exc:
            logger.error("Coder oracle failed on turn %d: %s", turn + 1, exc)
            summary = f"oracle error: {exc}"
            break
        transcript.append(response)

        if not response.tool_calls:
            summary = message_text(response).strip()
            break

        for tc in response.tool_calls:
            tool_fn = tool_map.get(tc["name"])
            if tool_fn:
                try:
                    result = tool_fn.invoke(tc["args"])
                except Exception as e:
                    result = f"Tool error: {e}"
                    logger.warning("Tool %s failed: %s", tc["name"], e)
            else:
                result = f"Unknown tool: {tc['name']}"
            logger.info("tool_call  | %s(%s) -> %d chars", tc["name"], list(tc["args"].keys()), len(str(result)))
            transcript.append(ToolMessage(
                content=truncate(str(result), TOOL_RESULT_MAX_CHARS),
                tool_call_id=tc["id"],
            ))
    else:
        logger.warning("Coder hit the turn limit (%d)", max_turns)
        summary = f"turn limit ({max_turns}) reached"

    changed = sorted(p for p, kind in session.file_changes.items() if state.file_changes.get(p) != kind)
    logger.info(
        "Coder finished | %d files touched this visit | commands=%d tests=%d | %s",
        len(changed), session.commands_run, session.tests_run, session.budget.summary(),
    )

    note = f"changed {', '.join(changed) if changed else 'no new files'}"
    if summary:
        note += f" | {summary[:300]}"
    updates = {
        "file_changes": session.file_changes,
        "patch_fingerprints": session.patch_fingerprints,
        "budget": session.budget,
        "functional_checks": session.functional_checks,
        "messages": [node_note("coder", note)],
    }
    if session.test_results:
        updates["test_results"] = session.test_results
        updates["last_test_signature"] = run_signature(session.test_results)
    if session.violations:
        updates["policy_violations"] = state.policy_violations + [
            p for p in session.violations if p not in state.policy_violations
        ]
    return updates
