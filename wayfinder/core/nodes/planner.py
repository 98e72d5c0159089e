"""Planner node: lazy run setup, stop guards, and the next-step decision."""
from __future__ import annotations

from langchain_core.messages import HumanMessage, SystemMessage

from wayfinder.agents.models import load_prompt
from wayfinder.agents.oracle import ask_json
from wayfinder.core.budget import initial_budget
from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger
from wayfinder.core.progress import (
    EDGE_ABORT_REASONS,
    assess_progress,
    bump_edge,
    make_snapshot,
    refresh_loop_counters,
    research_signature,
)
from wayfinder.core.project_memory import format_memory_for_prompt, load_project_memory
from wayfinder.core.project_summary import build_project_summary
from wayfinder.core.state import (
    ExecutionProfile,
    NextNode,
    PlanDecision,
    RunState,
    TerminalStatus,
)
from wayfinder.core.task_scope import estimate_task_scope, heuristic_profile, task_type_hint
from wayfinder.core.verification import derive_functional_status

from ._helpers import node_note, recent_notes, render_brief, render_findings, render_state_digest

logger = get_logger("core.nodes.planner")

_VALID_NEXT = {n.value for n in NextNode}
_DONE_STATUSES = {TerminalStatus.DONE_SUCCESS.value, TerminalStatus.DONE_PARTIAL.value}

VERIFIER_LOOP_WARNING = (
    "CRITICAL WARNING: you have routed to the verifier {count} times without any new file "
    "changes. Verifying again will not change the outcome. Route to the coder to make a "
    "change, or finish with done/snitch."
)


def _parse_profile(value) -> ExecutionProfile | None:
    if not value:
        return None
    try:
        return ExecutionProfile(str(value).strip().lower())
    except ValueError:
        return None


def _fallback_next(state: RunState) -> str:
    return NextNode.CODER.value if state.research_results else NextNode.RESEARCHER.value


def _stop(updates: dict, next_node: str, status: TerminalStatus, reason: str) -> dict:
    """Finish the planner visit with a guard decision."""
    logger.warning("Planner guard: %s -> %s (%s)", reason, next_node, status.value)
    updates.update({
        "plan": PlanDecision(next=next_node, reason=reason, profile=updates.get("profile"), source="guard"),
        "terminal_status": status,
        "done": next_node == NextNode.DONE.value,
        "messages": [node_note("planner", f"{status.value}: {reason}")],
    })
    return updates


def _init_run(state: RunState, ctx: RunContext) -> dict:
    """Scope, task type, heuristic profile, budget and project summary on first visit."""
    brief = state.brief
    updates: dict = {}

    scope = state.scope or estimate_task_scope(brief.goal, brief.ticket, brief.architect)
    if state.scope is None:
        updates["scope"] = scope
    if not state.task_type:
        updates["task_type"] = task_type_hint(brief.goal)

    profile = state.run_profile or state.profile or heuristic_profile(
        brief.goal, brief.ticket, brief.best_practices
    )
    if state.profile is None:
        updates["profile"] = profile

    if state.budget is None:
        updates["budget"] = initial_budget(profile, scope)
        logger.info("Budget selected for %s/%s: %s", profile.value, scope.value, updates["budget"].summary())

    if not state.project_summary:
        try:
            updates["project_summary"] = build_project_summary(ctx.root)
        except OSError as exc:
            logger.warning("Project summary unavailable: %s", exc)
    return updates


def _decision_messages(state: RunState, counters, memory: str = "") -> list:
    user = (
        f"{render_brief(state.brief)}\n\n"
        f"## Project summary\n{state.project_summary or '(not available)'}\n\n"
        f"## Project memory\n{memory or 'No previous runs recorded.'}\n\n"
        f"## Current state\n{render_state_digest(state)}\n\n"
        f"## Research findings\n{render_findings(state)}\n\n"
        f"## Recent notes\n{recent_notes(state.messages) or '(none)'}\n\n"
        "Decide the next step. Reply with JSON only."
    )
    messages = [SystemMessage(content=load_prompt("planner")), HumanMessage(content=user)]
    if counters.planner_to_verifier >= 2:
        messages.append(SystemMessage(content=VERIFIER_LOOP_WARNING.format(count=counters.planner_to_verifier)))
    return messages


def planner_node(state: RunState, ctx: RunContext) -> dict:
    """Decide which node runs next, or stop the run."""
    settings = ctx.settings
    updates = _init_run(state, ctx)
    view = state.model_copy(update=updates)

    counters = refresh_loop_counters(
        view.loop_counters,
        research_signature(view),
        view.file_change_count,
        view.last_test_signature,
    )
    snapshot = make_snapshot(view, "planner")
    step = view.step_count + 1
    updates.update({"loop_counters": counters, "progress_history": [snapshot], "step_count": step})
    logger.info("Planner visit %d | %s", step, view.budget.summary() if view.budget else "no budget")

    # ── Guards ──
    if view.policy_violations:
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_CONSTRAINT,
                     f"Policy violation: edit to forbidden path(s) {', '.join(view.policy_violations)}")

    if view.budget is not None and view.budget.exhausted:
        if derive_functional_status(view.functional_checks):
            return _stop(updates, NextNode.DONE.value, TerminalStatus.DONE_PARTIAL,
                         "Budget exhausted; recent functional checks passed")
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_CONSTRAINT,
                     f"Budget exhausted ({view.budget.summary()})")

    progress = assess_progress(view.progress_history + [snapshot], settings.stuck_window)
    if progress.stuck:
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_STUCK, progress.reason)

    if step >= settings.max_steps:
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_STUCK, "Max steps limit reached")

    if len(view.failure_history) >= settings.max_failures:
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_STUCK,
                     f"Repeated failures ({len(view.failure_history)}) without a fix")

    # ── Oracle decision ──
    memory = format_memory_for_prompt(load_project_memory(ctx.root))
    data = ask_json(ctx.oracle, "planner", _decision_messages(view, counters, memory))
    source = "oracle"
    if not isinstance(data, dict):
        logger.warning("Planner oracle gave no usable decision; falling back")
        data = {}
        source = "fallback"

    next_node = str(data.get("next") or "").strip().lower()
    reason = str(data.get("reason") or "").strip()
    if next_node not in _VALID_NEXT:
        if next_node:
            logger.warning("Planner chose unknown node %r; falling back", next_node)
        next_node = _fallback_next(view)
        reason = reason or "No usable decision; continuing with the default route"
        source = "fallback"

    profile = view.run_profile or _parse_profile(data.get("profile")) or view.effective_profile
    updates["profile"] = profile

    if (
        next_node == NextNode.DONE.value
        and profile == ExecutionProfile.STRICT
        and view.test_results
        and not view.last_tests_passed
    ):
        logger.info("Strict profile: refusing done while verification is failing")
        next_node = NextNode.VERIFIER.value
        reason = "Strict profile requires passing verification before done"

    # ── Loop ceiling ──
    counters, exceeded = bump_edge(counters, next_node, settings.loop_ceiling)
    updates["loop_counters"] = counters
    if exceeded:
        return _stop(updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_STUCK, EDGE_ABORT_REASONS[next_node])

    # ── Research gates ──
    quality = view.research_quality
    if quality is not None and next_node in (NextNode.RESEARCHER.value, NextNode.CODER.value):
        if profile == ExecutionProfile.STRICT and (
            quality.support < settings.strict_min_support
            or quality.recency < settings.strict_min_recency
            or quality.has_conflicts
        ):
            return _stop(
                updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_CONSTRAINT,
                f"Research does not meet strict evidence bar (support {quality.support:.2f}, "
                f"recency {quality.recency:.2f}, conflicts {quality.has_conflicts})",
            )
        if (
            next_node == NextNode.RESEARCHER.value
            and quality.relevance < settings.research_abandon_relevance
            and quality.attempt_count >= settings.research_abandon_attempts
        ):
            return _stop(
                updates, NextNode.SNITCH.value, TerminalStatus.ABORTED_STUCK,
                f"Research stays irrelevant after {quality.attempt_count} attempts",
            )

    plan = PlanDecision(next=next_node, reason=reason, profile=profile, source=source)
    updates["plan"] = plan
    updates["messages"] = [node_note("planner", f"next={next_node}: {reason or '-'}")]

    if next_node == NextNode.DONE.value:
        status = str(data.get("terminal_status") or "").strip().lower()
        updates["done"] = True
        updates["terminal_status"] = TerminalStatus(status if status in _DONE_STATUSES else "done_success")
    elif next_node in (NextNode.SNITCH.value, NextNode.ASK_HUMAN.value):
        updates["terminal_status"] = TerminalStatus.ABORTED_CONSTRAINT

    logger.info("Planner decision: %s (%s) [%s]", next_node, reason[:120], source)
    return updates
