"""Shared helpers used across multiple node modules."""
from __future__ import annotations

from langchain_core.messages import AIMessage, BaseMessage

from wayfinder.core.diagnostics import get_primary_failure, summarize_diagnostics
from wayfinder.core.state import ProjectBrief, RunState

BRIEF_SECTION_CHARS = 4000
FINDINGS_IN_PROMPT = 8


def _truncate_text(text: str, limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


def render_brief(brief: ProjectBrief, limit: int = BRIEF_SECTION_CHARS) -> str:
    """Markdown sections for the non-empty parts of the brief."""
    parts = [f"## Goal\n{brief.goal or '(no goal given)'}"]
    if brief.ticket:
        parts.append(f"## Ticket ({brief.ticket_id or 'unnamed'})\n{_truncate_text(brief.ticket, limit)}")
    if brief.project:
        parts.append(f"## Project\n{_truncate_text(brief.project, limit)}")
    if brief.architect:
        parts.append(f"## Architecture\n{_truncate_text(brief.architect, limit)}")
    if brief.best_practices:
        parts.append(f"## Best practices\n{_truncate_text(brief.best_practices, limit)}")
    if brief.forbidden_paths:
        parts.append("## Forbidden paths (never edit)\n" + "\n".join(f"- {p}" for p in brief.forbidden_paths))
    return "\n\n".join(parts)


def render_findings(state: RunState, limit: int = FINDINGS_IN_PROMPT) -> str:
    if not state.research_results:
        return "No research findings yet."
    lines = []
    for finding in state.research_results[:limit]:
        urls = ", ".join(c.url for c in finding.citations[:2])
        lines.append(f"- {finding.statement}" + (f" ({urls})" if urls else ""))
    if len(state.research_results) > limit:
        lines.append(f"- ... {len(state.research_results) - limit} more")
    return "\n".join(lines)


def render_state_digest(state: RunState) -> str:
    """Compact status block the oracle sees on every decision."""
    lines = [
        f"Profile: {state.effective_profile.value} | Scope: {state.scope.value if state.scope else 'unknown'}"
        f" | Task type: {state.task_type or 'general'} | Step: {state.step_count}",
    ]
    if state.budget:
        lines.append(f"Budget used: {state.budget.summary()}")
    if state.research_quality:
        q = state.research_quality
        lines.append(
            f"Research quality: relevance {q.relevance:.2f}, coverage {q.coverage:.2f}, "
            f"support {q.support:.2f}, attempts {q.attempt_count}"
        )
    lines.append(f"Research findings: {len(state.research_results)} ({state.research_source or 'none'})")
    lines.append(
        "Files changed: "
        + (", ".join(sorted(state.file_changes)[:20]) if state.file_changes else "none")
    )
    if state.test_results:
        passed = sum(1 for t in state.test_results if t.passed)
        lines.append(f"Last verification: {passed}/{len(state.test_results)} commands passed")
    if state.verification_summary:
        lines.append(f"Verifier summary: {state.verification_summary}")
    primary = get_primary_failure(state.diagnostics_log)
    if primary:
        where = f"{primary.file}:{primary.location}" if primary.location else primary.file
        lines.append(f"Primary failure: [{primary.source}] {where} {primary.message}")
    if state.diagnostics_log:
        lines.append("Diagnostics:\n" + summarize_diagnostics(state.diagnostics_log))
    if state.failure_history:
        lines.append(f"Failures so far: {len(state.failure_history)} (same error x{state.same_error_count})")
    return "\n".join(lines)


def recent_notes(messages: list[BaseMessage], limit: int = 6) -> str:
    """Last few plain-text node notes from the transcript."""
    notes = [
        m.content for m in messages
        if isinstance(m, AIMessage) and isinstance(m.content, str) and m.content.startswith("[")
    ]
    return "\n".join(notes[-limit:])


def node_note(node: str, text: str) -> AIMessage:
    return AIMessage(content=f"[{node}] {text}")
