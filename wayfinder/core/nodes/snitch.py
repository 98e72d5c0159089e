"""Snitch node: record why the run stopped before finishing."""
from __future__ import annotations

from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger
from wayfinder.core.risk import (
    append_issue_entry,
    append_risk_entries,
    block_ticket,
    create_tech_debt_ticket,
    derive_risk_entries,
    looks_like_stuck_reason,
)
from wayfinder.core.state import RunState, TerminalStatus

from ._helpers import node_note

logger = get_logger("core.nodes.snitch")


def snitch_node(state: RunState, ctx: RunContext) -> dict:
    """Write the issues log and risk register, then end the run."""
    root = ctx.root
    reason = (state.plan.reason if state.plan and state.plan.reason else "") or "Run stopped without a reason"
    status = state.terminal_status or TerminalStatus.ABORTED_CONSTRAINT
    view = state.model_copy(update={"terminal_status": status})

    append_issue_entry(root, view, reason)

    risk_ids: list[str] = []
    try:
        written = append_risk_entries(root, derive_risk_entries(view))
        for risk in written:
            risk_ids.append(risk.id)
            create_tech_debt_ticket(root, risk)
    except OSError as exc:
        logger.warning("Risk register update failed: %s", exc)

    ticket_id = state.brief.ticket_id
    if ticket_id and looks_like_stuck_reason(reason):
        try:
            block_ticket(root, ticket_id, reason)
        except OSError as exc:
            logger.warning("Could not blocklist ticket %s: %s", ticket_id, exc)

    logger.warning("Snitch: %s (%s)", reason, status.value)
    return {
        "done": False,
        "terminal_status": status,
        "issues": state.issues + [reason],
        "risks": state.risks + risk_ids,
        "messages": [node_note("snitch", f"{status.value}: {reason}")],
    }
