"""TicketCloser node: move a finished ticket to ``closed/`` and commit."""
from __future__ import annotations

import shutil
from pathlib import Path

from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger
from wayfinder.core.state import RunState
from wayfinder.tools import git

from ._helpers import node_note

logger = get_logger("core.nodes.ticket_closer")


def closed_path_for(ticket_path: Path) -> Path:
    """``.../tickets/open/x.md`` → ``.../tickets/closed/x.md``."""
    parent = ticket_path.parent
    base = parent.parent if parent.name == "open" else parent
    return base / "closed" / ticket_path.name


def ticket_closer_node(state: RunState, ctx: RunContext) -> dict:
    """Close the run's ticket. Failures are logged and never stop the run."""
    if not state.brief.ticket_path:
        return {}
    if ctx.settings.dry_run:
        logger.info("Dry run: leaving ticket %s open", state.brief.ticket_id)
        return {"messages": [node_note("ticket_closer", "dry run, ticket left open")]}

    source = Path(state.brief.ticket_path)
    if not source.is_file():
        logger.warning("Ticket file %s not found; nothing to close", source)
        return {}

    target = closed_path_for(source)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
    except OSError as exc:
        logger.error("Could not close ticket %s: %s", source, exc)
        return {"messages": [node_note("ticket_closer", f"close failed: {exc}")]}
    logger.info("Ticket %s closed -> %s", state.brief.ticket_id, target)

    if ctx.git_writes_enabled:
        result = git.commit(ctx.root, f"Close ticket {state.brief.ticket_id}")
        if not result.committed:
            logger.info("Ticket close not committed: %s", result.message)

    return {
        "brief": {"ticket_path": str(target)},
        "messages": [node_note("ticket_closer", f"closed {state.brief.ticket_id}")],
    }
