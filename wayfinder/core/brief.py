"""Load the project brief from the target repo's ``.sdd/`` documents."""

from __future__ import annotations

import posixpath
import re
from fnmatch import fnmatch
from pathlib import Path

from wayfinder.core.logging import get_logger
from wayfinder.core.risk import OPEN_TICKETS_DIR, is_ticket_blocked, sdd_root
from wayfinder.core.state import ProjectBrief

logger = get_logger("core.brief")

BRIEF_FILES = {
    "project": "project.md",
    "architect": "architect.md",
    "best_practices": "best_practices.md",
}

FORBIDDEN_SECTION_RE = re.compile(
    r"^##\s*Forbidden Paths[^\n]*\n(.*?)(?=^#{1,2}\s|\Z)", re.IGNORECASE | re.MULTILINE | re.DOTALL,
)


class TicketBlockedError(Exception):
    """Raised when the requested ticket is on the stuck-ticket blocklist."""


def _read_optional(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return ""


def parse_forbidden_paths(text: str) -> list[str]:
    """Entries of every ``## Forbidden Paths`` section in a markdown document."""
    paths: list[str] = []
    for section in FORBIDDEN_SECTION_RE.findall(text or ""):
        for line in section.splitlines():
            entry = line.strip().lstrip("-*").strip().strip("`").strip()
            if entry and not entry.startswith("#") and entry not in paths:
                paths.append(entry)
    return paths


def forbidden_match(path: str, patterns: list[str]) -> str | None:
    """The first pattern forbidding *path*, or None.

    A pattern names a file, a directory (everything below it) or a glob.
    """
    rel = posixpath.normpath(path.replace("\\", "/"))
    for pattern in patterns:
        base = posixpath.normpath(pattern.replace("\\", "/").rstrip("/"))
        if rel == base or rel.startswith(base + "/") or fnmatch(rel, base):
            return pattern
    return None


def ticket_id_for(path: str | Path) -> str:
    return Path(path).stem


def open_tickets(root_dir: str | Path) -> list[Path]:
    """Open tickets in filename order, skipping blocklisted ones."""
    tickets_dir = sdd_root(root_dir) / OPEN_TICKETS_DIR
    if not tickets_dir.is_dir():
        return []
    tickets = []
    for path in sorted(tickets_dir.glob("*.md")):
        if is_ticket_blocked(root_dir, ticket_id_for(path)):
            logger.info("Skipping blocklisted ticket %s", path.name)
            continue
        tickets.append(path)
    return tickets


def load_brief(root_dir: str | Path, goal: str = "", ticket_path: str | Path | None = None) -> ProjectBrief:
    """Read ``.sdd`` docs and the optional ticket into a ProjectBrief.

    Raises :class:`TicketBlockedError` if *ticket_path* names a blocklisted ticket.
    """
    sdd = sdd_root(root_dir)
    docs = {field: _read_optional(sdd / name) for field, name in BRIEF_FILES.items()}

    ticket_text = ""
    ticket_id = ""
    resolved_ticket = ""
    if ticket_path:
        path = Path(ticket_path)
        if not path.is_absolute():
            path = Path(root_dir) / path
        ticket_id = ticket_id_for(path)
        if is_ticket_blocked(root_dir, ticket_id):
            raise TicketBlockedError(f"Ticket {ticket_id} is blocklisted after a stuck run")
        ticket_text = _read_optional(path)
        if not ticket_text:
            logger.warning("Ticket %s is empty or missing", path)
        resolved_ticket = str(path)

    if not goal and ticket_text:
        goal = ticket_text.strip().splitlines()[0].lstrip("# ").strip()

    forbidden: list[str] = []
    for text in [*docs.values(), ticket_text]:
        forbidden += [p for p in parse_forbidden_paths(text) if p not in forbidden]

    brief = ProjectBrief(
        goal=goal,
        ticket=ticket_text,
        ticket_path=resolved_ticket,
        ticket_id=ticket_id,
        forbidden_paths=forbidden,
        **docs,
    )
    logger.info(
        "Brief loaded | goal=%r | ticket=%s | docs=%s | forbidden=%d",
        goal[:80], ticket_id or "-", [k for k, v in docs.items() if v], len(forbidden),
    )
    return brief
