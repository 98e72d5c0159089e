"""Run-level persistence written when a run stops short.

Files live in the target repo under ``.sdd/``:
  - issues.md                 : append-only human-readable snitch log
  - risk_register.md          : markdown table of risks with stable R-NNN ids
  - backlog/tickets/open/     : follow-up tech-debt tickets for high-severity risks
  - cache/ticket_blocklist.json : tickets the agent got stuck on ({ids, reasons})
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from wayfinder.core.budget import repeated_commands
from wayfinder.core.logging import get_logger
from wayfinder.core.state import RunState, TerminalStatus

logger = get_logger("core.risk")

SDD_DIR = ".sdd"
ISSUES_FILE = "issues.md"
RISK_FILE = "risk_register.md"
BLOCKLIST_FILE = Path("cache") / "ticket_blocklist.json"
OPEN_TICKETS_DIR = Path("backlog") / "tickets" / "open"

ISSUES_HEADER = "# SDD Issues / Snitch Log\n\n"
RISK_HEADER = (
    "# Risk Register\n\n"
    "| ID | Area | Type | Severity | Status | Description | Evidence | Links |\n"
    "|---|---|---|---|---|---|---|---|\n"
)

RISK_ID_RE = re.compile(r"\| R-(\d+) \|")
TICKET_NUMBER_RE = re.compile(r"^(\d+)-")
STUCK_REASON_RE = re.compile(r"stuck|loop|without progress|max steps|has not changed|repeated", re.IGNORECASE)

DUPLICATE_SNIPPET_CHARS = 20
REPEATED_COMMAND_MIN = 3


class RiskEntry(BaseModel):
    id: str = ""
    area: str
    type: str
    severity: str     # low | medium | high
    status: str = "open"
    description: str
    evidence: str = ""
    links: list[str] = Field(default_factory=list)


def sdd_root(root_dir: str | Path) -> Path:
    return Path(root_dir) / SDD_DIR


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ── Issues log ────────────────────────────────────────────────────────────

def append_issue_entry(root_dir: str | Path, state: RunState, reason: str) -> Path | None:
    """Append a snitch entry to ``.sdd/issues.md``. Returns the path, or None on I/O failure."""
    path = sdd_root(root_dir) / ISSUES_FILE
    lines = [f"## Snitch entry – {_now_iso()}", ""]
    if state.brief.goal:
        lines.append(f"**Goal:** {state.brief.goal}")
    if state.brief.ticket:
        lines.append(f"**Ticket:** {state.brief.ticket.splitlines()[0][:120]}")
    lines += ["", f"**Reason:** {reason}", ""]
    if state.terminal_status:
        lines += [f"**Status:** {state.terminal_status.value}", ""]
    if state.budget:
        lines += [f"**Budget at stop:** {state.budget.summary()}", ""]

    if state.failure_history:
        lines += ["**Failure History:**", ""]
        for idx, failure in enumerate(state.failure_history, start=1):
            stamp = datetime.fromtimestamp(failure.timestamp, timezone.utc).isoformat(timespec="seconds")
            kind = f" ({failure.kind})" if failure.kind else ""
            lines.append(f"{idx}. [{failure.step}]{kind} @ {stamp}: {failure.error}")
        lines.append("")

    entry = "\n".join(lines) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            with path.open("a", encoding="utf-8") as fh:
                fh.write("\n" + entry)
        else:
            path.write_text(ISSUES_HEADER + entry, encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to write snitch entry: %s", exc)
        return None
    logger.info("Snitch entry written to %s", path)
    return path


# ── Risk register ─────────────────────────────────────────────────────────

def derive_risk_entries(state: RunState) -> list[RiskEntry]:
    risks: list[RiskEntry] = []

    if state.same_error_count >= 3:
        last_error = state.failure_history[-1].error if state.failure_history else "Unknown error"
        risks.append(RiskEntry(
            area="Agent Logic",
            type="reliability",
            severity="high",
            description="Agent is stuck in a loop with repeated errors.",
            evidence=f"Same error count reached {state.same_error_count}. Last error: {last_error[:100]}",
        ))

    budget = state.budget
    if (
        state.terminal_status == TerminalStatus.ABORTED_CONSTRAINT
        and budget is not None
        and budget.exhausted
    ):
        risks.append(RiskEntry(
            area="Efficiency",
            type="performance",
            severity="medium",
            description="Run exhausted its budget before completion.",
            evidence=f"Total steps: {state.step_count}. Budget: {budget.summary()}",
        ))

    if budget is not None:
        for command, count in repeated_commands(budget, minimum=REPEATED_COMMAND_MIN):
            nodes = sorted({r.node for r in budget.command_history if r.command == command})
            risks.append(RiskEntry(
                area="Efficiency",
                type="performance",
                severity="low",
                description=f"Command '{command[:80]}' was re-run {count} times.",
                evidence=f"Run by: {', '.join(nodes)}. Budget: {budget.summary()}",
            ))

    failures: dict[str, int] = {}
    for check in state.functional_checks:
        if check.exit_code != 0:
            failures[check.command] = failures.get(check.command, 0) + 1
    for command, count in failures.items():
        if count >= 2:
            risks.append(RiskEntry(
                area="Verification",
                type="reliability",
                severity="medium",
                description=f"Functional check '{command}' failed repeatedly.",
                evidence=f"Failed {count} times in this run.",
            ))

    return risks


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def append_risk_entries(root_dir: str | Path, entries: list[RiskEntry]) -> list[RiskEntry]:
    """Append new risks to the register, assigning ids. Returns the entries actually written."""
    if not entries:
        return []
    path = sdd_root(root_dir) / RISK_FILE
    content = path.read_text(encoding="utf-8") if path.is_file() else RISK_HEADER

    max_id = max((int(m.group(1)) for m in RISK_ID_RE.finditer(content)), default=0)
    written: list[RiskEntry] = []
    for entry in entries:
        if entry.description[:DUPLICATE_SNIPPET_CHARS] in content:
            continue
        max_id += 1
        assigned = entry.model_copy(update={"id": f"R-{max_id:03d}"})
        content += (
            f"| {assigned.id} | {assigned.area} | {assigned.type} | {assigned.severity} | "
            f"{assigned.status} | {_cell(assigned.description)} | {_cell(assigned.evidence)} | "
            f"{', '.join(assigned.links)} |\n"
        )
        written.append(assigned)

    if written:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Appended %d risks to %s", len(written), path)
    return written


def _slug(text: str, limit: int = 30) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:limit]


def create_tech_debt_ticket(root_dir: str | Path, risk: RiskEntry) -> Path | None:
    """Open a follow-up ticket for a high-severity risk that already has an id."""
    if risk.severity != "high" or not risk.id:
        return None
    tickets_dir = sdd_root(root_dir) / OPEN_TICKETS_DIR
    tickets_dir.mkdir(parents=True, exist_ok=True)

    numbers = [
        int(m.group(1))
        for f in tickets_dir.iterdir()
        if (m := TICKET_NUMBER_RE.match(f.name))
    ]
    number = max(numbers, default=0) + 1
    path = tickets_dir / f"{number}-tech-debt-{_slug(risk.description)}.md"
    path.write_text(
        f"# Ticket: {number} Tech debt: {risk.area} - {risk.description}\n\n"
        "## Context\n"
        f"Automatically created from high severity risk {risk.id}.\n\n"
        "## Objective & Definition of Done\n"
        "Mitigate the risk described below.\n\n"
        f"**Risk Description**: {risk.description}\n"
        f"**Evidence**: {risk.evidence}\n\n"
        "## Steps\n"
        "1. Investigate the root cause of the risk.\n"
        "2. Implement a fix or mitigation.\n"
        "3. Update the risk register status to 'mitigated'.\n\n"
        "## Dependencies\n"
        f"- Risk: {risk.id}\n",
        encoding="utf-8",
    )
    logger.info("Created tech-debt ticket %s", path)
    return path


# ── Ticket blocklist ──────────────────────────────────────────────────────

def looks_like_stuck_reason(reason: str) -> bool:
    return bool(STUCK_REASON_RE.search(reason or ""))


def load_blocklist(root_dir: str | Path) -> dict[str, list]:
    path = sdd_root(root_dir) / BLOCKLIST_FILE
    if not path.is_file():
        return {"ids": [], "reasons": []}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ticket blocklist unreadable (%s); starting fresh", exc)
        return {"ids": [], "reasons": []}
    return {"ids": list(data.get("ids", [])), "reasons": list(data.get("reasons", []))}


def is_ticket_blocked(root_dir: str | Path, ticket_id: str) -> bool:
    return bool(ticket_id) and ticket_id in load_blocklist(root_dir)["ids"]


def block_ticket(root_dir: str | Path, ticket_id: str, reason: str) -> bool:
    """Add *ticket_id* to the blocklist. Returns False if it was already there."""
    if not ticket_id:
        return False
    data = load_blocklist(root_dir)
    if ticket_id in data["ids"]:
        return False
    data["ids"].append(ticket_id)
    data["reasons"].append({"id": ticket_id, "reason": reason, "at": _now_iso()})
    path = sdd_root(root_dir) / BLOCKLIST_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.info("Ticket %s added to blocklist", ticket_id)
    return True
