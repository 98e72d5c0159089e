"""Cross-run lessons kept in ``.sdd/cache/project_memory.json``.

Each finished run appends a one-line summary; only the most recent
``MAX_RUNS`` are kept. The planner reads the tail of this log so a new run
sees how earlier attempts on the same repository ended.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from wayfinder.core.logging import get_logger
from wayfinder.core.risk import sdd_root
from wayfinder.core.run_report import RunReport

logger = get_logger("core.project_memory")

MEMORY_FILE = Path("cache") / "project_memory.json"
MAX_RUNS = 20
PROMPT_RUNS = 5
GOAL_CHARS = 50

_OUTCOME_MARKS = {"success": "✓", "partial": "~", "failed": "✗"}


class RunSummary(BaseModel):
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))
    ticket_id: str = ""
    goal: str
    outcome: str          # success | partial | failed
    lesson: str = ""


class ProjectMemory(BaseModel):
    runs: list[RunSummary] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


def memory_path(root_dir: str | Path) -> Path:
    return sdd_root(root_dir) / MEMORY_FILE


def load_project_memory(root_dir: str | Path) -> ProjectMemory:
    """Stored memory, or an empty one when the file is missing or unreadable."""
    path = memory_path(root_dir)
    if not path.is_file():
        return ProjectMemory()
    try:
        return ProjectMemory.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Project memory unreadable (%s); starting fresh", exc)
        return ProjectMemory()


def append_run_summary(root_dir: str | Path, summary: RunSummary) -> Path | None:
    memory = load_project_memory(root_dir)
    memory.runs = (memory.runs + [summary])[-MAX_RUNS:]
    path = memory_path(root_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(memory.model_dump_json(indent=2), encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to write project memory: %s", exc)
        return None
    return path


def summary_from_report(report: RunReport, goal: str) -> RunSummary:
    outcome = report.status if report.status in _OUTCOME_MARKS else "failed"
    lesson = report.error or report.stop_reason or report.terminal_status or report.status
    return RunSummary(ticket_id=report.ticket_id, goal=goal, outcome=outcome, lesson=lesson[:200])


def format_memory_for_prompt(memory: ProjectMemory, max_runs: int = PROMPT_RUNS) -> str:
    if not memory.runs and not memory.notes:
        return "No previous runs recorded."
    lines = []
    if memory.runs:
        lines.append("Recent runs:")
        for run in memory.runs[-max_runs:]:
            goal = run.goal if len(run.goal) <= GOAL_CHARS else run.goal[:GOAL_CHARS] + "..."
            ticket = f"[{run.ticket_id}] " if run.ticket_id else ""
            lines.append(f"{_OUTCOME_MARKS.get(run.outcome, '?')} {ticket}{goal} -> {run.lesson}")
    if memory.notes:
        lines.append("Notes:")
        lines += [f"- {note}" for note in memory.notes]
    return "\n".join(lines)
