"""Per-run markdown report persisted to ``.sdd/runs/<timestamp>_<run_id>.md``."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from wayfinder.core.diagnostics import summarize_diagnostics
from wayfinder.core.logging import get_logger
from wayfinder.core.risk import sdd_root
from wayfinder.core.state import RunState, TerminalStatus

logger = get_logger("core.run_report")

RUNS_DIR = "runs"

_STATUS_BY_TERMINAL = {
    TerminalStatus.DONE_SUCCESS: "success",
    TerminalStatus.DONE_PARTIAL: "partial",
    TerminalStatus.ABORTED_STUCK: "failed",
    TerminalStatus.ABORTED_CONSTRAINT: "failed",
}


class RunReport(BaseModel):
    run_id: str
    status: str                       # success | partial | failed | error
    terminal_status: str = ""
    stop_reason: str = ""
    duration_seconds: float = 0.0
    error: str = ""
    steps: int = 0
    plan: str = ""
    budget: str = ""
    files_changed: list[str] = Field(default_factory=list)
    diagnostics: str = ""
    issues: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    ticket_id: str = ""
    ticket_path: str = ""

    @property
    def failed(self) -> bool:
        return self.status in ("failed", "error")

    @classmethod
    def from_state(
        cls,
        run_id: str,
        state: RunState | None,
        duration_seconds: float = 0.0,
        error: str = "",
    ) -> RunReport:
        if state is None:
            return cls(run_id=run_id, status="error", error=error, duration_seconds=duration_seconds)

        if error:
            status = "error"
        elif state.terminal_status is not None:
            status = _STATUS_BY_TERMINAL[state.terminal_status]
        else:
            status = "success" if state.done else "failed"

        return cls(
            run_id=run_id,
            status=status,
            terminal_status=state.terminal_status.value if state.terminal_status else "",
            stop_reason=state.plan.reason if state.plan else "",
            duration_seconds=duration_seconds,
            error=error,
            steps=state.step_count,
            plan=state.plan.next if state.plan else "",
            budget=state.budget.summary() if state.budget else "",
            files_changed=sorted(state.file_changes),
            diagnostics=summarize_diagnostics(state.diagnostics_log),
            issues=list(state.issues),
            risks=list(state.risks),
            ticket_id=state.brief.ticket_id,
            ticket_path=state.brief.ticket_path,
        )

    def to_markdown(self) -> str:
        lines = [
            f"# Run Report: {self.run_id}",
            "",
            f"**Date:** {datetime.now(timezone.utc).isoformat(timespec='seconds')}",
            f"**Status:** {self.status}",
        ]
        if self.terminal_status:
            lines.append(f"**Terminal Status:** {self.terminal_status}")
        if self.stop_reason:
            lines.append(f"**Stop Reason:** {self.stop_reason}")
        if self.duration_seconds:
            lines.append(f"**Duration:** {self.duration_seconds:.2f}s")
        if self.error:
            lines.append(f"**Error:** {self.error}")
        lines.append(f"**Steps:** {self.steps}")
        if self.budget:
            lines.append(f"**Budget:** {self.budget}")

        if self.ticket_id or self.ticket_path:
            lines += ["", "## Ticket", f"**Ticket ID:** {self.ticket_id or '-'}"]
            if self.ticket_path:
                lines.append(f"**Ticket Path:** {self.ticket_path}")

        lines += ["", "## Files Changed"]
        lines += [f"- {f}" for f in self.files_changed] or ["No files changed."]

        lines += ["", "## Diagnostics", self.diagnostics or "No diagnostics recorded."]

        if self.issues:
            lines += ["", "## Issues"] + [f"- {issue}" for issue in self.issues]
        if self.risks:
            lines += ["", "## Risks"] + [f"- {risk}" for risk in self.risks]
        return "\n".join(lines) + "\n"


def write_run_report(root_dir: str | Path, report: RunReport) -> Path | None:
    runs_dir = sdd_root(root_dir) / RUNS_DIR
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    path = runs_dir / f"{stamp}_{report.run_id}.md"
    try:
        runs_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(report.to_markdown(), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write run report: %s", exc)
        return None
    logger.info("Run report written to %s", path)
    return path
