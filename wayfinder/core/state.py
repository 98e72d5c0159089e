"""LangGraph shared state definition for the workflow graph.

Nodes never mutate the state they receive; they return partial dicts that
LangGraph folds into ``RunState`` through the per-field reducers below.
"""

from __future__ import annotations

import operator
import time
from enum import StrEnum
from typing import Annotated, Any

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages
from pydantic import BaseModel, Field

PROGRESS_HISTORY_CAP = 10


class ExecutionProfile(StrEnum):
    STRICT = "strict"
    FAST = "fast"
    SMOKE = "smoke"
    YOLO = "yolo"


class TaskScope(StrEnum):
    TINY = "tiny"
    NORMAL = "normal"
    LARGE = "large"


class TerminalStatus(StrEnum):
    DONE_SUCCESS = "done_success"
    DONE_PARTIAL = "done_partial"
    ABORTED_STUCK = "aborted_stuck"
    ABORTED_CONSTRAINT = "aborted_constraint"


class NextNode(StrEnum):
    RESEARCHER = "researcher"
    CODER = "coder"
    VERIFIER = "verifier"
    DONE = "done"
    SNITCH = "snitch"
    ASK_HUMAN = "ask_human"


# ── Value objects ─────────────────────────────────────────────────────────


class ProjectBrief(BaseModel):
    """Documents grounding the oracle's decisions for this run."""
    goal: str = ""
    project: str = ""
    architect: str = ""
    best_practices: str = ""
    ticket: str = ""
    ticket_path: str = ""
    ticket_id: str = ""
    forbidden_paths: list[str] = Field(default_factory=list)


class PlanDecision(BaseModel):
    next: str = ""
    reason: str = ""
    profile: ExecutionProfile | None = None
    source: str = "oracle"   # oracle | fallback | guard


class CommandRecord(BaseModel):
    command: str
    node: str = ""
    timestamp: float = Field(default_factory=time.time)


class Budget(BaseModel):
    max_commands: int
    max_test_runs: int
    max_web_requests: int
    commands_used: int = 0
    test_runs_used: int = 0
    web_requests_used: int = 0
    command_history: list[CommandRecord] = Field(default_factory=list)

    @property
    def commands_exhausted(self) -> bool:
        return self.commands_used >= self.max_commands

    @property
    def test_runs_exhausted(self) -> bool:
        return self.test_runs_used >= self.max_test_runs

    @property
    def web_exhausted(self) -> bool:
        return self.web_requests_used >= self.max_web_requests

    @property
    def exhausted(self) -> bool:
        return self.commands_exhausted or self.test_runs_exhausted

    def summary(self) -> str:
        return (
            f"commands {self.commands_used}/{self.max_commands}, "
            f"test runs {self.test_runs_used}/{self.max_test_runs}, "
            f"web {self.web_requests_used}/{self.max_web_requests}"
        )


class LoopCounters(BaseModel):
    planner_to_researcher: int = 0
    planner_to_verifier: int = 0
    planner_to_coder: int = 0
    last_research_signature: str | None = None
    last_file_change_count: int | None = None
    last_test_signature: str | None = None


class ProgressSnapshot(BaseModel):
    node: str
    research_signature: str = ""
    file_change_count: int = 0
    test_signature: str = ""
    timestamp: float = Field(default_factory=time.time)

    def same_position(self, other: ProgressSnapshot) -> bool:
        return (
            self.node == other.node
            and self.research_signature == other.research_signature
            and self.file_change_count == other.file_change_count
            and self.test_signature == other.test_signature
        )


class Citation(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""


class ResearchFinding(BaseModel):
    statement: str
    citations: list[Citation] = Field(default_factory=list)


class ResearchQuality(BaseModel):
    relevance: float = 0.0
    confidence: float = 0.5
    coverage: float = 0.0
    support: float = 0.5
    recency: float = 0.5
    diversity: float = 0.5
    has_conflicts: bool = False
    should_retry: bool = False
    reasons: str = ""
    last_query: str = ""
    attempt_count: int = 0


class DiagnosticsEntry(BaseModel):
    source: str                 # build | test | lint | syntax | runtime | lsp
    file: str = ""
    location: str | None = None   # "line:col"
    message: str
    severity: str = "error"
    first_seen_at: float = Field(default_factory=time.time)
    last_seen_at: float = Field(default_factory=time.time)
    occurrence_count: int = 1

    @property
    def line(self) -> int | None:
        if not self.location:
            return None
        head = self.location.split(":", 1)[0]
        return int(head) if head.isdigit() else None


class DetectedCommands(BaseModel):
    stack: str = "unknown"
    build_command: str | None = None
    primary_test: str | None = None
    smoke_test: str | None = None
    lint_command: str | None = None
    syntax_check_command: str | None = None
    diagnostic_command: str | None = None
    service_commands: list[str] = Field(default_factory=list)


class FunctionalCheck(BaseModel):
    command: str
    exit_code: int
    node: str = ""
    timestamp: float = Field(default_factory=time.time)


class FailureRecord(BaseModel):
    step: str
    error: str
    kind: str = ""
    timestamp: float = Field(default_factory=time.time)


class VerificationRun(BaseModel):
    command: str
    kind: str = ""          # syntax | test | build | lint | smoke | diagnostic
    exit_code: int
    passed: bool
    output: str = ""
    timed_out: bool = False


# ── Reducers ──────────────────────────────────────────────────────────────


def _as_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump()
    return dict(value)


def merge_brief(left: Any, right: Any) -> ProjectBrief:
    """Merge brief updates; empty strings never erase existing text."""
    merged = _as_dict(left)
    for key, value in _as_dict(right).items():
        if value not in ("", None, []):
            merged[key] = value
    return ProjectBrief(**merged)


def append_capped(left: list | None, right: list | None) -> list:
    combined = list(left or []) + list(right or [])
    return combined[-PROGRESS_HISTORY_CAP:]


def keep_first(left: Any, right: Any) -> Any:
    """Terminal status is written once; later writes are ignored."""
    return left if left is not None else right


# ── Aggregate root ────────────────────────────────────────────────────────


class RunState(BaseModel):
    """The complete state passed between LangGraph nodes."""

    # ── Transcript & brief ────────────────────────────────────────────
    messages: Annotated[list[BaseMessage], add_messages] = Field(default_factory=list)
    brief: Annotated[ProjectBrief, merge_brief] = Field(default_factory=ProjectBrief)
    project_summary: str = ""

    # ── Decisions ─────────────────────────────────────────────────────
    plan: PlanDecision | None = None
    run_profile: ExecutionProfile | None = None   # explicit override
    profile: ExecutionProfile | None = None       # effective profile
    scope: TaskScope | None = None
    task_type: str = ""

    # ── Research ──────────────────────────────────────────────────────
    research_results: list[ResearchFinding] = Field(default_factory=list)
    research_quality: ResearchQuality | None = None
    research_source: str = ""   # cache | shallow | medium | deep | offline

    # ── Work products ─────────────────────────────────────────────────
    file_changes: dict[str, str] = Field(default_factory=dict)
    patch_fingerprints: dict[str, int] = Field(default_factory=dict)
    test_results: list[VerificationRun] = Field(default_factory=list)
    diagnostics_log: list[DiagnosticsEntry] = Field(default_factory=list)
    failure_history: list[FailureRecord] = Field(default_factory=list)
    functional_checks: Annotated[list[FunctionalCheck], operator.add] = Field(default_factory=list)
    detected_commands: DetectedCommands | None = None
    verification_summary: str = ""
    policy_violations: list[str] = Field(default_factory=list)

    # ── Budget & loop control ─────────────────────────────────────────
    budget: Budget | None = None
    loop_counters: LoopCounters = Field(default_factory=LoopCounters)
    progress_history: Annotated[list[ProgressSnapshot], append_capped] = Field(default_factory=list)
    step_count: int = 0
    same_error_count: int = 0
    last_failure_signature: str = ""
    last_test_signature: str = ""

    # ── Outcome ───────────────────────────────────────────────────────
    done: bool = False
    terminal_status: Annotated[TerminalStatus | None, keep_first] = None
    issues: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)

    @property
    def file_change_count(self) -> int:
        return len(self.file_changes)

    @property
    def effective_profile(self) -> ExecutionProfile:
        return self.profile or self.run_profile or ExecutionProfile.FAST

    @property
    def last_tests_passed(self) -> bool:
        return bool(self.test_results) and all(t.passed for t in self.test_results)
