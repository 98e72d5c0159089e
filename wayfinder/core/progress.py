"""Loop counters, progress snapshots and stuck detection.

The Planner is the only caller. On every visit it:

1. computes the current research / file-change / test fingerprints,
2. resets any loop counter whose fingerprint moved since the last visit,
3. appends a snapshot and asks :func:`assess_progress` whether the run has
   stopped moving,
4. after choosing the next node, bumps that edge's counter with
   :func:`bump_edge` and aborts when the ceiling would be exceeded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from wayfinder.core.state import LoopCounters, ProgressSnapshot, RunState

SIGNATURE_MAX_CHARS = 256

# next node → LoopCounters field
EDGE_COUNTERS: dict[str, str] = {
    "researcher": "planner_to_researcher",
    "verifier": "planner_to_verifier",
    "coder": "planner_to_coder",
}

EDGE_ABORT_REASONS: dict[str, str] = {
    "researcher": "planner→researcher loop limit exceeded (research is not changing)",
    "verifier": "planner→verifier without progress (no new file changes)",
    "coder": "planner→coder loop limit exceeded (test failures are not changing)",
}


@dataclass
class ProgressAssessment:
    status: str = "ok"          # ok | stuck_candidate
    reason: str = ""

    @property
    def stuck(self) -> bool:
        return self.status == "stuck_candidate"


def research_signature(state: RunState) -> str:
    last_query = state.research_quality.last_query if state.research_quality else None
    payload = json.dumps({"last_query": last_query, "length": len(state.research_results)})
    return payload[:SIGNATURE_MAX_CHARS]


def make_snapshot(state: RunState, node: str) -> ProgressSnapshot:
    return ProgressSnapshot(
        node=node,
        research_signature=research_signature(state),
        file_change_count=state.file_change_count,
        test_signature=state.last_test_signature,
    )


def assess_progress(history: list[ProgressSnapshot], window: int = 3) -> ProgressAssessment:
    """Flag a stuck candidate when the last *window* snapshots are identical."""
    if window < 2 or len(history) < window:
        return ProgressAssessment()

    recent = history[-window:]
    first = recent[0]
    if all(first.same_position(snap) for snap in recent[1:]):
        return ProgressAssessment(
            status="stuck_candidate",
            reason=(
                f"State has not changed for {window} planner visits "
                f"(files: {first.file_change_count}, test signature: {first.test_signature or 'none'})"
            ),
        )
    return ProgressAssessment()


def refresh_loop_counters(
    counters: LoopCounters,
    research_sig: str,
    file_change_count: int,
    test_sig: str,
) -> LoopCounters:
    """Reset each edge counter whose domain fingerprint changed since the last visit."""
    updated = counters.model_copy()

    if research_sig != counters.last_research_signature:
        updated.planner_to_researcher = 0
        updated.last_research_signature = research_sig

    if file_change_count != counters.last_file_change_count:
        updated.planner_to_verifier = 0
        updated.last_file_change_count = file_change_count

    if test_sig != counters.last_test_signature:
        updated.planner_to_coder = 0
        updated.last_test_signature = test_sig

    return updated


def bump_edge(counters: LoopCounters, next_node: str, ceiling: int) -> tuple[LoopCounters, bool]:
    """Increment the counter for *next_node*; report whether it went past *ceiling*.

    Edges without a counter (done, snitch) are returned unchanged.
    """
    field = EDGE_COUNTERS.get(next_node)
    if field is None:
        return counters, False
    updated = counters.model_copy()
    value = getattr(counters, field) + 1
    setattr(updated, field, value)
    return updated, value > ceiling
