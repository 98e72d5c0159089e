"""Verifier node: run the profile's checks, record diagnostics, judge completion."""
from __future__ import annotations

import logging
import time
from pathlib import Path

from langchain_core.messages import HumanMessage, SystemMessage
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from wayfinder.agents.models import load_prompt
from wayfinder.agents.oracle import OracleError, message_text
from wayfinder.core.budget import charge_test_run
from wayfinder.core.context import RunContext
from wayfinder.core.diagnostics import (
    classify_failure,
    fallback_entry,
    merge_diagnostics,
    parse_diagnostics,
    summarize_diagnostics,
)
from wayfinder.core.llm_json import parse_llm_object
from wayfinder.core.logging import get_logger
from wayfinder.core.state import (
    DiagnosticsEntry,
    ExecutionProfile,
    FailureRecord,
    RunState,
    TerminalStatus,
    VerificationRun,
)
from wayfinder.core.verification import (
    can_use_fast_path,
    detect_commands,
    record_functional_check,
    run_signature,
    select_commands,
)
from wayfinder.tools import git
from wayfinder.tools.commands import run_command
from wayfinder.tools.diagnostics import run_project_diagnostics
from wayfinder.tools.logs import scan_recent_logs

from ._helpers import node_note, render_brief

logger = get_logger("core.nodes.verifier")

# command kind → diagnostics source
KIND_SOURCES = {
    "syntax": "syntax",
    "build": "build",
    "lint": "lint",
    "test": "test",
    "smoke": "runtime",
    "diagnostic": "build",
}

RUN_OUTPUT_CHARS = 4000
JUDGE_STATUSES = ("pass", "partial", "fail")


class JudgmentUnavailable(Exception):
    """The oracle failed or returned no usable verdict."""


def _judge_once(ctx: RunContext, messages: list) -> dict:
    try:
        raw = message_text(ctx.oracle.complete("verifier", messages))
    except OracleError as exc:
        raise JudgmentUnavailable(str(exc)) from exc
    verdict = parse_llm_object(raw)
    if verdict is None or str(verdict.get("status", "")).lower() not in JUDGE_STATUSES:
        raise JudgmentUnavailable(f"unusable verdict: {raw[:200]!r}")
    verdict["status"] = str(verdict["status"]).lower()
    return verdict


def judge_completion(ctx: RunContext, messages: list) -> dict:
    """Ask the verifier oracle for a verdict, retrying with a fixed backoff.

    Raises :class:`JudgmentUnavailable` once every attempt has failed.
    """
    settings = ctx.settings

    @retry(
        stop=stop_after_attempt(settings.verifier_judge_attempts),
        wait=wait_fixed(settings.verifier_judge_backoff_seconds),
        retry=retry_if_exception_type(JudgmentUnavailable),
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    def _judge():
        return _judge_once(ctx, messages)

    return _judge()


def _judgment_messages(state: RunState, runs: list[VerificationRun], diagnostics: list[DiagnosticsEntry]) -> list:
    listing = "\n\n".join(
        f"$ {r.command} [{r.kind}] -> {'PASS' if r.passed else f'FAIL (exit {r.exit_code})'}\n{r.output[-1500:]}"
        for r in runs
    )
    user = (
        f"{render_brief(state.brief)}\n\n"
        f"## Files changed\n{', '.join(sorted(state.file_changes)) or 'none'}\n\n"
        f"## Verification runs\n{listing}\n\n"
        f"## Diagnostics\n{summarize_diagnostics(diagnostics)}\n\n"
        f"Profile: {state.effective_profile.value}. Reply with JSON only."
    )
    return [SystemMessage(content=load_prompt("verifier")), HumanMessage(content=user)]


def _checkpoint(ctx: RunContext, state: RunState) -> None:
    if not ctx.git_writes_enabled or not state.file_changes:
        return
    result = git.commit(ctx.root, f"wayfinder: checkpoint after passing verification ({state.brief.goal[:60]})")
    if result.committed:
        logger.info("Checkpoint commit %s", result.hash[:10])
    else:
        logger.info("Checkpoint skipped: %s", result.message)


def verifier_node(state: RunState, ctx: RunContext) -> dict:
    """Run verification for the effective profile and decide whether the run is done."""
    settings = ctx.settings
    root = ctx.root
    profile = state.effective_profile

    if state.policy_violations:
        logger.warning("Skipping verification: forbidden paths touched (%s)", ", ".join(state.policy_violations))
        return {
            "done": False,
            "verification_summary": f"policy violation: {', '.join(state.policy_violations)}",
            "messages": [node_note("verifier", "policy violation, verification skipped")],
        }

    detected = state.detected_commands or detect_commands(root)
    commands = select_commands(detected, profile, state.file_change_count)
    updates: dict = {"detected_commands": detected}

    # A syntax check alone never proves the change works
    if not any(kind != "syntax" for kind, _ in commands):
        logger.warning(
            "No functional verification for stack %s (selected: %s)",
            detected.stack, ", ".join(command for _, command in commands) or "none",
        )
        updates.update({
            "done": True,
            "terminal_status": TerminalStatus.DONE_PARTIAL,
            "verification_summary": "no verification available",
            "messages": [node_note("verifier", "no verification available")],
        })
        return updates

    budget = state.budget
    if budget is not None and budget.test_runs_exhausted:
        if profile in (ExecutionProfile.SMOKE, ExecutionProfile.YOLO):
            logger.info("Test-run budget exhausted; assuming success under %s", profile.value)
            updates.update({
                "done": True,
                "terminal_status": TerminalStatus.DONE_SUCCESS,
                "verification_summary": "test-run budget exhausted; success assumed",
                "messages": [node_note("verifier", "test budget exhausted, success assumed")],
            })
        else:
            logger.warning("Test-run budget exhausted; verification skipped")
            updates.update({
                "done": False,
                "verification_summary": "test-run budget exhausted; verification skipped",
                "messages": [node_note("verifier", "test budget exhausted, verification skipped")],
            })
        return updates

    # ── Execute ──
    started = time.time()
    runs: list[VerificationRun] = []
    run_diagnostics: list[DiagnosticsEntry] = []
    checks = []
    for kind, command in commands:
        if budget is not None:
            if budget.test_runs_exhausted:
                logger.warning("Test-run budget ran out; skipping %s", command)
                break
            budget = charge_test_run(budget, command, "verifier")
        result = run_command(command, root)
        output = result.combined_output
        runs.append(VerificationRun(
            command=command,
            kind=kind,
            exit_code=result.exit_code,
            passed=result.passed,
            output=output[-RUN_OUTPUT_CHARS:],
            timed_out=result.timed_out,
        ))
        checks.extend(record_functional_check(command, result.exit_code, "verifier"))
        logger.info("verify | %s [%s] -> exit %d", command, kind, result.exit_code)
        if not result.passed:
            source = KIND_SOURCES.get(kind, "test")
            run_diagnostics.extend(parse_diagnostics(output, source) or [fallback_entry(output, source, command)])

    strict = profile == ExecutionProfile.STRICT
    extra: list[DiagnosticsEntry] = []
    if strict and settings.verifier_project_diagnostics:
        extra.extend(run_project_diagnostics(root))
    if settings.verifier_scan_logs:
        extra.extend(scan_recent_logs(root, since=started, exclude={Path(settings.log_file).resolve()}))
    run_diagnostics.extend(extra)

    all_passed = bool(runs) and all(r.passed for r in runs)
    blocking = [d for d in extra if d.severity == "error"] if strict else []
    passed = all_passed and not blocking

    updates.update({
        "budget": budget,
        "test_results": runs,
        "functional_checks": checks,
        "diagnostics_log": merge_diagnostics(state.diagnostics_log, run_diagnostics),
        "last_test_signature": run_signature(runs),
    })

    # ── Failure bookkeeping ──
    if passed:
        updates.update({"same_error_count": 0, "last_failure_signature": ""})
        _checkpoint(ctx, state)
    else:
        failed = next((r for r in runs if not r.passed), None)
        if failed is not None:
            signature = run_signature(runs)
            error_text = failed.output.strip()[-500:] or f"{failed.command} exited {failed.exit_code}"
            kind = classify_failure(failed.output, failed.timed_out)
        else:
            signature = f"diagnostics:{blocking[0].file}:{blocking[0].message}"[:256]
            error_text = blocking[0].message
            kind = "runtime"
        same = state.same_error_count + 1 if signature == state.last_failure_signature else 1
        updates.update({
            "last_failure_signature": signature,
            "same_error_count": same,
            "failure_history": state.failure_history + [FailureRecord(step="verifier", error=error_text, kind=kind)],
        })
        logger.warning("Verification failed (%s, same error x%d)", kind, same)

    # ── Decision ──
    if can_use_fast_path(profile, state.file_change_count, passed, run_diagnostics, settings):
        logger.info("Fast path: %d files, all checks passed under %s", state.file_change_count, profile.value)
        updates.update({
            "done": True,
            "terminal_status": TerminalStatus.DONE_SUCCESS,
            "verification_summary": f"fast path: {len(runs)} checks passed",
            "messages": [node_note("verifier", "all checks passed (fast path)")],
        })
        return updates

    try:
        verdict = judge_completion(ctx, _judgment_messages(state, runs, run_diagnostics))
    except JudgmentUnavailable as exc:
        logger.error("Verifier judgment unavailable after retries: %s", exc)
        updates.update({
            "done": False,
            "verification_summary": "verification blocked: judgment unavailable",
            "messages": [node_note("verifier", "judgment unavailable, not marking done")],
        })
        return updates

    status = verdict["status"]
    summary = str(verdict.get("summary") or verdict.get("reason") or "").strip()
    done = status in ("pass", "partial")
    if strict and not passed:
        done = False
    updates.update({
        "done": done,
        "verification_summary": f"{status}: {summary}" if summary else status,
        "messages": [node_note("verifier", f"{status}, {sum(r.passed for r in runs)}/{len(runs)} checks passed")],
    })
    if done:
        updates["terminal_status"] = TerminalStatus.DONE_SUCCESS if status == "pass" else TerminalStatus.DONE_PARTIAL
    logger.info("Verifier verdict: %s (done=%s)", status, done)
    return updates
