"""Heuristics that size a task and classify what kind of research it needs."""

from __future__ import annotations

import re

from wayfinder.core.state import ExecutionProfile, TaskScope

HEAVY_KEYWORDS = (
    "architecture",
    "platform",
    "database",
    "schema",
    "migrate",
    "migration",
    "orchestrator",
    "service",
    "api",
    "microservice",
    "monolith",
    "bootstrap",
    "infrastructure",
    "auth",
    "ci",
    "cd",
    "deploy",
    "container",
    "docker",
    "kubernetes",
)

_HEAVY_RE = re.compile(r"\b(" + "|".join(HEAVY_KEYWORDS) + r")\b")

_STRICT_KEYWORDS = ("strict", "production", "security", "compliance", "regulated", "mission-critical")
_YOLO_KEYWORDS = ("yolo", "prototype", "throwaway", "hackathon", "spike")
_SMOKE_KEYWORDS = ("smoke test only", "smoke-only", "just make it run")

_DEBUG_RE = re.compile(r"\b(fix|bug|error|crash|exception|failing|broken|traceback)\b", re.IGNORECASE)
_ARCH_RE = re.compile(r"\b(architecture|architect|design|migrate|migration|restructure)\b", re.IGNORECASE)
_RESEARCH_RE = re.compile(r"\b(research|investigate|compare|evaluate|survey|best practices?)\b", re.IGNORECASE)
_REFERENCE_RE = re.compile(r"\b(docs?|documentation|api reference|how to|usage|example)\b", re.IGNORECASE)


def estimate_task_scope(goal: str = "", ticket: str = "", architect: str = "") -> TaskScope:
    """Size a task from its goal and ticket text.

    Heavy keywords win outright; otherwise word count decides, with a very
    long architecture document pushing a mid-sized task to large.
    """
    blob = f"{goal}\n{ticket}".lower()
    word_count = len(blob.split())

    if _HEAVY_RE.search(blob):
        return TaskScope.LARGE
    if word_count <= 80:
        return TaskScope.TINY
    if word_count >= 200:
        return TaskScope.LARGE
    if len(architect) > 20_000:
        return TaskScope.LARGE
    return TaskScope.NORMAL


def task_type_hint(goal: str) -> str:
    """Return one of architecture / debug / research / reference / "" for *goal*."""
    if _ARCH_RE.search(goal):
        return "architecture"
    if _DEBUG_RE.search(goal):
        return "debug"
    if _RESEARCH_RE.search(goal):
        return "research"
    if _REFERENCE_RE.search(goal):
        return "reference"
    return ""


def heuristic_profile(*texts: str) -> ExecutionProfile:
    """Pick a default profile by scanning the brief for strictness keywords."""
    blob = "\n".join(t for t in texts if t).lower()
    if any(kw in blob for kw in _STRICT_KEYWORDS):
        return ExecutionProfile.STRICT
    if any(kw in blob for kw in _SMOKE_KEYWORDS):
        return ExecutionProfile.SMOKE
    if any(kw in blob for kw in _YOLO_KEYWORDS):
        return ExecutionProfile.YOLO
    return ExecutionProfile.FAST
