"""Best-effort git operations used for checkpoints, ticket closing and hotspots.

All calls run the configured git binary with ``shell=False`` inside the target
repo. Failures are logged and reported through return values, never raised.
"""

from __future__ import annotations

import os
import subprocess
from collections import Counter
from pathlib import Path

from pydantic import BaseModel

from wayfinder.core.config import get_settings
from wayfinder.core.logging import get_logger

logger = get_logger("tools.git")

GIT_TIMEOUT_SECONDS = 60


class CommitResult(BaseModel):
    committed: bool
    hash: str | None = None
    message: str = ""


class GitStatusEntry(BaseModel):
    code: str
    path: str


def _run_git(root_dir: str | Path, *args: str) -> tuple[int, str, str]:
    """Run ``git <args>`` in *root_dir*; returns ``(exit_code, stdout, stderr)``."""
    settings = get_settings()
    root = Path(root_dir).resolve()
    if not root.is_dir():
        return 127, "", f"ERROR: repo root does not exist: {root}"

    logger.info("git        | %s", " ".join(args))
    try:
        result = subprocess.run(
            [settings.git_binary, *args],
            shell=False,
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            env={
                **dict(os.environ),
                "GIT_AUTHOR_NAME": settings.git_author_name,
                "GIT_AUTHOR_EMAIL": settings.git_author_email,
                "GIT_COMMITTER_NAME": settings.git_author_name,
                "GIT_COMMITTER_EMAIL": settings.git_author_email,
            },
            encoding="utf-8",
            errors="replace",
        )
    except subprocess.TimeoutExpired:
        logger.warning("git %s timed out after %ss", args[0] if args else "", GIT_TIMEOUT_SECONDS)
        return 124, "", f"TIMEOUT: git command took > {GIT_TIMEOUT_SECONDS}s"
    except OSError as exc:
        logger.warning("git unavailable: %s", exc)
        return 127, "", f"ERROR: {exc}"

    if result.returncode != 0:
        logger.debug("git %s failed (exit %d): %s", args[0], result.returncode, result.stderr.strip())
    return result.returncode, result.stdout or "", result.stderr or ""


def is_repo(root_dir: str | Path) -> bool:
    code, out, _ = _run_git(root_dir, "rev-parse", "--is-inside-work-tree")
    return code == 0 and out.strip() == "true"


def ensure_repo(root_dir: str | Path) -> bool:
    """Make sure *root_dir* is a git work tree, initialising one when auto-init is on."""
    if is_repo(root_dir):
        return True
    if not get_settings().git_auto_init:
        logger.info("No git repository at %s and auto-init is disabled", root_dir)
        return False

    code, _, _ = _run_git(root_dir, "init", "-b", "main")
    if code != 0:
        # git < 2.28 has no -b
        code, _, _ = _run_git(root_dir, "init")
    if code == 0:
        logger.info("Initialised git repository at %s", root_dir)
    return code == 0


def status(root_dir: str | Path) -> list[GitStatusEntry]:
    """Parsed ``git status --porcelain``; empty on any failure."""
    code, out, _ = _run_git(root_dir, "status", "--porcelain")
    if code != 0:
        return []
    entries = []
    for line in out.splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        entries.append(GitStatusEntry(code=line[:2].strip(), path=path.strip('"')))
    return entries


def commit(root_dir: str | Path, message: str, files: list[str] | None = None) -> CommitResult:
    """Stage *files* (or everything) and commit. Nothing to commit is not an error."""
    if not ensure_repo(root_dir):
        return CommitResult(committed=False, message="not a git repository")

    add_args = ["add", "--", *files] if files else ["add", "-A"]
    code, _, err = _run_git(root_dir, *add_args)
    if code != 0:
        return CommitResult(committed=False, message=f"git add failed: {err.strip()}")

    if not status(root_dir):
        logger.info("git commit skipped: working tree clean")
        return CommitResult(committed=False, message="nothing to commit")

    code, out, err = _run_git(root_dir, "commit", "-m", message)
    if code != 0:
        return CommitResult(committed=False, message=f"git commit failed: {(err or out).strip()}")

    code, head, _ = _run_git(root_dir, "rev-parse", "HEAD")
    commit_hash = head.strip() if code == 0 else None
    logger.info("git commit | %s | %s", commit_hash or "?", message)
    return CommitResult(committed=True, hash=commit_hash, message=message)


def hotspots(root_dir: str | Path, limit: int = 10, max_commits: int = 200) -> list[tuple[str, int]]:
    """Most frequently changed files over the last *max_commits* commits."""
    code, out, _ = _run_git(
        root_dir, "log", f"-n{max_commits}", "--name-only", "--pretty=format:"
    )
    if code != 0:
        return []
    counts = Counter(line.strip() for line in out.splitlines() if line.strip())
    return counts.most_common(limit)
