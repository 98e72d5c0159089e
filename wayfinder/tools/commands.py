"""Safe command execution inside the target repository.

Commands run with a timeout; expiry kills the process and is reported as a
failed result, never raised. A blocklist refuses destructive commands.
"""

from __future__ import annotations

import os
import re
import subprocess
import time
from pathlib import Path

from pydantic import BaseModel

from wayfinder.core.config import get_settings
from wayfinder.core.logging import get_logger

logger = get_logger("tools.commands")

# ── Blocklist ────────────────────────────────────────────────────────────
BLOCKED_PATTERNS: list[re.Pattern] = [
    re.compile(r"\brm\s+(-[rRf]+\s+)*/((?!home)|$)", re.IGNORECASE),  # rm -rf /
    re.compile(r"\bshutdown\b"),
    re.compile(r"\breboot\b"),
    re.compile(r"\bmkfs\b"),
    re.compile(r"\bdd\s+.*of=/dev/", re.IGNORECASE),
    re.compile(r":\(\)\s*\{.*:\|:.*\}"),  # fork bomb
    re.compile(r"\bchmod\s+(-R\s+)?777\s+/"),
    re.compile(r"\bcurl\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r"\bwget\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r"\bsudo\b"),
    re.compile(r"\bgit\s+push\b"),
    re.compile(r"\bgit\s+reset\s+--hard\b"),
]


class CommandResult(BaseModel):
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined_output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout}\n--- stderr ---\n{self.stderr}"
        return self.stdout or self.stderr

    def render(self) -> str:
        """Tool-message form: ``[OK]`` / ``[FAILED (exit N)]`` header plus output."""
        if self.timed_out:
            status = "TIMEOUT"
        else:
            status = "OK" if self.exit_code == 0 else f"FAILED (exit {self.exit_code})"
        output = self.combined_output.strip()
        return f"[{status}] {self.command}\n{output}" if output else f"[{status}] {self.command}"


def is_blocked(command: str) -> str | None:
    """Return a reason string if the command is blocked, else None."""
    for pattern in BLOCKED_PATTERNS:
        if pattern.search(command):
            return f"Blocked by safety rule: {pattern.pattern}"
    return None


def truncate(text: str, limit: int | None = None) -> str:
    limit = limit or get_settings().max_output_chars
    if len(text) > limit:
        half = limit // 2
        return text[:half] + f"\n\n... [truncated {len(text) - limit} chars] ...\n\n" + text[-half:]
    return text


def run_command(command: str, cwd: str | Path, timeout_seconds: int | None = None) -> CommandResult:
    """Run *command* through the shell in *cwd* and capture its outcome."""
    settings = get_settings()
    timeout = timeout_seconds or settings.command_timeout_seconds

    reason = is_blocked(command)
    if reason:
        logger.warning("BLOCKED command | %s | reason: %s", command, reason)
        return CommandResult(command=command, exit_code=126, stderr=f"BLOCKED: {reason}")

    if not Path(cwd).is_dir():
        return CommandResult(command=command, exit_code=127, stderr=f"ERROR: directory does not exist: {cwd}")

    logger.info("run_command | cwd=%s | cmd=%s", cwd, command)
    started = time.monotonic()
    try:
        proc = subprocess.run(
            command,
            shell=True,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env={**os.environ, "CI": "1"},
        )
    except subprocess.TimeoutExpired as exc:
        logger.error("TIMEOUT after %ss: %s", timeout, command)
        partial = exc.stdout.decode("utf-8", "replace") if isinstance(exc.stdout, bytes) else (exc.stdout or "")
        return CommandResult(
            command=command,
            exit_code=124,
            stdout=truncate(partial),
            stderr=f"TIMEOUT after {timeout}s",
            timed_out=True,
            duration_seconds=time.monotonic() - started,
        )
    except OSError as exc:
        logger.error("ERROR executing command %r: %s", command, exc)
        return CommandResult(command=command, exit_code=127, stderr=f"ERROR executing command: {exc}")

    result = CommandResult(
        command=command,
        exit_code=proc.returncode,
        stdout=truncate(proc.stdout or ""),
        stderr=truncate(proc.stderr or ""),
        duration_seconds=time.monotonic() - started,
    )
    logger.info("run_command | exit=%d | %.1fs | %s", result.exit_code, result.duration_seconds, command)
    return result
