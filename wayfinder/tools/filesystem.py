"""Safe filesystem operations sandboxed to the target repository.

Every path is resolved and verified to stay inside the repo root before any I/O.
"""

from __future__ import annotations

import re
from pathlib import Path

from wayfinder.core.logging import get_logger

logger = get_logger("tools.filesystem")

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}


class PathEscapeError(Exception):
    """Raised when a path would escape the repo sandbox."""


class PatchError(Exception):
    """Raised when a unified diff does not apply cleanly."""


def resolve_safe(root_dir: str | Path, relative_path: str) -> Path:
    """Resolve *relative_path* against the repo root and verify it stays inside."""
    root = Path(root_dir).resolve()
    if not root.exists():
        raise FileNotFoundError(f"Target repo root does not exist: {root}")
    target = (root / relative_path).resolve()
    try:
        target.relative_to(root)
    except ValueError as exc:
        raise PathEscapeError(
            f"Path escapes repo sandbox: {relative_path!r} resolved to {target}"
        ) from exc
    return target


def _decode(raw: bytes) -> str:
    if raw.startswith(b"\xff\xfe") or raw.startswith(b"\xfe\xff"):
        return raw.decode("utf-16", errors="replace").lstrip("\ufeff")
    if raw.startswith(b"\xef\xbb\xbf"):
        return raw[3:].decode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")


def read_text(root_dir: str | Path, path: str) -> str:
    target = resolve_safe(root_dir, path)
    if not target.is_file():
        raise FileNotFoundError(f"Not a file: {path}")
    content = _decode(target.read_bytes())
    logger.info("read_file  | %s (%d chars)", path, len(content))
    return content


def write_text(root_dir: str | Path, path: str, content: str) -> bool:
    """Write *content* to *path*. Returns True when the file was newly created."""
    target = resolve_safe(root_dir, path)
    created = not target.exists()
    target.parent.mkdir(parents=True, exist_ok=True)
    content = content.lstrip("\ufeff")
    target.write_text(content, encoding="utf-8")
    logger.info("write_file | %s (%d chars)", path, len(content))
    return created


def list_files(root_dir: str | Path, pattern: str = "**/*", limit: int = 500) -> list[str]:
    """Repo-relative paths matching a glob, skipping VCS / dependency directories."""
    root = Path(root_dir).resolve()
    hits: list[str] = []
    for path in sorted(root.glob(pattern or "**/*")):
        if not path.is_file():
            continue
        rel = path.relative_to(root)
        if any(part in SKIP_DIRS for part in rel.parts):
            continue
        hits.append(rel.as_posix())
        if len(hits) >= limit:
            break
    logger.info("list_files | %s (%d hits)", pattern, len(hits))
    return hits


# ── Unified diff ─────────────────────────────────────────────────────────


def _parse_hunks(diff: str) -> list[tuple[int, list[str], list[str]]]:
    """Return ``(old_start, old_lines, new_lines)`` per hunk."""
    hunks: list[tuple[int, list[str], list[str]]] = []
    current: tuple[int, list[str], list[str]] | None = None
    old_left = new_left = 0
    for line in diff.splitlines():
        header = HUNK_HEADER_RE.match(line)
        if header:
            current = (int(header.group(1)), [], [])
            hunks.append(current)
            old_left = int(header.group(2) or 1)
            new_left = int(header.group(4) or 1)
            continue
        # File headers and anything past the hunk's declared length
        if current is None or line.startswith("\\") or (old_left <= 0 and new_left <= 0):
            continue
        tag, body = line[:1], line[1:]
        if tag == " " or line == "":
            current[1].append(body)
            current[2].append(body)
            old_left -= 1
            new_left -= 1
        elif tag == "-":
            current[1].append(body)
            old_left -= 1
        elif tag == "+":
            current[2].append(body)
            new_left -= 1
    return hunks


def _find_block(lines: list[str], block: list[str], hint: int) -> int:
    """Index where *block* occurs in *lines*, preferring the match nearest *hint*."""
    if not block:
        return min(max(hint, 0), len(lines))
    size = len(block)
    for normalize in (lambda s: s, lambda s: s.rstrip()):
        wanted = [normalize(b) for b in block]
        candidates = [
            i for i in range(len(lines) - size + 1)
            if [normalize(x) for x in lines[i:i + size]] == wanted
        ]
        if candidates:
            return min(candidates, key=lambda i: abs(i - hint))
    return -1


def apply_unified_diff(original: str, diff: str) -> str:
    hunks = _parse_hunks(diff)
    if not hunks:
        raise PatchError("no hunks found in diff")

    lines = original.splitlines()
    offset = 0
    for number, (old_start, old_lines, new_lines) in enumerate(hunks, start=1):
        index = _find_block(lines, old_lines, old_start - 1 + offset)
        if index < 0:
            raise PatchError(f"hunk {number} does not match file content")
        lines[index:index + len(old_lines)] = new_lines
        offset += len(new_lines) - len(old_lines)

    trailing = "\n" if original.endswith("\n") or not original else ""
    return "\n".join(lines) + trailing


def apply_patch(root_dir: str | Path, path: str, diff: str) -> bool:
    """Apply a unified diff to *path* (a missing file is patched from empty). Returns True if created."""
    target = resolve_safe(root_dir, path)
    created = not target.exists()
    original = "" if created else _decode(target.read_bytes())
    updated = apply_unified_diff(original, diff)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(updated, encoding="utf-8")
    logger.info("write_patch| %s (%d → %d chars)", path, len(original), len(updated))
    return created
