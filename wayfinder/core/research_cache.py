"""Goal-keyed on-disk cache of research results.

Stored as a JSON array in ``.sdd/cache/research_cache.json``. Entries expire
after a TTL and only the most recent few are retained. One run per
repository at a time is assumed; there is no file locking.
"""

from __future__ import annotations

import json
import re
import time
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from wayfinder.core.logging import get_logger
from wayfinder.core.state import ResearchFinding, ResearchQuality

logger = get_logger("core.research_cache")

CACHE_RELATIVE_PATH = Path(".sdd") / "cache" / "research_cache.json"
TICKET_ID_RE = re.compile(r"\b(\d{2}-[a-z-]+)")


class CachedResearch(BaseModel):
    goal: str
    findings: list[ResearchFinding] = Field(default_factory=list)
    quality: ResearchQuality | None = None
    timestamp: float = Field(default_factory=time.time)


def _significant_words(text: str) -> set[str]:
    return {w for w in re.findall(r"[a-z0-9]+", text.lower()) if len(w) > 3}


def goals_match(cached_goal: str, goal: str) -> bool:
    """Exact, substring, shared ticket id, or > 50% overlap of significant words."""
    a = cached_goal.strip().lower()
    b = goal.strip().lower()
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True

    ticket_a = TICKET_ID_RE.search(a)
    ticket_b = TICKET_ID_RE.search(b)
    if ticket_a and ticket_b and ticket_a.group(1) == ticket_b.group(1):
        return True

    words_a = _significant_words(a)
    words_b = _significant_words(b)
    smaller = min(len(words_a), len(words_b))
    if smaller == 0:
        return False
    return len(words_a & words_b) / smaller > 0.5


class ResearchCache:
    """Process-external store; lifetime is the TTL, capacity is ``max_entries``."""

    def __init__(self, root_dir: str | Path, ttl_days: int = 7, max_entries: int = 5) -> None:
        self.path = Path(root_dir) / CACHE_RELATIVE_PATH
        self.ttl_seconds = ttl_days * 24 * 3600
        self.max_entries = max_entries

    def _load(self) -> list[CachedResearch]:
        if not self.path.is_file():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Research cache unreadable (%s); ignoring", exc)
            return []
        entries = []
        for item in raw if isinstance(raw, list) else []:
            try:
                entries.append(CachedResearch.model_validate(item))
            except ValidationError:
                continue
        return entries

    def _fresh(self, entry: CachedResearch, now: float) -> bool:
        return now - entry.timestamp <= self.ttl_seconds

    def lookup(self, goal: str, now: float | None = None) -> CachedResearch | None:
        now = now if now is not None else time.time()
        entries = [e for e in self._load() if self._fresh(e, now)]
        # Most recent first so a newer entry wins over an older partial match
        for entry in sorted(entries, key=lambda e: e.timestamp, reverse=True):
            if goals_match(entry.goal, goal):
                logger.info("Research cache hit for goal %r (cached goal %r)", goal[:80], entry.goal[:80])
                return entry
        return None

    def save(
        self,
        goal: str,
        findings: list[ResearchFinding],
        quality: ResearchQuality | None,
        now: float | None = None,
    ) -> None:
        now = now if now is not None else time.time()
        entries = [
            e for e in self._load()
            if self._fresh(e, now) and e.goal.strip().lower() != goal.strip().lower()
        ]
        entries.append(CachedResearch(goal=goal, findings=findings, quality=quality, timestamp=now))
        entries = entries[-self.max_entries:]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([e.model_dump() for e in entries], indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Research cache write failed: %s", exc)
