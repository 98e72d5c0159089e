"""Per-run collaborators shared by every node.

Nodes receive a :class:`RunContext` next to the state instead of reaching
for module globals, so tests can swap the oracle and caches freely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from wayfinder.agents.oracle import Oracle
from wayfinder.core.config import Settings
from wayfinder.core.research_cache import ResearchCache
from wayfinder.tools.fetch_page import PageCache
from wayfinder.tools.web_search import SearchCache


@dataclass
class RunContext:
    settings: Settings
    oracle: Oracle
    search_cache: SearchCache = field(default_factory=SearchCache)
    page_cache: PageCache = field(default_factory=PageCache)
    research_cache: ResearchCache | None = None

    def __post_init__(self) -> None:
        if self.research_cache is None:
            self.research_cache = ResearchCache(
                self.root,
                ttl_days=self.settings.research_cache_ttl_days,
                max_entries=self.settings.research_cache_max_entries,
            )

    @property
    def root(self) -> Path:
        return self.settings.root_path

    @property
    def git_writes_enabled(self) -> bool:
        return self.settings.git_enabled and not self.settings.dry_run
