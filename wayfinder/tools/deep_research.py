"""Research strategy engine.

Picks a search depth from task scope, type and profile, then either runs a
plain search pass (shallow / medium) or the deep loop:

    optimise query → search → fetch top pages → summarise with citations
    → score → refine, until the quality thresholds are met, returns
    diminish, or attempts run out.

Long goals are decomposed into prioritised sub-queries first, each given a
short deep loop of its own. Web access is metered through a
:class:`WebAllowance` so the caller can charge its budget afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from wayfinder.agents.models import load_prompt
from wayfinder.agents.oracle import Oracle, OracleError, ask_json, ask_text
from wayfinder.core.config import Settings, get_settings
from wayfinder.core.llm_json import parse_llm_json
from wayfinder.core.logging import get_logger
from wayfinder.core.state import (
    Citation,
    ExecutionProfile,
    ResearchFinding,
    ResearchQuality,
    TaskScope,
)
from wayfinder.tools.fetch_page import FetchedPage, FetchError, PageCache, fetch_page
from wayfinder.tools.web_search import SearchCache, SearchResult, WebSearchError, web_search

logger = get_logger("tools.deep_research")

RAW_PAGES_SAMPLE_SIZE = 3
RAW_PAGE_SAMPLE_CHARS = 2000
SOURCE_CHARS_PER_PAGE = 6000
QUALITY_FIELDS = ("relevance", "confidence", "coverage", "support", "recency", "diversity")


@dataclass(frozen=True)
class ResearchStrategy:
    level: str              # shallow | medium | deep
    max_attempts: int
    max_results: int
    top_pages: int
    search_depth: str       # basic | advanced

    @property
    def is_deep(self) -> bool:
        return self.level == "deep"


STRATEGIES: dict[str, ResearchStrategy] = {
    "shallow": ResearchStrategy("shallow", max_attempts=1, max_results=3, top_pages=1, search_depth="basic"),
    "medium": ResearchStrategy("medium", max_attempts=3, max_results=5, top_pages=3, search_depth="basic"),
    "deep": ResearchStrategy("deep", max_attempts=4, max_results=7, top_pages=5, search_depth="advanced"),
}


def compute_research_strategy(
    scope: TaskScope | str | None = None,
    task_type: str = "",
    profile: ExecutionProfile | str | None = None,
    max_attempts: int | None = None,
) -> ResearchStrategy:
    """Tiny → shallow; large / strict / architecture / research → deep; else medium.

    An explicit *max_attempts* always overrides the table.
    """
    if scope == TaskScope.TINY:
        level = "shallow"
    elif (
        scope == TaskScope.LARGE
        or profile == ExecutionProfile.STRICT
        or task_type in ("architecture", "research")
    ):
        level = "deep"
    else:
        level = "medium"

    strategy = STRATEGIES[level]
    if max_attempts is not None:
        strategy = ResearchStrategy(
            level=strategy.level,
            max_attempts=max_attempts,
            max_results=strategy.max_results,
            top_pages=strategy.top_pages,
            search_depth=strategy.search_depth,
        )
    return strategy


class DeepResearchResult(BaseModel):
    findings: list[ResearchFinding] = Field(default_factory=list)
    quality: ResearchQuality | None = None
    raw_search_results: list[SearchResult] = Field(default_factory=list)
    raw_pages_sample: list[FetchedPage] = Field(default_factory=list)
    web_requests: int = 0


class WebAllowance:
    """Counts web requests against what is left of the run's web budget."""

    def __init__(self, remaining: int) -> None:
        self.remaining = max(remaining, 0)
        self.used = 0

    def take(self) -> bool:
        if self.used >= self.remaining:
            return False
        self.used += 1
        return True


# ── Quality helpers ──────────────────────────────────────────────────────


def _clamp(value, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, 0.0), 1.0)


def parse_quality(data: dict, query: str = "", attempt: int = 0) -> ResearchQuality:
    """Build a clamped ResearchQuality from evaluator JSON (camelCase tolerated)."""
    def pick(*keys):
        for key in keys:
            if key in data:
                return data[key]
        return None

    return ResearchQuality(
        relevance=_clamp(pick("relevance"), 0.0),
        confidence=_clamp(pick("confidence"), 0.5),
        coverage=_clamp(pick("coverage"), 0.0),
        support=_clamp(pick("support"), 0.5),
        recency=_clamp(pick("recency"), 0.5),
        diversity=_clamp(pick("diversity"), 0.5),
        has_conflicts=bool(pick("has_conflicts", "hasConflicts") or False),
        should_retry=bool(pick("should_retry", "shouldRetry") or False),
        reasons=str(pick("reasons") or ""),
        last_query=query,
        attempt_count=attempt,
    )


def combined_score(quality: ResearchQuality | None) -> float:
    if quality is None:
        return 0.0
    return (quality.relevance + quality.coverage) / 2


def aggregate_quality(qualities: list[ResearchQuality]) -> ResearchQuality | None:
    """Arithmetic mean of every scored field across sub-queries."""
    if not qualities:
        return None
    count = len(qualities)
    means = {field: sum(getattr(q, field) for q in qualities) / count for field in QUALITY_FIELDS}
    return ResearchQuality(
        **means,
        has_conflicts=any(q.has_conflicts for q in qualities),
        should_retry=any(q.should_retry for q in qualities),
        reasons=" | ".join(q.reasons for q in qualities if q.reasons),
        last_query=qualities[-1].last_query,
        attempt_count=sum(q.attempt_count for q in qualities),
    )


def dedupe_findings(findings: list[ResearchFinding]) -> list[ResearchFinding]:
    """Drop findings whose citation URL set was already seen (statement when uncited)."""
    seen: set = set()
    unique = []
    for finding in findings:
        urls = frozenset(c.url for c in finding.citations)
        key = urls if urls else finding.statement.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


def _parse_findings(value) -> list[ResearchFinding] | None:
    if isinstance(value, dict):
        value = value.get("findings")
    if not isinstance(value, list):
        return None
    findings = []
    for item in value:
        if not isinstance(item, dict) or not item.get("statement"):
            continue
        citations = []
        for cite in item.get("citations") or []:
            if isinstance(cite, dict) and cite.get("url"):
                citations.append(Citation(
                    url=str(cite["url"]),
                    title=str(cite.get("title") or ""),
                    snippet=str(cite.get("snippet") or ""),
                ))
        findings.append(ResearchFinding(statement=str(item["statement"]), citations=citations))
    return findings


def findings_from_snippets(results: list[SearchResult]) -> list[ResearchFinding]:
    return [
        ResearchFinding(
            statement=r.snippet or r.title,
            citations=[Citation(url=r.url, title=r.title, snippet=r.snippet[:300])],
        )
        for r in results
        if r.snippet or r.title
    ]


# ── Engine ───────────────────────────────────────────────────────────────


class ResearchEngine:
    """One research run: shared oracle, caches and web allowance."""

    def __init__(
        self,
        oracle: Oracle,
        allowance: WebAllowance,
        search_cache: SearchCache | None = None,
        page_cache: PageCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.oracle = oracle
        self.allowance = allowance
        self.search_cache = search_cache
        self.page_cache = page_cache
        self.settings = settings or get_settings()

    # -- collaborators ----------------------------------------------------

    def search(self, query: str, strategy: ResearchStrategy) -> list[SearchResult]:
        if not self.allowance.take():
            logger.warning("Web budget exhausted; skipping search for %r", query[:80])
            return []
        try:
            return web_search(
                query,
                max_results=strategy.max_results,
                search_depth=strategy.search_depth,
                cache=self.search_cache,
            )
        except WebSearchError as exc:
            logger.warning("Search failed for %r: %s", query[:80], exc)
            return []

    def fetch_sources(self, results: list[SearchResult]) -> tuple[list[str], list[FetchedPage]]:
        """Fetch each result; a failed fetch falls back to the search snippet."""
        sources: list[str] = []
        pages: list[FetchedPage] = []
        for result in results:
            try:
                page = fetch_page(result.url, cache=self.page_cache)
            except FetchError as exc:
                logger.info("Fetch failed for %s (%s); using snippet", result.url, exc)
                sources.append(
                    f"Source: {result.url}\nTitle: {result.title}\n"
                    f"Content (Snippet only):\n{result.snippet}\n---"
                )
                continue
            pages.append(page)
            sources.append(
                f"Source: {result.url}\nTitle: {result.title}\n"
                f"Content:\n{page.content[:SOURCE_CHARS_PER_PAGE]}\n---"
            )
        return sources, pages

    # -- oracle steps -----------------------------------------------------

    def _ask(self, prompt_name: str, user_prompt: str):
        messages = [SystemMessage(content=load_prompt(prompt_name)), HumanMessage(content=user_prompt)]
        return ask_json(self.oracle, "researcher", messages)

    def optimize_query(self, goal: str) -> str:
        data = self._ask("query_optimizer", f"Goal:\n{goal}")
        if isinstance(data, dict) and str(data.get("query") or "").strip():
            return str(data["query"]).strip()
        return goal

    def summarize(self, query: str, sources: list[str]) -> list[ResearchFinding] | None:
        """Findings with citations, or None when synthesis failed."""
        data = self._ask(
            "research_summarizer",
            f"Query: {query}\n\nSources:\n" + "\n\n".join(sources),
        )
        return _parse_findings(data)

    def score(self, goal: str, query: str, findings: list[ResearchFinding], attempt: int) -> ResearchQuality | None:
        listing = "\n".join(
            f"- {f.statement} [{', '.join(c.url for c in f.citations) or 'no citation'}]"
            for f in findings
        ) or "(no findings)"
        data = self._ask(
            "research_evaluator",
            f"Goal:\n{goal}\n\nQuery: {query}\n\nFindings:\n{listing}",
        )
        if not isinstance(data, dict):
            return None
        return parse_quality(data, query=query, attempt=attempt)

    def refine(self, goal: str, query: str, quality: ResearchQuality) -> str | None:
        user_prompt = (
            f"Goal:\n{goal}\n\nPrevious query: {query}\n"
            f"Relevance: {quality.relevance:.2f}, coverage: {quality.coverage:.2f}\n"
            f"Evaluator notes: {quality.reasons or 'none'}"
        )
        try:
            raw = ask_text(self.oracle, "researcher", load_prompt("research_refiner"), user_prompt)
        except OracleError as exc:
            logger.warning("Query refinement failed: %s", exc)
            return None
        data = parse_llm_json(raw)
        if isinstance(data, dict):
            refined = str(data.get("query") or "").strip()
        else:
            refined = raw.strip().strip('"').splitlines()[0] if raw.strip() else ""
        return refined or None

    def decompose(self, goal: str) -> list[str]:
        data = self._ask(
            "research_decomposer",
            f"Split this goal into at most {self.settings.research_max_subqueries} "
            f"prioritised search queries.\n\nGoal:\n{goal}",
        )
        if isinstance(data, dict):
            data = data.get("queries") or data.get("subqueries")
        if not isinstance(data, list):
            return []

        ranked: list[tuple[int, int, str]] = []
        for index, item in enumerate(data):
            if isinstance(item, str):
                query, priority = item, index
            elif isinstance(item, dict) and item.get("query"):
                query = str(item["query"])
                try:
                    priority = int(item.get("priority", index))
                except (TypeError, ValueError):
                    priority = index
            else:
                continue
            if query.strip():
                ranked.append((priority, index, query.strip()))
        ranked.sort()
        return [query for _, _, query in ranked][: self.settings.research_max_subqueries]

    # -- flows ------------------------------------------------------------

    def _thresholds_met(self, quality: ResearchQuality, findings: list[ResearchFinding]) -> bool:
        s = self.settings
        return (
            quality.relevance >= s.research_min_relevance
            and quality.coverage >= s.research_min_coverage
            and len(findings) >= s.research_min_findings
        )

    def run_query(self, goal: str, strategy: ResearchStrategy, max_attempts: int | None = None) -> DeepResearchResult:
        """Deep attempt loop for a single goal / sub-query. Best attempt wins."""
        attempts = max(1, max_attempts or strategy.max_attempts)
        result = DeepResearchResult()
        query = self.optimize_query(goal)

        best_findings: list[ResearchFinding] = []
        best_quality: ResearchQuality | None = None
        previous_score: float | None = None

        for attempt in range(1, attempts + 1):
            logger.info("Deep research attempt %d/%d | query=%r", attempt, attempts, query[:100])
            results = self.search(query, strategy)
            result.raw_search_results.extend(results)

            findings: list[ResearchFinding] | None = []
            if results:
                sources, pages = self.fetch_sources(results[: strategy.top_pages])
                for page in pages:
                    if len(result.raw_pages_sample) < RAW_PAGES_SAMPLE_SIZE:
                        result.raw_pages_sample.append(
                            page.model_copy(update={"content": page.content[:RAW_PAGE_SAMPLE_CHARS]})
                        )
                findings = self.summarize(query, sources)

            if findings is None:
                logger.warning("Synthesis failed on attempt %d; skipping scoring", attempt)
                quality = ResearchQuality(
                    relevance=0.0, coverage=0.0, should_retry=True,
                    reasons="synthesis failed", last_query=query, attempt_count=attempt,
                )
                findings = []
            elif not findings:
                quality = ResearchQuality(
                    relevance=0.0, coverage=0.0, should_retry=True,
                    reasons="no findings", last_query=query, attempt_count=attempt,
                )
            else:
                quality = self.score(goal, query, findings, attempt) or ResearchQuality(
                    relevance=0.0, coverage=0.0, should_retry=True,
                    reasons="evaluation failed", last_query=query, attempt_count=attempt,
                )

            score = combined_score(quality)
            if best_quality is None or score >= combined_score(best_quality):
                best_quality = quality
                best_findings = findings

            if self._thresholds_met(quality, findings):
                logger.info("Research thresholds met on attempt %d", attempt)
                break
            if (
                previous_score is not None
                and abs(score - previous_score) < self.settings.research_min_delta
                and score >= self.settings.research_plateau_score
            ):
                logger.info("Research returns diminishing on attempt %d (score %.2f)", attempt, score)
                break
            previous_score = score

            if attempt == attempts:
                break
            if self.allowance.used >= self.allowance.remaining:
                logger.info("No web budget left for another research attempt")
                break
            refined = self.refine(goal, query, quality)
            if refined:
                query = refined

        if best_quality is not None:
            best_quality = best_quality.model_copy(update={"attempt_count": attempt})
        result.findings = best_findings
        result.quality = best_quality
        result.web_requests = self.allowance.used
        return result

    def run_decomposed(self, goal: str, subqueries: list[str], strategy: ResearchStrategy) -> DeepResearchResult:
        merged = DeepResearchResult()
        qualities: list[ResearchQuality] = []
        per_query = min(strategy.max_attempts, self.settings.research_subquery_attempts)
        for subquery in subqueries:
            if self.allowance.used >= self.allowance.remaining:
                logger.info("Web budget exhausted after %d sub-queries", len(qualities))
                break
            partial = self.run_query(subquery, strategy, max_attempts=per_query)
            merged.findings.extend(partial.findings)
            merged.raw_search_results.extend(partial.raw_search_results)
            for page in partial.raw_pages_sample:
                if len(merged.raw_pages_sample) < RAW_PAGES_SAMPLE_SIZE:
                    merged.raw_pages_sample.append(page)
            if partial.quality is not None:
                qualities.append(partial.quality)

        merged.findings = dedupe_findings(merged.findings)
        merged.quality = aggregate_quality(qualities)
        merged.web_requests = self.allowance.used
        return merged

    def run_plain(self, queries: list[str], strategy: ResearchStrategy) -> DeepResearchResult:
        """Shallow / medium: search only, snippets become findings, nothing is scored."""
        result = DeepResearchResult()
        for query in queries[: strategy.max_attempts]:
            results = self.search(query, strategy)
            result.raw_search_results.extend(results)
            result.findings.extend(findings_from_snippets(results))
        result.findings = dedupe_findings(result.findings)
        result.web_requests = self.allowance.used
        return result


def deep_research(
    oracle: Oracle,
    goal: str,
    strategy: ResearchStrategy,
    allowance: WebAllowance,
    queries: list[str] | None = None,
    scope: TaskScope | None = None,
    search_cache: SearchCache | None = None,
    page_cache: PageCache | None = None,
    settings: Settings | None = None,
) -> DeepResearchResult:
    """Run the deep flow for *goal* starting from the planned *queries*.

    Several planned queries run as sub-queries. A single one seeds the
    attempt loop, unless the goal is long or the task is large-scope: then
    the goal is decomposed and the seed leads the sub-query list.
    """
    engine = ResearchEngine(oracle, allowance, search_cache, page_cache, settings)
    planned = [q.strip() for q in (queries or []) if q and q.strip()] or [goal]

    if len(planned) > 1:
        logger.info("Deep research over %d planned queries", len(planned))
        return engine.run_decomposed(goal, planned, strategy)

    seed = planned[0]
    long_goal = len(goal.split()) > engine.settings.research_decompose_min_words
    if long_goal or scope == TaskScope.LARGE:
        decomposed = engine.decompose(goal)
        if len(decomposed) > 1:
            subqueries = decomposed if seed == goal else [seed] + [q for q in decomposed if q != seed]
            subqueries = subqueries[: engine.settings.research_max_subqueries]
            logger.info("Goal decomposed into %d sub-queries", len(subqueries))
            return engine.run_decomposed(goal, subqueries, strategy)
    return engine.run_query(seed, strategy)
