"""Researcher node: cache lookup, strategy selection and web research."""
from __future__ import annotations

from langchain_core.messages import HumanMessage, SystemMessage

from wayfinder.agents.models import load_prompt
from wayfinder.agents.oracle import ask_json
from wayfinder.core.budget import charge_web_request, initial_budget
from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger
from wayfinder.core.state import RunState, TaskScope
from wayfinder.tools.deep_research import (
    ResearchEngine,
    WebAllowance,
    compute_research_strategy,
    deep_research,
)

from ._helpers import node_note, render_brief, render_state_digest

logger = get_logger("core.nodes.researcher")

MAX_QUERIES = 5


def _plan_queries(state: RunState, ctx: RunContext) -> list[str]:
    """Ask the oracle for search queries; fall back to the goal itself."""
    messages = [
        SystemMessage(content=load_prompt("researcher")),
        HumanMessage(content=f"{render_brief(state.brief)}\n\n## Current state\n{render_state_digest(state)}"),
    ]
    data = ask_json(ctx.oracle, "researcher", messages)
    raw = data.get("queries") if isinstance(data, dict) else data
    queries: list[str] = []
    if isinstance(raw, list):
        for item in raw:
            text = str(item.get("query", "") if isinstance(item, dict) else item).strip()
            if text and text not in queries:
                queries.append(text)
    if not queries:
        logger.info("No planned queries; searching for the goal directly")
        queries = [state.brief.goal]
    return queries[:MAX_QUERIES]


def _no_findings(source: str, note: str) -> dict:
    return {
        "research_results": [],
        "research_source": source,
        "messages": [node_note("researcher", note)],
    }


def researcher_node(state: RunState, ctx: RunContext) -> dict:
    """Gather findings for the goal, spending at most the remaining web budget."""
    settings = ctx.settings
    goal = state.brief.goal
    budget = state.budget or initial_budget(state.effective_profile, state.scope or TaskScope.NORMAL)

    cached = ctx.research_cache.lookup(goal) if goal else None
    if cached is not None:
        logger.info("Research cache hit for %r (%d findings)", goal[:80], len(cached.findings))
        return {
            "research_results": cached.findings,
            "research_quality": cached.quality,
            "research_source": "cache",
            "messages": [node_note("researcher", f"{len(cached.findings)} findings from cache")],
        }

    if settings.offline_mode:
        logger.info("Offline mode: skipping web research")
        return _no_findings("offline", "offline mode, no web research performed")

    if budget.web_exhausted:
        logger.warning("Web budget exhausted (%s); degrading to no research", budget.summary())
        return _no_findings("budget", "web budget exhausted, continuing without research")

    strategy = compute_research_strategy(state.scope, state.task_type, state.effective_profile)
    allowance = WebAllowance(budget.max_web_requests - budget.web_requests_used)
    logger.info("Research strategy: %s (allowance %d requests)", strategy.level, allowance.remaining)

    queries = _plan_queries(state, ctx)
    if strategy.is_deep:
        result = deep_research(
            ctx.oracle, goal, strategy, allowance,
            queries=queries,
            scope=state.scope,
            search_cache=ctx.search_cache,
            page_cache=ctx.page_cache,
            settings=settings,
        )
        quality = result.quality
    else:
        engine = ResearchEngine(ctx.oracle, allowance, ctx.search_cache, ctx.page_cache, settings)
        result = engine.run_plain(queries, strategy)
        quality = None

    budget = charge_web_request(budget, result.web_requests)
    if result.findings:
        ctx.research_cache.save(goal, result.findings, quality)

    logger.info(
        "Research done: %d findings, %d web requests, %s",
        len(result.findings), result.web_requests, budget.summary(),
    )
    updates = {
        "research_results": result.findings,
        "research_source": strategy.level,
        "budget": budget,
        "messages": [node_note(
            "researcher",
            f"{len(result.findings)} findings ({strategy.level}, {result.web_requests} web requests)",
        )],
    }
    if quality is not None:
        updates["research_quality"] = quality
    return updates
