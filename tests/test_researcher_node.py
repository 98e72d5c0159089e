"""Tests for the Researcher node: cache, offline/budget degradation and strategies."""

from __future__ import annotations

from unittest.mock import patch

from wayfinder.core.nodes import researcher_node
from wayfinder.core.state import (
    Budget,
    ExecutionProfile,
    ProjectBrief,
    ResearchFinding,
    ResearchQuality,
    RunState,
    TaskScope,
)
from wayfinder.tools.deep_research import DeepResearchResult
from wayfinder.tools.web_search import SearchResult

GOAL = "Add CSV export to the reports page"


def _state(**overrides):
    return RunState(brief=ProjectBrief(goal=GOAL), **overrides)


def _results(query, **kwargs):
    return [
        SearchResult(url=f"https://docs.example.com/{query}/1", title=f"{query} one", snippet=f"{query} first"),
        SearchResult(url=f"https://docs.example.com/{query}/2", title=f"{query} two", snippet=f"{query} second"),
    ]


class TestShortCircuits:
    def test_cache_hit(self, ctx, oracle):
        findings = [ResearchFinding(statement="use csv.writer")]
        ctx.research_cache.save(GOAL, findings, ResearchQuality(relevance=0.9))

        updates = researcher_node(_state(), ctx)
        assert updates["research_source"] == "cache"
        assert updates["research_results"][0].statement == "use csv.writer"
        assert updates["research_quality"].relevance == 0.9
        assert "budget" not in updates
        assert oracle.calls == []

    def test_offline_mode(self, ctx, oracle, settings):
        settings.offline_mode = True
        updates = researcher_node(_state(), ctx)
        assert updates["research_source"] == "offline"
        assert updates["research_results"] == []
        assert oracle.calls == []

    def test_web_budget_exhausted(self, ctx, oracle):
        budget = Budget(max_commands=10, max_test_runs=3, max_web_requests=4, web_requests_used=4)
        updates = researcher_node(_state(budget=budget), ctx)
        assert updates["research_source"] == "budget"
        assert updates["research_results"] == []


class TestPlainResearch:
    def test_medium_uses_planned_queries(self, ctx, oracle):
        oracle.push("researcher", {"queries": ["csv export flask", {"query": "streaming csv"}, "csv export flask"]})
        with patch("wayfinder.tools.deep_research.web_search", side_effect=_results) as search:
            updates = researcher_node(_state(scope=TaskScope.NORMAL), ctx)

        assert [c.args[0] for c in search.call_args_list] == ["csv export flask", "streaming csv"]
        assert updates["research_source"] == "medium"
        assert len(updates["research_results"]) == 4
        assert updates["budget"].web_requests_used == 2
        assert updates["budget"].max_web_requests == 15
        assert "research_quality" not in updates
        assert ctx.research_cache.lookup(GOAL) is not None

    def test_shallow_searches_once(self, ctx, oracle):
        oracle.push("researcher", {"queries": ["q1", "q2"]})
        with patch("wayfinder.tools.deep_research.web_search", side_effect=_results) as search:
            updates = researcher_node(_state(scope=TaskScope.TINY), ctx)
        assert search.call_count == 1
        assert updates["research_source"] == "shallow"
        assert updates["budget"].web_requests_used == 1

    def test_goal_is_searched_when_planning_fails(self, ctx, oracle):
        with patch("wayfinder.tools.deep_research.web_search", return_value=[]) as search:
            updates = researcher_node(_state(scope=TaskScope.TINY), ctx)
        search.assert_called_once()
        assert search.call_args.args[0] == GOAL
        assert updates["research_results"] == []
        assert ctx.research_cache.lookup(GOAL) is None


class TestDeepResearch:
    def test_large_scope_runs_deep_flow(self, ctx, oracle):
        result = DeepResearchResult(
            findings=[ResearchFinding(statement="stream rows with a generator")],
            quality=ResearchQuality(relevance=0.9, coverage=0.8),
            web_requests=3,
        )
        budget = Budget(max_commands=10, max_test_runs=3, max_web_requests=10, web_requests_used=2)
        oracle.push("researcher", {"queries": ["flask csv response", "python csv streaming generator"]})
        with patch("wayfinder.core.nodes.researcher.deep_research", return_value=result) as deep:
            updates = researcher_node(_state(scope=TaskScope.LARGE, budget=budget), ctx)

        assert oracle.roles_called() == ["researcher"]
        _, goal, strategy, allowance = deep.call_args.args
        assert goal == GOAL
        assert strategy.level == "deep"
        assert allowance.remaining == 8
        assert deep.call_args.kwargs["queries"] == ["flask csv response", "python csv streaming generator"]
        assert deep.call_args.kwargs["scope"] == TaskScope.LARGE
        assert updates["research_source"] == "deep"
        assert updates["research_quality"].relevance == 0.9
        assert updates["budget"].web_requests_used == 5
        assert ctx.research_cache.lookup(GOAL).quality.coverage == 0.8

    def test_strict_profile_is_deep(self, ctx, oracle):
        with patch("wayfinder.core.nodes.researcher.deep_research", return_value=DeepResearchResult()) as deep:
            updates = researcher_node(_state(scope=TaskScope.NORMAL, run_profile=ExecutionProfile.STRICT), ctx)
        deep.assert_called_once()
        assert deep.call_args.kwargs["queries"] == [GOAL]
        assert updates["research_source"] == "deep"
        assert "research_quality" not in updates

    def test_planned_queries_reach_search(self, ctx, oracle):
        oracle.push("researcher", {"queries": ["csv export flask", "streaming csv"]})
        with patch("wayfinder.tools.deep_research.web_search", return_value=[]) as search:
            researcher_node(_state(scope=TaskScope.LARGE), ctx)

        searched = [c.args[0] for c in search.call_args_list]
        assert searched[0] == "csv export flask"
        assert "streaming csv" in searched
        assert GOAL not in searched
