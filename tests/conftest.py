"""Shared fixtures: isolated settings per test and a scripted oracle."""

from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage

from wayfinder.agents.oracle import OracleError
from wayfinder.core import config
from wayfinder.core.config import Settings
from wayfinder.core.context import RunContext


class ScriptedOracle:
    """Oracle stand-in that replays queued replies per role.

    A reply may be an ``AIMessage``, a dict/list (sent as JSON), a string,
    or an exception instance (raised). An empty queue raises ``OracleError``.
    """

    def __init__(self, replies: dict | None = None) -> None:
        self.replies = {role: list(items) for role, items in (replies or {}).items()}
        self.calls: list[tuple[str, list, list | None]] = []

    def push(self, role: str, *items) -> None:
        self.replies.setdefault(role, []).extend(items)

    def roles_called(self) -> list[str]:
        return [role for role, _, _ in self.calls]

    def complete(self, role, messages, tools=None):
        self.calls.append((role, list(messages), tools))
        queue = self.replies.get(role)
        if not queue:
            raise OracleError(f"no scripted reply for {role}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, AIMessage):
            return item
        if isinstance(item, (dict, list)):
            return AIMessage(content=json.dumps(item))
        return AIMessage(content=str(item))


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings rooted at tmp_path, installed as the process singleton."""
    s = Settings(
        _env_file=None,
        root_dir=str(tmp_path),
        log_file=str(tmp_path / "logs" / "wayfinder.log"),
        git_enabled=False,
        tavily_api_key="tvly-test",
        offline_mode=False,
        dry_run=False,
        verifier_judge_backoff_seconds=0,
        verifier_project_diagnostics=False,
        verifier_scan_logs=False,
        command_timeout_seconds=30,
    )
    monkeypatch.setattr(config, "_settings", s)
    return s


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def ctx(settings, oracle):
    return RunContext(settings=settings, oracle=oracle)
