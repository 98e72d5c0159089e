"""Tests for the decision oracle and its JSON helpers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from wayfinder.agents.oracle import ChatModelOracle, OracleError, ask_json, ask_text, message_text


class TestChatModelOracle:
    def test_plain_completion(self):
        llm = MagicMock()
        llm.invoke.return_value = AIMessage(content="hello")
        factory = MagicMock(return_value=llm)
        oracle = ChatModelOracle(llm_factory=factory)

        assert oracle.complete("planner", [HumanMessage(content="hi")]).content == "hello"
        oracle.complete("planner", [HumanMessage(content="again")])
        factory.assert_called_once_with("planner")
        llm.bind_tools.assert_not_called()

    def test_tools_are_bound(self):
        llm = MagicMock()
        llm.bind_tools.return_value.invoke.return_value = AIMessage(content="", tool_calls=[
            {"name": "read_file", "args": {"path": "a.py"}, "id": "call_1"},
        ])
        tools = [object()]
        response = ChatModelOracle(llm_factory=lambda role: llm).complete("coder", [], tools=tools)

        llm.bind_tools.assert_called_once_with(tools)
        assert response.tool_calls[0]["name"] == "read_file"

    def test_failures_become_oracle_errors(self):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("rate limited")
        with pytest.raises(OracleError, match="rate limited"):
            ChatModelOracle(llm_factory=lambda role: llm).complete("verifier", [])

    def test_missing_credentials_become_oracle_errors(self):
        def factory(role):
            raise ValueError("Missing OPENAI_API_KEY")

        with pytest.raises(OracleError, match="OPENAI_API_KEY"):
            ChatModelOracle(llm_factory=factory).complete("planner", [])


class TestHelpers:
    def test_message_text_flattens_blocks(self):
        message = AIMessage(content=[{"type": "text", "text": "a"}, "b", {"type": "tool_use", "id": "x"}])
        assert message_text(message) == "ab"

    def test_ask_text(self, oracle):
        oracle.push("planner", "  answer \n")
        assert ask_text(oracle, "planner", "system", "user") == "answer"
        [(role, messages, tools)] = oracle.calls
        assert [m.content for m in messages] == ["system", "user"]
        assert tools is None


class TestAskJson:
    def test_first_reply_parsed(self, oracle):
        oracle.push("planner", '```json\n{"next": "coder"}\n```')
        assert ask_json(oracle, "planner", []) == {"next": "coder"}

    def test_retry_after_garbage(self, oracle):
        oracle.push("planner", "I think you should code", {"next": "coder"})
        assert ask_json(oracle, "planner", []) == {"next": "coder"}
        assert len(oracle.calls) == 2

    def test_retry_after_error(self, oracle):
        oracle.push("planner", OracleError("timeout"), {"next": "verifier"})
        assert ask_json(oracle, "planner", []) == {"next": "verifier"}

    def test_gives_up(self, oracle):
        oracle.push("planner", "nope", "still nope", {"next": "coder"})
        assert ask_json(oracle, "planner", []) is None
        assert len(oracle.calls) == 2
