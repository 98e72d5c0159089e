"""Decision oracle: the single seam through which nodes talk to an LLM.

Nodes only depend on the :class:`Oracle` protocol, so tests can drive the
whole graph with a scripted stand-in. The production implementation wraps a
LangChain chat model per role.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from wayfinder.agents.models import get_llm
from wayfinder.core.llm_json import parse_llm_json
from wayfinder.core.logging import get_logger

logger = get_logger("agents.oracle")


class OracleError(Exception):
    """Raised when the completion service fails or returns nothing usable."""


class Oracle(Protocol):
    def complete(
        self,
        role: str,
        messages: list[BaseMessage],
        tools: list | None = None,
    ) -> AIMessage:
        ...


class ChatModelOracle:
    """Oracle backed by ``get_llm(role)``; models are built lazily and reused."""

    def __init__(self, llm_factory: Callable[[str], BaseChatModel] = get_llm) -> None:
        self._factory = llm_factory
        self._models: dict[str, BaseChatModel] = {}

    def _model(self, role: str) -> BaseChatModel:
        if role not in self._models:
            self._models[role] = self._factory(role)
        return self._models[role]

    def complete(self, role: str, messages: list[BaseMessage], tools: list | None = None) -> AIMessage:
        try:
            llm = self._model(role)
            runnable = llm.bind_tools(tools) if tools else llm
            response = runnable.invoke(messages)
        except Exception as exc:
            raise OracleError(f"{role} completion failed: {exc}") from exc

        if isinstance(response, AIMessage):
            return response
        return AIMessage(content=str(getattr(response, "content", response)))


def message_text(message: BaseMessage) -> str:
    """Flatten string or content-block message content to plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def ask_text(oracle: Oracle, role: str, system_prompt: str, user_prompt: str) -> str:
    """One-shot completion returning text. Raises :class:`OracleError`."""
    messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
    return message_text(oracle.complete(role, messages)).strip()


def ask_json(
    oracle: Oracle,
    role: str,
    messages: list[BaseMessage],
    retries: int = 1,
) -> Any | None:
    """Ask for JSON; retry on empty, unparsable or erroring output, then give up with None."""
    for attempt in range(retries + 1):
        try:
            raw = message_text(oracle.complete(role, messages))
        except OracleError as exc:
            logger.warning("%s oracle error (attempt %d/%d): %s", role, attempt + 1, retries + 1, exc)
            continue
        value = parse_llm_json(raw)
        if value is not None:
            return value
        logger.warning(
            "%s returned unparsable output (attempt %d/%d): %r",
            role, attempt + 1, retries + 1, raw[:200],
        )
    return None
