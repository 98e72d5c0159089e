"""Chat model factory for the four oracle roles.

The model string configured for a role picks the provider:

    ollama:<model>   local Ollama server, no key needed
    *claude*         Anthropic (ANTHROPIC_API_KEY)
    anything else    OpenAI (OPENAI_API_KEY)
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from langchain_core.language_models import BaseChatModel

from wayfinder.core.config import get_settings
from wayfinder.core.logging import get_logger

logger = get_logger("agents.models")

AgentRole = Literal["planner", "researcher", "coder", "verifier"]
Provider = Literal["ollama", "anthropic", "openai"]

PROMPTS_DIR = Path(__file__).parent / "prompts"
OLLAMA_PREFIX = "ollama:"


@dataclass(frozen=True)
class RoleModel:
    setting: str
    temperature: float
    max_tokens: int


ROLE_MODELS: dict[str, RoleModel] = {
    "planner": RoleModel("planner_model", temperature=0.2, max_tokens=4096),
    "researcher": RoleModel("researcher_model", temperature=0.0, max_tokens=4096),
    "coder": RoleModel("coder_model", temperature=0.1, max_tokens=8192),
    "verifier": RoleModel("verifier_model", temperature=0.0, max_tokens=4096),
}

# provider → (settings attribute, env var named in errors)
_PROVIDER_KEYS: dict[str, tuple[str, str]] = {
    "anthropic": ("anthropic_api_key", "ANTHROPIC_API_KEY"),
    "openai": ("openai_api_key", "OPENAI_API_KEY"),
}


def provider_for(model: str) -> Provider:
    lowered = model.lower()
    if lowered.startswith(OLLAMA_PREFIX):
        return "ollama"
    if "claude" in lowered:
        return "anthropic"
    return "openai"


# ── Provider constructors ────────────────────────────────────────────────


def _make_ollama(model: str, base_url: str, temperature: float = 0.1) -> BaseChatModel:
    try:
        from langchain_ollama import ChatOllama  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError("Ollama models need langchain-ollama: pip install langchain-ollama") from exc

    name = model[len(OLLAMA_PREFIX):] if model.lower().startswith(OLLAMA_PREFIX) else model
    logger.info("Ollama model %s at %s", name, base_url)
    return ChatOllama(model=name, base_url=base_url, temperature=temperature)


def _make_anthropic(model: str, api_key: str, temperature: float = 0.1, max_tokens: int = 8192) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    logger.info("Anthropic model %s", model)
    return ChatAnthropic(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _make_openai(model: str, api_key: str, temperature: float = 0.2, max_tokens: int = 8192) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    logger.info("OpenAI model %s", model)
    return ChatOpenAI(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _api_key(settings, provider: str, role: str, model: str) -> str:
    attr, env_name = _PROVIDER_KEYS[provider]
    key = (getattr(settings, attr, "") or "").strip()
    if not key:
        raise ValueError(
            f"Role '{role}' is configured with {provider} model '{model}' but {env_name} is empty. "
            f"Set {env_name} or configure a different model for this role."
        )
    return key


# ── Public API ───────────────────────────────────────────────────────────


def get_llm(role: AgentRole) -> BaseChatModel:
    """Build the chat model configured for *role*."""
    spec = ROLE_MODELS.get(role)
    if spec is None:
        raise ValueError(f"Unknown agent role: {role}")

    settings = get_settings()
    model = getattr(settings, spec.setting)
    provider = provider_for(model)

    if provider == "ollama":
        return _make_ollama(model, base_url=settings.ollama_base_url, temperature=spec.temperature)
    key = _api_key(settings, provider, role, model)
    if provider == "anthropic":
        return _make_anthropic(model, key, temperature=spec.temperature, max_tokens=spec.max_tokens)
    return _make_openai(model, key, temperature=spec.temperature, max_tokens=spec.max_tokens)


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """Text of ``prompts/<name>.txt`` shipped with the package."""
    path = PROMPTS_DIR / f"{name}.txt"
    if not path.is_file():
        raise FileNotFoundError(f"Prompt not found: {path}")
    return path.read_text(encoding="utf-8")
