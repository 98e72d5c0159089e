"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for wayfinder. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Target repository the agent works on
    root_dir: str = "."

    @field_validator("root_dir")
    @classmethod
    def _resolve_root(cls, value: str) -> str:
        if value:
            return str(Path(value).expanduser().resolve())
        return value

    # LLM API keys (only required for the providers you actually use)
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # Model identifiers: prefix determines the provider:
    #   "ollama:<model>"     → local Ollama
    #   "claude-*"           → Anthropic API
    #   anything else        → OpenAI API
    planner_model: str = "gpt-4o-mini"
    researcher_model: str = "gpt-4o-mini"
    coder_model: str = "gpt-4o"
    verifier_model: str = "gpt-4o-mini"

    # Web search (Tavily)
    tavily_api_key: str = ""
    web_timeout_seconds: float = 10.0
    web_max_page_chars: int = 50_000
    web_user_agent: str = "WayfinderBot/1.0"
    offline_mode: bool = False

    # Run behaviour
    run_profile: str = ""          # strict | fast | smoke | yolo; empty → auto
    dry_run: bool = False

    # Git
    git_enabled: bool = True
    git_auto_init: bool = False
    git_binary: str = "git"
    git_author_name: str = "wayfinder"
    git_author_email: str = "wayfinder@local"

    # Commands
    command_timeout_seconds: int = 120
    max_output_chars: int = 12_000
    max_coder_turns: int = 20

    # ── Loop & stop policy ────────────────────────────────────────────
    recursion_limit: int = 100
    max_steps: int = 50
    loop_ceiling: int = 5
    stuck_window: int = 3
    max_failures: int = 3

    # ── Research quality thresholds ───────────────────────────────────
    research_min_relevance: float = 0.8
    research_min_coverage: float = 0.75
    research_min_findings: int = 3
    research_min_delta: float = 0.02
    research_plateau_score: float = 0.7
    research_decompose_min_words: int = 40
    research_max_subqueries: int = 7
    research_subquery_attempts: int = 2
    research_cache_ttl_days: int = 7
    research_cache_max_entries: int = 5

    # ── Strict gate ───────────────────────────────────────────────────
    strict_min_support: float = 0.7
    strict_min_recency: float = 0.6
    research_abandon_relevance: float = 0.3
    research_abandon_attempts: int = 3

    # ── Verification ──────────────────────────────────────────────────
    fast_path_max_files_smoke: int = 3
    fast_path_max_files_yolo: int = 5
    verifier_judge_attempts: int = 3
    verifier_judge_backoff_seconds: float = 2.0
    verifier_scan_logs: bool = True
    verifier_project_diagnostics: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/wayfinder.log"

    @property
    def root_path(self) -> Path:
        return Path(self.root_dir)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure(**overrides) -> Settings:
    """Rebuild the singleton with explicit overrides (CLI flags win over env)."""
    global _settings
    _settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    return _settings
