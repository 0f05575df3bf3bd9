from __future__ import annotations

import os
from dataclasses import dataclass


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    llm_provider: str = os.getenv("LLM_PROVIDER", "openai")
    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    anthropic_base_url: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
    llm_timeout_seconds: float = _float("LLM_TIMEOUT_SECONDS", 20.0)

    # Empty path keeps the store purely in memory.
    store_path: str = os.getenv("STORE_PATH", "")

    session_ttl_seconds: int = _int("SESSION_TTL_SECONDS", 24 * 60 * 60)
    session_sweep_interval_seconds: int = _int("SESSION_SWEEP_INTERVAL_SECONDS", 300)

    bootstrap_agent_email: str = os.getenv("BOOTSTRAP_AGENT_EMAIL", "agent@helpboard.com")
    bootstrap_agent_password: str = os.getenv("BOOTSTRAP_AGENT_PASSWORD", "password123")
    bootstrap_agent_name: str = os.getenv("BOOTSTRAP_AGENT_NAME", "Sarah Johnson")
    bootstrap_agent_role: str = os.getenv("BOOTSTRAP_AGENT_ROLE", "admin")

    auto_response_enabled: bool = _bool("AUTO_RESPONSE_ENABLED", True)
    response_delay_ms: int = _int("AI_RESPONSE_DELAY_MS", 2000)
    agent_grace_window_ms: int = _int("AGENT_GRACE_WINDOW_MS", 30_000)
    max_response_length: int = _int("AI_MAX_RESPONSE_LENGTH", 300)
    temperature: float = _float("AI_TEMPERATURE", 0.7)
    match_threshold: float = _float("AI_MATCH_THRESHOLD", 0.6)
    history_limit: int = _int("AI_HISTORY_LIMIT", 10)

    typing_timeout_seconds: float = _float("TYPING_TIMEOUT_SECONDS", 3.0)

    debug: bool = _bool("DEBUG", True)


SETTINGS = Settings()
