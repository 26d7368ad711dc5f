# branchwatch/llm/llm_provider.py
from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

from crewai import LLM

from .settings import AppSettings, LLMProvider, get_settings

# litellm routes on these prefixes
MODEL_PREFIXES: Dict[LLMProvider, str] = {
    LLMProvider.gemini: "gemini/",
    LLMProvider.openai: "openai/",
    LLMProvider.claude: "anthropic/",
    LLMProvider.ollama: "ollama/",
}

TEMPERATURE = 0.2


def _coerce_settings(settings: Any | None) -> AppSettings:
    """
    Accept:
      - None (load from get_settings())
      - AppSettings
      - dict-like (validated into AppSettings)
    """
    if settings is None:
        return get_settings()
    if isinstance(settings, AppSettings):
        return settings
    if isinstance(settings, Mapping):
        return AppSettings.model_validate(dict(settings))
    raise TypeError("build_llm(settings=...) must be None, AppSettings, or a dict-like object")


def _ensure_prefix(model: str, prefix: str) -> str:
    model = (model or "").strip()
    if not model:
        return model
    return model if model.startswith(prefix) else f"{prefix}{model}"


def _setting_or_env(value: str, env: str, default: str = "") -> str:
    return (value or os.getenv(env, default)).strip()


def _require(value: str, label: str, env: str) -> str:
    if not value:
        raise ValueError(f"{label} is required. Configure it in Settings or set {env}.")
    return value


def _provider_kwargs(cfg: AppSettings) -> Dict[str, Any]:
    """Connection arguments for the active provider, before the model prefix is applied."""
    p = cfg.provider

    if p == LLMProvider.gemini:
        return {
            "model": _setting_or_env(cfg.gemini.model, "BRANCHWATCH_GEMINI_MODEL", "gemini-2.5-flash"),
            "api_key": _require(
                _setting_or_env(cfg.gemini.api_key, "GEMINI_API_KEY"), "Gemini API key", "GEMINI_API_KEY"
            ),
        }

    if p == LLMProvider.openai:
        return {
            "model": _setting_or_env(cfg.openai.model, "BRANCHWATCH_OPENAI_MODEL", "gpt-4o-mini"),
            "api_key": _require(
                _setting_or_env(cfg.openai.api_key, "OPENAI_API_KEY"), "OpenAI API key", "OPENAI_API_KEY"
            ),
            "base_url": _setting_or_env(cfg.openai.base_url, "OPENAI_BASE_URL") or None,
        }

    if p == LLMProvider.claude:
        return {
            "model": _setting_or_env(cfg.claude.model, "BRANCHWATCH_CLAUDE_MODEL", "claude-sonnet-4-5"),
            "api_key": _require(
                _setting_or_env(cfg.claude.api_key, "ANTHROPIC_API_KEY"), "Claude API key", "ANTHROPIC_API_KEY"
            ),
            "base_url": _setting_or_env(cfg.claude.base_url, "ANTHROPIC_BASE_URL") or None,
        }

    if p == LLMProvider.ollama:
        return {
            "model": _setting_or_env(cfg.ollama.model, "BRANCHWATCH_OLLAMA_MODEL", "llama3"),
            "base_url": _require(
                _setting_or_env(cfg.ollama.base_url, "OLLAMA_BASE_URL", "http://localhost:11434"),
                "Ollama base URL",
                "OLLAMA_BASE_URL",
            ),
        }

    if p == LLMProvider.rules:
        raise ValueError("Provider 'rules' has no generative model; use the keyword classifier.")

    raise ValueError(f"Unsupported provider: {p}")


def build_llm(settings: Optional[dict] = None) -> LLM:
    """
    Return an initialized CrewAI LLM for the active provider.

    Settings come from the argument when given, otherwise from get_settings()
    (disk + env merged). Raises ValueError when the provider is `rules` or a
    credential is missing; callers turn that into a RemoteServiceError.
    """
    cfg = _coerce_settings(settings)
    kwargs = _provider_kwargs(cfg)
    kwargs["model"] = _ensure_prefix(kwargs["model"], MODEL_PREFIXES[cfg.provider])
    return LLM(temperature=TEMPERATURE, timeout=cfg.timeout_s, **kwargs)
