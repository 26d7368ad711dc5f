from __future__ import annotations

import enum
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file if it exists (from project root or current directory)
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_PROVIDERS: List[str] = ["gemini", "openai", "claude", "ollama", "rules"]


def app_data_dir() -> Path:
    """
    - Respect BRANCHWATCH_DATA_DIR when set
    - Otherwise: ~/.branchwatch
    """
    base = os.getenv("BRANCHWATCH_DATA_DIR", "").strip()
    if base:
        return Path(base).expanduser().resolve()
    return (Path.home() / ".branchwatch").resolve()


def config_file() -> Path:
    return app_data_dir() / "llm.json"


class LLMProvider(str, enum.Enum):
    gemini = "gemini"
    openai = "openai"
    claude = "claude"
    ollama = "ollama"
    # no remote model: deterministic keyword classifier, transcription unavailable
    rules = "rules"


class GeminiConfig(BaseModel):
    api_key: str = Field(default="")
    model: str = Field(default="gemini-2.5-flash")


class OpenAIConfig(BaseModel):
    api_key: str = Field(default="")
    model: str = Field(default="gpt-4o-mini")
    base_url: str = Field(default="")  # Optional: Azure OpenAI / proxy


class ClaudeConfig(BaseModel):
    api_key: str = Field(default="")
    model: str = Field(default="claude-sonnet-4-5")
    base_url: str = Field(default="")


class OllamaConfig(BaseModel):
    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(default="llama3")


class AppSettings(BaseModel):
    """
    Canonical LLM settings consumed by build_llm(settings=...).

    Stored at <data dir>/llm.json; environment variables override what is on disk.
    """
    provider: LLMProvider = Field(default=LLMProvider.gemini)
    providers: List[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDERS))

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    claude: ClaudeConfig = Field(default_factory=ClaudeConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)

    # seconds before a model call is abandoned
    timeout_s: float = Field(default=30.0)

    version: int = Field(default=1)

    @classmethod
    def default_from_env(cls) -> "AppSettings":
        return _apply_env(cls())

    @classmethod
    def from_disk(cls) -> "AppSettings":
        """
        - Start with defaults from env
        - Merge the file on disk onto them (disk wins for persisted values)
        - Then apply explicit env overrides (env wins)
        """
        base = cls.default_from_env()
        path = config_file()

        if path.exists():
            try:
                loaded = cls.model_validate(json.loads(path.read_text("utf-8")))
                base = cls.model_validate(_deep_merge(base.model_dump(), loaded.model_dump()))
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable LLM settings at {path} ({e}); re-seeding from environment")
                base = cls.default_from_env()
                base.save()

        return _apply_env(base)

    def save(self) -> None:
        path = config_file()
        path.parent.mkdir(parents=True, exist_ok=True)

        self.version = int(self.version or 0) + 1

        tmp = path.with_suffix(".tmp")
        tmp.write_text(self.model_dump_json(indent=2), "utf-8")
        tmp.replace(path)
        logger.info(f"LLM settings saved (provider={self.provider.value}, version={self.version})")

    def to_public_dict(self) -> Dict[str, Any]:
        """
        Safe to return to UI: masks secrets but keeps shape.
        """
        d = self.model_dump(mode="json")
        for section in ("gemini", "openai", "claude"):
            d[section]["api_key"] = _mask_secret(d[section].get("api_key", ""))
        return d


# (section, field, env var)
ENV_OVERRIDES = [
    ("gemini", "api_key", "GEMINI_API_KEY"),
    ("gemini", "model", "BRANCHWATCH_GEMINI_MODEL"),
    ("openai", "api_key", "OPENAI_API_KEY"),
    ("openai", "model", "BRANCHWATCH_OPENAI_MODEL"),
    ("openai", "base_url", "OPENAI_BASE_URL"),
    ("claude", "api_key", "ANTHROPIC_API_KEY"),
    ("claude", "model", "BRANCHWATCH_CLAUDE_MODEL"),
    ("claude", "base_url", "ANTHROPIC_BASE_URL"),
    ("ollama", "base_url", "OLLAMA_BASE_URL"),
    ("ollama", "model", "BRANCHWATCH_OLLAMA_MODEL"),
]


def _apply_env(settings: AppSettings) -> AppSettings:
    """Non-empty env vars win over stored values. An unknown provider name is ignored."""
    provider = os.getenv("BRANCHWATCH_PROVIDER", "").strip().lower()
    if provider in LLMProvider.__members__:
        settings.provider = LLMProvider(provider)

    for section, field, env in ENV_OVERRIDES:
        value = os.getenv(env, "").strip()
        if value:
            setattr(getattr(settings, section), field, value)
    return settings


def _mask_secret(s: str) -> str:
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= 6:
        return "***"
    return f"{s[:3]}***{s[-3:]}"


def _looks_masked(value: Any) -> bool:
    s = str(value or "").strip()
    return bool(s) and "***" in s


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (patch or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings.from_disk()
    return _settings


def update_settings(updates: Dict[str, Any] | Mapping[str, Any]) -> AppSettings:
    """
    Deep-merge a partial payload onto the current settings, re-validate and save.

    Example partial payloads:
      {"provider": "openai"}
      {"gemini": {"api_key": "...", "model": "gemini-2.5-flash"}}

    Masked api keys sent back by a UI ("abc***xyz") are ignored so saving a form
    never destroys the stored secret.
    """
    global _settings
    patch = json.loads(json.dumps(dict(updates or {})))

    for section in ("gemini", "openai", "claude"):
        sec = patch.get(section)
        if isinstance(sec, dict) and _looks_masked(sec.get("api_key")):
            sec.pop("api_key", None)

    merged = _deep_merge(get_settings().model_dump(mode="json"), patch)

    prov = str(merged.get("provider") or "").strip().lower()
    if prov:
        merged["provider"] = prov
    if not isinstance(merged.get("providers"), list) or not merged["providers"]:
        merged["providers"] = list(DEFAULT_PROVIDERS)

    _settings = AppSettings.model_validate(merged)
    _settings.save()
    return _settings


def reset_settings(settings: AppSettings | None = None) -> None:
    """Replace the cached settings object (tests and CLI use this)."""
    global _settings
    _settings = settings


def llm_available(settings: AppSettings | Mapping[str, Any] | None = None) -> bool:
    """True when the active provider is a remote model (anything but `rules`)."""
    if settings is None:
        settings = get_settings()
    elif isinstance(settings, Mapping):
        settings = AppSettings.model_validate(dict(settings))
    return settings.provider != LLMProvider.rules
