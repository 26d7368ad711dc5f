import pytest

from branchwatch.llm.llm_provider import _ensure_prefix, _provider_kwargs, build_llm
from branchwatch.llm.settings import AppSettings


@pytest.fixture(autouse=True)
def no_provider_env(monkeypatch):
    for env in ("GEMINI_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OLLAMA_BASE_URL"):
        monkeypatch.delenv(env, raising=False)


def test_rules_provider_has_no_model():
    with pytest.raises(ValueError, match="rules"):
        build_llm({"provider": "rules"})


def test_missing_gemini_key():
    with pytest.raises(ValueError, match="GEMINI_API_KEY"):
        _provider_kwargs(AppSettings(provider="gemini"))


def test_key_can_come_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    kwargs = _provider_kwargs(AppSettings(provider="openai"))
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["base_url"] is None


def test_ollama_needs_no_key():
    kwargs = _provider_kwargs(AppSettings(provider="ollama"))
    assert kwargs["base_url"] == "http://localhost:11434"


def test_model_prefix():
    assert _ensure_prefix("gemini-2.5-flash", "gemini/") == "gemini/gemini-2.5-flash"
    assert _ensure_prefix("gemini/gemini-2.5-flash", "gemini/") == "gemini/gemini-2.5-flash"
    assert _ensure_prefix("", "gemini/") == ""
