"""
LLM Provider Configuration Helper.

Provides a centralized way to get the current LLM provider settings used by
the extraction and intent clients.

Priority order:
1. Environment variables (EXTRACTION_PROVIDER, INTENT_PROVIDER)
2. AGENT_MODE environment variable (sets both to same provider)
3. Defaults: stub for both (deterministic, no network)
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Optional, Tuple

Provider = Literal["openai", "stub"]

_PROVIDERS = ("openai", "stub")


@dataclass
class LLMProviderSettings:
    """Current LLM provider settings."""
    extraction_provider: Provider
    intent_provider: Provider
    extraction_model: str
    intent_model: str
    source: str  # "environment" or "default"


# Cache to avoid re-reading the environment on every turn
_cached_settings: Optional[LLMProviderSettings] = None


def _provider_from_env(name: str, default: str) -> Provider:
    value = os.getenv(name, default).lower()
    if value not in _PROVIDERS:
        raise RuntimeError(f"Unsupported {name}: {value}")
    return value  # type: ignore[return-value]


def get_llm_providers(*, force_reload: bool = False) -> LLMProviderSettings:
    """Get the current LLM provider configuration."""
    global _cached_settings

    if _cached_settings is not None and not force_reload:
        return _cached_settings

    agent_mode = os.getenv("AGENT_MODE", "").lower()
    default_provider = agent_mode if agent_mode in _PROVIDERS else "stub"
    model = os.getenv("OPENAI_AGENT_MODEL", "gpt-4o-mini")

    _cached_settings = LLMProviderSettings(
        extraction_provider=_provider_from_env("EXTRACTION_PROVIDER", default_provider),
        intent_provider=_provider_from_env("INTENT_PROVIDER", default_provider),
        extraction_model=os.getenv("OPENAI_EXTRACTION_MODEL", model),
        intent_model=os.getenv("OPENAI_INTENT_MODEL", model),
        source="environment" if agent_mode else "default",
    )
    return _cached_settings


def clear_provider_cache() -> None:
    """Clear the cached provider settings. Call after config changes."""
    global _cached_settings
    _cached_settings = None


def validate_provider_config() -> Tuple[bool, str]:
    """Check that an OpenAI key exists whenever an OpenAI provider is selected."""
    settings = get_llm_providers()
    uses_openai = "openai" in (settings.extraction_provider, settings.intent_provider)
    if uses_openai and not os.getenv("OPENAI_API_KEY"):
        return False, "OPENAI_API_KEY is not set but an OpenAI provider is configured"
    return True, (
        f"LLM providers: extraction={settings.extraction_provider} "
        f"intent={settings.intent_provider} (source={settings.source})"
    )
