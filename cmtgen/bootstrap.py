"""Startup registration of the built-in provider adapters.

Nothing registers itself at import time; process startup (or a test) calls
:func:`register_builtin_providers` before building any client. Calling it
again simply re-registers the same entries.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .providers.anthropic_driver import AnthropicDriver
from .providers.base import ClientSettings, CommitClient
from .providers.ollama_driver import OllamaDriver
from .providers.openai_driver import OpenAIDriver
from .providers.xai_driver import XAIDriver
from .registry import (
    ProviderFactory,
    ProviderRegistry,
    ProviderSettings,
    default_registry,
)

BUILTIN_DEFAULTS: Dict[str, ProviderSettings] = {
    "openai": ProviderSettings(
        default_model="gpt-5-mini-2025-08-07",
        default_base_url="https://api.openai.com/v1",
    ),
    "anthropic": ProviderSettings(
        default_model="claude-3-5-haiku-latest",
        default_base_url="https://api.anthropic.com",
    ),
    "xai": ProviderSettings(
        default_model="grok-code-fast",
        default_base_url="https://api.x.ai/v1",
    ),
    "github": ProviderSettings(
        default_model="openai/gpt-4.1-mini",
        default_base_url="https://models.github.ai/inference",
    ),
    "ollama": ProviderSettings(
        default_model="llama3.2",
        default_base_url="http://localhost:11434",
        requires_api_key=False,
    ),
}


def _openai_factory(settings: ClientSettings) -> CommitClient:
    return OpenAIDriver(settings)


def _anthropic_factory(settings: ClientSettings) -> CommitClient:
    return AnthropicDriver(settings)


def _xai_factory(settings: ClientSettings) -> CommitClient:
    return XAIDriver(settings)


def _ollama_factory(settings: ClientSettings) -> CommitClient:
    return OllamaDriver(settings)


BUILTIN_FACTORIES: Dict[str, ProviderFactory] = {
    "openai": _openai_factory,
    "anthropic": _anthropic_factory,
    "xai": _xai_factory,
    # GitHub Models exposes an OpenAI-compatible inference endpoint.
    "github": _openai_factory,
    "ollama": _ollama_factory,
}


def register_builtin_providers(
    registry: Optional[ProviderRegistry] = None,
) -> Tuple[str, ...]:
    """Register every built-in adapter; return the registered names."""
    target = registry if registry is not None else default_registry
    for name, factory in BUILTIN_FACTORIES.items():
        defaults = BUILTIN_DEFAULTS[name]
        target.register(name, factory)
        target.register_defaults(name, defaults)
        target.set_requires_api_key(name, defaults.requires_api_key)
    return tuple(BUILTIN_FACTORIES)
