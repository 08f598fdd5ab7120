"""cmtgen - provider-agnostic commit message generation."""

from importlib import import_module
from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Public API (lazy-exported to avoid import-time side effects)
__all__ = [
    # Config
    "Config", "load_config",
    # Registry
    "ProviderRegistry", "ProviderSettings", "default_registry",
    "register_builtin_providers",
    # Client contract
    "ClientSettings", "CommitClient", "StreamingCommitClient",
    "supports_streaming", "CancellationToken",
    # Pipeline
    "fit_diff", "FitDecision", "sanitize_response",
    "StreamOrchestrator", "GenerationResult", "StreamState",
    "CommitGenerator", "CommitOutcome",
    # Exceptions
    "CmtGenError", "ConfigError", "ValidationError", "LLMError",
    "ProviderNotFoundError", "MissingCredentialError", "TransportError",
    "CancelledError", "MalformedResponseError",
]

_EXPORTS = {
    "Config": "cmtgen.config",
    "load_config": "cmtgen.config",
    "ProviderRegistry": "cmtgen.registry",
    "ProviderSettings": "cmtgen.registry",
    "default_registry": "cmtgen.registry",
    "register_builtin_providers": "cmtgen.bootstrap",
    "ClientSettings": "cmtgen.providers.base",
    "CommitClient": "cmtgen.providers.base",
    "StreamingCommitClient": "cmtgen.providers.base",
    "supports_streaming": "cmtgen.providers.base",
    "CancellationToken": "cmtgen.cancellation",
    "fit_diff": "cmtgen.diffs",
    "FitDecision": "cmtgen.diffs",
    "sanitize_response": "cmtgen.normalize",
    "StreamOrchestrator": "cmtgen.streaming",
    "GenerationResult": "cmtgen.streaming",
    "StreamState": "cmtgen.streaming",
    "CommitGenerator": "cmtgen.commit",
    "CommitOutcome": "cmtgen.commit",
    "CmtGenError": "cmtgen.exceptions",
    "ConfigError": "cmtgen.exceptions",
    "ValidationError": "cmtgen.exceptions",
    "LLMError": "cmtgen.exceptions",
    "ProviderNotFoundError": "cmtgen.exceptions",
    "MissingCredentialError": "cmtgen.exceptions",
    "TransportError": "cmtgen.exceptions",
    "CancelledError": "cmtgen.exceptions",
    "MalformedResponseError": "cmtgen.exceptions",
}


def __getattr__(name: str):
    """Lazy attribute loader; provider SDKs are imported only when used."""
    if name in _EXPORTS:
        value = getattr(import_module(_EXPORTS[name]), name)
        globals()[name] = value  # cache for future access
        return value
    raise AttributeError(f"module 'cmtgen' has no attribute {name!r}")


if TYPE_CHECKING:
    from .bootstrap import register_builtin_providers
    from .cancellation import CancellationToken
    from .commit import CommitGenerator, CommitOutcome
    from .config import Config, load_config
    from .diffs import FitDecision, fit_diff
    from .exceptions import (
        CancelledError,
        CmtGenError,
        ConfigError,
        LLMError,
        MalformedResponseError,
        MissingCredentialError,
        ProviderNotFoundError,
        TransportError,
        ValidationError,
    )
    from .normalize import sanitize_response
    from .providers.base import (
        ClientSettings,
        CommitClient,
        StreamingCommitClient,
        supports_streaming,
    )
    from .registry import ProviderRegistry, ProviderSettings, default_registry
    from .streaming import GenerationResult, StreamOrchestrator, StreamState
