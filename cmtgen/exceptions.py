"""Exceptions raised by cmtgen."""

from __future__ import annotations

from typing import Iterable, Optional


class CmtGenError(Exception):
    """Base exception for all cmtgen errors."""


class ConfigError(CmtGenError):
    """Raised when configuration values are invalid or unreadable."""


class ValidationError(CmtGenError):
    """Raised when caller input is rejected before any provider call."""


class LLMError(CmtGenError):
    """Base class for provider-facing failures."""


class ProviderNotFoundError(LLMError):
    """Requested provider name has no registered factory."""

    def __init__(self, name: str, known: Iterable[str] = ()) -> None:
        self.name = name
        self.known = tuple(known)
        listing = ", ".join(self.known) if self.known else "none registered"
        super().__init__(f"Unknown provider '{name}' (known providers: {listing})")


class MissingCredentialError(LLMError):
    """A provider that requires an API key was configured without one."""

    def __init__(self, provider: str, env_var: Optional[str] = None) -> None:
        self.provider = provider
        self.env_var = env_var or f"{provider.upper()}_API_KEY"
        super().__init__(
            f"Provider '{provider}' requires an API key; "
            f"set the '{self.env_var}' environment variable."
        )


class TransportError(LLMError):
    """Network or HTTP failure while talking to a provider."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CancelledError(LLMError):
    """Caller-initiated cancellation or an exceeded deadline."""

    def __init__(self, reason: str = "operation cancelled") -> None:
        self.reason = reason
        super().__init__(reason)


class MalformedResponseError(LLMError):
    """Provider returned content that cannot be turned into a message."""
