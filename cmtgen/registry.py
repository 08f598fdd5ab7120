"""Process-wide provider registry.

Maps provider names to client factories, their default settings and their
credential requirement. Names are matched case-insensitively: they are
stripped and lower-cased both when registering and when looking up.

Re-registering a name overwrites the previous entry (last writer wins). Test
doubles and local overrides rely on this, so it is part of the contract.

Every read and write goes through a single lock; callers never need their own
synchronization.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from .exceptions import ProviderNotFoundError

if TYPE_CHECKING:
    from .providers.base import ClientSettings, CommitClient

ProviderFactory = Callable[["ClientSettings"], "CommitClient"]


@dataclass(frozen=True)
class ProviderSettings:
    """Registered defaults for a provider."""

    default_model: str
    default_base_url: str
    requires_api_key: bool = True


def normalize_name(name: str) -> str:
    canonical = (name or "").strip().lower()
    if not canonical:
        raise ValueError("provider name must be a non-empty string")
    return canonical


class ProviderRegistry:
    """Thread-safe lookup table of provider factories and defaults."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: Dict[str, ProviderFactory] = {}
        self._defaults: Dict[str, ProviderSettings] = {}
        self._requires_key: Dict[str, bool] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        key = normalize_name(name)
        with self._lock:
            self._factories[key] = factory

    def get(self, name: str) -> ProviderFactory:
        key = normalize_name(name)
        with self._lock:
            factory = self._factories.get(key)
            if factory is None:
                raise ProviderNotFoundError(name, sorted(self._factories))
            return factory

    def register_defaults(self, name: str, settings: ProviderSettings) -> None:
        key = normalize_name(name)
        with self._lock:
            self._defaults[key] = settings

    def get_defaults(self, name: str) -> Optional[ProviderSettings]:
        key = normalize_name(name)
        with self._lock:
            return self._defaults.get(key)

    def set_requires_api_key(self, name: str, required: bool) -> None:
        key = normalize_name(name)
        with self._lock:
            self._requires_key[key] = bool(required)

    def requires_api_key(self, name: str) -> bool:
        """Explicit flag first, then the registered defaults, else False."""
        key = normalize_name(name)
        with self._lock:
            if key in self._requires_key:
                return self._requires_key[key]
            defaults = self._defaults.get(key)
            return defaults.requires_api_key if defaults else False

    def known_providers(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._factories))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str) or not name.strip():
            return False
        key = normalize_name(name)
        with self._lock:
            return key in self._factories


default_registry = ProviderRegistry()


def register(name: str, factory: ProviderFactory) -> None:
    default_registry.register(name, factory)


def get(name: str) -> ProviderFactory:
    return default_registry.get(name)


def register_defaults(name: str, settings: ProviderSettings) -> None:
    default_registry.register_defaults(name, settings)


def get_defaults(name: str) -> Optional[ProviderSettings]:
    return default_registry.get_defaults(name)


def set_requires_api_key(name: str, required: bool) -> None:
    default_registry.set_requires_api_key(name, required)


def requires_api_key(name: str) -> bool:
    return default_registry.requires_api_key(name)


def known_providers() -> Tuple[str, ...]:
    return default_registry.known_providers()
