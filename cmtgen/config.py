"""Configuration management for cmtgen."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from .bootstrap import BUILTIN_DEFAULTS
from .budget import default_max_diff_length
from .exceptions import ConfigError
from .providers.base import ClientSettings
from .registry import ProviderRegistry, ProviderSettings, default_registry, normalize_name

CONFIG_DIR_NAME = ".cmtgen"
CONFIG_FILE_NAME = "config.yaml"
DEFAULT_PROVIDER = "openai"

DEFAULT_EXCLUDED_PATHS = [
    "go.sum",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "poetry.lock",
    "Pipfile.lock",
    "uv.lock",
    "Cargo.lock",
    "composer.lock",
    "Gemfile.lock",
    "*.min.js",
    "*.min.css",
    "*.map",
]

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def api_key_env_for(provider: str) -> str:
    return f"{provider.upper().replace('-', '_')}_API_KEY"


def base_url_env_for(provider: str) -> str:
    return f"{provider.upper().replace('-', '_')}_BASE_URL"


@dataclass
class Config:
    """Runtime configuration for cmtgen."""

    provider: str
    model: str
    base_url: str
    api_key_env: str
    max_diff_length: int = 24_000
    max_commit_length: int = 72
    request_timeout: float = 60.0
    max_tokens: int = 512
    excluded_paths: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_PATHS)
    )
    stream: bool = True

    def resolve_api_key(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Return the API key from the configured environment variable."""
        source = os.environ if env is None else env
        value = source.get(self.api_key_env)
        return value or None

    def to_client_settings(
        self, env: Optional[Mapping[str, str]] = None
    ) -> ClientSettings:
        return ClientSettings(
            provider=self.provider,
            model=self.model,
            base_url=self.base_url,
            api_key=self.resolve_api_key(env),
            request_timeout=self.request_timeout,
            max_tokens=self.max_tokens,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise configuration to a dict for persistence."""
        return asdict(self)


_CONFIG_STATE: Dict[str, Optional[Config]] = {"active": None}


def _ensure_path(path_like: Optional[Path]) -> Path:
    if path_like is None:
        return Path.cwd().resolve(strict=False)
    return Path(path_like).expanduser().resolve(strict=False)


def _config_file(repo_root: Optional[Path] = None) -> Path:
    return _ensure_path(repo_root) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def save_config(config: Config, repo_root: Optional[Path] = None) -> Path:
    """Persist configuration YAML within the repository."""
    cfg_path = _config_file(repo_root)
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    with cfg_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    return cfg_path


def _read_persisted(repo_root: Optional[Path] = None) -> Dict[str, Any]:
    """Known keys of the config file; any subset of fields may be present."""
    cfg_path = _config_file(repo_root)
    if not cfg_path.exists():
        return {}
    try:
        with cfg_path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {cfg_path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{cfg_path} must contain a mapping")
    known = {f.name for f in fields(Config)}
    return {k: v for k, v in data.items() if k in known and v is not None}


def load_persisted_config(repo_root: Optional[Path] = None) -> Optional[Config]:
    data = _read_persisted(repo_root)
    if not data:
        return None
    cfg_path = _config_file(repo_root)
    try:
        return Config(**data)
    except TypeError as e:
        raise ConfigError(f"Incomplete configuration in {cfg_path}: {e}") from e


def _parse_positive_int(name: str, raw: Any) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _parse_positive_float(name: str, raw: Any) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _parse_bool(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_patterns(raw: Any) -> List[str]:
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    else:
        items = raw or []
    return [str(item).strip() for item in items if str(item).strip()]


def _first(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None and candidate != "":
            return candidate
    return None


def _auto_select_provider(
    registry: ProviderRegistry, env: Mapping[str, str]
) -> str:
    extra = [p for p in registry.known_providers() if p not in BUILTIN_DEFAULTS]
    for provider in [*BUILTIN_DEFAULTS, *extra]:
        if env.get(api_key_env_for(provider)):
            return provider
    return DEFAULT_PROVIDER


def _provider_defaults(
    provider: str, registry: ProviderRegistry
) -> Optional[ProviderSettings]:
    return registry.get_defaults(provider) or BUILTIN_DEFAULTS.get(provider)


def load_config(
    *,
    repo_root: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    registry: Optional[ProviderRegistry] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Config:
    """Build configuration from overrides, environment, config file and defaults.

    Precedence is overrides, then environment, then ``.cmtgen/config.yaml``,
    then the provider defaults known to the registry. The file may hold any
    subset of fields. Persisted model, base URL and key variable are reused only
    when the file names no provider or the selected one.
    """

    overrides = dict(overrides or {})
    env = os.environ if env is None else env
    registry = registry if registry is not None else default_registry
    persisted = _read_persisted(repo_root)

    raw_provider = _first(
        overrides.get("provider"),
        env.get("CMTGEN_PROVIDER"),
        persisted.get("provider"),
    )
    try:
        provider = (
            normalize_name(raw_provider)
            if raw_provider
            else _auto_select_provider(registry, env)
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e

    # A file without a provider applies to whichever provider is selected.
    persisted_provider = str(persisted.get("provider") or "").strip().lower()
    same_provider = persisted if persisted_provider in ("", provider) else {}
    defaults = _provider_defaults(provider, registry)

    model = _first(
        overrides.get("model"),
        env.get("CMTGEN_MODEL"),
        same_provider.get("model"),
        defaults.default_model if defaults else None,
    )
    if not model:
        raise ConfigError(f"No model configured for provider '{provider}'")

    base_url = _first(
        overrides.get("base_url"),
        env.get(base_url_env_for(provider)),
        same_provider.get("base_url"),
        defaults.default_base_url if defaults else None,
    )
    if not base_url:
        raise ConfigError(f"No base URL configured for provider '{provider}'")

    api_key_env = _first(
        overrides.get("api_key_env"),
        same_provider.get("api_key_env"),
        api_key_env_for(provider),
    )

    raw_max_diff = _first(
        overrides.get("max_diff_length"),
        env.get("CMTGEN_MAX_DIFF_LENGTH"),
        same_provider.get("max_diff_length"),
    )
    max_diff_length = (
        _parse_positive_int("max_diff_length", raw_max_diff)
        if raw_max_diff is not None
        else default_max_diff_length(provider, model)
    )

    max_commit_length = _parse_positive_int(
        "max_commit_length",
        _first(
            overrides.get("max_commit_length"),
            env.get("CMTGEN_MAX_COMMIT_LENGTH"),
            persisted.get("max_commit_length"),
            72,
        ),
    )
    request_timeout = _parse_positive_float(
        "request_timeout",
        _first(
            overrides.get("request_timeout"),
            env.get("CMTGEN_REQUEST_TIMEOUT"),
            persisted.get("request_timeout"),
            60.0,
        ),
    )
    max_tokens = _parse_positive_int(
        "max_tokens",
        _first(
            overrides.get("max_tokens"),
            persisted.get("max_tokens"),
            512,
        ),
    )

    raw_excluded = _first(
        overrides.get("excluded_paths"),
        env.get("CMTGEN_EXCLUDE"),
        persisted.get("excluded_paths"),
    )
    excluded_paths = (
        _parse_patterns(raw_excluded)
        if raw_excluded is not None
        else list(DEFAULT_EXCLUDED_PATHS)
    )

    stream = _parse_bool(
        "stream",
        _first(
            overrides.get("stream"),
            env.get("CMTGEN_STREAM"),
            persisted.get("stream"),
            True,
        ),
    )

    config = Config(
        provider=provider,
        model=str(model),
        base_url=str(base_url),
        api_key_env=str(api_key_env),
        max_diff_length=max_diff_length,
        max_commit_length=max_commit_length,
        request_timeout=request_timeout,
        max_tokens=max_tokens,
        excluded_paths=excluded_paths,
        stream=stream,
    )

    set_active_config(config)
    return config


def set_active_config(config: Config) -> None:
    _CONFIG_STATE["active"] = config


def get_active_config() -> Config:
    active = _CONFIG_STATE.get("active")
    if active is None:
        return load_config()
    return active


def clear_active_config() -> None:
    _CONFIG_STATE["active"] = None


def describe_provider(provider: str, registry: Optional[ProviderRegistry] = None) -> str:
    meta = _provider_defaults(provider, registry or default_registry)
    if not meta:
        return provider
    return f"{provider} (default model: {meta.default_model})"
