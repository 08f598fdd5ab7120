from collections.abc import Generator
from pathlib import Path

import pytest

_PROVIDER_ENV = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "XAI_API_KEY",
    "GITHUB_API_KEY",
    "OLLAMA_API_KEY",
    "OPENAI_BASE_URL",
    "ANTHROPIC_BASE_URL",
    "XAI_BASE_URL",
    "GITHUB_BASE_URL",
    "OLLAMA_BASE_URL",
    "CMTGEN_PROVIDER",
    "CMTGEN_MODEL",
    "CMTGEN_MAX_DIFF_LENGTH",
    "CMTGEN_REQUEST_TIMEOUT",
    "CMTGEN_MAX_COMMIT_LENGTH",
    "CMTGEN_EXCLUDE",
    "CMTGEN_STREAM",
)


@pytest.fixture(autouse=True)
def reset_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
    # Ensure no persisted config from the working tree interferes
    monkeypatch.chdir(tmp_path)
    # Keep config resolution independent of the bundled price snapshot
    monkeypatch.setattr(
        "cmtgen.config.default_max_diff_length", lambda provider, model: 24_000
    )

    from cmtgen.config import clear_active_config

    clear_active_config()
    yield
    clear_active_config()


@pytest.fixture
def registry():
    from cmtgen.bootstrap import register_builtin_providers
    from cmtgen.registry import ProviderRegistry

    reg = ProviderRegistry()
    register_builtin_providers(reg)
    return reg
