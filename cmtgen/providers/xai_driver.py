from __future__ import annotations

from .openai_driver import OpenAIDriver


class XAIDriver(OpenAIDriver):
    """Driver for the XAI/Grok API (OpenAI-compatible)."""

    provider_name = "xai"
