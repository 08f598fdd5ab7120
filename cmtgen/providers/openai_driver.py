from __future__ import annotations

import logging
import threading
from typing import Any, Iterator, Optional

import httpx
import openai as _openai

from ..cancellation import CancellationToken
from ..exceptions import MalformedResponseError, TransportError
from .base import (
    BaseDriver,
    ClientSettings,
    DeltaCallback,
    deliver_stream,
    run_cancellable,
)

logger = logging.getLogger(__name__)


def _content_text(content: Any) -> str:
    """Extract text from a string or a list of content fragments."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        fragments: list[str] = []
        for part in content:
            if isinstance(part, dict):
                txt = part.get("text") or part.get("content") or ""
            else:
                txt = getattr(part, "text", "") or getattr(part, "content", "")
            if txt:
                fragments.append(str(txt))
        return "".join(fragments)
    return str(content)


class OpenAIDriver(BaseDriver):
    """Driver for OpenAI and OpenAI-compatible chat completion endpoints.

    The SDK client is created lazily and closed on cancellation so that an
    in-flight request is torn down instead of running to its own timeout.
    """

    provider_name = "openai"

    def __init__(self, settings: ClientSettings) -> None:
        super().__init__(settings)
        self._client: Any = None
        self._client_lock = threading.Lock()
        self._use_completion_tokens = self.model.startswith("gpt-5")

    # ------------------------------------------------------------------
    # SDK client lifecycle
    # ------------------------------------------------------------------
    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = _openai.OpenAI(
                    base_url=self.base_url,
                    api_key=self.settings.api_key or "unused",
                    timeout=self.settings.request_timeout,
                    max_retries=0,
                )
            return self._client

    def close(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            client.close()

    # ------------------------------------------------------------------
    # Request shaping
    # ------------------------------------------------------------------
    def _request_kwargs(self, prompt: str, *, stream: bool = False) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(prompt),
        }
        token_param = (
            "max_completion_tokens" if self._use_completion_tokens else "max_tokens"
        )
        kwargs[token_param] = self.settings.max_tokens
        if stream:
            kwargs["stream"] = True
        return kwargs

    def _create(self, kwargs: dict[str, Any]) -> Any:
        create_fn = self._get_client().chat.completions.create
        try:
            return create_fn(**kwargs)
        except _openai.BadRequestError as exc:
            msg = str(exc)
            if "max_tokens" in kwargs and "Unsupported parameter" in msg:
                # Some servers only accept max_completion_tokens
                logger.debug("openai.retry with max_completion_tokens")
                self._use_completion_tokens = True
                retry = dict(kwargs)
                retry["max_completion_tokens"] = retry.pop("max_tokens")
                return create_fn(**retry)
            raise

    # ------------------------------------------------------------------
    # Client contract
    # ------------------------------------------------------------------
    def _invoke(self, prompt: str) -> str:
        try:
            resp = self._create(self._request_kwargs(prompt))
        except (_openai.OpenAIError, httpx.HTTPError) as exc:
            raise TransportError(
                f"{self.provider} request failed: {exc}",
                getattr(exc, "status_code", None),
            ) from exc
        try:
            choice0 = resp.choices[0]
        except (AttributeError, IndexError, TypeError):
            raise MalformedResponseError(
                f"Missing choices in {self.provider} response"
            ) from None
        message = getattr(choice0, "message", None)
        content = _content_text(getattr(message, "content", None)).strip()
        logger.debug(
            "openai.response provider=%s finish_reason=%s len=%d",
            self.provider,
            getattr(choice0, "finish_reason", None),
            len(content),
        )
        if not content:
            raise MalformedResponseError(f"Empty {self.provider} response")
        return content

    def generate_commit_message(
        self, prompt: str, token: Optional[CancellationToken] = None
    ) -> str:
        return run_cancellable(token, lambda: self._invoke(prompt), abort=self.close)

    def _open_stream(self, prompt: str) -> Iterator[str]:
        try:
            stream = self._create(self._request_kwargs(prompt, stream=True))
            for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = _content_text(getattr(delta, "content", None))
                if text:
                    yield text
        except (_openai.OpenAIError, httpx.HTTPError) as exc:
            raise TransportError(
                f"{self.provider} stream failed: {exc}",
                getattr(exc, "status_code", None),
            ) from exc

    def stream_commit_message(
        self,
        prompt: str,
        on_delta: DeltaCallback,
        token: Optional[CancellationToken] = None,
    ) -> str:
        return deliver_stream(
            token, lambda: self._open_stream(prompt), on_delta, abort=self.close
        )
