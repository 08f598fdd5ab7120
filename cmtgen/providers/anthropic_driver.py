from __future__ import annotations

import json
import logging
import threading
from typing import Any, Iterator, Optional

import httpx

from ..cancellation import CancellationToken
from ..exceptions import MalformedResponseError, TransportError
from .base import (
    SYSTEM_PROMPT,
    BaseDriver,
    ClientSettings,
    DeltaCallback,
    deliver_stream,
    run_cancellable,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def parse_sse_event(line: str) -> Optional[dict[str, Any]]:
    """Decode the JSON payload of one ``data:`` line of a server-sent event."""
    if not line or not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("anthropic.sse skipping undecodable line: %.80s", payload)
        return None
    return data if isinstance(data, dict) else None


class AnthropicDriver(BaseDriver):
    """Driver handling Anthropic API calls (messages endpoint)."""

    provider_name = "anthropic"

    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(settings)
        self._transport = transport
        self._http: Optional[httpx.Client] = None
        self._http_lock = threading.Lock()

    def _client(self) -> httpx.Client:
        with self._http_lock:
            if self._http is None:
                self._http = httpx.Client(
                    timeout=self.settings.request_timeout,
                    transport=self._transport,
                )
            return self._http

    def close(self) -> None:
        with self._http_lock:
            http, self._http = self._http, None
        if http is not None:
            http.close()

    @property
    def url(self) -> str:
        return self.base_url + "/v1/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.settings.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _payload(self, prompt: str, *, stream: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.settings.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": prompt}]}
            ],
        }
        if stream:
            payload["stream"] = True
        return payload

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise TransportError(
                f"Anthropic error {response.status_code}: {response.text}",
                response.status_code,
            )

    def _invoke(self, prompt: str) -> str:
        try:
            response = self._client().post(
                self.url, headers=self._headers(), json=self._payload(prompt)
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Anthropic network error during messages request: {e}"
            ) from e
        self._raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("Anthropic returned invalid JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Anthropic returned a non-object response")
        texts = [
            str(chunk.get("text") or "")
            for chunk in data.get("content") or []
            if isinstance(chunk, dict) and chunk.get("type") == "text"
        ]
        content = "\n".join(filter(None, texts)).strip()
        if not content:
            raise MalformedResponseError("Empty Anthropic response")
        return content

    def generate_commit_message(
        self, prompt: str, token: Optional[CancellationToken] = None
    ) -> str:
        return run_cancellable(token, lambda: self._invoke(prompt), abort=self.close)

    def _open_stream(self, prompt: str) -> Iterator[str]:
        try:
            with self._client().stream(
                "POST",
                self.url,
                headers=self._headers(),
                json=self._payload(prompt, stream=True),
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    self._raise_for_status(response)
                for line in response.iter_lines():
                    event = parse_sse_event(line)
                    if event is None:
                        continue
                    kind = event.get("type")
                    if kind == "error":
                        detail = event.get("error") or "unknown error"
                        if isinstance(detail, dict):
                            detail = detail.get("message") or detail
                        raise TransportError(f"Anthropic stream error: {detail}")
                    if kind == "message_stop":
                        return
                    if kind != "content_block_delta":
                        continue
                    delta = event.get("delta")
                    if not isinstance(delta, dict):
                        continue
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield str(delta["text"])
        except httpx.HTTPError as e:
            raise TransportError(f"Anthropic network error during stream: {e}") from e

    def stream_commit_message(
        self,
        prompt: str,
        on_delta: DeltaCallback,
        token: Optional[CancellationToken] = None,
    ) -> str:
        return deliver_stream(
            token, lambda: self._open_stream(prompt), on_delta, abort=self.close
        )
