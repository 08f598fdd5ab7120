from __future__ import annotations

import json
import logging
import threading
from typing import Iterator, Optional

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


class OllamaDriver(BaseDriver):
    """Driver for a local Ollama server (``/api/generate``).

    Ollama needs no API key. Streaming responses arrive as newline-delimited
    JSON objects carrying a ``response`` fragment and a ``done`` flag.
    """

    provider_name = "ollama"

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
                    base_url=self.base_url,
                    timeout=self.settings.request_timeout,
                    transport=self._transport,
                )
            return self._http

    def close(self) -> None:
        with self._http_lock:
            http, self._http = self._http, None
        if http is not None:
            http.close()

    def _payload(self, prompt: str, *, stream: bool) -> dict:
        return {
            "model": self.model,
            "system": SYSTEM_PROMPT,
            "prompt": prompt,
            "stream": stream,
            "options": {"num_predict": self.settings.max_tokens},
        }

    def _invoke(self, prompt: str) -> str:
        try:
            resp = self._client().post(
                "/api/generate", json=self._payload(prompt, stream=False)
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Ollama error {e.response.status_code}: {e.response.text}",
                e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Ollama request failed: {e}") from e
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Ollama returned invalid JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Ollama returned a non-object response")
        text = data.get("response") or ""
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError("Empty Ollama response")
        return text.strip()

    def generate_commit_message(
        self, prompt: str, token: Optional[CancellationToken] = None
    ) -> str:
        return run_cancellable(token, lambda: self._invoke(prompt), abort=self.close)

    def _open_stream(self, prompt: str) -> Iterator[str]:
        try:
            with self._client().stream(
                "POST", "/api/generate", json=self._payload(prompt, stream=True)
            ) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    raise TransportError(
                        f"Ollama error {resp.status_code}: {resp.text}",
                        resp.status_code,
                    )
                for line in resp.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("ollama.stream skipping line: %.80s", line)
                        continue
                    if not isinstance(data, dict):
                        raise MalformedResponseError(
                            f"Ollama stream line is not an object: {line:.80}"
                        )
                    if data.get("error"):
                        raise TransportError(f"Ollama stream error: {data['error']}")
                    fragment = data.get("response") or ""
                    if fragment:
                        yield str(fragment)
                    if data.get("done"):
                        return
        except httpx.HTTPError as e:
            raise TransportError(f"Ollama stream failed: {e}") from e

    def stream_commit_message(
        self,
        prompt: str,
        on_delta: DeltaCallback,
        token: Optional[CancellationToken] = None,
    ) -> str:
        return deliver_stream(
            token, lambda: self._open_stream(prompt), on_delta, abort=self.close
        )
