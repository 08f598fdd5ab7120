"""Streaming orchestration with transparent fallback to blocking generation.

Per request the orchestrator walks this state machine::

    IDLE -> ATTEMPTING_STREAM -> STREAMING   -> DONE | FAILED | CANCELLED
                              -> FALLEN_BACK -> DONE | FAILED | CANCELLED

Streaming is best effort. A streaming attempt that fails before producing any
delta is retried once through the blocking call. Once a delta has reached
the caller a failure is surfaced as-is, since a retry could show duplicated
or inconsistent text. Cancellation is never retried.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .exceptions import CancelledError, MissingCredentialError
from .providers.base import CommitClient, supports_streaming

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], None]

# Failures that mean a blocking retry would fail the same way.
_NO_FALLBACK = (CancelledError, MissingCredentialError)


class StreamState(str, enum.Enum):
    IDLE = "idle"
    ATTEMPTING_STREAM = "attempting_stream"
    STREAMING = "streaming"
    FALLEN_BACK = "fallen_back"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({StreamState.DONE, StreamState.FAILED, StreamState.CANCELLED})


@dataclass(frozen=True)
class GenerationResult:
    """Successful outcome of one orchestrated generation."""

    text: str
    state: StreamState
    fell_back: bool
    delta_count: int = 0

    @property
    def streamed(self) -> bool:
        return self.delta_count > 0 and not self.fell_back


class StreamOrchestrator:
    """Drive one generation request for ``client``.

    An orchestrator instance handles a single request at a time, matching
    the one-call-per-client contract of the adapters.
    """

    def __init__(self, client: CommitClient) -> None:
        self.client = client
        self.state = StreamState.IDLE
        self.transitions: List[StreamState] = [StreamState.IDLE]
        self.error: Optional[BaseException] = None

    def _move(self, state: StreamState) -> None:
        logger.debug("stream.state %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    def _check(self, token: Optional[CancellationToken]) -> None:
        if token is not None and token.cancelled:
            raise CancelledError(token.reason or "operation cancelled")

    def run(
        self,
        prompt: str,
        on_delta: Optional[DeltaCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> GenerationResult:
        """Generate text for ``prompt``; raises on failure or cancellation."""
        if self.state not in (StreamState.IDLE, *TERMINAL_STATES):
            raise RuntimeError("orchestrator is already running a request")
        self.state = StreamState.IDLE
        self.transitions = [StreamState.IDLE]
        self.error = None
        try:
            return self._run(prompt, on_delta, token)
        except CancelledError as exc:
            self.error = exc
            self._move(StreamState.CANCELLED)
            raise
        except Exception as exc:
            self.error = exc
            if token is not None and token.cancelled:
                self._move(StreamState.CANCELLED)
                raise CancelledError(token.reason or "operation cancelled") from exc
            self._move(StreamState.FAILED)
            raise

    def _run(
        self,
        prompt: str,
        on_delta: Optional[DeltaCallback],
        token: Optional[CancellationToken],
    ) -> GenerationResult:
        self._check(token)
        self._move(StreamState.ATTEMPTING_STREAM)
        if not supports_streaming(self.client):
            return self._fallback(prompt, token)

        self._move(StreamState.STREAMING)
        delivered: List[str] = []

        def forward(delta: str) -> None:
            if not delta:
                return
            delivered.append(delta)
            if on_delta is not None:
                on_delta(delta)

        try:
            final = self.client.stream_commit_message(prompt, forward, token)  # type: ignore[attr-defined]
        except _NO_FALLBACK:
            raise
        except Exception as exc:  # noqa: BLE001 - re-raised below once a delta was shown
            self._check(token)
            if delivered:
                logger.debug(
                    "stream.failed after %d deltas; not falling back: %s",
                    len(delivered),
                    exc,
                )
                raise
            logger.debug("stream.unavailable before first delta, falling back: %s", exc)
            return self._fallback(prompt, token)

        self._check(token)
        text = "".join(delivered)
        if final != text:
            logger.debug(
                "stream.final differs from delivered deltas (%d vs %d chars); "
                "using delivered text",
                len(final or ""),
                len(text),
            )
        if not delivered:
            # Nothing was shown to the caller, so a blocking retry is safe.
            logger.debug("stream.empty, falling back")
            return self._fallback(prompt, token)
        self._move(StreamState.DONE)
        return GenerationResult(
            text=text,
            state=StreamState.DONE,
            fell_back=False,
            delta_count=len(delivered),
        )

    def _fallback(
        self, prompt: str, token: Optional[CancellationToken]
    ) -> GenerationResult:
        self._check(token)
        self._move(StreamState.FALLEN_BACK)
        text = self.client.generate_commit_message(prompt, token)
        self._check(token)
        self._move(StreamState.DONE)
        return GenerationResult(text=text, state=StreamState.DONE, fell_back=True)


def generate_text(
    client: CommitClient,
    prompt: str,
    on_delta: Optional[DeltaCallback] = None,
    token: Optional[CancellationToken] = None,
) -> str:
    """Functional shortcut around :class:`StreamOrchestrator`."""
    return StreamOrchestrator(client).run(prompt, on_delta, token).text


__all__ = [
    "GenerationResult",
    "StreamOrchestrator",
    "StreamState",
    "TERMINAL_STATES",
    "generate_text",
]
