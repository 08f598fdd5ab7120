from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Iterable,
    Iterator,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from ..cancellation import CancellationToken
from ..diffs import FitDecision, maybe_summarize_diff
from ..exceptions import CancelledError, MissingCredentialError
from ..normalize import sanitize_response

logger = logging.getLogger(__name__)

T = TypeVar("T")
DeltaCallback = Callable[[str], None]

# How often a waiting caller re-checks its token; bounds cancellation latency.
POLL_INTERVAL = 0.02

SYSTEM_PROMPT = "\n".join(
    [
        "You are a strict conventional commit message generator.",
        "Output ONLY: type(scope): description",
        "",
        "Rules:",
        "- types: feat fix docs style refactor perf test build ci chore",
        "  revert",
        "- subject <= 50 chars, no trailing period",
        "- add body if >5 changed lines",
        "- wrap body at 72 chars",
        "- body explains WHAT and WHY",
        "",
        "Return only the commit message.",
    ]
)


@dataclass
class ClientSettings:
    """Fully resolved settings handed to a provider factory."""

    provider: str
    model: str
    base_url: str
    api_key: Optional[str] = None
    request_timeout: float = 60.0
    max_tokens: int = 512


class CommitClient(ABC):
    """Blocking generation contract every adapter implements."""

    @abstractmethod
    def generate_commit_message(
        self, prompt: str, token: Optional[CancellationToken] = None
    ) -> str:
        """Return the provider's raw text for ``prompt``.

        Must raise ``CancelledError`` (not the transport's own error) when
        ``token`` is cancelled before or during the call.
        """
        raise NotImplementedError


@runtime_checkable
class StreamingCommitClient(Protocol):
    """Optional incremental generation capability."""

    def stream_commit_message(
        self,
        prompt: str,
        on_delta: DeltaCallback,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Deliver fragments to ``on_delta`` in order; return their concatenation."""
        ...


def supports_streaming(client: object) -> bool:
    """Runtime capability check used by the orchestrator."""
    if not isinstance(client, StreamingCommitClient):
        return False
    return callable(getattr(client, "stream_commit_message", None))


def require_api_key(settings: ClientSettings, required: bool) -> None:
    if required and not (settings.api_key or "").strip():
        raise MissingCredentialError(settings.provider)


def _run_abort(abort: Optional[Callable[[], None]]) -> None:
    if abort is None:
        return
    try:
        abort()
    except Exception as exc:  # noqa: BLE001 - cancellation must still surface
        logger.debug("abort hook failed: %s", exc)


def run_cancellable(
    token: Optional[CancellationToken],
    func: Callable[[], T],
    abort: Optional[Callable[[], None]] = None,
) -> T:
    """Run a blocking call so that cancelling ``token`` returns promptly.

    The call runs on a daemon worker thread while the caller polls the token.
    On cancellation ``abort`` is invoked to tear down in-flight I/O and
    ``CancelledError`` is raised without waiting for the worker.
    """
    if token is None:
        return func()
    token.raise_if_cancelled()

    outcome: dict[str, Any] = {}
    finished = threading.Event()

    def _runner() -> None:
        try:
            outcome["value"] = func()
        except Exception as exc:  # noqa: BLE001 - re-raised on caller thread
            outcome["error"] = exc
        finally:
            finished.set()

    threading.Thread(target=_runner, name="cmtgen-call", daemon=True).start()
    while not finished.wait(POLL_INTERVAL):
        if token.cancelled:
            _run_abort(abort)
            raise CancelledError(token.reason or "operation cancelled")

    error = outcome.get("error")
    if error is not None:
        if token.cancelled and not isinstance(error, CancelledError):
            raise CancelledError(token.reason or "operation cancelled") from error
        raise error
    return outcome["value"]


_ITEM = "item"
_ERROR = "error"
_DONE = "done"


def iter_cancellable(
    token: Optional[CancellationToken],
    open_stream: Callable[[], Iterable[T]],
    abort: Optional[Callable[[], None]] = None,
) -> Iterator[T]:
    """Yield items of a blocking stream on the caller's thread.

    A worker thread drains ``open_stream()`` into a queue; the caller polls
    the queue and the token alternately, so a stalled stream never delays
    cancellation by more than ``POLL_INTERVAL``.
    """
    if token is None:
        yield from open_stream()
        return
    token.raise_if_cancelled()

    items: "queue.Queue[tuple[str, Any]]" = queue.Queue()

    def _pump() -> None:
        try:
            for item in open_stream():
                items.put((_ITEM, item))
                if token.cancelled:
                    return
        except Exception as exc:  # noqa: BLE001 - re-raised on caller thread
            items.put((_ERROR, exc))
        else:
            items.put((_DONE, None))

    threading.Thread(target=_pump, name="cmtgen-stream", daemon=True).start()
    completed = False
    try:
        while True:
            try:
                kind, payload = items.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                token.raise_if_cancelled()
                continue
            token.raise_if_cancelled()
            if kind == _DONE:
                completed = True
                return
            if kind == _ERROR:
                completed = True
                raise payload
            yield payload
    finally:
        if not completed:
            _run_abort(abort)


def deliver_stream(
    token: Optional[CancellationToken],
    open_stream: Callable[[], Iterable[str]],
    on_delta: DeltaCallback,
    abort: Optional[Callable[[], None]] = None,
) -> str:
    """Forward each fragment to ``on_delta`` and return their concatenation."""
    parts: list[str] = []
    for fragment in iter_cancellable(token, open_stream, abort):
        if not fragment:
            continue
        parts.append(fragment)
        on_delta(fragment)
    return "".join(parts)


class BaseDriver(CommitClient):
    """Shared plumbing for provider adapters.

    Holds the resolved settings and exposes the default response cleanup and
    diff fitting helpers so adapters and callers share one implementation.
    """

    provider_name = "base"

    def __init__(self, settings: ClientSettings) -> None:
        self.settings = settings

    @property
    def provider(self) -> str:
        return self.settings.provider or self.provider_name

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def base_url(self) -> str:
        return self.settings.base_url.rstrip("/")

    def sanitize_response(self, text: str, commit_type: Optional[str] = None) -> str:
        return sanitize_response(text, commit_type)

    def maybe_summarize_diff(self, diff: str, max_length: int) -> FitDecision:
        return maybe_summarize_diff(diff, max_length)

    def build_messages(self, prompt: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    def close(self) -> None:
        """Release network resources; aborts any in-flight request."""

    def __repr__(self) -> str:  # pragma: no cover - introspection aid
        return f"{type(self).__name__}(provider={self.provider!r}, model={self.model!r})"
