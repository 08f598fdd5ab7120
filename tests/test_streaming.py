import threading
import time

import pytest

from cmtgen.cancellation import CancellationToken
from cmtgen.exceptions import (
    CancelledError,
    MalformedResponseError,
    MissingCredentialError,
    TransportError,
)
from cmtgen.providers.base import (
    CommitClient,
    deliver_stream,
    run_cancellable,
    supports_streaming,
)
from cmtgen.streaming import StreamOrchestrator, StreamState, generate_text


class SyncOnly(CommitClient):
    def __init__(self, text="feat: sync"):
        self.text = text
        self.calls = 0

    def generate_commit_message(self, prompt, token=None):
        self.calls += 1
        return self.text


class Streaming(SyncOnly):
    def __init__(self, deltas=(), error=None, fail_after=0, text="feat: sync"):
        super().__init__(text)
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after

    def stream_commit_message(self, prompt, on_delta, token=None):
        for i, delta in enumerate(self.deltas):
            if self.error is not None and i == self.fail_after:
                raise self.error
            on_delta(delta)
        if self.error is not None and self.fail_after >= len(self.deltas):
            raise self.error
        return "".join(self.deltas)


class Hanging(CommitClient):
    """Blocks until aborted, like a stalled network call."""

    def __init__(self):
        self.released = threading.Event()
        self.aborted = False

    def close(self):
        self.aborted = True
        self.released.set()

    def _block(self):
        self.released.wait(5)
        return "late"

    def generate_commit_message(self, prompt, token=None):
        return run_cancellable(token, self._block, abort=self.close)

    def _open_stream(self):
        yield "feat"
        self.released.wait(5)
        yield ": late"

    def stream_commit_message(self, prompt, on_delta, token=None):
        return deliver_stream(token, self._open_stream, on_delta, abort=self.close)


class HangingSyncOnly(Hanging):
    stream_commit_message = None


def test_capability_detection():
    assert supports_streaming(Streaming())
    assert not supports_streaming(SyncOnly())
    assert not supports_streaming(HangingSyncOnly())


def test_stream_deltas_concatenate_to_result():
    seen = []
    client = Streaming(["feat", "(api)", ": add x"])
    orch = StreamOrchestrator(client)
    result = orch.run("p", seen.append)

    assert seen == ["feat", "(api)", ": add x"]
    assert result.text == "".join(seen) == "feat(api): add x"
    assert result.streamed and not result.fell_back
    assert result.delta_count == 3
    assert client.calls == 0
    assert orch.transitions == [
        StreamState.IDLE,
        StreamState.ATTEMPTING_STREAM,
        StreamState.STREAMING,
        StreamState.DONE,
    ]


def test_sync_only_client_falls_back_without_deltas():
    seen = []
    client = SyncOnly()
    orch = StreamOrchestrator(client)
    result = orch.run("p", seen.append)

    assert result.text == "feat: sync"
    assert result.fell_back is True
    assert seen == []
    assert StreamState.FALLEN_BACK in orch.transitions
    assert orch.state is StreamState.DONE


def test_failure_before_first_delta_falls_back_once():
    client = Streaming(["never"], error=TransportError("stream down"), fail_after=0)
    result = StreamOrchestrator(client).run("p")
    assert result.fell_back is True
    assert result.text == "feat: sync"
    assert client.calls == 1


def test_empty_stream_falls_back():
    client = Streaming([])
    result = StreamOrchestrator(client).run("p")
    assert result.fell_back is True
    assert client.calls == 1


def test_failure_after_delta_is_not_retried():
    seen = []
    client = Streaming(["feat", ": x"], error=TransportError("cut"), fail_after=1)
    orch = StreamOrchestrator(client)
    with pytest.raises(TransportError):
        orch.run("p", seen.append)
    assert seen == ["feat"]
    assert client.calls == 0
    assert orch.state is StreamState.FAILED


@pytest.mark.parametrize(
    "error", [MissingCredentialError("openai"), CancelledError("stop")]
)
def test_errors_that_skip_fallback(error):
    client = Streaming(["x"], error=error, fail_after=0)
    with pytest.raises(type(error)):
        StreamOrchestrator(client).run("p")
    assert client.calls == 0


def test_fallback_error_propagates():
    class Broken(SyncOnly):
        def generate_commit_message(self, prompt, token=None):
            raise MalformedResponseError("empty")

    orch = StreamOrchestrator(Broken())
    with pytest.raises(MalformedResponseError):
        orch.run("p")
    assert orch.state is StreamState.FAILED


def test_pre_cancelled_token_never_calls_client():
    token = CancellationToken()
    token.cancel()
    client = Streaming(["x"])
    orch = StreamOrchestrator(client)
    with pytest.raises(CancelledError):
        orch.run("p", token=token)
    assert client.calls == 0
    assert orch.state is StreamState.CANCELLED


def test_cancel_during_stream_returns_promptly():
    client = Hanging()
    token = CancellationToken()
    seen = []
    threading.Timer(0.05, token.cancel).start()
    start = time.monotonic()
    orch = StreamOrchestrator(client)
    with pytest.raises(CancelledError):
        orch.run("p", seen.append, token)
    elapsed = time.monotonic() - start

    assert elapsed < 0.05 + 0.2
    assert seen == ["feat"]
    assert client.aborted
    assert orch.state is StreamState.CANCELLED


def test_cancel_during_blocking_call_returns_promptly():
    client = HangingSyncOnly()
    token = CancellationToken()
    threading.Timer(0.05, token.cancel).start()
    start = time.monotonic()
    with pytest.raises(CancelledError):
        generate_text(client, "p", token=token)
    assert time.monotonic() - start < 0.05 + 0.2
    assert client.aborted


def test_deadline_cancels_blocking_call():
    client = HangingSyncOnly()
    token = CancellationToken(timeout=0.05)
    with pytest.raises(CancelledError, match="deadline exceeded"):
        client.generate_commit_message("p", token)


def test_orchestrator_can_be_reused():
    orch = StreamOrchestrator(Streaming(["feat: a"]))
    assert orch.run("p").text == "feat: a"
    assert orch.run("p").text == "feat: a"


class NoStreamEndpoint(SyncOnly):
    def stream_commit_message(self, prompt, on_delta, token=None):
        raise NotImplementedError("endpoint has no streaming")


def test_non_llm_error_before_first_delta_falls_back():
    client = NoStreamEndpoint()
    orch = StreamOrchestrator(client)
    result = orch.run("p")
    assert result.text == "feat: sync"
    assert result.fell_back is True
    assert client.calls == 1
    assert StreamState.FALLEN_BACK in orch.transitions


def test_non_llm_error_after_delta_is_not_retried():
    client = Streaming(["feat"], error=ValueError("bad chunk"), fail_after=1)
    with pytest.raises(ValueError):
        StreamOrchestrator(client).run("p")
    assert client.calls == 0
