import threading
import time

import pytest

from cmtgen.cancellation import DEADLINE_REASON, CancellationToken
from cmtgen.exceptions import CancelledError


def test_cancel_sets_reason_once():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel("user abort")
    token.cancel("second")
    assert token.cancelled
    assert token.reason == "user abort"
    with pytest.raises(CancelledError, match="user abort"):
        token.raise_if_cancelled()


def test_deadline_cancels_token():
    token = CancellationToken(timeout=0.01)
    time.sleep(0.03)
    assert token.cancelled
    assert token.reason == DEADLINE_REASON
    assert token.remaining() == 0.0
    assert CancellationToken().remaining() is None


def test_callbacks_fire_once_and_late_registration_runs_immediately():
    token = CancellationToken()
    calls = []
    token.on_cancel(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    token.on_cancel(lambda: calls.append("b"))
    assert calls == ["a", "b"]


def test_cancellation_cascades_to_children():
    parent = CancellationToken()
    child = parent.child()
    grandchild = child.child()
    parent.cancel("stop")
    assert child.cancelled and grandchild.cancelled
    assert grandchild.reason == "stop"
    # Cancelling a child leaves the parent alone
    other = CancellationToken()
    other.child().cancel()
    assert not other.cancelled


def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancellationToken()
    parent.cancel()
    assert parent.child().cancelled


def test_wait_returns_when_cancelled_from_other_thread():
    token = CancellationToken()
    threading.Timer(0.02, token.cancel).start()
    start = time.monotonic()
    assert token.wait(2.0) is True
    assert time.monotonic() - start < 1.0
