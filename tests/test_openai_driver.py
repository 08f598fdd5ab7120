import types

import httpx
import openai
import pytest

from cmtgen.cancellation import CancellationToken
from cmtgen.exceptions import CancelledError, MalformedResponseError, TransportError
from cmtgen.providers import openai_driver
from cmtgen.providers.base import ClientSettings
from cmtgen.providers.openai_driver import OpenAIDriver
from cmtgen.providers.xai_driver import XAIDriver


def _settings(model="gpt-test", provider="openai"):
    return ClientSettings(
        provider=provider,
        model=model,
        base_url="https://api.openai.test/v1/",
        api_key="sk-test",
        request_timeout=5.0,
        max_tokens=64,
    )


def _response(content):
    message = types.SimpleNamespace(content=content)
    choice = types.SimpleNamespace(message=message, finish_reason="stop")
    return types.SimpleNamespace(choices=[choice])


def _chunk(text):
    delta = types.SimpleNamespace(content=text)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(delta=delta)])


class _StubClient:
    def __init__(self, handler):
        self.calls = []
        self.closed = False
        self.chat = types.SimpleNamespace(
            completions=types.SimpleNamespace(create=self._create)
        )
        self._handler = handler

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        return self._handler(kwargs)

    def close(self):
        self.closed = True


@pytest.fixture
def stub(monkeypatch):
    holder = {}

    def install(handler):
        client = _StubClient(handler)

        def factory(**kwargs):
            holder["kwargs"] = kwargs
            return client

        monkeypatch.setattr(openai_driver._openai, "OpenAI", factory)
        holder["client"] = client
        return holder

    return install


def test_generate_commit_message_returns_content(stub):
    holder = stub(lambda kwargs: _response("feat(core): add feature\n"))
    driver = OpenAIDriver(_settings())

    assert driver.generate_commit_message("diff") == "feat(core): add feature"
    sent = holder["client"].calls[0]
    assert sent["model"] == "gpt-test"
    assert sent["max_tokens"] == 64
    assert sent["messages"][0]["role"] == "system"
    assert sent["messages"][1] == {"role": "user", "content": "diff"}
    assert holder["kwargs"]["base_url"] == "https://api.openai.test/v1"
    assert holder["kwargs"]["api_key"] == "sk-test"


def test_gpt5_models_use_max_completion_tokens(stub):
    holder = stub(lambda kwargs: _response("feat: x"))
    OpenAIDriver(_settings(model="gpt-5-mini")).generate_commit_message("d")
    sent = holder["client"].calls[0]
    assert "max_tokens" not in sent
    assert sent["max_completion_tokens"] == 64


def test_unsupported_max_tokens_retries_with_completion_tokens(stub):
    def handler(kwargs):
        if "max_tokens" in kwargs:
            raise openai.BadRequestError(
                "Unsupported parameter: 'max_tokens'",
                response=httpx.Response(
                    400, request=httpx.Request("POST", "https://api.openai.test")
                ),
                body=None,
            )
        return _response("fix: y")

    holder = stub(handler)
    assert OpenAIDriver(_settings()).generate_commit_message("d") == "fix: y"
    assert len(holder["client"].calls) == 2
    assert holder["client"].calls[1]["max_completion_tokens"] == 64


def test_empty_content_is_malformed(stub):
    stub(lambda kwargs: _response("   "))
    with pytest.raises(MalformedResponseError):
        OpenAIDriver(_settings()).generate_commit_message("d")


def test_sdk_errors_become_transport_errors(stub):
    def handler(kwargs):
        raise openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.openai.test")
        )

    stub(handler)
    with pytest.raises(TransportError):
        OpenAIDriver(_settings()).generate_commit_message("d")


def test_stream_delivers_chunks_in_order(stub):
    def handler(kwargs):
        assert kwargs["stream"] is True
        return iter([_chunk("feat"), _chunk(None), _chunk(": add"), _chunk(" x")])

    stub(handler)
    seen = []
    text = OpenAIDriver(_settings()).stream_commit_message("d", seen.append)
    assert seen == ["feat", ": add", " x"]
    assert text == "feat: add x"


def test_cancelled_token_closes_client(stub):
    holder = stub(lambda kwargs: _response("feat: x"))
    driver = OpenAIDriver(_settings())
    driver.generate_commit_message("d")
    token = CancellationToken()
    token.cancel()
    with pytest.raises(CancelledError):
        driver.generate_commit_message("d", token)
    # Pre-cancelled calls never reach the SDK
    assert len(holder["client"].calls) == 1
    driver.close()
    assert holder["client"].closed


def test_xai_driver_reuses_openai_protocol(stub):
    holder = stub(lambda kwargs: _response("chore: bump"))
    driver = XAIDriver(_settings(model="grok-code-fast", provider="xai"))
    assert driver.provider == "xai"
    assert driver.generate_commit_message("d") == "chore: bump"
    assert holder["client"].calls[0]["model"] == "grok-code-fast"
