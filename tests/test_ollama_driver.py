import json

import httpx
import pytest

from cmtgen.exceptions import MalformedResponseError, TransportError
from cmtgen.providers.base import ClientSettings
from cmtgen.providers.ollama_driver import OllamaDriver


def _driver(handler):
    settings = ClientSettings(
        provider="ollama",
        model="llama3.2",
        base_url="http://localhost:11434",
        max_tokens=32,
    )
    return OllamaDriver(settings, transport=httpx.MockTransport(handler))


def test_generate_uses_non_streaming_endpoint():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": " docs: update readme \n"})

    assert _driver(handler).generate_commit_message("diff") == "docs: update readme"
    assert seen["path"] == "/api/generate"
    assert seen["body"]["stream"] is False
    assert seen["body"]["model"] == "llama3.2"
    assert seen["body"]["options"] == {"num_predict": 32}


def test_generate_empty_response_is_malformed():
    driver = _driver(lambda request: httpx.Response(200, json={"response": ""}))
    with pytest.raises(MalformedResponseError):
        driver.generate_commit_message("diff")


def test_generate_http_error():
    driver = _driver(lambda request: httpx.Response(404, text="model not found"))
    with pytest.raises(TransportError) as exc_info:
        driver.generate_commit_message("diff")
    assert exc_info.value.status_code == 404


def test_stream_reads_ndjson_until_done():
    lines = [
        {"response": "feat", "done": False},
        {"response": "", "done": False},
        {"response": ": add x", "done": False},
        {"response": "", "done": True},
        {"response": "ignored", "done": False},
    ]
    body = "\n".join(json.dumps(line) for line in lines).encode() + b"\n"

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body)

    seen = []
    assert _driver(handler).stream_commit_message("diff", seen.append) == "feat: add x"
    assert seen == ["feat", ": add x"]


def test_stream_error_line_raises():
    body = json.dumps({"error": "boom"}).encode() + b"\n"
    driver = _driver(lambda request: httpx.Response(200, content=body))
    with pytest.raises(TransportError, match="boom"):
        driver.stream_commit_message("diff", lambda delta: None)


def test_generate_non_object_body_is_malformed():
    driver = _driver(lambda request: httpx.Response(200, json=["feat: x"]))
    with pytest.raises(MalformedResponseError):
        driver.generate_commit_message("diff")


def test_stream_non_object_line_is_malformed():
    driver = _driver(lambda request: httpx.Response(200, content=b'"oops"\n'))
    with pytest.raises(MalformedResponseError):
        driver.stream_commit_message("diff", lambda delta: None)


def test_stream_non_object_line_falls_back_to_blocking_call():
    from cmtgen.streaming import StreamOrchestrator

    def handler(request):
        if json.loads(request.content)["stream"]:
            return httpx.Response(200, content=b'"oops"\n')
        return httpx.Response(200, json={"response": "feat: sync"})

    result = StreamOrchestrator(_driver(handler)).run("diff")
    assert result.text == "feat: sync"
    assert result.fell_back is True
