import io
import json

import pytest
import requests

import agent.llm as llm
from agent.config import DEFAULT_CFG
from agent.errors import CompletionError


class _Response:
    def __init__(self, status_code=200, lines=(), text=""):
        self.status_code = status_code
        self._lines = list(lines)
        self.text = text
        self.closed = False

    def iter_lines(self, decode_unicode=False):
        yield from self._lines

    def close(self):
        self.closed = True


def _sse(*events):
    return [f"data: {json.dumps(e)}" for e in events] + ["data: [DONE]"]


@pytest.fixture
def posted(monkeypatch):
    calls = []
    queue = []

    def fake_post(url, headers=None, json=None, stream=False, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json})
        r = queue.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(llm.requests, "post", fake_post)
    monkeypatch.setattr(llm.time, "sleep", lambda s: None)
    return calls, queue


@pytest.mark.parametrize("model_id,expected", [
    ("anthropic/claude-3-5-sonnet-20240620", "anthropic"),
    ("claude-3-haiku", "anthropic"),
    ("gpt-4o", "openai"),
    ("groq/llama3-70b", "groq"),
    ("gemini-1.5-pro", "google"),
    ("moonshotai/kimi-k2-instruct", "openai"),
    ("", "openai"),
])
def test_resolve_provider_name(model_id, expected):
    assert llm.resolve_provider_name(model_id) == expected


def test_model_name_strips_known_provider_prefix():
    assert llm.model_name("anthropic/claude-3") == "claude-3"
    assert llm.model_name("moonshotai/kimi-k2") == "moonshotai/kimi-k2"


def test_select_provider_uses_presets():
    cfg = dict(DEFAULT_CFG, api_key="sk-test")
    p = llm.select_provider("gpt-4o", cfg)
    assert isinstance(p, llm.OpenAICompatProvider)
    assert p.base_url == "https://api.openai.com/v1"
    assert p.api_key == "sk-test"
    a = llm.select_provider("anthropic/claude-3-5-sonnet-20240620", cfg)
    assert isinstance(a, llm.AnthropicProvider)
    assert a.base_url == "https://api.anthropic.com"


def test_default_model():
    assert llm.default_model(DEFAULT_CFG) == "openai/gpt-4o-mini"


def test_model_info_follows_the_model_id():
    assert llm.get_model_info(None, DEFAULT_CFG) == {
        "provider": "openai", "model": "gpt-4o-mini", "base_url": "https://api.openai.com/v1",
    }
    info = llm.get_model_info("anthropic/claude-3-5-sonnet-20240620", DEFAULT_CFG)
    assert info["provider"] == "anthropic"
    assert info["model"] == "claude-3-5-sonnet-20240620"
    assert info["base_url"] == "https://api.anthropic.com"


def test_extract_json_from_fenced_text():
    assert json.loads(llm.extract_json('```json\n{"a": 1}\n```')) == {"a": 1}
    assert json.loads(llm.extract_json('Sure! {"a": {"b": 2}} hope that helps')) == {"a": {"b": 2}}


def test_openai_stream(posted):
    calls, queue = posted
    queue.append(_Response(lines=[": keep-alive", "data: not-json", ""] + _sse(
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}, "finish_reason": "length"}]},
    )))
    provider = llm.OpenAICompatProvider("openai", "https://api.openai.com/v1", api_key="k")
    stream = provider.stream_completion("hi", "openai/gpt-4o", 100)
    assert list(stream) == ["Hel", "lo"]
    assert stream.finish_reason == "length"
    assert calls[0]["url"] == "https://api.openai.com/v1/chat/completions"
    assert calls[0]["json"]["model"] == "gpt-4o"
    assert calls[0]["json"]["stream"] is True
    assert calls[0]["headers"]["Authorization"] == "Bearer k"


def test_anthropic_stream_maps_max_tokens_to_length(posted):
    calls, queue = posted
    queue.append(_Response(lines=_sse(
        {"type": "message_start"},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "<file"}},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": " path"}},
        {"type": "message_delta", "delta": {"stop_reason": "max_tokens"}},
    )))
    provider = llm.AnthropicProvider(api_key="k")
    text, reason = llm.complete(provider, "hi", "anthropic/claude-3", max_tokens=10)
    assert (text, reason) == ("<file path", "length")
    assert calls[0]["url"] == "https://api.anthropic.com/v1/messages"
    assert calls[0]["headers"]["x-api-key"] == "k"
    assert calls[0]["json"]["model"] == "claude-3"


def test_anthropic_requires_key():
    with pytest.raises(CompletionError):
        llm.AnthropicProvider(api_key="").stream_completion("hi", "claude-3", 10)


def test_retries_server_errors_then_succeeds(posted):
    calls, queue = posted
    queue.extend([
        requests.ConnectionError("refused"),
        _Response(status_code=503),
        _Response(lines=_sse({"choices": [{"delta": {"content": "ok"}, "finish_reason": "stop"}]})),
    ])
    provider = llm.OpenAICompatProvider("local", "http://127.0.0.1:8080/v1", retries=2)
    assert llm.complete(provider, "hi", "local") == ("ok", "stop")
    assert len(calls) == 3


def test_gives_up_after_retries(posted):
    _, queue = posted
    queue.extend([_Response(status_code=500), _Response(status_code=500)])
    provider = llm.OpenAICompatProvider("local", "http://127.0.0.1:8080/v1", retries=1)
    with pytest.raises(CompletionError, match="unreachable after 2 attempts"):
        provider.stream_completion("hi", "local", 10)


@pytest.mark.parametrize("status", [404, 401])
def test_client_errors_are_not_retried(posted, status):
    calls, queue = posted
    queue.append(_Response(status_code=status, text="nope"))
    provider = llm.OpenAICompatProvider("local", "http://127.0.0.1:8080/v1")
    with pytest.raises(CompletionError):
        provider.stream_completion("hi", "local", 10)
    assert len(calls) == 1


def test_stream_error_event_raises(posted):
    _, queue = posted
    queue.append(_Response(lines=_sse({"error": {"message": "overloaded"}})))
    provider = llm.OpenAICompatProvider("groq", "https://api.groq.com/openai/v1")
    with pytest.raises(CompletionError, match="overloaded"):
        llm.complete(provider, "hi", "groq/llama3")


def test_from_chunks_stream():
    stream = llm.CompletionStream.from_chunks(["a", "b"], finish_reason="length")
    assert stream.finish_reason is None
    assert "".join(stream) == "ab"
    assert stream.finish_reason == "length"
    assert list(stream) == []


def _raw_response(body: bytes, content_type="text/event-stream"):
    r = requests.Response()
    r.status_code = 200
    r.headers["Content-Type"] = content_type
    r.raw = io.BytesIO(body)
    return r


@pytest.mark.parametrize("content_type", ["text/event-stream", "text/event-stream; charset=utf-8"])
def test_stream_decodes_utf8_content(posted, content_type):
    _, queue = posted
    lines = _sse(
        {"choices": [{"delta": {"content": "<h1>Café ©</h1>"}}]},
        {"choices": [{"delta": {"content": " İstanbul ✂"}, "finish_reason": "stop"}]},
    )
    body = "\n".join(
        "data: " + json.dumps(json.loads(l[6:]), ensure_ascii=False) if l != "data: [DONE]" else l
        for l in lines
    ) + "\n"
    queue.append(_raw_response(body.encode("utf-8"), content_type))
    stream = llm.OpenAICompatProvider("ollama", "http://localhost:11434/v1").stream_completion("hi", "llama3", 50)
    assert "".join(stream) == "<h1>Café ©</h1> İstanbul ✂"
    assert stream.finish_reason == "stop"
