"""Tests for `deepbuffer.connections.openai_client`."""

from __future__ import annotations

import httpx
import openai
import pytest

from deepbuffer.config import get_settings
from deepbuffer.connections import openai_client


def make_openai_factory(create_func, instances=None):
    """Return a factory emulating openai.OpenAI with custom create()."""

    class _FakeCompletions:  # noqa: D101
        def __init__(self, creator):
            self._creator = creator

        def create(self, **payload):  # noqa: D401
            return self._creator(**payload)

    class _FakeChat:  # noqa: D101
        def __init__(self, creator):
            self.completions = _FakeCompletions(creator)

    class _FakeClient:  # noqa: D101
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.chat = _FakeChat(create_func)
            if instances is not None:
                instances.append(self)

    return _FakeClient


def _patch_openai(monkeypatch, create_impl, instances=None):
    """Replace openai.OpenAI with a factory that uses *create_impl*."""
    monkeypatch.setattr(openai, "OpenAI", make_openai_factory(create_impl, instances))


def _rate_limit_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(429, request=request)
    return openai.RateLimitError("Too many requests", response=response, body=None)


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()


# ------------------------- private helper tests ----------------------------


def test_get_model_hierarchy(monkeypatch):
    # param wins
    assert openai_client._get_model("foo") == "foo"
    # setting next
    monkeypatch.setenv("OPENAI_MODEL", "bar")
    get_settings.cache_clear()
    assert openai_client._get_model(None) == "bar"
    # fallback default
    monkeypatch.delenv("OPENAI_MODEL", raising=False)
    get_settings.cache_clear()
    assert openai_client._get_model(None) == "gpt-4o-mini"


def test_is_configured_follows_api_key(monkeypatch):
    assert openai_client.is_configured() is False
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()
    assert openai_client.is_configured() is True


def test_first_message_content():
    response = {"choices": [{"message": {"content": "hi"}}]}
    assert openai_client.first_message_content(response) == "hi"
    assert openai_client.first_message_content({"choices": []}) is None
    assert openai_client.first_message_content({"choices": [{"message": {"content": "  "}}]}) is None
    assert openai_client.first_message_content(None) is None


# ------------------------- chat_completion tests --------------------------


def test_chat_completion_without_key_raises(monkeypatch):
    calls = []
    _patch_openai(monkeypatch, lambda **p: calls.append(p))
    with pytest.raises(RuntimeError):
        openai_client.chat_completion([{"role": "user", "content": "hi"}])
    assert calls == []


def test_chat_completion_basic(monkeypatch, api_key):
    calls = []
    instances = []

    def _create(**payload):
        calls.append(payload)
        return {"resp": "ok"}

    _patch_openai(monkeypatch, _create, instances)
    res = openai_client.chat_completion(
        [{"role": "user", "content": "hi"}],
        response_format={"type": "json_object"},
    )
    assert res == {"resp": "ok"}
    assert len(calls) == 1
    assert calls[0]["model"] == "gpt-4o-mini"
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert instances[0].kwargs == {"api_key": "sk-test", "max_retries": 0}


def test_chat_completion_retry(monkeypatch, api_key):
    attempts = {"n": 0}
    delays = []

    def _create(**payload):
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise _rate_limit_error()
        return {"ok": True}

    _patch_openai(monkeypatch, _create)
    # Patch time.sleep to avoid real waits
    monkeypatch.setattr(openai_client.time, "sleep", delays.append)
    result = openai_client.chat_completion([{"role": "user", "content": "hi"}], max_retries=5)
    assert result == {"ok": True}
    assert attempts["n"] == 3  # two failures + final success
    assert delays == [1.0, 2.0]


def test_chat_completion_gives_up_after_max_retries(monkeypatch, api_key):
    attempts = {"n": 0}

    def _create(**payload):
        attempts["n"] += 1
        raise _rate_limit_error()

    _patch_openai(monkeypatch, _create)
    monkeypatch.setattr(openai_client.time, "sleep", lambda *_: None)
    with pytest.raises(openai.RateLimitError):
        openai_client.chat_completion([{"role": "user", "content": "hi"}], max_retries=2)
    assert attempts["n"] == 3


def test_chat_completion_does_not_retry_other_errors(monkeypatch, api_key):
    attempts = {"n": 0}

    def _create(**payload):
        attempts["n"] += 1
        raise ValueError("bad payload")

    _patch_openai(monkeypatch, _create)
    with pytest.raises(ValueError):
        openai_client.chat_completion([{"role": "user", "content": "hi"}])
    assert attempts["n"] == 1
