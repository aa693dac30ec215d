"""Tests for `deepbuffer.verbs`."""

from __future__ import annotations

import json

import pytest

from deepbuffer import verbs
from deepbuffer.config import get_settings
from deepbuffer.connections import openai_client


def _response(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def fake_llm(monkeypatch):
    """Configure an API key and capture every chat_completion call."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()

    state = {"calls": [], "reply": _response("{}"), "error": None}

    def _chat_completion(messages, **kwargs):
        state["calls"].append({"messages": messages, **kwargs})
        if state["error"] is not None:
            raise state["error"]
        return state["reply"]

    monkeypatch.setattr(openai_client, "chat_completion", _chat_completion)
    return state


def test_summarize_returns_digest(fake_llm):
    fake_llm["reply"] = _response(json.dumps({
        "summaryText": "### 全体概況\n本番障害の対応",
        "keyTopics": ["障害", "リリース", "採用", "予算"],
    }))

    result = verbs.summarize(["本番でエラー", "リリースは明日"])

    assert result == verbs.DigestResult(
        summary_text="### 全体概況\n本番障害の対応",
        key_topics=["障害", "リリース", "採用"],
    )
    call = fake_llm["calls"][0]
    assert call["response_format"] == {"type": "json_object"}
    prompt = call["messages"][1]["content"]
    assert "- 本番でエラー\n- リリースは明日" in prompt
    assert "追加指示" not in prompt


def test_summarize_appends_custom_instructions(fake_llm):
    fake_llm["reply"] = _response(json.dumps({"summaryText": "ok", "keyTopics": []}))

    verbs.summarize(["a"], custom_instructions="箇条書きで")

    prompt = fake_llm["calls"][0]["messages"][1]["content"]
    assert "6. 【ユーザーからの追加指示】: 箇条書きで" in prompt


def test_summarize_without_key_makes_no_call(monkeypatch):
    calls = []
    monkeypatch.setattr(openai_client, "chat_completion", lambda *a, **k: calls.append(a))

    assert verbs.summarize(["a"]) is None
    assert calls == []


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps(["a list"]),
        json.dumps({"keyTopics": []}),
        json.dumps({"summaryText": "", "keyTopics": []}),
        json.dumps({"summaryText": "ok", "keyTopics": "one"}),
        json.dumps({"summaryText": "ok", "keyTopics": [1, 2]}),
        "",
    ],
)
def test_summarize_rejects_malformed_output(fake_llm, content):
    fake_llm["reply"] = _response(content)
    assert verbs.summarize(["a"]) is None


def test_summarize_defaults_missing_key_topics(fake_llm):
    fake_llm["reply"] = _response(json.dumps({"summaryText": "ok"}))
    assert verbs.summarize(["a"]) == verbs.DigestResult(summary_text="ok", key_topics=[])


def test_summarize_upstream_error_returns_none(fake_llm):
    fake_llm["error"] = RuntimeError("boom")
    assert verbs.summarize(["a"]) is None


def test_draft_reply_uses_tone(fake_llm):
    fake_llm["reply"] = _response("承知しました。")

    assert verbs.draft_reply("明日の会議に出られますか？", "approve") == "承知しました。"

    prompt = fake_llm["calls"][0]["messages"][1]["content"]
    assert "明日の会議に出られますか？" in prompt
    assert verbs.REPLY_TONES["approve"] in prompt


def test_draft_reply_unknown_tone_returns_none(fake_llm):
    assert verbs.draft_reply("hi", "angry") is None
    assert fake_llm["calls"] == []


def test_answer_question(fake_llm):
    fake_llm["reply"] = _response("リリースは明日です。")

    answer = verbs.answer_question("### 全体概況\nリリースは明日", "リリースはいつ？")

    assert answer == "リリースは明日です。"
    prompt = fake_llm["calls"][0]["messages"][1]["content"]
    assert "リリースはいつ？" in prompt
    assert "### 全体概況" in prompt


def test_answer_question_empty_reply_returns_none(fake_llm):
    fake_llm["reply"] = _response("")
    assert verbs.answer_question("ctx", "q") is None
