"""verbs.py – Language-model actions for DeepBuffer

This module exposes *verbs* – the three things the pipeline and the API ask
the language model to do:

* :pyfunc:`summarize` – turn a batch of buffered messages into a digest
  (summary text + key topics).
* :pyfunc:`draft_reply` – draft a short Slack reply in a given tone.
* :pyfunc:`answer_question` – answer a question using a digest as context.

All three are *fail-closed*: a missing API key, an upstream error, an empty
response or (for :pyfunc:`summarize`) anything that is not the expected JSON
object yields ``None``.  Callers treat ``None`` uniformly as "skip this unit of
work"; no verb raises on provider trouble.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from deepbuffer import logs as logging
from deepbuffer.connections import openai_client

__all__ = [
    "DigestResult",
    "REPLY_TONES",
    "answer_question",
    "draft_reply",
    "summarize",
]

MAX_KEY_TOPICS = 3

# Tone keyword → instruction handed to the model.
REPLY_TONES = {
    "approve": "承諾・了承する",
    "decline": "丁寧にお断りする",
    "question": "確認や質問を投げかける",
    "neutral": "中立的に受け止める",
}

_JSON_SYSTEM_PROMPT = "You are a helpful assistant that outputs JSON."
_TEXT_SYSTEM_PROMPT = "You are a helpful assistant."

_SUMMARY_RULES = [
    "「雑談」「挨拶」「システム通知」などのノイズは無視する。",
    "「緊急の依頼」「決定事項」「有益な情報の共有」のみを抽出する。",
    "全体を「全体概況」と「個別トピック」の2セクションに分けて構造化する。",
    f"特に重要なトピックを{MAX_KEY_TOPICS}つ以内で抽出し、キーワードとして列挙する。",
    "SlackのユーザーID（例: U12345）やメッセージIDは出力に含めない。代わりに表示名を使うか、IDを削除する。",
]

_SUMMARY_FORMAT = """以下のJSON形式のみを出力してください（Markdownコードブロックは含めないでください）。
{
  "summaryText": "### 全体概況\\n（全体の傾向や最重要事項を3行程度で記述）\\n\\n### 個別トピック\\n- **[カテゴリ/人名]**: 内容を簡潔に。",
  "keyTopics": ["トピック1", "トピック2"]
}"""


@dataclass(frozen=True)
class DigestResult:
    summary_text: str
    key_topics: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helper utilities (internal)
# ---------------------------------------------------------------------------


def _build_summary_prompt(messages: Sequence[str], custom_instructions: Optional[str]) -> str:
    rules = list(_SUMMARY_RULES)
    if custom_instructions and custom_instructions.strip():
        rules.append(f"【ユーザーからの追加指示】: {custom_instructions.strip()}")
    numbered_rules = "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
    content_list = "\n".join(f"- {m}" for m in messages)

    return (
        "あなたは多忙な経営者の優秀なエグゼクティブ・アシスタントです。\n"
        "以下の未読メッセージリスト（SlackやWebクリップ）を解析し、次のルールで処理してください。\n\n"
        f"【ルール】\n{numbered_rules}\n\n"
        f"【入力メッセージ】\n{content_list}\n\n"
        f"【出力フォーマット】\n{_SUMMARY_FORMAT}"
    )


def _parse_digest(text: str) -> Optional[DigestResult]:
    """Validate the model output; anything off-shape is rejected."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        logging.log_text("Summary response is not valid JSON.", severity="ERROR")
        return None

    if not isinstance(data, dict):
        logging.log_text("Summary response is not a JSON object.", severity="ERROR")
        return None

    summary_text = data.get("summaryText")
    key_topics = data.get("keyTopics", [])
    if not isinstance(summary_text, str) or not summary_text.strip():
        logging.log_text("Summary response lacks a usable 'summaryText'.", severity="ERROR")
        return None
    if not isinstance(key_topics, list) or not all(isinstance(t, str) for t in key_topics):
        logging.log_text("Summary response has a malformed 'keyTopics'.", severity="ERROR")
        return None

    return DigestResult(summary_text=summary_text, key_topics=key_topics[:MAX_KEY_TOPICS])


def _complete(system_prompt: str, prompt: str, **kwargs) -> Optional[str]:
    """Run one chat completion and return its text, or ``None`` on any failure."""
    if not openai_client.is_configured():
        logging.log_text("OpenAI API key is missing.", severity="ERROR")
        return None

    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": prompt},
    ]
    try:
        response = openai_client.chat_completion(messages, **kwargs)
    except Exception as exc:
        logging.log_text(f"OpenAI API error: {exc}", severity="ERROR")
        return None

    return openai_client.first_message_content(response)


# ---------------------------------------------------------------------------
# Public API – verbs
# ---------------------------------------------------------------------------


def summarize(
    messages: Sequence[str],
    custom_instructions: Optional[str] = None,
) -> Optional[DigestResult]:
    """Produce a two-section Japanese digest of *messages*.

    Parameters
    ----------
    messages:
        Raw message texts, oldest first.  Avoiding an empty batch is the
        caller's job.
    custom_instructions:
        Free text supplied by the user; appended as one more rule after the
        fixed rule set.

    Returns
    -------
    DigestResult | None
        ``None`` on a missing key, an API failure or an unparseable reply.
    """
    prompt = _build_summary_prompt(messages, custom_instructions)
    text = _complete(_JSON_SYSTEM_PROMPT, prompt, response_format={"type": "json_object"})
    if text is None:
        return None
    return _parse_digest(text)


def draft_reply(original_message: str, tone: str) -> Optional[str]:
    """Draft a short Japanese Slack reply to *original_message*.

    A *tone* outside :data:`REPLY_TONES` yields ``None`` like any other failure.
    """
    if tone not in REPLY_TONES:
        logging.log_text(f"Unknown reply tone {tone!r}; expected one of {sorted(REPLY_TONES)}", severity="WARNING")
        return None

    prompt = (
        "あなたは優秀なエグゼクティブ・アシスタントです。\n"
        f"以下のメッセージに対する短いSlack返信の下書きを作成してください: \"{original_message}\"\n"
        f"返信の方針は「{REPLY_TONES[tone]}」です。\n"
        "件名や署名は含めず、プロフェッショナルかつ簡潔でフレンドリーな文章にしてください。\n"
        "言語は日本語でお願いします。"
    )
    return _complete(_TEXT_SYSTEM_PROMPT, prompt)


def answer_question(summary_context: str, question: str) -> Optional[str]:
    """Answer *question* strictly from the digest in *summary_context*."""
    prompt = (
        "以下の要約レポートの内容に基づいて、ユーザーの質問に日本語で答えてください。\n"
        "要約に記載されていない情報については、「要約には情報が含まれていません」と正直に伝えてください。\n\n"
        f"【要約レポート】\n{summary_context}\n\n"
        f"【ユーザーの質問】\n{question}"
    )
    return _complete(_TEXT_SYSTEM_PROMPT, prompt)
