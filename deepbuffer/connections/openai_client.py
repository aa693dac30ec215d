"""openai_client.py – OpenAI API Wrapper

Purpose
-------
Encapsulates all interactions with the OpenAI REST API.  Centralizing the logic
makes it easier to swap out model endpoints and keep the retry/backoff policy
in one place.

* :pyfunc:`is_configured` – whether an API key is available at all.  Callers
  check it first so that a missing credential never results in network I/O.
* :pyfunc:`chat_completion` – thin wrapper around ``/chat/completions`` with
  exponential backoff on transient errors.
* Model selection via ``OPENAI_MODEL`` (default ``"gpt-4o-mini"``).
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import openai

from deepbuffer import logs as logging
from deepbuffer.config import get_settings

__all__ = [
    "chat_completion",
    "first_message_content",
    "is_configured",
]

# Errors worth retrying; everything else (auth, bad request, …) surfaces at once.
_TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.InternalServerError,
)


def _get_api_key() -> Optional[str]:
    return get_settings().openai_api_key


def _get_model(model: Optional[str] = None) -> str:
    """Resolve the model name from *param* > settings."""
    return model or get_settings().openai_model


def is_configured() -> bool:
    return bool(_get_api_key())


def _retry(
    fn: Callable[[], Any],
    *,
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
) -> Any:
    """Retry helper with exponential back-off for transient OpenAI errors."""
    attempt = 0
    delay = initial_delay
    while True:
        try:
            return fn()
        except _TRANSIENT_ERRORS as exc:
            attempt += 1
            if attempt > max_retries:
                logging.log_text(
                    f"OpenAI request failed after {attempt} attempts",
                    severity="ERROR",
                )
                raise
            logging.log_text(
                f"OpenAI request failed ({exc.__class__.__name__}). Retrying in {delay:.1f}s (attempt {attempt}/{max_retries})…",
                severity="WARNING",
            )
            time.sleep(delay)
            delay *= backoff_factor


def chat_completion(
    messages: List[dict],
    *,
    model: Optional[str] = None,
    max_retries: int = 3,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Thin wrapper around the OpenAI *chat/completions* endpoint.

    Parameters
    ----------
    messages:
        List of chat messages following the OpenAI schema.
    model:
        Override the model name. Falls back to the ``OPENAI_MODEL`` setting.
    max_retries:
        Maximum number of automatic retries applied to transient 429/5xx and
        connection errors.
    **kwargs:
        Additional parameters forwarded verbatim to the OpenAI SDK
        (``response_format``, ``temperature`` …).

    Returns
    -------
    dict
        The raw response as a dictionary
        (``{"choices": [{"message": {"content": ...}}], ...}``).

    Raises
    ------
    RuntimeError
        When no API key is configured.
    openai.OpenAIError
        When the request ultimately fails.
    """
    api_key = _get_api_key()
    if not api_key:
        raise RuntimeError("OpenAI API key is not configured")

    payload: Dict[str, Any] = {
        "model": _get_model(model),
        "messages": messages,
        **kwargs,
    }

    def _dispatch() -> Dict[str, Any]:
        client = openai.OpenAI(api_key=api_key, max_retries=0)
        resp = client.chat.completions.create(**payload)
        if hasattr(resp, "model_dump"):
            return resp.model_dump()
        return resp

    return _retry(_dispatch, max_retries=max_retries)


def first_message_content(response: Any) -> Optional[str]:
    """Return ``choices[0].message.content`` or ``None`` for any other shape."""
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        logging.log_text("Unexpected LLM response schema.", severity="WARNING")
        return None
    return content if isinstance(content, str) and content.strip() else None
