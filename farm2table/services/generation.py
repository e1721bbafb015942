# =============================================
# File: farm2table/services/generation.py
# Purpose: Text completion with OpenAI (timeout + retry) and tolerant JSON parsing
# =============================================
from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from loguru import logger
from openai import OpenAI  # OpenAI Python SDK v1

from ..utils.errors import ProviderError, ProviderUnavailable

DEFAULT_MODEL = os.getenv("LLM_MODEL", "gpt-3.5-turbo")
DEFAULT_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "300"))
TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_SECONDS", "4"))
MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "1"))


def _openai_client():
    return OpenAI()


class OpenAICompletionProvider:
    """
    Chat-completions backed TextCompletionProvider.

    Raises ProviderUnavailable when OPENAI_API_KEY is missing and
    ProviderError when every attempt fails or the answer is empty.
    """

    def __init__(self, model: str = DEFAULT_MODEL, timeout: float = TIMEOUT_S,
                 max_retries: int = MAX_RETRIES, client=None) -> None:
        self._model = model
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def available(self) -> bool:
        if self._client is not None:
            return True
        return bool(os.getenv("OPENAI_API_KEY"))

    def _get_client(self):
        if not self.available:
            raise ProviderUnavailable("OpenAI completions are not configured")
        if self._client is None:
            self._client = _openai_client()
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        client = self._get_client()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        text = _chat_completion_with_retry(
            client,
            messages,
            model=self._model,
            max_tokens=max_tokens or MAX_TOKENS,
            temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
            json_mode=json_mode,
            timeout=self._timeout,
            attempts=max(1, self._max_retries + 1),
        )
        if not text:
            raise ProviderError("Completion backend returned no content")
        return text


def _chat_completion_with_retry(client, messages, *, model: str, max_tokens: int, temperature: float,
                                json_mode: bool, timeout: float, attempts: int) -> str:
    """
    Try calling OpenAI up to `attempts` times with `timeout` each.
    Raises ProviderError with the last error if all attempts fail.
    """
    last_err: Exception | None = None
    kwargs: Dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    for attempt in range(attempts):
        try:
            resp = client.chat.completions.create(
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                messages=messages,
                timeout=timeout,  # SDK v1 supports per-call timeout
                **kwargs,
            )
            return (resp.choices[0].message.content or "").strip()
        except Exception as e:
            last_err = e
            logger.warning(f"[llm] attempt={attempt + 1}/{attempts} model={model} error={e}")
            continue
    raise ProviderError(f"Completion failed after {attempts} attempt(s): {last_err}")


def parse_llm_json(text: str) -> Dict[str, Any]:
    """
    Extract the JSON object from a model answer.
    Tolerant to small wrappers around the JSON (prose, code fences);
    anything unparseable is a ProviderError.
    """
    if not text:
        raise ProviderError("Empty structured answer")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ProviderError("Structured answer contains no JSON object")
    try:
        data = json.loads(text[start:end + 1])
    except ValueError as e:
        raise ProviderError(f"Structured answer is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError("Structured answer is not a JSON object")
    return data


def complete_json(provider, system_prompt: str, user_prompt: str,
                  max_tokens: Optional[int] = None, temperature: Optional[float] = None) -> Dict[str, Any]:
    text = provider.complete(system_prompt, user_prompt, max_tokens=max_tokens,
                             temperature=temperature, json_mode=True)
    return parse_llm_json(text)


def str_list(value: Any, limit: int = 10) -> List[str]:
    """Coerce a model-supplied list into clean strings."""
    if not isinstance(value, list):
        return []
    out = [str(v).strip() for v in value if str(v).strip()]
    return out[:limit]
