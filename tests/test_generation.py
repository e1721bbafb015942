# =============================================
# File: tests/test_generation.py
# Purpose: OpenAI provider contract (availability, retries, json mode) and
#          tolerant JSON parsing of model answers
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from types import SimpleNamespace

import pytest

from farm2table.services import generation as gen
from farm2table.utils.errors import ProviderError, ProviderUnavailable


class FakeClient:
    """Mimics client.chat.completions.create; pops one outcome per call."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))])


def test_unavailable_without_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = gen.OpenAICompletionProvider()
    assert provider.available is False
    with pytest.raises(ProviderUnavailable):
        provider.complete("system", "user")


def test_retry_then_success():
    client = FakeClient([TimeoutError("slow"), "  Fresh carrots.  "])
    provider = gen.OpenAICompletionProvider(model="gpt-test", max_retries=1, client=client)
    assert provider.complete("system", "user", max_tokens=50) == "Fresh carrots."
    assert len(client.calls) == 2
    assert client.calls[0]["model"] == "gpt-test"
    assert client.calls[0]["max_tokens"] == 50
    assert client.calls[0]["messages"][0] == {"role": "system", "content": "system"}


def test_all_attempts_fail():
    client = FakeClient([TimeoutError("slow"), TimeoutError("still slow")])
    provider = gen.OpenAICompletionProvider(max_retries=1, client=client)
    with pytest.raises(ProviderError) as e:
        provider.complete("system", "user")
    assert "2 attempt" in str(e.value)


def test_empty_answer_is_an_error():
    provider = gen.OpenAICompletionProvider(max_retries=0, client=FakeClient([""]))
    with pytest.raises(ProviderError):
        provider.complete("system", "user")


def test_json_mode_requests_json_object():
    client = FakeClient(['{"trend": "up"}'])
    provider = gen.OpenAICompletionProvider(max_retries=0, client=client)
    assert gen.complete_json(provider, "system", "user") == {"trend": "up"}
    assert client.calls[0]["response_format"] == {"type": "json_object"}


def test_parse_llm_json_tolerates_wrappers():
    fenced = 'Here you go:\n```json\n{"summary": "ok", "key_trends": ["a"]}\n```'
    assert gen.parse_llm_json(fenced) == {"summary": "ok", "key_trends": ["a"]}


@pytest.mark.parametrize("text", ["", "no json here", "{broken: json", "[1, 2, 3]", "{\"a\": 1"])
def test_parse_llm_json_rejects_garbage(text):
    with pytest.raises(ProviderError):
        gen.parse_llm_json(text)


def test_str_list_cleans_and_limits():
    assert gen.str_list(["  a ", "", 3, "b"], limit=2) == ["a", "3"]
    assert gen.str_list("not a list") == []
