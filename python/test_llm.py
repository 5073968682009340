"""
Tests for the proposal client's retry policy, using a fake Messages API.
"""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from bidfill.config import Settings
from bidfill.errors import ProposalError
from bidfill.llm import AnthropicProposalClient, backoff_delay, is_retryable

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status):
    return cls(f"HTTP {status}", response=httpx.Response(status, request=_REQUEST), body=None)


def _message(text):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
        model="claude-test",
        stop_reason="end_turn",
    )


class FakeMessages:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _client(results, **overrides):
    settings = Settings(_env_file=None, anthropic_api_key="test-key", **overrides)
    messages = FakeMessages(results)
    sleeps = []
    client = AnthropicProposalClient(settings, client=SimpleNamespace(messages=messages), sleep=sleeps.append)
    return client, messages, sleeps


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


def test_rate_limit_is_retried():
    client, messages, sleeps = _client([_status_error(anthropic.RateLimitError, 429), _message("[]")])

    response = client.propose("system", "user", 0.1)

    assert response.content == "[]"
    assert response.input_tokens == 120
    assert len(messages.calls) == 2
    assert sleeps == [2.0]


def test_bad_request_is_not_retried():
    client, messages, sleeps = _client([_status_error(anthropic.BadRequestError, 400)])

    with pytest.raises(ProposalError):
        client.propose("system", "user", 0.1)
    assert len(messages.calls) == 1
    assert sleeps == []


def test_retries_are_bounded():
    errors = [_status_error(anthropic.InternalServerError, 500) for _ in range(3)]
    client, messages, sleeps = _client(errors, max_retries=2)

    with pytest.raises(ProposalError):
        client.propose("system", "user", 0.1)
    assert len(messages.calls) == 3
    assert sleeps == [2.0, 4.0]


def test_request_uses_settings_and_temperature():
    client, messages, _ = _client([_message("[]")], model="claude-x", max_tokens=500)
    client.propose("system prompt", "user prompt", 0.0)

    call = messages.calls[0]
    assert call["model"] == "claude-x"
    assert call["max_tokens"] == 500
    assert call["temperature"] == 0.0
    assert call["system"] == "system prompt"
    assert call["messages"] == [{"role": "user", "content": "user prompt"}]


def test_text_blocks_are_joined():
    message = _message("[")
    message.content.append(SimpleNamespace(type="thinking", thinking="..."))
    message.content.append(SimpleNamespace(type="text", text="]"))
    client, _, _ = _client([message])
    assert client.propose("s", "u", 0.1).content == "[]"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 2.0, 30.0) == 2.0
    assert backoff_delay(3, 2.0, 30.0) == 16.0
    assert backoff_delay(5, 2.0, 30.0) == 30.0


def test_is_retryable():
    assert is_retryable(_status_error(anthropic.RateLimitError, 429))
    assert is_retryable(_status_error(anthropic.InternalServerError, 503))
    assert is_retryable(anthropic.APIConnectionError(request=_REQUEST))
    assert not is_retryable(_status_error(anthropic.AuthenticationError, 401))
    assert not is_retryable(_status_error(anthropic.NotFoundError, 404))


def test_missing_api_key():
    with pytest.raises(ValueError):
        AnthropicProposalClient(Settings(_env_file=None, anthropic_api_key=""))
