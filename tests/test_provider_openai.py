from __future__ import annotations

import json

import httpx
import pytest

import ul_core.llm.policy as policy_module
from ul_core.llm.policy import set_secret
from ul_core.llm.provider_openai import OpenAIKeyMissingError, OpenAIProvider, OpenAIProviderError


class _FakeKeyring:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], str] = {}

    def set_password(self, service: str, name: str, value: str) -> None:
        self._store[(service, name)] = value

    def get_password(self, service: str, name: str) -> str | None:
        return self._store.get((service, name))

    def delete_password(self, service: str, name: str) -> None:
        self._store.pop((service, name), None)


@pytest.fixture
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> _FakeKeyring:
    fake = _FakeKeyring()
    monkeypatch.setattr(policy_module, "keyring", fake)
    return fake


def _provider(handler) -> OpenAIProvider:
    return OpenAIProvider(model="gpt-test", transport=httpx.MockTransport(handler))


def test_translator_requests_json_object_replies(fake_keyring: _FakeKeyring) -> None:
    set_secret("openai_api_key", "sk-test")
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": ' {"a": "b"} '}}]})

    reply = _provider(handler).generate(task="translator", prompt="hi", temperature=0.2, max_tokens=50)

    assert reply == '{"a": "b"}'
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["model"] == "gpt-test"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][-1] == {"role": "user", "content": "hi"}


def test_missing_key_is_reported(fake_keyring: _FakeKeyring) -> None:
    provider = _provider(lambda request: httpx.Response(200))

    with pytest.raises(OpenAIKeyMissingError, match="set-secret"):
        provider.generate(task="translator", prompt="hi", temperature=0.2, max_tokens=50)


def test_http_errors_and_bad_payloads(fake_keyring: _FakeKeyring) -> None:
    set_secret("openai_api_key", "sk-test")

    failing = _provider(lambda request: httpx.Response(429, text="rate limited"))
    with pytest.raises(OpenAIProviderError, match="HTTP 429: rate limited"):
        failing.generate(task="translator", prompt="hi", temperature=0.2, max_tokens=50)

    malformed = _provider(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(OpenAIProviderError, match="parsing failed"):
        malformed.generate(task="translator", prompt="hi", temperature=0.2, max_tokens=50)

    empty = _provider(lambda request: httpx.Response(200, json={"choices": [{"message": {"content": " "}}]}))
    with pytest.raises(OpenAIProviderError, match="did not include text"):
        empty.generate(task="translator", prompt="hi", temperature=0.2, max_tokens=50)
