from __future__ import annotations

import json

import httpx
import pytest

from autotriage.errors import CompletionError
from autotriage.llm.completion_client import ChatCompletionClient, OfflineCompletionClient, build_completion_service
from autotriage.settings import Settings


class _FakeResp:
    def __init__(self, status_code: int, payload: object):
        self.status_code = status_code
        self._payload = payload
        self.text = "x"

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def _fake_client_factory(responses: list, seen: list):
    class _FakeClient:
        def __init__(self, *args, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def post(self, url, headers=None, json=None):
            seen.append({"url": url, "headers": headers, "json": json})
            r = responses.pop(0)
            if isinstance(r, Exception):
                raise r
            return r

    return _FakeClient


def test_complete_json_sends_json_directive_and_returns_content(monkeypatch):
    seen: list = []
    monkeypatch.setattr(httpx, "Client", _fake_client_factory([_FakeResp(200, {"choices": [{"message": {"content": "{}"}}]})], seen))
    c = ChatCompletionClient(api_key="k", model="m", base_url="https://llm.example/v1/")
    assert c.complete_json(system="s", user="u") == "{}"

    req = seen[0]
    assert req["url"] == "https://llm.example/v1/chat/completions"
    assert req["headers"]["Authorization"] == "Bearer k"
    assert req["json"]["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in req["json"]["messages"]] == ["system", "user"]


def test_non_2xx_is_a_hard_failure(monkeypatch):
    seen: list = []
    monkeypatch.setattr(httpx, "Client", _fake_client_factory([_FakeResp(429, {})], seen))
    with pytest.raises(CompletionError, match="completion_http_429"):
        ChatCompletionClient(api_key="k", model="m").complete_json(system="s", user="u")
    assert len(seen) == 1


def test_transient_error_is_retried(monkeypatch):
    seen: list = []
    responses = [httpx.ConnectError("reset"), _FakeResp(200, {"choices": [{"message": {"content": "ok"}}]})]
    monkeypatch.setattr(httpx, "Client", _fake_client_factory(responses, seen))
    c = ChatCompletionClient(api_key="k", model="m", retry_backoff_s=0.0)
    assert c.complete_json(system="s", user="u") == "ok"
    assert len(seen) == 2


def test_transient_errors_exhaust_retries(monkeypatch):
    seen: list = []
    responses = [httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")]
    monkeypatch.setattr(httpx, "Client", _fake_client_factory(responses, seen))
    with pytest.raises(CompletionError, match="after 2 attempts"):
        ChatCompletionClient(api_key="k", model="m", max_retries=2, retry_backoff_s=0.0).complete_json(system="s", user="u")


def test_malformed_envelope_raises(monkeypatch):
    seen: list = []
    monkeypatch.setattr(httpx, "Client", _fake_client_factory([_FakeResp(200, {"choices": []})], seen))
    with pytest.raises(CompletionError, match="parse_error"):
        ChatCompletionClient(api_key="k", model="m").complete_json(system="s", user="u")


def test_offline_provider_returns_non_actionable_json() -> None:
    svc = build_completion_service(Settings(llm_provider="off"))
    assert isinstance(svc, OfflineCompletionClient)
    data = json.loads(svc.complete_json(system="s", user="u"))
    assert data["actionable"] is False


def test_provider_base_url_resolution() -> None:
    svc = build_completion_service(Settings(llm_provider="groq", llm_api_key="k", llm_model="llama"))
    assert isinstance(svc, ChatCompletionClient)
    assert svc.base_url == "https://api.groq.com/openai/v1"
    with pytest.raises(ValueError):
        build_completion_service(Settings(llm_provider="openai"))
