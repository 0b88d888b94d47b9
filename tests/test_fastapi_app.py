from __future__ import annotations

from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

import studybuddy_gateway.gateway.completion as completion_mod
import studybuddy_gateway.serve.fastapi_app as app_mod
from studybuddy_gateway.common.config import Settings, allowed_origin
from studybuddy_gateway.common.errors import ProviderError
from studybuddy_gateway.common.schema import Credential
from studybuddy_gateway.gateway.completion import CompletionClient
from studybuddy_gateway.gateway.dispatch import RetryOrchestrator, RotatingDispatcher
from studybuddy_gateway.gateway.identity import IdentityVerifier
from studybuddy_gateway.gateway.rotation import CredentialRotator

POOL = (Credential(1, "key-one"), Credential(2, "key-two"), Credential(3, "key-three"))
AUTH = {"Authorization": "Bearer good-token"}


class _FakeResponse:
    def __init__(self, json_data: dict[str, Any], status_code: int = 200) -> None:
        self._json = json_data
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://example.test")
            response = httpx.Response(self.status_code, json=self._json, request=request)
            raise httpx.HTTPStatusError("upstream error", request=request, response=response)

    def json(self) -> dict[str, Any]:
        return self._json


class _FakeClient:
    """Stands in for httpx.Client; answers per API key."""

    calls: list[str] = []
    failing_keys: set[str] = set()
    text = "A BST is..."

    def __init__(self, timeout: float | int | None = None) -> None:  # signature-compatible
        self.timeout = timeout

    def __enter__(self) -> "_FakeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        return None

    def post(self, url: str, headers: dict[str, str] | None = None, json: dict[str, Any] | None = None) -> _FakeResponse:  # noqa: A002
        key = (headers or {}).get("x-goog-api-key", "")
        type(self).calls.append(key)
        if key in type(self).failing_keys:
            return _FakeResponse({"error": {"code": 429, "message": "Quota exceeded"}}, status_code=429)
        data = {"candidates": [{"content": {"role": "model", "parts": [{"text": type(self).text}]}}]}
        return _FakeResponse(data)


class _FakeVerifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.tokens: list[str] = []

    def __call__(self, token: str) -> dict[str, Any]:
        self.tokens.append(token)
        if self.fail:
            raise ValueError("Token expired")
        return {"uid": "student-1", "email": "s@example.com"}


@pytest.fixture()
def fake_http(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    _FakeClient.calls = []
    _FakeClient.failing_keys = set()
    _FakeClient.text = "A BST is..."
    monkeypatch.setattr(completion_mod.httpx, "Client", _FakeClient)
    return _FakeClient


@pytest.fixture()
def token_verifier() -> _FakeVerifier:
    return _FakeVerifier()


def _client(verifier: _FakeVerifier, dispatcher: Any) -> TestClient:
    settings = Settings(credentials=POOL)
    app_mod.app.dependency_overrides[app_mod.get_settings] = lambda: settings
    app_mod.app.dependency_overrides[app_mod.get_verifier] = lambda: IdentityVerifier(verifier)
    app_mod.app.dependency_overrides[app_mod.get_dispatcher] = lambda: dispatcher
    return TestClient(app_mod.app)


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app_mod.app.dependency_overrides.clear()


def _rotating() -> RotatingDispatcher:
    return RotatingDispatcher(CredentialRotator(POOL), CompletionClient(), "gemini-2.5-flash")


def _fallback() -> RetryOrchestrator:
    return RetryOrchestrator(POOL, CompletionClient(), "gemini-2.5-flash")


def test_health_ok(token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data == {"status": "ok", "model": "gemini-2.5-flash", "rotation": "batched"}


def test_ask_returns_generated_text(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json={"question": "What is a binary search tree?"}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"response": "A BST is..."}
    assert token_verifier.tokens == ["good-token"]
    assert fake_http.calls == ["key-one"]


@pytest.mark.parametrize(
    "body",
    [{}, {"question": ""}, {"question": 42}, {"q": "What is a heap?"}, ["What is a heap?"]],
)
def test_ask_without_question_is_400(fake_http: type[_FakeClient], token_verifier: _FakeVerifier, body: Any) -> None:
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json=body, headers=AUTH)
    assert r.status_code == 400
    assert r.json() == {"error": "Question required"}
    assert fake_http.calls == []


def test_ask_with_non_json_body_is_400(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", content=b"not json", headers={**AUTH, "Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "Question required"}
    assert fake_http.calls == []


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Token abc"}, {"Authorization": "bearer abc"}])
def test_ask_without_bearer_token_is_401(fake_http: type[_FakeClient], token_verifier: _FakeVerifier, headers: dict[str, str]) -> None:
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json={"question": "What is a stack?"}, headers=headers)
    assert r.status_code == 401
    assert r.json() == {"error": "No token provided"}
    assert token_verifier.tokens == []
    assert fake_http.calls == []


def test_missing_token_wins_over_missing_question(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json={})
    assert r.status_code == 401
    assert r.json() == {"error": "No token provided"}


def test_rejected_token_is_401_and_skips_generation(fake_http: type[_FakeClient]) -> None:
    verifier = _FakeVerifier(fail=True)
    client = _client(verifier, _rotating())
    r = client.post("/ask", json={"question": "What is a queue?"}, headers={"Authorization": "Bearer expired"})
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
    assert verifier.tokens == ["expired"]
    assert fake_http.calls == []


def test_provider_failure_is_500_without_leaking_details(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    fake_http.failing_keys = {"key-one"}
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json={"question": "What is a graph?"}, headers=AUTH)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate response"}
    assert "Quota" not in r.text
    assert "key-one" not in r.text


def test_fallback_exhausted_is_500(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    fake_http.failing_keys = {"key-one", "key-two", "key-three"}
    client = _client(token_verifier, _fallback())
    r = client.post("/ask", json={"question": "What is a trie?"}, headers=AUTH)
    assert r.status_code == 500
    assert r.json() == {"error": "All AI providers failed to generate a response"}
    assert fake_http.calls == ["key-one", "key-two", "key-three"]


def test_fallback_uses_first_working_key(fake_http: type[_FakeClient], token_verifier: _FakeVerifier) -> None:
    fake_http.failing_keys = {"key-one"}
    fake_http.text = "Use a min-heap."
    client = _client(token_verifier, _fallback())
    r = client.post("/ask", json={"question": "Top-k elements?"}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"response": "Use a min-heap."}
    assert fake_http.calls == ["key-one", "key-two"]


def test_prompt_carries_rules_and_question(token_verifier: _FakeVerifier) -> None:
    prompts: list[str] = []

    class _RecordingDispatcher:
        policy = "batched"

        def generate(self, prompt: str) -> str:
            prompts.append(prompt)
            return "ok"

    client = _client(token_verifier, _RecordingDispatcher())
    r = client.post("/ask", json={"question": "What is polymorphism?"}, headers=AUTH)
    assert r.status_code == 200
    assert prompts[0].startswith("You are Study Buddy")
    assert prompts[0].endswith("The question is :\nWhat is polymorphism?")


def test_dispatcher_provider_error_maps_to_500(token_verifier: _FakeVerifier) -> None:
    class _BrokenDispatcher:
        policy = "batched"

        def generate(self, prompt: str) -> str:
            raise ProviderError("HTTP 400: API key not valid")

    client = _client(token_verifier, _BrokenDispatcher())
    r = client.post("/ask", json={"question": "What is recursion?"}, headers=AUTH)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate response"}


def test_fallback_skips_key_with_unexpected_client_error(
    fake_http: type[_FakeClient], token_verifier: _FakeVerifier, monkeypatch: pytest.MonkeyPatch
) -> None:
    original_post = _FakeClient.post

    def _post(self: _FakeClient, url: str, headers: dict[str, str] | None = None, json: dict[str, Any] | None = None) -> _FakeResponse:  # noqa: A002
        if (headers or {}).get("x-goog-api-key") == "key-one":
            type(self).calls.append("key-one")
            raise RuntimeError("connection pool closed")
        return original_post(self, url, headers=headers, json=json)

    monkeypatch.setattr(_FakeClient, "post", _post)
    client = _client(token_verifier, _fallback())
    r = client.post("/ask", json={"question": "What is a linked list?"}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"response": "A BST is..."}
    assert fake_http.calls == ["key-one", "key-two"]


def test_unexpected_client_error_is_json_500(
    fake_http: type[_FakeClient], token_verifier: _FakeVerifier, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _post(self: _FakeClient, url: str, headers: dict[str, str] | None = None, json: dict[str, Any] | None = None) -> _FakeResponse:  # noqa: A002
        raise httpx.InvalidURL("bad url")

    monkeypatch.setattr(_FakeClient, "post", _post)
    client = _client(token_verifier, _rotating())
    r = client.post("/ask", json={"question": "What is a deque?"}, headers=AUTH)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate response"}


def test_cors_preflight_allows_configured_origin(token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.options(
        "/ask",
        headers={
            "Origin": app_mod.CORS_ORIGIN,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        },
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == app_mod.CORS_ORIGIN


def test_cors_preflight_rejects_other_origins(token_verifier: _FakeVerifier) -> None:
    client = _client(token_verifier, _rotating())
    r = client.options(
        "/ask",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 400
    assert r.headers.get("access-control-allow-origin") != "https://evil.example"


def test_cors_origin_comes_from_configuration() -> None:
    assert app_mod.CORS_ORIGIN == allowed_origin()
