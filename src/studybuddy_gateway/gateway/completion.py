"""Gemini generateContent client.

One call per invocation, no retries here; failures surface as ProviderError.
The API key travels in the ``x-goog-api-key`` header so it never shows up in
URLs, exception messages or logs.
"""
from __future__ import annotations
import logging
import time
from typing import Any

import httpx

from studybuddy_gateway.common.config import DEFAULT_API_BASE_URL
from studybuddy_gateway.common.errors import ProviderError
from studybuddy_gateway.common.schema import Completion, Credential, ResponseShape

LOGGER = logging.getLogger("studybuddy.gateway.completion")


def build_payload(prompt: str, generation: dict[str, Any] | None = None) -> dict[str, Any]:
    """Single-turn request body: one user message holding the whole prompt."""
    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
    }
    if generation:
        payload["generationConfig"] = dict(generation)
    return payload


def normalize_response(data: Any) -> Completion:
    """
    Reduce a generateContent payload to plain text.

    Order: first candidate's ``content.parts`` joined by newlines, else its
    ``content.text``, else the "No response generated" sentinel.
    """
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return Completion.empty()

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    content = candidate.get("content")
    if not isinstance(content, dict):
        return Completion.empty()

    parts = content.get("parts")
    if isinstance(parts, list):
        text = "\n".join(
            str(p.get("text") or "") if isinstance(p, dict) else "" for p in parts
        ).strip()
        shape = ResponseShape.PARTS
    elif content.get("text"):
        text = str(content["text"]).strip()
        shape = ResponseShape.TEXT
    else:
        return Completion.empty()

    if not text:
        return Completion.empty()
    return Completion(text=text, shape=shape)


def _error_message(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.reason_phrase or "error"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("status") or "error")
    return r.reason_phrase or "error"


class CompletionClient:
    """
    Issue generateContent requests with a given credential.

    Args:
        base_url: API root, e.g. https://generativelanguage.googleapis.com.
        timeout: Seconds allowed per request.
        generation: Optional generationConfig sent with every request.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        generation: dict[str, Any] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.generation = dict(generation or {})

    def endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent"

    def complete(self, model: str, prompt: str, credential: Credential) -> Completion:
        url = self.endpoint(model)
        headers = {"x-goog-api-key": credential.key, "Content-Type": "application/json"}
        payload = build_payload(prompt, self.generation)

        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(url, headers=headers, json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(f"HTTP {status}: {_error_message(e.response)}", status=status) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderError("Malformed generation response") from e
        except Exception as e:
            raise ProviderError(f"Unexpected generation failure: {type(e).__name__}: {e}") from e

        latency = int((time.time() - start) * 1000)
        LOGGER.debug("Raw generation result (key #%s, %sms): %s", credential.slot, latency, data)
        completion = normalize_response(data)
        if completion.shape is ResponseShape.EMPTY:
            LOGGER.warning("Generation returned no text (model=%s, key #%s)", model, credential.slot)
        return completion
