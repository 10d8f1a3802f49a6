from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

import httpx

from autotriage.errors import CompletionError
from autotriage.settings import Settings


logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    def complete_json(self, *, system: str, user: str) -> str: ...


@dataclass(frozen=True)
class ChatCompletionClient:
    """
    OpenAI-compatible chat completions (OpenRouter, Groq, OpenAI).

    Endpoint: POST {base_url}/chat/completions
    The request asks for a JSON object response; the returned text is not parsed here.
    """

    api_key: str
    model: str
    base_url: str = "https://openrouter.ai/api/v1"
    timeout_s: float = 90.0
    max_tokens: int = 4096
    max_retries: int = 3
    retry_backoff_s: float = 0.8

    def complete_json(self, *, system: str, user: str) -> str:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "max_tokens": int(max(1, min(int(self.max_tokens), 16384))),
        }

        attempts = max(1, int(self.max_retries))
        for attempt in range(1, attempts + 1):
            try:
                with httpx.Client(timeout=self.timeout_s) as client:
                    r = client.post(url, headers=headers, json=payload)
                if r.status_code != 200:
                    raise CompletionError(f"completion_http_{r.status_code}: {r.text[:1500]}")
                data = r.json()
            except (
                httpx.ReadError,
                httpx.RemoteProtocolError,
                httpx.ProtocolError,
                httpx.ConnectError,
                httpx.TimeoutException,
            ) as e:
                if attempt < attempts:
                    logger.warning("completion transient error (attempt %d/%d): %s", attempt, attempts, e)
                    time.sleep(self.retry_backoff_s * (2 ** (attempt - 1)))
                    continue
                raise CompletionError(f"completion_transient_error after {attempt} attempts: {e}") from e
            except ValueError as e:
                raise CompletionError(f"completion_envelope_not_json: {e}") from e

            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as e:
                raise CompletionError(f"completion_response_parse_error: {str(data)[:1500]}") from e
            if not isinstance(content, str):
                raise CompletionError("completion_response_parse_error: content is not text")
            return content

        raise CompletionError("completion_failed: no attempts made")


@dataclass(frozen=True)
class OfflineCompletionClient:
    """
    Used when llm_provider=off: every event becomes a non-actionable diagnosis.
    """

    def complete_json(self, *, system: str, user: str) -> str:
        return json.dumps(
            {
                "actionable": False,
                "category": "other",
                "probable_root_cause": "language-model provider not configured",
                "suggested_fixes": [],
                "confidence": 0.0,
                "quick_issue_title": None,
                "quick_issue_body": None,
            }
        )


def build_completion_service(settings: Settings) -> CompletionService:
    if settings.llm_provider == "off":
        return OfflineCompletionClient()
    if not settings.llm_api_key:
        raise ValueError("AUTOTRIAGE_LLM_API_KEY is required unless llm_provider=off")
    return ChatCompletionClient(
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        base_url=settings.resolved_llm_base_url(),
        timeout_s=settings.llm_timeout_s,
        max_tokens=settings.llm_max_tokens,
        max_retries=settings.llm_max_retries,
    )
