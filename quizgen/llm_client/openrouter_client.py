from __future__ import annotations

import time
from typing import Any

import httpx

from quizgen.llm_client.base import LLMResult
from quizgen.llm_client.normalize_usage import normalize_chat_usage
from quizgen.utils.concurrency import ConcurrencyGate, admit
from quizgen.utils.error_taxonomy import ProviderError

DEFAULT_CHAT_COMPLETIONS_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterLLMClient:
    """Chat-completion client; every request passes through the shared gate."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = DEFAULT_CHAT_COMPLETIONS_URL,
        http_client: httpx.AsyncClient | None = None,
        gate: ConcurrencyGate | None = None,
        site_url: str | None = None,
        site_name: str | None = None,
        request_timeout_seconds: float = 45.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._http_client = http_client
        self._gate = gate
        self._site_url = site_url
        self._site_name = site_name
        self._request_timeout_seconds = request_timeout_seconds

    async def complete(
        self,
        *,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: dict[str, Any] | None = None,
    ) -> LLMResult:
        payload = self.build_request_payload(
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            response_format=response_format,
        )

        headers = self._build_headers()
        client = self._resolve_client()
        start_time = time.perf_counter()
        async with admit(self._gate):
            response = await client.post(
                self._base_url,
                json=payload,
                headers=headers,
                timeout=self._request_timeout_seconds,
            )
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        if not response.is_success:
            raise ProviderError(
                f"API Error: {response.status_code} {response.reason_phrase}".strip(),
                provider="llm",
                status_code=response.status_code,
                body=response.text[:500],
            )

        try:
            response_payload = response.json()
        except ValueError as error:
            raise ProviderError(
                "LLM response is not valid JSON", provider="llm"
            ) from error

        content = extract_message_content(response_payload)
        if not content.strip():
            # empty completions are usually provider hiccups
            raise ProviderError(
                "Failed to generate MCQs: empty model response",
                provider="llm",
                transient=True,
            )

        return LLMResult(
            content=content,
            raw_response=response_payload,
            usage_normalized=normalize_chat_usage(response_payload.get("usage")),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": int(max_tokens),
            "temperature": temperature,
        }
        if response_format is not None:
            payload["response_format"] = response_format
        return payload

    def _build_headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ValueError("LLM API key is required")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._site_url:
            headers["HTTP-Referer"] = self._site_url
        if self._site_name:
            headers["X-Title"] = self._site_name
        return headers

    def _resolve_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client


def extract_message_content(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""

    first = choices[0]
    if not isinstance(first, dict):
        return ""

    message = first.get("message")
    if not isinstance(message, dict):
        return ""

    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(part.get("text") or "")
            for part in content
            if isinstance(part, dict) and part.get("type") in (None, "text")
        ]
        return "".join(parts)
    return ""
