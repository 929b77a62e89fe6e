from __future__ import annotations

import time
from typing import Any

import httpx

from quizgen.backend_client.base import BackendResult
from quizgen.pipeline.record_parser import parse_structured_questions
from quizgen.utils.concurrency import ConcurrencyGate, admit
from quizgen.utils.error_taxonomy import ProviderError, ProviderUnsupportedError

GENERATE_FROM_PDF_PATH = "/generate-mcq-from-pdf"
UNSUPPORTED_STATUS_CODE = 422


class FastPDFBackendClient:
    """Client for the server-side PDF parsing service."""

    def __init__(
        self,
        *,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        gate: ConcurrencyGate | None = None,
        request_timeout_seconds: float = 60.0,
    ) -> None:
        self._endpoint = base_url.rstrip("/") + GENERATE_FROM_PDF_PATH
        self._http_client = http_client
        self._gate = gate
        self._request_timeout_seconds = request_timeout_seconds

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def generate(
        self,
        *,
        data: bytes,
        file_name: str,
        num_questions: int,
        difficulty: str,
    ) -> BackendResult:
        client = self._resolve_client()
        start_time = time.perf_counter()
        async with admit(self._gate):
            response = await client.post(
                self._endpoint,
                data={"numQuestions": str(num_questions), "difficulty": difficulty},
                files={"file": (file_name, data, "application/pdf")},
                timeout=self._request_timeout_seconds,
            )
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        if response.status_code == UNSUPPORTED_STATUS_CODE:
            raise ProviderUnsupportedError(_error_text(response) or None)

        if not response.is_success:
            raise ProviderError(
                f"Server Error: {response.status_code}",
                provider="backend",
                status_code=response.status_code,
                body=response.text[:500],
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise ProviderError(
                "Invalid response from server", provider="backend"
            ) from error

        questions = payload.get("questions") if isinstance(payload, dict) else None
        if not isinstance(questions, list):
            raise ProviderError("Invalid response from server", provider="backend")

        return BackendResult(
            mcqs=parse_structured_questions(questions),
            elapsed_ms=elapsed_ms,
            raw_question_count=len(questions),
        )

    def _resolve_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client


def _error_text(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("error") or "")
    return ""
