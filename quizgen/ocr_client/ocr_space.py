from __future__ import annotations

import base64
import time
from typing import Any

import httpx

from quizgen.ocr_client.quality import evaluate_ocr_quality
from quizgen.ocr_client.types import OCROptions, OCRResult
from quizgen.utils.concurrency import ConcurrencyGate, admit
from quizgen.utils.error_taxonomy import EmptyExtractionError, ProviderError

DEFAULT_OCR_ENDPOINT = "https://api.ocr.space/parse/image"
PDF_MIME_TYPE = "application/pdf"


class OCRSpaceClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        endpoint: str = DEFAULT_OCR_ENDPOINT,
        http_client: httpx.AsyncClient | None = None,
        gate: ConcurrencyGate | None = None,
        request_timeout_seconds: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._endpoint = endpoint
        self._http_client = http_client
        self._gate = gate
        self._request_timeout_seconds = request_timeout_seconds

    async def extract_text(
        self,
        *,
        data: bytes,
        mime_type: str,
        options: OCROptions,
    ) -> OCRResult:
        start_time = time.perf_counter()
        payload = await self._request_ocr(
            data=data, mime_type=mime_type, options=options
        )
        page_texts = parse_ocr_payload(payload)

        text = "\n\n".join(page_texts)
        text_length = len(text)
        if text_length < options.min_chars:
            raise EmptyExtractionError(text_length, options.min_chars)

        quality = evaluate_ocr_quality(page_texts)
        return OCRResult(
            text=text,
            page_texts=page_texts,
            pages_count=len(page_texts),
            quality_warnings=quality.warnings,
            elapsed_ms=(time.perf_counter() - start_time) * 1000,
        )

    @staticmethod
    def build_form_fields(
        *,
        mime_type: str,
        api_key: str,
        options: OCROptions,
    ) -> dict[str, str]:
        is_pdf = mime_type == PDF_MIME_TYPE
        return {
            "apikey": api_key,
            "language": options.language,
            "isOverlayRequired": _flag(options.overlay_required),
            "filetype": "PDF" if is_pdf else "Auto",
            "detectOrientation": _flag(options.detect_orientation),
            "scale": _flag(options.scale),
            "OCREngine": str(options.engine),
        }

    @staticmethod
    def build_data_uri(data: bytes, mime_type: str) -> str:
        prefix = mime_type or "image/png"
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{prefix};base64,{encoded}"

    async def _request_ocr(
        self,
        *,
        data: bytes,
        mime_type: str,
        options: OCROptions,
    ) -> dict[str, Any]:
        if not self._api_key:
            raise ValueError("OCR API key is required")

        fields = self.build_form_fields(
            mime_type=mime_type, api_key=self._api_key, options=options
        )
        # a file part without filename forces multipart/form-data encoding
        files = {"base64Image": (None, self.build_data_uri(data, mime_type))}

        client = self._resolve_client()
        async with admit(self._gate):
            response = await client.post(
                self._endpoint,
                data=fields,
                files=files,
                headers={"Accept": "application/json"},
                timeout=self._request_timeout_seconds,
            )

        if not response.is_success:
            raise ProviderError(
                f"OCR API Error: {response.status_code}",
                provider="ocr",
                status_code=response.status_code,
                body=response.text[:500],
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise ProviderError(
                "OCR response could not be parsed", provider="ocr"
            ) from error
        if not isinstance(payload, dict):
            raise ProviderError("OCR response must be a JSON object", provider="ocr")
        return payload

    def _resolve_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client


def parse_ocr_payload(payload: dict[str, Any]) -> list[str]:
    parsed_results = payload.get("ParsedResults")
    if (
        payload.get("OCRExitCode") == 1
        and isinstance(parsed_results, list)
        and parsed_results
    ):
        return [
            str(page.get("ParsedText") or "") if isinstance(page, dict) else ""
            for page in parsed_results
        ]

    raise ProviderError(_ocr_error_message(payload), provider="ocr")


def _ocr_error_message(payload: dict[str, Any]) -> str:
    message = payload.get("ErrorMessage")
    if isinstance(message, list):
        message = "; ".join(str(item) for item in message if item)
    if not message:
        parsed_results = payload.get("ParsedResults")
        if isinstance(parsed_results, list) and parsed_results:
            first = parsed_results[0]
            if isinstance(first, dict):
                message = first.get("ErrorMessage")
    return str(message or "OCR could not process the file")


def _flag(value: bool) -> str:
    return "true" if value else "false"
