from __future__ import annotations

import asyncio
import socket
from typing import Any, Literal

import httpx

ErrorCode = Literal[
    "USER_CANCELED",
    "INPUT_TOO_LARGE",
    "INPUT_EMPTY",
    "PROVIDER_UNSUPPORTED",
    "OCR_API_ERROR",
    "LLM_API_ERROR",
    "BACKEND_API_ERROR",
    "EMPTY_EXTRACTION",
    "TIMEOUT",
    "PARSE_YIELD_ZERO",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "USER_CANCELED": "Document selection was canceled.",
    "INPUT_TOO_LARGE": "Document is too large for fast processing.",
    "INPUT_EMPTY": "Document is empty.",
    "PROVIDER_UNSUPPORTED": "Document must be processed with OCR.",
    "OCR_API_ERROR": "OCR service request failed. Please retry.",
    "LLM_API_ERROR": "AI provider request failed. Please retry.",
    "BACKEND_API_ERROR": "Question generation server request failed.",
    "EMPTY_EXTRACTION": (
        "Could not extract sufficient text from the document. "
        "Please try a clearer document."
    ),
    "TIMEOUT": "Operation timed out.",
    "PARSE_YIELD_ZERO": (
        "Could not generate MCQs from the document content. "
        "Please try a different document."
    ),
    "UNKNOWN_ERROR": "Unexpected error occurred during processing.",
}

ProviderName = Literal["ocr", "llm", "backend"]

_PROVIDER_ERROR_CODES: dict[str, ErrorCode] = {
    "ocr": "OCR_API_ERROR",
    "llm": "LLM_API_ERROR",
    "backend": "BACKEND_API_ERROR",
}


class PipelineError(Exception):
    """Base class for typed pipeline failures."""

    code: ErrorCode = "UNKNOWN_ERROR"
    transient: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or ERROR_FRIENDLY_MESSAGES[self.code])


class InputTooLargeError(PipelineError):
    code: ErrorCode = "INPUT_TOO_LARGE"

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        limit_mb = limit_bytes / (1024 * 1024)
        super().__init__(
            f"Document too large ({size_bytes} bytes). "
            f"Maximum size is {limit_mb:g}MB for fast processing."
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class EmptyInputError(PipelineError):
    code: ErrorCode = "INPUT_EMPTY"


class ProviderUnsupportedError(PipelineError):
    """Fast backend refused the document; the OCR path must be used instead."""

    code: ErrorCode = "PROVIDER_UNSUPPORTED"


class ProviderError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        provider: ProviderName,
        status_code: int | None = None,
        body: str | None = None,
        transient: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.code = _PROVIDER_ERROR_CODES[provider]
        self.status_code = status_code
        self.body = body
        if transient is None:
            transient = status_code is not None and is_retryable_status_code(
                status_code
            )
        self.transient = transient


class EmptyExtractionError(PipelineError):
    code: ErrorCode = "EMPTY_EXTRACTION"

    def __init__(self, text_length: int, min_chars: int) -> None:
        super().__init__(
            "Insufficient text extracted from document "
            f"({text_length} < {min_chars} characters). "
            "Please try a clearer document."
        )
        self.text_length = text_length
        self.min_chars = min_chars


class StageTimeoutError(PipelineError, TimeoutError):
    code: ErrorCode = "TIMEOUT"
    transient = True


class ParseYieldZeroError(PipelineError):
    code: ErrorCode = "PARSE_YIELD_ZERO"


def is_retryable_exception(error: BaseException) -> bool:
    if isinstance(error, PipelineError):
        return error.transient

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout)):
        return True
    if isinstance(error, asyncio.TimeoutError):
        return True

    status_code = extract_http_status_code(error)
    return status_code is not None and is_retryable_status_code(status_code)


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def classify_error(error: BaseException) -> ErrorCode:
    if isinstance(error, PipelineError):
        return error.code
    if isinstance(error, (httpx.TimeoutException, TimeoutError, socket.timeout)):
        return "TIMEOUT"
    if isinstance(error, httpx.HTTPError):
        return "LLM_API_ERROR"
    if isinstance(error, ConnectionError):
        return "LLM_API_ERROR"
    return "UNKNOWN_ERROR"


def extract_http_status_code(error: BaseException) -> int | None:
    for field_name in ("status_code", "status", "http_status"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: BaseException) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    return "\n".join(details)


def _to_int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
