from __future__ import annotations

import asyncio
import json
from urllib.parse import unquote

import httpx
import pytest

from quizgen.ocr_client.ocr_space import OCRSpaceClient, parse_ocr_payload
from quizgen.ocr_client.quality import evaluate_ocr_quality
from quizgen.ocr_client.types import OCROptions
from quizgen.utils.concurrency import ConcurrencyGate
from quizgen.utils.error_taxonomy import EmptyExtractionError, ProviderError

PAGE_ONE = (
    "Indus Valley Civilization flourished around the Indus river basin with "
    "planned cities such as Harappa and Mohenjo-daro."
)
PAGE_TWO = (
    "Mauryan Empire was founded by Chandragupta Maurya and reached its peak "
    "under Ashoka, who embraced Buddhism after Kalinga."
)


def _build_client(
    handler, *, gate: ConcurrencyGate | None = None, api_key: str | None = "k-test"
) -> OCRSpaceClient:
    transport = httpx.MockTransport(handler)
    return OCRSpaceClient(
        api_key=api_key,
        endpoint="https://ocr.test/parse/image",
        http_client=httpx.AsyncClient(transport=transport),
        gate=gate,
    )


def _ok_payload(*pages: str) -> dict[str, object]:
    return {
        "OCRExitCode": 1,
        "IsErroredOnProcessing": False,
        "ParsedResults": [{"ParsedText": page} for page in pages],
    }


def test_extract_text_joins_pages_with_blank_line_in_order() -> None:
    captured: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await request.aread()
        captured.append(request)
        return httpx.Response(200, json=_ok_payload(PAGE_ONE, PAGE_TWO))

    client = _build_client(handler)
    result = asyncio.run(
        client.extract_text(
            data=b"%PDF-1.4 fake", mime_type="application/pdf", options=OCROptions()
        )
    )

    assert result.text == f"{PAGE_ONE}\n\n{PAGE_TWO}"
    assert result.page_texts == [PAGE_ONE, PAGE_TWO]
    assert result.pages_count == 2

    body = unquote(captured[0].content.decode("utf-8", errors="replace"))
    assert captured[0].headers["content-type"].startswith("multipart/form-data")
    for field, value in (
        ("apikey", "k-test"),
        ("language", "eng"),
        ("filetype", "PDF"),
        ("OCREngine", "2"),
        ("detectOrientation", "true"),
        ("scale", "true"),
        ("isOverlayRequired", "false"),
    ):
        assert f'name="{field}"' in body
        assert value in body
    assert "data:application/pdf;base64," in body


def test_form_fields_use_auto_filetype_for_images() -> None:
    fields = OCRSpaceClient.build_form_fields(
        mime_type="image/png", api_key="k", options=OCROptions(engine=1)
    )

    assert fields["filetype"] == "Auto"
    assert fields["OCREngine"] == "1"
    assert OCRSpaceClient.build_data_uri(b"\x89PNG", "").startswith(
        "data:image/png;base64,"
    )


def test_short_extraction_raises_empty_extraction() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_ok_payload("Only thirty characters here.."))

    client = _build_client(handler)
    with pytest.raises(EmptyExtractionError) as excinfo:
        asyncio.run(
            client.extract_text(
                data=b"img", mime_type="image/jpeg", options=OCROptions(min_chars=50)
            )
        )

    assert excinfo.value.code == "EMPTY_EXTRACTION"
    assert "Insufficient text" in str(excinfo.value)


def test_error_payload_raises_provider_error_with_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "OCRExitCode": 3,
                "IsErroredOnProcessing": True,
                "ErrorMessage": ["File failed validation", "Invalid file type"],
            },
        )

    client = _build_client(handler)
    with pytest.raises(ProviderError, match="File failed validation") as excinfo:
        asyncio.run(
            client.extract_text(
                data=b"x", mime_type="application/pdf", options=OCROptions()
            )
        )
    assert excinfo.value.code == "OCR_API_ERROR"


def test_non_success_status_raises_provider_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    client = _build_client(handler)
    with pytest.raises(ProviderError, match="OCR API Error: 503") as excinfo:
        asyncio.run(
            client.extract_text(
                data=b"x", mime_type="application/pdf", options=OCROptions()
            )
        )

    assert excinfo.value.status_code == 503
    assert excinfo.value.transient is True


def test_missing_api_key_fails_before_request() -> None:
    calls: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_ok_payload(PAGE_ONE))

    client = _build_client(handler, api_key=None)
    with pytest.raises(ValueError, match="OCR API key"):
        asyncio.run(
            client.extract_text(
                data=b"x", mime_type="application/pdf", options=OCROptions()
            )
        )
    assert calls == []


def test_request_passes_through_gate() -> None:
    async def scenario() -> None:
        gate = ConcurrencyGate(1)
        observed: list[int] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            observed.append(gate.in_flight)
            return httpx.Response(200, json=_ok_payload(PAGE_ONE, PAGE_TWO))

        client = _build_client(handler, gate=gate)
        await client.extract_text(
            data=b"x", mime_type="application/pdf", options=OCROptions()
        )
        assert observed == [1]
        assert gate.in_flight == 0

    asyncio.run(scenario())


def test_parse_payload_falls_back_to_page_error_message() -> None:
    payload = {
        "OCRExitCode": 4,
        "ParsedResults": [{"ParsedText": "", "ErrorMessage": "Page timed out"}],
    }

    with pytest.raises(ProviderError, match="Page timed out"):
        parse_ocr_payload(payload)

    with pytest.raises(ProviderError, match="OCR could not process the file"):
        parse_ocr_payload({"OCRExitCode": 1, "ParsedResults": []})


def test_quality_report_flags_bad_pages_without_failing() -> None:
    report = evaluate_ocr_quality(
        [PAGE_ONE, "", "12 34 56 78 90 ## ** ~~", PAGE_ONE, "Bad � text"],
        min_chars=20,
    )

    assert report.bad_pages == [2, 3, 4, 5]
    assert "Page 2: no text recognized." in report.warnings
    assert any("low alphabetic ratio" in item for item in report.warnings)
    assert "Page 4: duplicates page 1." in report.warnings
    assert any("replacement characters (1)" in item for item in report.warnings)
    assert report.ok is False
    assert json.loads(json.dumps(report.to_dict()))["bad_pages"] == [2, 3, 4, 5]


def test_minimum_length_applies_to_joined_page_text() -> None:
    pages = ("Harappa had great baths.", "Ashoka issued edicts.\n\n\n")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_ok_payload(*pages))

    result = asyncio.run(
        _build_client(handler).extract_text(
            data=b"%PDF", mime_type="application/pdf", options=OCROptions(min_chars=50)
        )
    )

    assert len(result.text) == 50
    assert result.text == "\n\n".join(pages)
