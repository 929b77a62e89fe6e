from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path
from typing import Protocol

import httpx

from quizgen.backend_client.base import FastBackend
from quizgen.backend_client.fast_pdf import FastPDFBackendClient
from quizgen.backend_client.native_pdf import NativePDFBackend
from quizgen.config.settings import Settings, get_settings
from quizgen.llm_client.openrouter_client import OpenRouterLLMClient
from quizgen.logging import (
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from quizgen.ocr_client.ocr_space import OCRSpaceClient
from quizgen.ocr_client.types import OCROptions, OCRResult
from quizgen.pipeline.generation import GenerationConfig, GenerationStage
from quizgen.pipeline.models import MCQRecord, ProcessingResult, Stage, Strategy
from quizgen.pipeline.picker import DocumentPicker, PickResult
from quizgen.pipeline.progress import ProgressReporter, StatusCallback
from quizgen.utils.concurrency import ConcurrencyGate
from quizgen.utils.error_taxonomy import (
    EmptyInputError,
    InputTooLargeError,
    ParseYieldZeroError,
    ProviderUnsupportedError,
    build_error_details,
    classify_error,
)
from quizgen.utils.retry import with_timeout

PDF_MIME_TYPE = "application/pdf"
UNKNOWN_FILE_NAME = "Unknown"
_LOG_CONTEXT_KEYS = ("run_id", "file_name", "stage", "strategy")

logger = get_logger()


class OCRClientProtocol(Protocol):
    async def extract_text(
        self,
        *,
        data: bytes,
        mime_type: str,
        options: OCROptions,
    ) -> OCRResult: ...


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        ocr_client: OCRClientProtocol,
        generation: GenerationStage,
        backend: FastBackend | None = None,
        picker: DocumentPicker | None = None,
        gate: ConcurrencyGate | None = None,
        settings: Settings | None = None,
        ocr_options: OCROptions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ocr_client = ocr_client
        self.generation = generation
        self.backend = backend
        self.picker = picker
        self.gate = gate
        self.ocr_options = ocr_options or OCROptions(
            language=self.settings.ocr_language,
            engine=self.settings.ocr_engine,
            min_chars=self.settings.min_extracted_chars,
        )
        self._owned_http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        picker: DocumentPicker | None = None,
    ) -> "PipelineOrchestrator":
        gate = ConcurrencyGate(settings.max_concurrent_requests)
        owned_client = None
        if http_client is None:
            http_client = owned_client = httpx.AsyncClient()

        ocr_client = OCRSpaceClient(
            api_key=settings.ocr_api_key,
            endpoint=settings.ocr_endpoint,
            http_client=http_client,
            gate=gate,
            request_timeout_seconds=settings.ocr_timeout_seconds,
        )
        llm_client = OpenRouterLLMClient(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            http_client=http_client,
            gate=gate,
            site_url=settings.site_url,
            site_name=settings.site_name,
            request_timeout_seconds=settings.generation_call_timeout_seconds,
        )

        model_entry = settings.resolve_model("mcq_generation")
        max_tokens = int(model_entry.get("max_tokens") or 8192)
        temperature = float(model_entry.get("temperature", 0.7))
        generation = GenerationStage(
            llm_client=llm_client,
            config=GenerationConfig(
                model=model_entry["model"],
                max_tokens=max_tokens,
                temperature=temperature,
                char_budget=settings.ocr_char_budget,
                call_timeout_seconds=settings.generation_call_timeout_seconds,
                max_retries=settings.generation_max_retries,
                retry_base_delay_seconds=settings.retry_base_delay_seconds,
                structured_output=settings.prefer_structured_output,
                difficulty=settings.difficulty,
                chunk_count=settings.chunk_count,
            ),
            gate=gate,
        )

        backend: FastBackend | None = None
        if settings.backend_base_url:
            backend = FastPDFBackendClient(
                base_url=settings.backend_base_url,
                http_client=http_client,
                gate=gate,
                request_timeout_seconds=settings.backend_timeout_seconds,
            )
        elif settings.use_native_backend:
            native_entry = settings.resolve_model("pdf_extraction")
            backend = NativePDFBackend(
                llm_client=llm_client,
                model=native_entry["model"],
                max_tokens=int(native_entry.get("max_tokens") or 8192),
                temperature=float(native_entry.get("temperature", 0.3)),
                char_budget=settings.direct_char_budget,
                min_text_chars=settings.min_native_text_chars,
            )

        return cls(
            ocr_client=ocr_client,
            generation=generation,
            backend=backend,
            picker=picker,
            gate=gate,
            settings=settings,
            http_client=owned_client,
        )

    async def aclose(self) -> None:
        if self._owned_http_client is not None:
            await self._owned_http_client.aclose()
            self._owned_http_client = None

    async def pick_document(self) -> PickResult:
        if self.picker is None:
            return PickResult(success=False, error="No document picker configured")
        try:
            return await self.picker.pick()
        except Exception as error:  # noqa: BLE001
            logger.exception("Document picker failed")
            return PickResult(success=False, error=str(error))

    async def quick_process(
        self, on_status: StatusCallback | None = None
    ) -> ProcessingResult | None:
        """Pick a document and run the full pipeline; ``None`` when canceled."""
        reporter = ProgressReporter(on_status)
        reporter.report("picking", 0, "Select a PDF file...")

        pick = await self.pick_document()
        if pick.canceled:
            logger.info("Document selection canceled")
            return None

        if not pick.success or pick.file is None:
            error = pick.error or "Failed to pick file"
            reporter.report("error", reporter.progress, error)
            return ProcessingResult(
                success=False,
                mcqs=[],
                file_name=UNKNOWN_FILE_NAME,
                processing_time_ms=0,
                error=error,
                error_code="UNKNOWN_ERROR",
            )

        logger.info(
            "Processing picked file %s (size=%d)", pick.file.name, pick.file.size
        )
        return await self._run(
            source=pick.file.data,
            file_name=pick.file.name,
            mime_type=pick.file.mime_type,
            reporter=reporter,
        )

    async def process_and_generate_mcqs(
        self,
        data: bytes | Path | str,
        file_name: str,
        mime_type: str = PDF_MIME_TYPE,
        on_status: StatusCallback | None = None,
    ) -> ProcessingResult:
        """Turn one document into MCQs; failures come back as a failed result."""
        return await self._run(
            source=data,
            file_name=file_name,
            mime_type=mime_type,
            reporter=ProgressReporter(on_status),
        )

    async def _run(
        self,
        *,
        source: bytes | Path | str,
        file_name: str,
        mime_type: str,
        reporter: ProgressReporter,
    ) -> ProcessingResult:
        started_at = time.perf_counter()
        set_log_context(run_id=uuid.uuid4().hex, file_name=file_name)
        try:
            data = await self._load_document(source)

            if self.backend is not None and mime_type == PDF_MIME_TYPE:
                result = await self._attempt_backend(
                    self.backend,
                    data=data,
                    file_name=file_name,
                    reporter=reporter,
                    started_at=started_at,
                )
                if result is not None:
                    return result

            return await self._run_ocr_path(
                data=data,
                file_name=file_name,
                mime_type=mime_type,
                reporter=reporter,
                started_at=started_at,
            )
        except Exception as error:  # noqa: BLE001
            return self._failure(
                error, file_name=file_name, reporter=reporter, started_at=started_at
            )
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    async def _load_document(self, source: bytes | Path | str) -> bytes:
        limit = self.settings.max_file_size_bytes
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
        else:
            path = Path(source)
            size = path.stat().st_size
            if size > limit:
                raise InputTooLargeError(size, limit)
            data = await with_timeout(
                lambda: asyncio.to_thread(path.read_bytes),
                self.settings.read_timeout_seconds,
                "Failed to read file",
            )

        if len(data) > limit:
            raise InputTooLargeError(len(data), limit)
        if not data:
            raise EmptyInputError("File is empty")
        return data

    async def _attempt_backend(
        self,
        backend: FastBackend,
        *,
        data: bytes,
        file_name: str,
        reporter: ProgressReporter,
        started_at: float,
    ) -> ProcessingResult | None:
        set_log_context(strategy="backend")
        self._enter(reporter, "reading", 10, "Uploading to fast server...")

        try:
            backend_result = await with_timeout(
                lambda: backend.generate(
                    data=data,
                    file_name=file_name,
                    num_questions=self.settings.num_questions,
                    difficulty=self.settings.difficulty,
                ),
                self.settings.backend_timeout_seconds,
                "Fast backend request timed out",
            )
            if not backend_result.mcqs:
                raise ParseYieldZeroError()
        except ProviderUnsupportedError as error:
            logger.info("Fast backend declined document, using OCR: %s", error)
            return None
        except Exception as error:  # noqa: BLE001
            if not self.settings.fallback_on_backend_error:
                raise
            logger.warning("Fast backend failed, falling back to OCR: %s", error)
            return None

        return self._success(
            mcqs=backend_result.mcqs,
            file_name=file_name,
            reporter=reporter,
            started_at=started_at,
            text_length=backend_result.text_length,
            strategy="backend",
            warnings=backend_result.warnings,
        )

    async def _run_ocr_path(
        self,
        *,
        data: bytes,
        file_name: str,
        mime_type: str,
        reporter: ProgressReporter,
        started_at: float,
    ) -> ProcessingResult:
        set_log_context(strategy="ocr")
        self._enter(reporter, "reading", 5, "Reading file (OCR fallback)...")

        self._enter(reporter, "extracting", 15, "Scanning document with OCR...")
        ocr_result = await with_timeout(
            lambda: self.ocr_client.extract_text(
                data=data, mime_type=mime_type, options=self.ocr_options
            ),
            self.settings.ocr_timeout_seconds,
            "Text extraction timed out",
        )
        text_length = len(ocr_result.text)
        self._enter(
            reporter, "extracting", 30, f"Extracted {text_length} characters"
        )

        self._enter(
            reporter,
            "generating",
            35,
            f"Extracted {text_length} chars, generating MCQs...",
        )
        self._enter(reporter, "generating", 40, "AI generating MCQs...")
        output = await with_timeout(
            lambda: self.generation.generate(
                transcript=ocr_result.text,
                num_questions=self.settings.num_questions,
            ),
            self.settings.generation_stage_timeout_seconds,
            "MCQ generation timed out",
        )

        self._enter(reporter, "parsing", 80, "Parsing generated MCQs...")
        mcqs = self.generation.parse(output)
        if not mcqs:
            raise ParseYieldZeroError()

        warnings = list(ocr_result.quality_warnings)
        if output.truncated:
            warnings.append(
                f"Document truncated to its first {output.transcript_chars} characters"
            )
        if output.failed_chunks:
            warnings.append(f"{output.failed_chunks} generation chunk(s) failed")

        return self._success(
            mcqs=mcqs,
            file_name=file_name,
            reporter=reporter,
            started_at=started_at,
            text_length=text_length,
            strategy="ocr",
            warnings=warnings,
        )

    def _success(
        self,
        *,
        mcqs: list[MCQRecord],
        file_name: str,
        reporter: ProgressReporter,
        started_at: float,
        text_length: int | None,
        strategy: Strategy,
        warnings: list[str],
    ) -> ProcessingResult:
        elapsed_ms = _elapsed_ms(started_at)
        self._enter(
            reporter,
            "complete",
            100,
            f"Generated {len(mcqs)} MCQs in {elapsed_ms / 1000:.1f}s",
        )
        logger.info(
            "Pipeline completed",
            extra={
                "duration_ms": elapsed_ms,
                "metrics": {"mcqs": len(mcqs), "text_length": text_length},
            },
        )
        return ProcessingResult(
            success=True,
            mcqs=mcqs,
            file_name=file_name,
            processing_time_ms=elapsed_ms,
            text_length=text_length,
            strategy=strategy,
            warnings=warnings,
        )

    def _failure(
        self,
        error: Exception,
        *,
        file_name: str,
        reporter: ProgressReporter,
        started_at: float,
    ) -> ProcessingResult:
        elapsed_ms = _elapsed_ms(started_at)
        message = str(error) or error.__class__.__name__
        error_code = classify_error(error)
        strategy = get_log_context().get("strategy")

        set_log_context(stage="error")
        logger.error(
            "Pipeline failed [%s]: %s",
            error_code,
            build_error_details(error),
            extra={"duration_ms": elapsed_ms},
        )
        reporter.report("error", reporter.progress, message)
        return ProcessingResult(
            success=False,
            mcqs=[],
            file_name=file_name,
            processing_time_ms=elapsed_ms,
            error=message,
            error_code=error_code,
            strategy=strategy,
        )

    def _enter(
        self, reporter: ProgressReporter, stage: Stage, progress: int, message: str
    ) -> None:
        set_log_context(stage=stage)
        status = reporter.report(stage, progress, message)
        logger.info(message, extra={"metrics": {"progress": status.progress}})


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)
