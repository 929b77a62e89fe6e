from __future__ import annotations

import asyncio
import time

from quizgen.backend_client.base import BackendResult
from quizgen.llm_client.base import LLMClient
from quizgen.logging import get_logger
from quizgen.pipeline.record_parser import (
    extract_json_payload,
    parse_structured_questions,
)
from quizgen.prompts.manager import PromptManager
from quizgen.utils.error_taxonomy import ProviderError, ProviderUnsupportedError

SCANNED_PDF_MESSAGE = "Insufficient text found. Document might be scanned/image-based."
JSON_PROMPT_NAME = "mcq_json"

logger = get_logger()


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the native text layer of every page."""
    try:
        import fitz
    except ImportError as error:
        raise RuntimeError("pymupdf package is not installed") from error

    try:
        document = fitz.open(stream=data, filetype="pdf")
    except Exception as error:  # noqa: BLE001
        raise ProviderError(
            f"Failed to extract text from PDF: {error}", provider="backend"
        ) from error

    try:
        return "\n".join(page.get_text() for page in document)
    finally:
        document.close()


class NativePDFBackend:
    """In-process PDF parsing backend: native text layer plus one JSON LLM call."""

    def __init__(
        self,
        *,
        llm_client: LLMClient,
        model: str,
        prompt_manager: PromptManager | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        char_budget: int = 50_000,
        min_text_chars: int = 100,
    ) -> None:
        self.llm_client = llm_client
        self.model = model
        self.prompt_manager = prompt_manager or PromptManager()
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.char_budget = char_budget
        self.min_text_chars = min_text_chars

    async def generate(
        self,
        *,
        data: bytes,
        file_name: str,
        num_questions: int,
        difficulty: str,
    ) -> BackendResult:
        start_time = time.perf_counter()
        text = await asyncio.to_thread(extract_pdf_text, data)
        if len(text.strip()) < self.min_text_chars:
            raise ProviderUnsupportedError(SCANNED_PDF_MESSAGE)

        prompt_set = self.prompt_manager.load_prompt_set(prompt_name=JSON_PROMPT_NAME)
        prompt = prompt_set.render(
            num_questions=num_questions,
            content=text[: self.char_budget],
            difficulty_hint=self.prompt_manager.difficulty_hint(difficulty),
        )
        logger.info(
            "Native PDF text extracted for %s",
            file_name,
            extra={"metrics": {"chars": len(text), "budget": self.char_budget}},
        )

        result = await self.llm_client.complete(
            prompt=prompt,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        try:
            payload = extract_json_payload(result.content)
        except ValueError as error:
            raise ProviderError(
                "Failed to parse AI response", provider="backend"
            ) from error

        questions = payload.get("questions") if isinstance(payload, dict) else None
        if not isinstance(questions, list):
            raise ProviderError("Invalid response from server", provider="backend")

        return BackendResult(
            mcqs=parse_structured_questions(questions),
            text_length=len(text),
            elapsed_ms=(time.perf_counter() - start_time) * 1000,
            raw_question_count=len(questions),
        )
