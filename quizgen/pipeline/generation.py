from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from quizgen.llm_client.base import LLMClient
from quizgen.logging import get_logger
from quizgen.pipeline.models import MCQRecord
from quizgen.pipeline.record_parser import (
    extract_json_payload,
    parse_mcq_response,
    parse_structured_questions,
)
from quizgen.pipeline.validate_output import validate_payload
from quizgen.prompts.manager import PromptManager, PromptSet
from quizgen.utils.concurrency import ConcurrencyGate, execute_parallel
from quizgen.utils.retry import with_retry, with_timeout

TEXT_PROMPT_NAME = "mcq_text"
JSON_PROMPT_NAME = "mcq_json"
JSON_RESPONSE_FORMAT = {"type": "json_object"}

logger = get_logger()


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    model: str
    max_tokens: int = 8192
    temperature: float = 0.7
    char_budget: int = 15_000
    call_timeout_seconds: float = 45.0
    max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    structured_output: bool = False
    difficulty: str = "pro"
    chunk_count: int = 1


@dataclass(frozen=True, slots=True)
class GenerationOutput:
    raw_texts: list[str]
    output_format: str
    schema: dict | None
    transcript_chars: int
    truncated: bool
    failed_chunks: int = 0


def truncate_transcript(text: str, char_budget: int) -> tuple[str, bool]:
    """Keep the document prefix that fits the budget."""
    if len(text) <= char_budget:
        return text, False
    return text[:char_budget], True


def split_into_chunks(text: str, chunk_count: int) -> list[str]:
    if chunk_count <= 1 or not text:
        return [text]

    size = len(text) / chunk_count
    bounds = [0]
    for index in range(1, chunk_count):
        target = int(size * index)
        # prefer breaking at whitespace inside the last tenth of the chunk
        window_start = max(bounds[-1] + 1, target - int(size) // 10)
        boundary = text.rfind(" ", window_start, target + 1)
        bounds.append(boundary if boundary > bounds[-1] else max(target, bounds[-1]))
    bounds.append(len(text))
    return [text[start:end] for start, end in zip(bounds, bounds[1:]) if start < end]


def distribute_questions(total: int, parts: int) -> list[int]:
    base, remainder = divmod(total, parts)
    return [base + (1 if index < remainder else 0) for index in range(parts)]


class GenerationStage:
    def __init__(
        self,
        *,
        llm_client: LLMClient,
        config: GenerationConfig,
        prompt_manager: PromptManager | None = None,
        gate: ConcurrencyGate | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.llm_client = llm_client
        self.config = config
        self.prompt_manager = prompt_manager or PromptManager()
        self.gate = gate
        self.sleep_fn = sleep_fn

    def build_prompt(
        self,
        *,
        transcript: str,
        num_questions: int,
        structured: bool | None = None,
    ) -> tuple[str, PromptSet]:
        use_json = self.config.structured_output if structured is None else structured
        prompt_set = self.prompt_manager.load_prompt_set(
            prompt_name=JSON_PROMPT_NAME if use_json else TEXT_PROMPT_NAME
        )
        prompt = prompt_set.render(
            num_questions=num_questions,
            content=transcript,
            difficulty_hint=self.prompt_manager.difficulty_hint(
                self.config.difficulty
            ),
        )
        return prompt, prompt_set

    async def generate(
        self,
        *,
        transcript: str,
        num_questions: int,
        char_budget: int | None = None,
        structured: bool | None = None,
    ) -> GenerationOutput:
        budget = char_budget or self.config.char_budget
        content, truncated = truncate_transcript(transcript, budget)
        if truncated:
            logger.info(
                "Transcript truncated for generation",
                extra={"metrics": {"chars": len(transcript), "budget": budget}},
            )

        chunk_count = max(1, min(self.config.chunk_count, num_questions))
        chunks = split_into_chunks(content, chunk_count)
        counts = distribute_questions(num_questions, len(chunks))

        prompts = [
            self.build_prompt(
                transcript=chunk, num_questions=count, structured=structured
            )
            for chunk, count in zip(chunks, counts)
        ]
        tasks = [self._make_call(prompt, prompt_set) for prompt, prompt_set in prompts]
        prompt_set = prompts[0][1]

        if len(tasks) == 1:
            raw_texts = [await tasks[0]()]
            failed_chunks = 0
        else:
            outcomes = await execute_parallel(
                tasks, max_concurrent=len(tasks), gate=self.gate
            )
            raw_texts = [outcome.value for outcome in outcomes if outcome.ok]
            failures = [outcome for outcome in outcomes if not outcome.ok]
            failed_chunks = len(failures)
            for failure in failures:
                logger.warning(
                    "Generation chunk %d failed: %s", failure.index, failure.error
                )
            if not raw_texts:
                failures[0].unwrap()

        return GenerationOutput(
            raw_texts=raw_texts,
            output_format=prompt_set.output_format,
            schema=prompt_set.schema,
            transcript_chars=len(content),
            truncated=truncated,
            failed_chunks=failed_chunks,
        )

    def parse(self, output: GenerationOutput) -> list[MCQRecord]:
        records: list[MCQRecord] = []
        for raw_text in output.raw_texts:
            records.extend(parse_generated_text(raw_text, output=output))
        return records

    def _make_call(
        self, prompt: str, prompt_set: PromptSet
    ) -> Callable[[], Awaitable[str]]:
        response_format = (
            JSON_RESPONSE_FORMAT if prompt_set.output_format == "json" else None
        )

        async def _call_once() -> str:
            result = await self.llm_client.complete(
                prompt=prompt,
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                response_format=response_format,
            )
            logger.info(
                "LLM completion received",
                extra={
                    "duration_ms": result.timings.get("t_llm_total_ms"),
                    "metrics": result.usage_normalized,
                },
            )
            return result.content

        async def _call() -> str:
            return await with_retry(
                lambda: with_timeout(
                    _call_once,
                    self.config.call_timeout_seconds,
                    "MCQ generation request timed out",
                ),
                max_retries=self.config.max_retries,
                base_delay_seconds=self.config.retry_base_delay_seconds,
                sleep_fn=self.sleep_fn,
                on_retry=_log_retry,
            )

        return _call


def parse_generated_text(
    raw_text: str, *, output: GenerationOutput
) -> list[MCQRecord]:
    if output.output_format != "json":
        return parse_mcq_response(raw_text)

    try:
        payload = extract_json_payload(raw_text)
        records = parse_structured_questions(payload)
    except ValueError as error:
        logger.warning("Structured output unreadable, using text parser: %s", error)
        return parse_mcq_response(raw_text)

    if output.schema is not None:
        violations = validate_payload(payload=payload, schema=output.schema)
        if violations:
            logger.info(
                "Structured output deviates from schema",
                extra={"metrics": {"violations": violations[:10]}},
            )
    return records


def _log_retry(attempt: int, delay: float, error: BaseException) -> None:
    logger.warning(
        "LLM transient error, retrying (attempt=%d delay=%.2fs): %s",
        attempt,
        delay,
        error,
    )
