from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from quizgen.llm_client.base import LLMResult
from quizgen.pipeline.generation import (
    GenerationConfig,
    GenerationStage,
    distribute_questions,
    split_into_chunks,
    truncate_transcript,
)
from quizgen.utils.concurrency import ConcurrencyGate
from quizgen.utils.error_taxonomy import ProviderError


def _text_block(number: int, topic: str) -> str:
    return (
        f"Question {number}: Which statement about {topic} is accurate?\n"
        f"A. First claim about {topic}\n"
        f"B. Second claim about {topic}\n"
        f"C. Third claim about {topic}\n"
        f"D. Fourth claim about {topic}\n"
        "Correct Answer: C\n"
        f"Explanation: The third claim matches the record on {topic}."
    )


def _json_reply(count: int) -> str:
    return json.dumps(
        {
            "questions": [
                {
                    "question": f"Structured question number {index} about Ashoka?",
                    "options": [
                        {"text": f"Option {letter}", "isCorrect": letter == "D"}
                        for letter in "ABCD"
                    ],
                    "explanation": "Edicts.",
                }
                for index in range(count)
            ]
        }
    )


class ScriptedLLM:
    """Returns queued replies (or raises queued errors) in call order."""

    def __init__(self, replies: list[str | BaseException]) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def complete(self, **kwargs: Any) -> LLMResult:
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else "no more replies"
        if isinstance(reply, BaseException):
            raise reply
        return LLMResult(
            content=reply,
            raw_response={},
            usage_normalized={"total_tokens": 10},
            timings={"t_llm_total_ms": 1.0},
        )


async def _no_sleep(delay: float) -> None:
    del delay


def _stage(llm: ScriptedLLM, **overrides: Any) -> GenerationStage:
    config = {
        "model": "google/gemini-3-flash-preview",
        "retry_base_delay_seconds": 0.0,
    }
    config.update(overrides)
    return GenerationStage(
        llm_client=llm,
        config=GenerationConfig(**config),
        sleep_fn=_no_sleep,
    )


def test_truncation_keeps_prefix() -> None:
    text = "abcdefghij" * 3

    assert truncate_transcript(text, 100) == (text, False)
    assert truncate_transcript(text, 12) == ("abcdefghijab", True)


def test_chunk_helpers_cover_text_and_questions() -> None:
    text = " ".join(f"word{index}" for index in range(200))

    chunks = split_into_chunks(text, 3)

    assert len(chunks) == 3
    assert "".join(chunks) == text
    assert split_into_chunks(text, 1) == [text]
    assert distribute_questions(10, 3) == [4, 3, 3]
    assert distribute_questions(2, 2) == [1, 1]


def test_generate_renders_text_prompt_and_parses_records() -> None:
    reply = "\n\n".join(_text_block(index + 1, "the Mauryas") for index in range(3))
    llm = ScriptedLLM([reply])
    stage = _stage(llm, char_budget=15_000, difficulty="advanced")

    output = asyncio.run(
        stage.generate(transcript="Mauryan Empire notes. " * 10, num_questions=3)
    )
    records = stage.parse(output)

    assert len(records) == 3
    assert records[0].correct_answer == "C"
    assert output.output_format == "text"
    assert output.truncated is False

    call = llm.calls[0]
    assert call["model"] == "google/gemini-3-flash-preview"
    assert call["max_tokens"] == 8192
    assert call["temperature"] == 0.7
    assert call["response_format"] is None
    assert "exactly 3" in call["prompt"]
    assert "Mauryan Empire notes." in call["prompt"]


def test_generate_truncates_transcript_to_budget() -> None:
    llm = ScriptedLLM([_text_block(1, "the Guptas")])
    stage = _stage(llm, char_budget=40)
    transcript = "START" + "x" * 200 + "TAILMARKER"

    output = asyncio.run(stage.generate(transcript=transcript, num_questions=1))

    assert output.truncated is True
    assert output.transcript_chars == 40
    assert "START" in llm.calls[0]["prompt"]
    assert "TAILMARKER" not in llm.calls[0]["prompt"]


def test_transient_errors_are_retried_then_succeed() -> None:
    llm = ScriptedLLM(
        [
            ProviderError("API Error: 503", provider="llm", status_code=503),
            ProviderError("empty", provider="llm", transient=True),
            _text_block(1, "the Cholas"),
        ]
    )
    stage = _stage(llm, max_retries=2)

    output = asyncio.run(stage.generate(transcript="Chola notes", num_questions=1))

    assert len(llm.calls) == 3
    assert len(stage.parse(output)) == 1


def test_permanent_errors_are_not_retried() -> None:
    llm = ScriptedLLM(
        [ProviderError("API Error: 400", provider="llm", status_code=400)]
    )
    stage = _stage(llm, max_retries=2)

    with pytest.raises(ProviderError, match="400"):
        asyncio.run(stage.generate(transcript="notes", num_questions=1))
    assert len(llm.calls) == 1


def test_structured_output_requests_json_and_parses_it() -> None:
    llm = ScriptedLLM([_json_reply(2)])
    stage = _stage(llm, structured_output=True)

    output = asyncio.run(stage.generate(transcript="Ashoka notes", num_questions=2))
    records = stage.parse(output)

    assert llm.calls[0]["response_format"] == {"type": "json_object"}
    assert output.output_format == "json"
    assert [record.correct_answer for record in records] == ["D", "D"]


def test_structured_output_falls_back_to_text_parser() -> None:
    llm = ScriptedLLM([_text_block(1, "the Pallavas")])
    stage = _stage(llm, structured_output=True)

    output = asyncio.run(stage.generate(transcript="notes", num_questions=1))
    records = stage.parse(output)

    assert len(records) == 1
    assert "Pallavas" in records[0].question


def test_chunked_generation_drops_failed_chunks() -> None:
    llm = ScriptedLLM(
        [
            _text_block(1, "chunk one"),
            ProviderError("API Error: 400", provider="llm", status_code=400),
            _text_block(1, "chunk three"),
        ]
    )
    gate = ConcurrencyGate(1)
    stage = GenerationStage(
        llm_client=llm,
        config=GenerationConfig(model="m", chunk_count=3),
        gate=gate,
        sleep_fn=_no_sleep,
    )
    transcript = " ".join(f"token{index}" for index in range(300))

    output = asyncio.run(stage.generate(transcript=transcript, num_questions=6))

    assert len(llm.calls) == 3
    assert output.failed_chunks == 1
    assert len(output.raw_texts) == 2
    assert all("exactly 2" in call["prompt"] for call in llm.calls)


def test_chunked_generation_fails_when_every_chunk_fails() -> None:
    errors = [
        ProviderError(f"API Error: 40{index}", provider="llm", status_code=400)
        for index in range(2)
    ]
    llm = ScriptedLLM(list(errors))
    stage = _stage(llm, chunk_count=2)

    with pytest.raises(ProviderError):
        asyncio.run(
            stage.generate(transcript="alpha beta gamma delta", num_questions=4)
        )


def test_generate_reports_prompt_format_for_empty_and_chunked_transcripts() -> None:
    llm = ScriptedLLM([_json_reply(1), _json_reply(1), _json_reply(1)])
    stage = _stage(llm, structured_output=True, chunk_count=2)

    empty = asyncio.run(stage.generate(transcript="", num_questions=1))
    chunked = asyncio.run(
        stage.generate(transcript="alpha beta gamma delta", num_questions=2)
    )

    assert empty.output_format == "json"
    assert empty.schema is not None
    assert chunked.output_format == "json"
    assert len(chunked.raw_texts) == 2
    assert len(llm.calls) == 3
