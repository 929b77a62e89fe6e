from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from quizgen.pipeline.models import MCQRecord


@dataclass(frozen=True, slots=True)
class BackendResult:
    mcqs: list[MCQRecord]
    text_length: int | None = None
    elapsed_ms: float = 0.0
    raw_question_count: int = 0
    warnings: list[str] = field(default_factory=list)


class FastBackend(Protocol):
    """Document-to-MCQ service tried before the OCR path.

    Implementations raise ``ProviderUnsupportedError`` when the document has
    no usable text layer and the caller should fall back to OCR.
    """

    async def generate(
        self,
        *,
        data: bytes,
        file_name: str,
        num_questions: int,
        difficulty: str,
    ) -> BackendResult: ...
