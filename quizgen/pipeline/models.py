from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Literal

AnswerLetter = Literal["A", "B", "C", "D"]
Stage = Literal[
    "picking", "reading", "extracting", "generating", "parsing", "complete", "error"
]
Strategy = Literal["backend", "ocr"]

ANSWER_LETTERS: tuple[AnswerLetter, ...] = ("A", "B", "C", "D")
STAGE_ORDER: tuple[Stage, ...] = (
    "picking",
    "reading",
    "extracting",
    "generating",
    "parsing",
    "complete",
)
MIN_QUESTION_CHARS = 10


@dataclass(frozen=True, slots=True)
class MCQRecord:
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: AnswerLetter = "A"
    explanation: str | None = None
    user_answer: AnswerLetter | None = None

    @property
    def options(self) -> dict[AnswerLetter, str]:
        return {
            "A": self.option_a,
            "B": self.option_b,
            "C": self.option_c,
            "D": self.option_d,
        }

    def is_valid(self) -> bool:
        if len(self.question.strip()) < MIN_QUESTION_CHARS:
            return False
        if self.correct_answer not in ANSWER_LETTERS:
            return False
        return all(option.strip() for option in self.options.values())

    def with_user_answer(self, answer: AnswerLetter) -> "MCQRecord":
        if answer not in ANSWER_LETTERS:
            raise ValueError(f"Answer must be one of A-D, got {answer!r}")
        return replace(self, user_answer=answer)

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "optionA": self.option_a,
            "optionB": self.option_b,
            "optionC": self.option_c,
            "optionD": self.option_d,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
            "userAnswer": self.user_answer,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "MCQRecord":
        return cls(
            question=str(payload.get("question") or ""),
            option_a=str(payload.get("optionA") or ""),
            option_b=str(payload.get("optionB") or ""),
            option_c=str(payload.get("optionC") or ""),
            option_d=str(payload.get("optionD") or ""),
            correct_answer=payload.get("correctAnswer") or "A",
            explanation=payload.get("explanation"),
            user_answer=payload.get("userAnswer"),
        )


@dataclass(frozen=True, slots=True)
class ProcessingStatus:
    stage: Stage
    progress: int
    message: str
    start_time: float


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    success: bool
    mcqs: list[MCQRecord]
    file_name: str
    processing_time_ms: int
    text_length: int | None = None
    error: str | None = None
    error_code: str | None = None
    strategy: Strategy | None = None
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.success and not self.mcqs:
            raise ValueError("successful result must contain at least one MCQ")
        if self.success == (self.error is not None):
            raise ValueError("error must be present exactly when success is False")

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mcqs"] = [mcq.to_dict() for mcq in self.mcqs]
        return payload
