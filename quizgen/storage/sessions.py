from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from quizgen.config.settings import Settings
from quizgen.pipeline.models import ANSWER_LETTERS, AnswerLetter, MCQRecord

SESSIONS_FILE_NAME = "pdf_mcq_sessions.json"
CURRENT_FILE_NAME = "pdf_mcq_current.json"
MAX_SESSIONS = 50


@dataclass(frozen=True, slots=True)
class QuizSession:
    id: str
    pdf_name: str
    created_at: str
    mcqs: list[MCQRecord]
    user_answers: dict[int, AnswerLetter] = field(default_factory=dict)
    completed: bool = False
    score: int | None = None
    last_accessed_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pdfName": self.pdf_name,
            "createdAt": self.created_at,
            "mcqs": [mcq.to_dict() for mcq in self.mcqs],
            "userAnswers": {
                str(key): value for key, value in self.user_answers.items()
            },
            "completed": self.completed,
            "score": self.score,
            "lastAccessedAt": self.last_accessed_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "QuizSession":
        answers = payload.get("userAnswers") or {}
        return cls(
            id=str(payload["id"]),
            pdf_name=str(payload.get("pdfName") or ""),
            created_at=str(payload.get("createdAt") or ""),
            mcqs=[MCQRecord.from_dict(item) for item in payload.get("mcqs") or []],
            user_answers={int(key): value for key, value in answers.items()},
            completed=bool(payload.get("completed")),
            score=payload.get("score"),
            last_accessed_at=str(payload.get("lastAccessedAt") or ""),
        )


@dataclass(frozen=True, slots=True)
class SessionScore:
    answered: int
    correct: int
    total: int
    percentage: int


class SessionStore:
    """Quiz sessions kept as JSON files, newest first."""

    def __init__(
        self, data_dir: Path | str, *, max_sessions: int = MAX_SESSIONS
    ) -> None:
        self.data_dir = Path(data_dir)
        self.max_sessions = max_sessions

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionStore":
        return cls(settings.resolved_data_dir)

    @property
    def sessions_path(self) -> Path:
        return self.data_dir / SESSIONS_FILE_NAME

    @property
    def current_path(self) -> Path:
        return self.data_dir / CURRENT_FILE_NAME

    def save_session(self, pdf_name: str, mcqs: list[MCQRecord]) -> QuizSession:
        timestamp = _utc_now()
        session = QuizSession(
            id=_generate_session_id(),
            pdf_name=pdf_name,
            created_at=timestamp,
            mcqs=list(mcqs),
            last_accessed_at=timestamp,
        )
        sessions = [session, *self.list_sessions()][: self.max_sessions]
        self._write_sessions(sessions)
        _write_json(self.current_path, session.to_dict())
        return session

    def list_sessions(self) -> list[QuizSession]:
        payload = _read_json(self.sessions_path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ValueError(
                f"Sessions file root must be a list: {self.sessions_path}"
            )
        return [QuizSession.from_dict(item) for item in payload]

    def get_session(self, session_id: str) -> QuizSession | None:
        for session in self.list_sessions():
            if session.id == session_id:
                return session
        return None

    def get_current_session(self) -> QuizSession | None:
        payload = _read_json(self.current_path)
        if payload is None:
            return None
        return QuizSession.from_dict(payload)

    def record_answer(
        self, session_id: str, question_index: int, answer: str
    ) -> QuizSession | None:
        letter = answer.strip().upper()
        if letter not in ANSWER_LETTERS:
            raise ValueError(f"Answer must be one of A-D, got: {answer!r}")

        def _apply(session: QuizSession) -> QuizSession:
            if not 0 <= question_index < len(session.mcqs):
                raise IndexError(f"Question index out of range: {question_index}")
            mcqs = list(session.mcqs)
            mcqs[question_index] = mcqs[question_index].with_user_answer(letter)
            return replace(
                session,
                mcqs=mcqs,
                user_answers={**session.user_answers, question_index: letter},
            )

        return self._update(session_id, _apply)

    def complete_session(self, session_id: str) -> QuizSession | None:
        return self._update(
            session_id,
            lambda session: replace(
                session,
                completed=True,
                score=calculate_session_score(session).percentage,
            ),
        )

    def delete_session(self, session_id: str) -> bool:
        sessions = self.list_sessions()
        remaining = [session for session in sessions if session.id != session_id]
        if len(remaining) == len(sessions):
            return False

        self._write_sessions(remaining)
        current = self.get_current_session()
        if current is not None and current.id == session_id:
            self.current_path.unlink(missing_ok=True)
        return True

    def _update(self, session_id: str, apply) -> QuizSession | None:
        sessions = self.list_sessions()
        for index, session in enumerate(sessions):
            if session.id != session_id:
                continue
            updated = replace(apply(session), last_accessed_at=_utc_now())
            sessions[index] = updated
            self._write_sessions(sessions)

            current = self.get_current_session()
            if current is not None and current.id == session_id:
                _write_json(self.current_path, updated.to_dict())
            return updated
        return None

    def _write_sessions(self, sessions: list[QuizSession]) -> None:
        _write_json(self.sessions_path, [session.to_dict() for session in sessions])


def calculate_session_score(session: QuizSession) -> SessionScore:
    total = len(session.mcqs)
    correct = sum(
        1
        for index, mcq in enumerate(session.mcqs)
        if session.user_answers.get(index) == mcq.correct_answer
    )
    percentage = round(correct / total * 100) if total else 0
    return SessionScore(
        answered=len(session.user_answers),
        correct=correct,
        total=total,
        percentage=percentage,
    )


def _generate_session_id() -> str:
    return f"pdf_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
