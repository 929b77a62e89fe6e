from __future__ import annotations

import json
import re
from typing import Any

from quizgen.logging import get_logger
from quizgen.pipeline.models import ANSWER_LETTERS, MIN_QUESTION_CHARS, MCQRecord

MIN_SECTION_CHARS = 50

# optional markdown decoration (headings, quotes, bullets) before the label
_MARKDOWN_LEAD = r"(?:[#>*\-][ \t#>*\-]*)?"
_LABELLED_BOUNDARY_RE = re.compile(
    rf"^(?=[ \t]*{_MARKDOWN_LEAD}question[ \t]*\d+)", re.IGNORECASE | re.MULTILINE
)
_NUMBERED_BOUNDARY_RE = re.compile(r"^(?=[ \t]*\d+[ \t]*[.)][ \t])", re.MULTILINE)
_QUESTION_PREFIX_RE = re.compile(
    rf"^\s*{_MARKDOWN_LEAD}(?:question\s*\d+\s*[:.)\-]?|\d+\s*[.)])\s*",
    re.IGNORECASE,
)
_OPTION_LINE_RE = re.compile(r"^\s*[(\[]?([A-Da-d])\s*[.)\]]\s*(.*)$")
_STOP_LINE_RE = re.compile(r"^\s*(?:correct|explanation|answer\s*[:\-])", re.IGNORECASE)
_CORRECT_RE = re.compile(
    r"^[ \t]*(?:correct[ \t]*(?:answer|option)?|answer)[ \t]*(?:is)?[ \t]*[:\-]?"
    r"[ \t]*[(\[]?([A-Da-d])(?![A-Za-z])",
    re.IGNORECASE | re.MULTILINE,
)
_EXPLANATION_RE = re.compile(
    r"^[ \t]*explanation[ \t]*[:\-]?\s*(.+)", re.IGNORECASE | re.MULTILINE | re.DOTALL
)
_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

logger = get_logger()


def parse_mcq_response(response: str) -> list[MCQRecord]:
    """Recover MCQ records from free-form model text.

    Malformed sections are dropped, never raised. Order follows the input.
    """
    if not isinstance(response, str) or not response.strip():
        return []

    normalized = response.replace("\r\n", "\n").replace("**", "")
    records: list[MCQRecord] = []
    for section in split_question_sections(normalized):
        record = parse_question_section(section)
        if record is None:
            logger.debug("Dropped malformed question section: %.60r", section)
            continue
        records.append(record)
    return records


def split_question_sections(text: str) -> list[str]:
    # "Question N" labels win over bare "N." numbering, which also appears
    # inside multi-statement questions
    boundary = (
        _LABELLED_BOUNDARY_RE
        if _LABELLED_BOUNDARY_RE.search(text)
        else _NUMBERED_BOUNDARY_RE
    )
    sections: list[str] = []
    for section in boundary.split(text):
        stripped = section.strip()
        if len(stripped) < MIN_SECTION_CHARS:
            continue
        sections.append(stripped)
    return sections


def parse_question_section(section: str) -> MCQRecord | None:
    lines = section.split("\n")
    first_option_index = _find_first_option_line(lines)
    if first_option_index is None:
        return None

    question = _collapse(" ".join(lines[:first_option_index]))
    question = _QUESTION_PREFIX_RE.sub("", question, count=1).strip()
    if len(question) < MIN_QUESTION_CHARS:
        return None

    options = _extract_options(lines[first_option_index:])
    if any(not options.get(letter) for letter in ANSWER_LETTERS):
        return None

    tail = "\n".join(lines[first_option_index:])
    correct_match = _CORRECT_RE.search(tail)
    correct_answer = correct_match.group(1).upper() if correct_match else "A"

    explanation_match = _EXPLANATION_RE.search(tail)
    explanation = _collapse(explanation_match.group(1)) if explanation_match else ""

    return MCQRecord(
        question=question,
        option_a=options["A"],
        option_b=options["B"],
        option_c=options["C"],
        option_d=options["D"],
        correct_answer=correct_answer,
        explanation=explanation or None,
    )


def parse_structured_questions(payload: Any) -> list[MCQRecord]:
    """Map ``{questions: [{question, options: [{text, isCorrect}], explanation}]}``."""
    if isinstance(payload, dict):
        questions = payload.get("questions")
    else:
        questions = payload
    if not isinstance(questions, list):
        raise ValueError("Structured payload does not contain a questions list")

    records: list[MCQRecord] = []
    for item in questions:
        record = _structured_item_to_record(item)
        if record is None:
            logger.debug("Dropped malformed structured question: %.60r", item)
            continue
        records.append(record)
    return records


def extract_json_payload(response: str) -> Any:
    """Decode the outermost JSON object of a model reply, ignoring code fences."""
    text = _JSON_FENCE_RE.sub("", response.strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Model response does not contain a JSON object")
    return json.loads(text[start : end + 1])


def parse_json_response(response: str) -> list[MCQRecord]:
    """Decode a JSON model reply; raises ``ValueError`` when it is not JSON."""
    return parse_structured_questions(extract_json_payload(response))


def _structured_item_to_record(item: Any) -> MCQRecord | None:
    if not isinstance(item, dict):
        return None

    question = _collapse(str(item.get("question") or ""))
    options = item.get("options")
    if len(question) < MIN_QUESTION_CHARS or not isinstance(options, list):
        return None
    if len(options) < len(ANSWER_LETTERS):
        return None

    texts: list[str] = []
    correct_answer = "A"
    correct_seen = False
    for letter, option in zip(ANSWER_LETTERS, options):
        if isinstance(option, dict):
            text = _collapse(str(option.get("text") or ""))
            is_correct = bool(option.get("isCorrect"))
        else:
            text = _collapse(str(option or ""))
            is_correct = False
        if not text:
            return None
        if is_correct and not correct_seen:
            correct_answer = letter
            correct_seen = True
        texts.append(text)

    explanation = _collapse(str(item.get("explanation") or ""))
    return MCQRecord(
        question=question,
        option_a=texts[0],
        option_b=texts[1],
        option_c=texts[2],
        option_d=texts[3],
        correct_answer=correct_answer,
        explanation=explanation or None,
    )


def _find_first_option_line(lines: list[str]) -> int | None:
    # line 0 holds the question marker, options never start there
    for index, line in enumerate(lines[1:], start=1):
        match = _OPTION_LINE_RE.match(line)
        if match and match.group(1).upper() == "A":
            return index
    return None


def _extract_options(lines: list[str]) -> dict[str, str]:
    options: dict[str, list[str]] = {}
    current: str | None = None
    for line in lines:
        if _STOP_LINE_RE.match(line):
            break
        match = _OPTION_LINE_RE.match(line)
        if match:
            letter = match.group(1).upper()
            if letter in options:
                current = None
                continue
            options[letter] = [match.group(2)]
            current = letter
            continue
        if current is not None and line.strip():
            options[current].append(line)
    return {letter: _collapse(" ".join(parts)) for letter, parts in options.items()}


def _collapse(text: str) -> str:
    return " ".join(text.split())
