from __future__ import annotations

import json

import pytest

from quizgen.pipeline.models import MCQRecord
from quizgen.pipeline.record_parser import (
    extract_json_payload,
    parse_json_response,
    parse_mcq_response,
    parse_question_section,
    parse_structured_questions,
    split_question_sections,
)

TOPICS = [
    "Indus Valley Civilization",
    "Mauryan Empire",
    "Gupta period",
    "Mughal administration",
    "Bhakti movement",
    "Revolt of 1857",
    "Indian National Congress",
    "Non-Cooperation Movement",
    "Constituent Assembly",
    "Panchayati Raj",
]


def _block(
    number: int,
    *,
    topic: str = "Indus Valley Civilization",
    correct: str | None = "B",
    explanation: str | None = "Because the evidence points there.",
    drop_option: str | None = None,
    framing: str = ".",
) -> str:
    lines = [f"Question {number}: Which statement about the {topic} is correct?"]
    for letter, text in zip("ABCD", ("Alpha", "Bravo", "Charlie", "Delta")):
        if letter == drop_option:
            continue
        lines.append(f"{letter}{framing} {text} statement about the {topic}")
    if correct is not None:
        lines.append(f"Correct Answer: {correct}")
    if explanation is not None:
        lines.append(f"Explanation: {explanation}")
    return "\n".join(lines)


def _render(records: list[MCQRecord]) -> str:
    blocks = []
    for number, record in enumerate(records, start=1):
        lines = [f"Question {number}: {record.question}"]
        for letter, text in record.options.items():
            lines.append(f"{letter}. {text}")
        lines.append(f"Correct Answer: {record.correct_answer}")
        if record.explanation:
            lines.append(f"Explanation: {record.explanation}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def test_parses_exactly_k_well_formed_blocks() -> None:
    response = "\n\n".join(
        _block(index + 1, topic=topic) for index, topic in enumerate(TOPICS)
    )

    records = parse_mcq_response(response)

    assert len(records) == 10
    first = records[0]
    assert first.question == (
        "Which statement about the Indus Valley Civilization is correct?"
    )
    assert first.option_a == "Alpha statement about the Indus Valley Civilization"
    assert first.option_d == "Delta statement about the Indus Valley Civilization"
    assert first.correct_answer == "B"
    assert first.explanation == "Because the evidence points there."
    assert [record.question for record in records][1].startswith(
        "Which statement about the Mauryan Empire"
    )
    assert all(record.is_valid() for record in records)


def test_section_missing_an_option_is_dropped_without_raising() -> None:
    response = "\n\n".join(
        [
            _block(1, topic="Mauryan Empire"),
            _block(2, topic="Gupta period", drop_option="C"),
            _block(3, topic="Bhakti movement"),
        ]
    )

    records = parse_mcq_response(response)

    assert len(records) == 2
    assert "Mauryan Empire" in records[0].question
    assert "Bhakti movement" in records[1].question


def test_missing_correct_answer_marker_defaults_to_a() -> None:
    records = parse_mcq_response(_block(1, correct=None))

    assert len(records) == 1
    assert records[0].correct_answer == "A"


def test_parenthesis_option_framing_is_accepted() -> None:
    records = parse_mcq_response(_block(1, framing=")", correct="d"))

    assert len(records) == 1
    expected_c = "Charlie statement about the Indus Valley Civilization"
    assert records[0].option_c == expected_c
    assert records[0].correct_answer == "D"


def test_explanation_is_optional() -> None:
    records = parse_mcq_response(_block(1, explanation=None))

    assert records[0].explanation is None


def test_reparsing_rendered_records_is_idempotent() -> None:
    response = "\n\n".join(
        _block(index + 1, topic=topic, correct="ABCD"[index % 4])
        for index, topic in enumerate(TOPICS[:4])
    )

    records = parse_mcq_response(response)

    assert parse_mcq_response(_render(records)) == records
    assert parse_mcq_response(response) == records


def test_noise_and_markdown_are_tolerated() -> None:
    response = (
        "Sure! Here are your questions.\r\n\r\n"
        "**Question 1:** What was the capital of the Mauryan Empire?\r\n"
        "A. Pataliputra\r\n"
        "B. Taxila\r\n"
        "C. Ujjain\r\n"
        "D. Kaushambi\r\n"
        "**Correct Answer:** A\r\n"
        "Explanation: Pataliputra served as the imperial capital.\r\n"
    )

    records = parse_mcq_response(response)

    assert len(records) == 1
    assert records[0].question == "What was the capital of the Mauryan Empire?"
    assert records[0].explanation == "Pataliputra served as the imperial capital."


def test_multi_statement_questions_keep_their_numbered_lines() -> None:
    response = (
        "Question 1: Consider the following statements:\n"
        "1. The Harappans used burnt bricks.\n"
        "2. The Harappans knew iron smelting.\n"
        "Which of the statements given above is/are correct?\n"
        "A. 1 only\n"
        "B. 2 only\n"
        "C. Both 1 and 2\n"
        "D. Neither 1 nor 2\n"
        "Correct Answer: A\n"
    )

    records = parse_mcq_response(response)

    assert len(records) == 1
    assert "1. The Harappans used burnt bricks." in records[0].question
    assert records[0].question.endswith("is/are correct?")


def test_bare_numbered_questions_split_when_no_labels_present() -> None:
    response = (
        "1. Who founded the Maurya dynasty in ancient India?\n"
        "A) Chandragupta Maurya\nB) Ashoka\nC) Bindusara\nD) Dasharatha\n"
        "Answer: A\n\n"
        "2. Which Gupta ruler is called the Napoleon of India?\n"
        "A) Chandragupta I\nB) Samudragupta\nC) Skandagupta\nD) Kumaragupta\n"
        "Answer: B\n"
    )

    sections = split_question_sections(response)
    records = parse_mcq_response(response)

    assert len(sections) == 2
    assert [record.correct_answer for record in records] == ["A", "B"]
    assert records[0].question == "Who founded the Maurya dynasty in ancient India?"


def test_word_correct_inside_question_is_not_the_answer_marker() -> None:
    section = (
        "Question 1: Which of the following is correct:\n"
        "A. The first statement\nB. The second statement\n"
        "C. The third statement\nD. The fourth statement\n"
        "Correct Answer: C"
    )

    record = parse_question_section(section)

    assert record is not None
    assert record.correct_answer == "C"


def test_short_question_and_empty_input_are_rejected() -> None:
    assert parse_mcq_response("") == []
    assert parse_mcq_response("   \n") == []
    section = "Question 1: Why?\nA. one one one\nB. two\nC. three\nD. four"
    assert parse_question_section(section) is None


def test_multiline_option_text_is_collapsed() -> None:
    section = (
        "Question 1: Which river valley hosted the earliest Harappan sites?\n"
        "A. The Indus river\n   and its tributaries\n"
        "B. The Ganga\nC. The Narmada\nD. The Kaveri\n"
        "Correct Answer: A"
    )

    record = parse_question_section(section)

    assert record is not None
    assert record.option_a == "The Indus river and its tributaries"


def test_structured_questions_map_first_correct_option() -> None:
    payload = {
        "questions": [
            {
                "question": "Which dynasty built the Sanchi stupa first?",
                "options": [
                    {"text": "Gupta", "isCorrect": False},
                    {"text": "Maurya", "isCorrect": True},
                    {"text": "Kushan", "isCorrect": True},
                    {"text": "Chola", "isCorrect": False},
                    {"text": "Extra ignored", "isCorrect": False},
                ],
                "explanation": "Ashoka commissioned it.",
            },
            {
                "question": "Which option is flagged when none is correct?",
                "options": [{"text": t, "isCorrect": False} for t in "wxyz"],
            },
            {
                "question": "Too few options to be usable here",
                "options": [{"text": "only", "isCorrect": True}],
            },
        ]
    }

    records = parse_structured_questions(payload)

    assert len(records) == 2
    assert records[0].correct_answer == "B"
    assert records[0].option_d == "Chola"
    assert records[0].explanation == "Ashoka commissioned it."
    assert records[1].correct_answer == "A"

    with pytest.raises(ValueError):
        parse_structured_questions({"items": []})


def test_json_response_with_fences_is_decoded() -> None:
    payload = {
        "questions": [
            {
                "question": "Who wrote the Arthashastra treatise?",
                "options": [
                    {"text": "Kautilya", "isCorrect": True},
                    {"text": "Kalidasa", "isCorrect": False},
                    {"text": "Banabhatta", "isCorrect": False},
                    {"text": "Megasthenes", "isCorrect": False},
                ],
            }
        ]
    }
    response = "```json\n" + json.dumps(payload) + "\n```"

    assert extract_json_payload(response) == payload
    records = parse_json_response(response)
    assert records[0].option_a == "Kautilya"

    with pytest.raises(ValueError):
        parse_json_response("Question 1: not json at all")


@pytest.mark.parametrize("lead", ["### ", "## ", "> ", "- ", "* "])
def test_markdown_decorated_question_labels_split_into_records(lead: str) -> None:
    response = "\n\n".join(
        lead + _block(number, topic=topic)
        for number, topic in enumerate(TOPICS, start=1)
    )

    records = parse_mcq_response(response)

    assert len(records) == len(TOPICS)
    assert records[0].question == (
        "Which statement about the Indus Valley Civilization is correct?"
    )
    decorations = ("#", ">", "-", "*")
    assert not any(record.question.startswith(decorations) for record in records)
    assert records[-1].explanation == "Because the evidence points there."
