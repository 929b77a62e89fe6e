from __future__ import annotations

from dataclasses import dataclass
from typing import Any

REPLACEMENT_CHAR = "�"
MIN_ALPHA_RATIO = 0.2


@dataclass(frozen=True, slots=True)
class OCRQualityReport:
    warnings: list[str]
    bad_pages: list[int]
    total_chars: int

    @property
    def ok(self) -> bool:
        return not self.bad_pages

    def to_dict(self) -> dict[str, Any]:
        return {
            "warnings": self.warnings,
            "bad_pages": self.bad_pages,
            "total_chars": self.total_chars,
        }


def evaluate_ocr_quality(
    page_texts: list[str],
    *,
    min_chars: int = 200,
    min_alpha_ratio: float = MIN_ALPHA_RATIO,
) -> OCRQualityReport:
    """Flag pages whose OCR text looks unusable; never raises on bad pages."""
    warnings: list[str] = []
    bad_pages: list[int] = []
    seen: dict[str, int] = {}

    for page_number, raw_text in enumerate(page_texts, start=1):
        text = raw_text.strip()
        problems = _page_problems(
            text, min_chars=min_chars, min_alpha_ratio=min_alpha_ratio
        )

        # OCR engines occasionally return the same page body twice
        if text and text in seen:
            problems.append(f"duplicates page {seen[text]}")
        elif text:
            seen[text] = page_number

        if problems:
            bad_pages.append(page_number)
            warnings.extend(f"Page {page_number}: {problem}." for problem in problems)

    return OCRQualityReport(
        warnings=warnings,
        bad_pages=bad_pages,
        total_chars=sum(len(text) for text in page_texts),
    )


def _page_problems(text: str, *, min_chars: int, min_alpha_ratio: float) -> list[str]:
    if not text:
        return ["no text recognized"]

    problems: list[str] = []
    if len(text) < min_chars:
        problems.append(f"short text ({len(text)} < {min_chars} characters)")

    alpha_ratio = sum(character.isalpha() for character in text) / len(text)
    if alpha_ratio < min_alpha_ratio:
        problems.append(f"low alphabetic ratio ({alpha_ratio:.2f})")

    replacements = text.count(REPLACEMENT_CHAR)
    if replacements:
        problems.append(f"contains replacement characters ({replacements})")

    return problems
