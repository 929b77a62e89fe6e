from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class OCROptions:
    language: str = "eng"
    engine: int = 2
    detect_orientation: bool = True
    scale: bool = True
    overlay_required: bool = False
    min_chars: int = 50


@dataclass(frozen=True, slots=True)
class OCRResult:
    text: str
    page_texts: list[str]
    pages_count: int
    quality_warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
