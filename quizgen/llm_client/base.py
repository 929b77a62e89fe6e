from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class LLMResult:
    content: str
    raw_response: dict[str, Any]
    usage_normalized: dict[str, Any]
    timings: dict[str, float]


class LLMClient(Protocol):
    async def complete(
        self,
        *,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: dict[str, Any] | None = None,
    ) -> LLMResult: ...
