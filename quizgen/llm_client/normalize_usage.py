from __future__ import annotations

from typing import Any

_PROMPT_KEYS = ("prompt_tokens", "promptTokens", "input_tokens")
_COMPLETION_KEYS = ("completion_tokens", "completionTokens", "output_tokens")
_TOTAL_KEYS = ("total_tokens", "totalTokens")


def normalize_chat_usage(usage: dict[str, Any] | None) -> dict[str, Any]:
    """Map a chat-completion ``usage`` block onto stable token keys.

    OpenRouter may also report ``cost`` (credits) and cached prompt tokens;
    both are kept when present.
    """
    usage_data = usage if isinstance(usage, dict) else {}

    prompt_tokens = _first_int(usage_data, _PROMPT_KEYS)
    completion_tokens = _first_int(usage_data, _COMPLETION_KEYS)
    total_tokens = _first_int(usage_data, _TOTAL_KEYS)
    if total_tokens is None and (
        prompt_tokens is not None or completion_tokens is not None
    ):
        total_tokens = (prompt_tokens or 0) + (completion_tokens or 0)

    details = usage_data.get("prompt_tokens_details")
    cached_tokens = None
    if isinstance(details, dict):
        cached_tokens = _first_int(details, ("cached_tokens",))

    cost = usage_data.get("cost")
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
        "cached_tokens": cached_tokens,
        "cost": float(cost) if isinstance(cost, (int, float)) else None,
    }


def _first_int(data: dict[str, Any], keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return int(value)
    return None
