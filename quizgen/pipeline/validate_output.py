from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator


def validate_payload(*, payload: Any, schema: dict[str, Any] | None) -> list[str]:
    """Return schema violations as ``path: message`` strings (empty if valid)."""
    if schema is None:
        return []

    validator = Draft202012Validator(schema)
    errors = sorted(
        validator.iter_errors(payload),
        key=lambda item: "/".join(str(part) for part in item.absolute_path),
    )

    messages: list[str] = []
    for error in errors:
        path = "/".join(str(item) for item in error.absolute_path)
        if path:
            messages.append(f"{path}: {error.message}")
        else:
            messages.append(error.message)

    return messages
