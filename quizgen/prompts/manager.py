from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

import yaml

VERSION_RE = re.compile(r"^v(\d{3})$")
DEFAULT_PROMPTS_ROOT = Path(__file__).resolve().parent
DIFFICULTY_FILE_NAME = "difficulty.yaml"
DEFAULT_DIFFICULTY_HINT = "Difficulty: Moderate"


@dataclass(frozen=True, slots=True)
class PromptSet:
    prompt_name: str
    version: str
    template_text: str
    schema: dict[str, Any] | None
    meta: dict[str, Any]
    prompt_dir: Path

    @property
    def output_format(self) -> str:
        return str(self.meta.get("output_format") or "text")

    def render(self, **values: Any) -> str:
        return Template(self.template_text).substitute(
            {key: str(value) for key, value in values.items()}
        )


class PromptManager:
    def __init__(self, prompts_root: Path | str = DEFAULT_PROMPTS_ROOT) -> None:
        self.prompts_root = Path(prompts_root)

    def list_prompt_names(self) -> list[str]:
        if not self.prompts_root.exists():
            return []

        names: list[str] = []
        for child in self.prompts_root.iterdir():
            if not child.is_dir():
                continue
            if child.name.startswith("__"):
                continue
            if self.list_versions(child.name):
                names.append(child.name)
        return sorted(names)

    def list_versions(self, prompt_name: str) -> list[str]:
        prompt_dir = self.prompts_root / prompt_name
        if not prompt_dir.exists() or not prompt_dir.is_dir():
            return []

        versions: list[str] = []
        for child in prompt_dir.iterdir():
            if not child.is_dir():
                continue
            if VERSION_RE.match(child.name):
                versions.append(child.name)

        return sorted(versions, key=_version_to_int)

    def latest_version(self, prompt_name: str) -> str:
        versions = self.list_versions(prompt_name)
        if not versions:
            raise FileNotFoundError(f"No versions found for prompt: {prompt_name}")
        return versions[-1]

    def load_prompt_set(
        self, *, prompt_name: str, version: str | None = None
    ) -> PromptSet:
        version = version or self.latest_version(prompt_name)
        prompt_dir = self._prompt_dir(prompt_name=prompt_name, version=version)
        prompt_path = prompt_dir / "prompt.txt"
        schema_path = prompt_dir / "schema.json"
        meta_path = prompt_dir / "meta.yaml"

        if not prompt_path.exists():
            raise FileNotFoundError(f"prompt template not found: {prompt_path}")

        schema: dict[str, Any] | None = None
        if schema_path.exists():
            schema = _validate_schema_text(schema_path.read_text(encoding="utf-8"))

        meta: dict[str, Any] = {}
        if meta_path.exists():
            parsed_meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
            if isinstance(parsed_meta, dict):
                meta = parsed_meta

        return PromptSet(
            prompt_name=prompt_name,
            version=version,
            template_text=prompt_path.read_text(encoding="utf-8"),
            schema=schema,
            meta=meta,
            prompt_dir=prompt_dir,
        )

    def difficulty_hint(self, difficulty: str) -> str:
        path = self.prompts_root / DIFFICULTY_FILE_NAME
        if not path.exists():
            return DEFAULT_DIFFICULTY_HINT

        hints = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(hints, dict):
            raise ValueError(f"Difficulty hints must be a mapping: {path}")
        return str(hints.get(difficulty) or DEFAULT_DIFFICULTY_HINT)

    def _prompt_dir(self, *, prompt_name: str, version: str) -> Path:
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return self.prompts_root / prompt_name / version


def _validate_schema_text(schema_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(schema_text)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid schema JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ValueError("Schema JSON root must be an object")

    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
