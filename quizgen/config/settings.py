from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

Difficulty = Literal["beginner", "pro", "advanced"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QUIZGEN_",
        extra="ignore",
    )

    data_dir: Path = Path("data")
    models_config_path: Path = Path("quizgen/config/models.yaml")

    ocr_endpoint: str = "https://api.ocr.space/parse/image"
    ocr_language: str = "eng"
    ocr_engine: int = Field(default=2, ge=1, le=3)
    llm_base_url: str = "https://openrouter.ai/api/v1/chat/completions"
    site_url: str = "https://upsc-prep-app.com"
    site_name: str = "UPSC Prep App"
    backend_base_url: str | None = None
    use_native_backend: bool = False

    max_concurrent_requests: int = Field(default=5, ge=1)
    max_file_size_bytes: int = Field(default=5 * 1024 * 1024, ge=1)
    num_questions: int = Field(default=10, ge=1, le=100)
    difficulty: Difficulty = "pro"
    ocr_char_budget: int = Field(default=15_000, ge=1)
    direct_char_budget: int = Field(default=50_000, ge=1)
    min_extracted_chars: int = Field(default=50, ge=0)
    min_native_text_chars: int = Field(default=100, ge=0)
    chunk_count: int = Field(default=1, ge=1)
    prefer_structured_output: bool = False
    fallback_on_backend_error: bool = False

    read_timeout_seconds: float = Field(default=10.0, gt=0)
    ocr_timeout_seconds: float = Field(default=60.0, gt=0)
    generation_call_timeout_seconds: float = Field(default=45.0, gt=0)
    generation_stage_timeout_seconds: float = Field(default=60.0, gt=0)
    backend_timeout_seconds: float = Field(default=60.0, gt=0)
    generation_max_retries: int = Field(default=2, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)

    ocr_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("QUIZGEN_OCR_API_KEY", "OCR_SPACE_API_KEY"),
    )
    llm_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("QUIZGEN_LLM_API_KEY", "OPENROUTER_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_data_dir(self) -> Path:
        return self._resolve_path(self.data_dir)

    @property
    def resolved_models_config_path(self) -> Path:
        return self._resolve_path(self.models_config_path)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def models_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_models_config_path)

    def resolve_model(self, task: str) -> dict[str, Any]:
        tasks = self.models_config.get("tasks")
        if not isinstance(tasks, dict) or task not in tasks:
            raise KeyError(f"No model configured for task: {task}")

        entry = tasks[task]
        if isinstance(entry, str):
            entry = {"model": entry}
        if not isinstance(entry, dict) or not entry.get("model"):
            raise ValueError(f"Model entry for task {task} must define 'model'")

        aliases = self.models_config.get("models") or {}
        model = str(entry["model"])
        return {**entry, "model": str(aliases.get(model, model))}

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
