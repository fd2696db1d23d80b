"""
Application configuration via environment variables or a JSON config file.

The nested sections mirror the ``models.json`` layout the agent has always
used (``models``, ``api``, ``generation``, ``execution``). Environment
variables override nested keys with a double underscore, e.g.
``EXECUTION__MAX_ATTEMPTS=3``.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"

DEFAULT_STANDING_INSTRUCTIONS = """You are a meticulous research and problem-solving assistant.
Work step by step, state your assumptions, and prefer concrete, verifiable
information over speculation. Answer in well-structured markdown."""

MODEL_ALIASES = ("default", "search", "thinking", "evaluation", "thinking_advanced")


class ModelAliases(BaseModel):
    """Logical model slots resolved to concrete backend model ids."""
    default: str = "gpt-4.1-mini"
    search: str = "gpt-4o-mini-search-preview"
    thinking: str = "o4-mini"
    evaluation: str = "gpt-4.1"
    thinking_advanced: str = "o1"

    def resolve(self, alias: str) -> str:
        if alias not in MODEL_ALIASES:
            raise ValueError(f"Unknown model alias: {alias!r} (expected one of {MODEL_ALIASES})")
        return getattr(self, alias)


class ApiSettings(BaseModel):
    endpoint: str = DEFAULT_ENDPOINT
    timeout_ms: int = Field(120000, ge=0)


class GenerationSettings(BaseModel):
    max_tokens: int = Field(1200, gt=0)
    max_completion_tokens: int = Field(10000, gt=0)
    default_temperature: float = Field(0.2, ge=0.0, le=2.0)


class ExecutionSettings(BaseModel):
    max_attempts: int = Field(10, gt=0)
    target_score: int = Field(10, ge=0, le=10)


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Refinement Agent"
    debug: bool = False

    # Model backend
    llm_api_key: str = ""
    standing_instructions: str = DEFAULT_STANDING_INSTRUCTIONS
    models: ModelAliases = Field(default_factory=ModelAliases)
    api: ApiSettings = Field(default_factory=ApiSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)

    # Loop
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    # Reports
    reports_dir: str = "reports"
    report_format: Literal["markdown", "pdf"] = "markdown"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "Settings":
        """
        Load settings from a JSON file shaped like ``config/models.json``.

        Values from the file take precedence over environment variables.
        Raises OSError if the file cannot be read and ValueError (including
        pydantic's ValidationError) if it is malformed.
        """
        raw = Path(path).read_text(encoding="utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        return cls(**data)


settings = Settings()
