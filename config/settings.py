# ContractRecovery/config/settings.py

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')

class Settings(BaseSettings):
    # Extraction collaborator
    llm_backend: str = Field(default="lmstudio", env="LLM_BACKEND")
    extraction_model: str = Field(default="gpt-oss:20b", env="EXTRACTION_MODEL")
    extraction_temperature: float = Field(default=0.0, env="EXTRACTION_TEMPERATURE")
    extraction_max_tokens: int = Field(default=8192, env="EXTRACTION_MAX_TOKENS")

    lmstudio_base_url: str = Field(
        default="http://127.0.0.1:1234", env="LMSTUDIO_BASE_URL"
    )
    lmstudio_timeout: int = Field(default=120, env="LMSTUDIO_TIMEOUT")
    lmstudio_api_key: Optional[str] = Field(
        default=None, env="LMSTUDIO_API_KEY"
    )
    ollama_host: str = Field(default="http://127.0.0.1:11434", env="OLLAMA_HOST")

    # Table detection and classification
    table_detection_workers: int = Field(default=4, env="TABLE_DETECTION_WORKERS")
    page_split_threshold: int = Field(default=5000, env="PAGE_SPLIT_THRESHOLD")
    page_chunk_size: int = Field(default=4000, env="PAGE_CHUNK_SIZE")
    keyword_window_chars: int = Field(default=1000, env="KEYWORD_WINDOW_CHARS")
    span_overlap_threshold: float = Field(
        default=0.7, env="SPAN_OVERLAP_THRESHOLD"
    )
    classification_threshold: float = Field(
        default=3.0, env="CLASSIFICATION_THRESHOLD"
    )
    table_context_chars: int = Field(default=200, env="TABLE_CONTEXT_CHARS")

    # Record recovery cascade
    recovery_max_workers: int = Field(default=4, env="RECOVERY_MAX_WORKERS")
    recovery_stage_timeout: float = Field(
        default=600.0, env="RECOVERY_STAGE_TIMEOUT"
    )
    code_scan_limit: int = Field(default=50, env="CODE_SCAN_LIMIT")
    code_context_chars: int = Field(default=200, env="CODE_CONTEXT_CHARS")
    section_window_chars: int = Field(default=2000, env="SECTION_WINDOW_CHARS")
    line_scan_limit: int = Field(default=100, env="LINE_SCAN_LIMIT")
    line_min_length: int = Field(default=20, env="LINE_MIN_LENGTH")
    aggressive_prefix_chars: int = Field(
        default=30000, env="AGGRESSIVE_PREFIX_CHARS"
    )
    aggressive_temperature: float = Field(
        default=0.2, env="AGGRESSIVE_TEMPERATURE"
    )

    class Config:
        env_file = ENV_FILE_PATH
        env_file_encoding = 'utf-8'
        extra = "ignore"

    @field_validator("llm_backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value):
        """Lower-case backend names supplied via environment variables."""

        if value is None:
            return "lmstudio"
        text = str(value).strip().lower()
        return text or "lmstudio"

    @field_validator("span_overlap_threshold")
    @classmethod
    def _check_ratio(cls, value):
        if not 0.0 < value <= 1.0:
            raise ValueError("span_overlap_threshold must be within (0, 1]")
        return value

try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
