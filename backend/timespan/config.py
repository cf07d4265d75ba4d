from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_CODE_EXTENSIONS = [
    "py", "rs", "js", "ts", "jsx", "tsx", "java", "kt", "scala", "go", "rb", "php",
    "c", "h", "cpp", "hpp", "cc", "cs", "swift", "m", "sh", "sql", "vue", "svelte",
]
DEFAULT_DOC_EXTENSIONS = ["md", "markdown", "rst", "txt", "adoc", "html", "htm", "xml", "css"]


def _split_list(value: str | List[str] | None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        items = value
    else:
        items = value.split(",")
    return [str(item).strip().lstrip(".").lower() for item in items if str(item).strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="TS_", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "TimeSpan"
    host: str = os.getenv("TS_HOST", "127.0.0.1")
    port: int = int(os.getenv("TS_PORT", "8080"))
    log_level: str = os.getenv("TS_LOG_LEVEL", "INFO")

    sqlite_path: Path = Path(os.getenv("TS_SQLITE_PATH", "./data/timespan.db"))
    sqlite_timeout: float = float(os.getenv("TS_SQLITE_TIMEOUT", "5"))
    export_dir: Path = Path(os.getenv("TS_EXPORT_DIR", "./data/exports"))

    timezone: str = os.getenv("TS_TIMEZONE", "UTC")

    max_name_length: int = 100
    max_description_length: int = 500
    max_tag_length: int = 50

    code_extensions: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_CODE_EXTENSIONS))
    doc_extensions: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_DOC_EXTENSIONS))
    code_extension_minutes: int = 5
    doc_extension_minutes: int = 1

    client_project_prefix: str = "[CLIENT]"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("TS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG")
        return normalized

    @field_validator("code_extensions", "doc_extensions", mode="before")
    @classmethod
    def _split_extensions(cls, value: str | List[str] | None) -> List[str]:
        return _split_list(value)

    @field_validator("max_name_length", "max_description_length", "max_tag_length")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("length limits must be >= 1")
        return value


def configure_logging(level: str) -> None:
    """Configure root logging for the CLI and the HTTP server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
