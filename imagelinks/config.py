"""
Configuration management for imagelinks.

This module loads environment variables (optionally via a .env file) and validates them
using pydantic models. The resulting Settings object is passed to the scanner, rewriter
and propagator.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .models import ReferencePolicy

DEFAULT_IMAGE_EXTENSIONS = ["png", "jpg", "jpeg", "gif", "bmp", "webp", "svg"]
TRUTHY = {"1", "true", "t", "yes", "y", "on"}
FALSY = {"0", "false", "f", "no", "n", "off"}


class Settings(BaseModel):
    """Runtime configuration derived from environment variables."""

    vault_path: Path = Field(alias="IMAGELINKS_VAULT_PATH")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")
    dry_run: bool = Field(alias="DRY_RUN", default=False)
    multiple_references: ReferencePolicy = Field(
        alias="IMAGELINKS_MULTIPLE_REFERENCES", default=ReferencePolicy.FIRST
    )
    path_naming_depth: int = Field(alias="IMAGELINKS_PATH_NAMING_DEPTH", default=3, ge=1, le=5)
    max_display_size: int = Field(alias="IMAGELINKS_MAX_DISPLAY_SIZE", default=10000, ge=1)
    link_path_style: Literal["preserve", "shortest", "relative", "absolute"] = Field(
        alias="IMAGELINKS_LINK_PATH_STYLE", default="preserve"
    )
    skip_code_blocks: bool = Field(alias="IMAGELINKS_SKIP_CODE_BLOCKS", default=True)
    strict_concurrency: bool = Field(alias="IMAGELINKS_STRICT_CONCURRENCY", default=False)
    io_retry_attempts: int = Field(alias="IMAGELINKS_IO_RETRY_ATTEMPTS", default=3, ge=1)
    rename_dedup_seconds: float = Field(alias="IMAGELINKS_RENAME_DEDUP_SECONDS", default=2.0, ge=0)
    change_log_path: Optional[Path] = Field(alias="IMAGELINKS_CHANGE_LOG", default=None)
    image_extensions: List[str] = Field(
        alias="IMAGELINKS_IMAGE_EXTENSIONS",
        default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS),
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(sorted(allowed))}")
        return normalized

    @field_validator("dry_run", "skip_code_blocks", "strict_concurrency", mode="before")
    @classmethod
    def parse_bool(cls, value: str | bool) -> bool:
        if isinstance(value, bool):
            return value
        lower = str(value).strip().lower()
        if lower in TRUTHY:
            return True
        if lower in FALSY:
            return False
        raise ValueError("expected a boolean-like value (true/false)")

    @field_validator("multiple_references", "link_path_style", mode="before")
    @classmethod
    def parse_choice(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("image_extensions", mode="before")
    @classmethod
    def parse_extensions(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            return [str(item).strip().lstrip(".").lower() for item in value if str(item).strip()]
        return value

    @field_validator("change_log_path", mode="before")
    @classmethod
    def empty_path_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("vault_path", mode="after")
    @classmethod
    def ensure_absolute_path(cls, value: Path) -> Path:
        return value if value.is_absolute() else value.resolve()

    def is_image(self, path: str) -> bool:
        suffix = Path(path).suffix.lstrip(".").lower()
        return suffix in self.image_extensions


def _find_env_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Detect the .env file to load if present."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        raise FileNotFoundError(f"Explicit .env file not found: {explicit_path}")
    default_path = Path(".env")
    return default_path if default_path.exists() else None


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load and validate configuration from environment variables.

    Parameters
    ----------
    env_file:
        Path to a .env file. If omitted, `.env` in the working directory is used when present.

    Returns
    -------
    Settings
        Validated configuration object.

    Raises
    ------
    ValidationError
        If the configuration is invalid or incomplete.
    FileNotFoundError
        If the configured vault does not exist.
    """
    env_path = _find_env_file(env_file)
    if env_path:
        load_dotenv(env_path, override=False)

    try:
        settings = Settings.model_validate(os.environ)
    except ValidationError as exc:
        missing = {err["loc"][0] for err in exc.errors() if err["type"] == "missing"}
        if missing:
            missing_env = ", ".join(sorted(str(name) for name in missing))
            raise RuntimeError(
                f"Invalid configuration. Missing environment variables: {missing_env}."
            ) from exc
        raise

    if not settings.vault_path.exists():
        raise FileNotFoundError(f"IMAGELINKS_VAULT_PATH does not exist: {settings.vault_path}")

    return settings
