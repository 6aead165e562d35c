"""Application configuration utilities."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json."""

    ai_base_url: str = Field(default="https://api.deepseek.com")
    ai_model: str = Field(default="deepseek-chat")
    ai_credentials: List[str] = Field(
        default_factory=list,
        description="Provisioned API keys; one is pinned per installation.",
    )
    max_requests_per_hour: int = Field(default=10, ge=0)
    max_requests_per_day: int = Field(default=30, ge=0)
    cache_validity_seconds: float = Field(default=3600, gt=0)
    request_timeout_seconds: float = Field(default=30, gt=0)
    max_retry_count: int = Field(default=3, ge=0)
    retry_interval_seconds: float = Field(default=2, ge=0)
    connectivity_probe_timeout_seconds: float = Field(default=3, gt=0)
    connectivity_probe_interval_seconds: float = Field(default=60, ge=0)
    database_path: str = Field(default="./data/babycare_ai.db")
    store_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key for the at-rest store; generated into a key file when absent.",
    )

    @property
    def resolved_database_path(self) -> Path:
        """Return the absolute path for the SQLite database file."""
        return (Path(__file__).resolve().parents[1] / self.database_path).resolve()

    @property
    def resolved_key_path(self) -> Path:
        return self.resolved_database_path.with_suffix(".key")


def _config_path() -> Path:
    override = os.getenv("BABYCARE_AI_CONFIG")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parents[1] / "config.json"


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    credentials = os.getenv("BABYCARE_AI_CREDENTIALS")
    if credentials:
        overrides["ai_credentials"] = [item.strip() for item in credentials.split(",") if item.strip()]
    store_key = os.getenv("BABYCARE_AI_STORE_KEY")
    if store_key:
        overrides["store_encryption_key"] = store_key
    return overrides


def load_config() -> AppConfig:
    """Load configuration from config.json, layering environment overrides on top."""

    config_file = _config_path()
    contents: Dict[str, Any] = {}
    if config_file.exists():
        contents = json.loads(config_file.read_text())
    else:
        example = config_file.with_name("config.example.json")
        logger.warning(
            "config.json not found, using defaults",
            extra={"expected": str(config_file), "example": str(example)},
        )
    contents.update(_env_overrides())
    return AppConfig(**contents)


CONFIG = load_config()
