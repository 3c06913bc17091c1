"""Configuration loaded from environment variables, with defaults."""

import os
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, field_validator

from .labels import DEFAULT_CERT_RESOLVER

DEFAULT_COMPOSE_FILE = "docker-compose.yml"
DEFAULT_NETWORKS = ["web", "internal"]


class Settings(BaseModel):
    compose_file: Path = Path(DEFAULT_COMPOSE_FILE)
    cert_resolver: str = DEFAULT_CERT_RESOLVER
    networks: List[str] = Field(default_factory=lambda: list(DEFAULT_NETWORKS))
    lock_timeout: float = Field(default=10.0, gt=0)
    compose_timeout: int = Field(default=600, gt=0)
    log_level: str = "WARNING"

    @field_validator("networks", mode="before")
    @classmethod
    def _split_networks(cls, value):
        if isinstance(value, str):
            return [n.strip() for n in value.split(",") if n.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``TRAEFIKER_*`` environment variables."""
        env = {
            "compose_file": os.getenv("TRAEFIKER_COMPOSE_FILE"),
            "cert_resolver": os.getenv("TRAEFIKER_CERT_RESOLVER"),
            "networks": os.getenv("TRAEFIKER_NETWORKS"),
            "lock_timeout": os.getenv("TRAEFIKER_LOCK_TIMEOUT"),
            "compose_timeout": os.getenv("TRAEFIKER_COMPOSE_TIMEOUT"),
            "log_level": os.getenv("TRAEFIKER_LOG_LEVEL"),
        }
        # Pydantic coerces the strings; unset variables keep their defaults
        return cls.model_validate({k: v for k, v in env.items() if v is not None})
