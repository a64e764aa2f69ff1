"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Diffable server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Paths
    base_dir: Path = Path(".")
    resource_store_path: str | None = None
    resource_folders: list[Path] = Field(default_factory=lambda: [Path("static")])

    # Serving
    url_prefix: str = "/diffable"
    keep_resources_in_memory: bool = True

    # Delta encoding
    block_size: int = Field(default=20, ge=1)
    hash_algorithm: str = "md5"
    hasher: Literal["rolling", "digest"] = "rolling"
    prime_base: int = Field(default=257, ge=2)
    prime_mod: int = Field(default=1_000_000_007, ge=2)

    # Monitoring
    resource_monitor_interval: float = Field(default=2.0, gt=0)

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    def resolved_resource_folders(self) -> list[Path]:
        """Resource folders with relative entries resolved against ``base_dir``."""
        return [
            folder if folder.is_absolute() else self.base_dir / folder
            for folder in self.resource_folders
        ]
