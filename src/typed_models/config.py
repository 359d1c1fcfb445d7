"""Runtime configuration loaded from YAML."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    data_dir: str = "data"


class LogConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None
    rotation: str = "1 day"
    retention: str = "30 days"


class OrmConfig(BaseModel):
    """Settings of one typed_models deployment."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    superuser_id: int = 1
    default_limit: int = 80

    @classmethod
    def load(cls, path: str | Path) -> OrmConfig:
        """Load a YAML configuration file; missing sections keep their defaults."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return cls(**raw)
