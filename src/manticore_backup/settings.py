from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .client import DEFAULT_TIMEOUT
from .errors import ConfigError

DEFAULT_SEARCHD_CONFIG = "/etc/manticoresearch/manticore.conf"


class BackupSettings(BaseModel):
    """Options of the backup tool itself, as opposed to the searchd config."""

    config: Path = Field(default=Path(DEFAULT_SEARCHD_CONFIG), description="Path to searchd config.")
    backup_dir: Optional[Path] = Field(default=None, description="Directory receiving backup-* roots.")
    tables: List[str] = Field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    @field_validator("config", "backup_dir")
    def _expand_path(cls, value: Optional[Path]) -> Optional[Path]:  # noqa: N805
        return value.expanduser() if value is not None else None

    @field_validator("tables", mode="before")
    def _split_tables(cls, value: Any) -> Any:  # noqa: N805
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value

    @field_validator("timeout")
    def _positive_timeout(cls, value: float) -> float:  # noqa: N805
        if value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @field_validator("log_level")
    def _upper_level(cls, value: str) -> str:  # noqa: N805
        return value.upper()

    def merged(self, overrides: Dict[str, Any]) -> "BackupSettings":
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return build_settings(values)


def build_settings(raw: Dict[str, Any]) -> BackupSettings:
    try:
        return BackupSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def load_settings(path: Optional[Path]) -> BackupSettings:
    if path is None:
        return BackupSettings()
    if not path.exists():
        raise ConfigError(f"Settings file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid settings file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")
    return build_settings(raw)
