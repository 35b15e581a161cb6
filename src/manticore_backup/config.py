from __future__ import annotations

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from .errors import ConfigError

LOG = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9308
SCHEMA_FILENAME = "manticore.json"

_WINDOWS_ABSOLUTE_RE = re.compile(r"^[a-z]:\\", re.IGNORECASE)


class Directive(str, Enum):
    """Searchd directives consumed by the backup tool."""

    LISTEN = "listen"
    DATA_DIR = "data_dir"
    LEMMATIZER_BASE = "lemmatizer_base"
    SPHINXQL_STATE = "sphinxql_state"
    PLUGIN_DIR = "plugin_dir"


_DIRECTIVE_RE = re.compile(
    r"^\s*(" + "|".join(d.value for d in Directive) + r")\s*=\s*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)


def is_data_dir_valid(data_dir: str, windows: Optional[bool] = None) -> bool:
    if windows is None:
        windows = os.name == "nt"
    if windows:
        return bool(_WINDOWS_ABSOLUTE_RE.match(data_dir))
    return data_dir.startswith("/")


class ManticoreConfig(BaseModel):
    """Connection and filesystem parameters recovered from a searchd config."""

    model_config = ConfigDict(frozen=True)

    path: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    data_dir: str
    sphinxql_state: Optional[str] = None
    lemmatizer_base: Optional[str] = None
    plugin_dir: Optional[str] = None

    @field_validator("data_dir")
    def _require_absolute_data_dir(cls, value: str, info: ValidationInfo) -> str:  # noqa: N805
        windows = (info.context or {}).get("windows")
        if not is_data_dir_valid(value, windows=windows):
            raise ValueError("The data_dir parameter in searchd config should contain absolute path")
        return value

    @property
    def schema_path(self) -> str:
        return f"{self.data_dir}/{SCHEMA_FILENAME}"

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    def get_state_paths(self) -> List[str]:
        """Global state paths worth backing up; plugin_dir only when present on disk."""
        paths: List[str] = []
        if self.sphinxql_state is not None:
            paths.append(self.sphinxql_state)
        if self.lemmatizer_base is not None:
            paths.append(self.lemmatizer_base)
        if self.plugin_dir is not None and os.path.isdir(self.plugin_dir):
            paths.append(self.plugin_dir)
        return paths


def _set_listen(values: Dict[str, Any], raw: str) -> None:
    http_pos = raw.find(":http")
    if http_pos == -1:
        return
    listen = raw[:http_pos]
    try:
        if ":" in listen:
            host, port = listen.split(":", 1)
            values["host"] = host
            values["port"] = int(port)
        else:
            values["port"] = int(listen)
    except ValueError as exc:
        raise ConfigError(f"Unable to parse listen directive '{raw}'") from exc


def _setter(field_name: str) -> Callable[[Dict[str, Any], str], None]:
    def _set(values: Dict[str, Any], raw: str) -> None:
        values[field_name] = raw

    return _set


_DIRECTIVE_SETTERS: Dict[Directive, Callable[[Dict[str, Any], str], None]] = {
    Directive.LISTEN: _set_listen,
    Directive.DATA_DIR: _setter("data_dir"),
    Directive.LEMMATIZER_BASE: _setter("lemmatizer_base"),
    Directive.SPHINXQL_STATE: _setter("sphinxql_state"),
    Directive.PLUGIN_DIR: _setter("plugin_dir"),
}


def parse_config(text: str, path: Path, *, windows: Optional[bool] = None) -> ManticoreConfig:
    values: Dict[str, Any] = {"path": path}
    for match in _DIRECTIVE_RE.finditer(text):
        directive = Directive(match.group(1).lower())
        _DIRECTIVE_SETTERS[directive](values, match.group(2).strip())

    if "data_dir" not in values:
        raise ConfigError("Failed to detect data_dir from config file")

    try:
        config = ManticoreConfig.model_validate(values, context={"windows": windows})
    except ValidationError as exc:
        messages = "; ".join(str(err["msg"]).removeprefix("Value error, ") for err in exc.errors())
        raise ConfigError(messages) from exc

    LOG.info("Manticore config endpoint = %s", config.endpoint)
    return config


def load_config(path: Path, *, windows: Optional[bool] = None) -> ManticoreConfig:
    if not path.is_file():
        raise ConfigError(f"Failed to read config file: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc

    return parse_config(text, Path(os.path.realpath(path)), windows=windows)
