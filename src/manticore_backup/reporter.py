from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from .orchestrator import BackupResult

LOG = logging.getLogger("manticore_backup.progress")


class Stage(str, Enum):
    LAYOUT = "layout"
    VERSIONS = "versions"
    TABLES = "tables"
    CONFIG = "config files"
    FREEZE = "freeze"
    DATA = "tables data"
    EXTERNAL = "external table files"
    STATE = "global state files"
    SYNC = "sync"


class BackupReporter(Protocol):
    def run_started(self, tables: Optional[Sequence[str]]) -> None:
        ...

    def stage_started(self, stage: Stage) -> None:
        ...

    def item_started(self, stage: Stage, name: str, size: Optional[int] = None) -> None:
        ...

    def item_result(self, stage: Stage, name: str, success: bool) -> None:
        ...

    def run_completed(self, result: "BackupResult") -> None:
        ...


def format_size(size: int) -> str:
    return f"{size / 1024 ** 3:.3f}G"


class LoggingReporter:
    """Reports backup progress through the ``logging`` module."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or LOG

    def run_started(self, tables: Optional[Sequence[str]]) -> None:
        if tables:
            self._log.info("Starting the backup of %s...", ", ".join(tables))
        else:
            self._log.info("Starting the backup...")

    def stage_started(self, stage: Stage) -> None:
        self._log.info("Backing up %s...", stage.value)

    def item_started(self, stage: Stage, name: str, size: Optional[int] = None) -> None:
        if size is None:
            self._log.info("  %s...", name)
        else:
            self._log.info("  %s [%s]...", name, format_size(size))

    def item_result(self, stage: Stage, name: str, success: bool) -> None:
        log = self._log.info if success else self._log.error
        log("  %s - %s", name, "OK" if success else "FAIL")

    def run_completed(self, result: "BackupResult") -> None:
        self._log.info("You can find backup here: %s", result.root)
        self._log.info("Elapsed time: %.2fs", result.elapsed)
