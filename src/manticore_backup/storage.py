from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .errors import FilesystemError

LOG = logging.getLogger(__name__)

BACKUP_DIR_PREFIX = "backup-"
BACKUP_DIR_FORMAT = "%Y%m%d%H%M%S"
SUBDIRECTORIES = ("data", "config", "external", "state")


@dataclass
class BackupPaths:
    root: Path
    data: Path
    config: Path
    external: Path
    state: Path


@dataclass
class FilesystemStorage:
    """Stores backups as plain directory trees under ``target_dir``."""

    target_dir: Path
    dir_mode: int = 0o755

    def __post_init__(self) -> None:
        self.target_dir = Path(self.target_dir).expanduser()
        self._root: Optional[Path] = None
        self._cleaned = False
        if not self.target_dir.is_dir():
            raise FilesystemError(f"Backup directory does not exist: {self.target_dir}")
        if not os.access(self.target_dir, os.W_OK):
            raise FilesystemError(f"Backup directory is not writable: {self.target_dir}")

    @property
    def root(self) -> Optional[Path]:
        return self._root

    def prepare_destination(self, started_at: datetime) -> BackupPaths:
        root = self.target_dir / f"{BACKUP_DIR_PREFIX}{started_at.strftime(BACKUP_DIR_FORMAT)}"
        if root.exists():
            raise FilesystemError(
                f"Failed to get destination directory for backup, there is such dir already: {root}"
            )

        self.create_directory(root)
        self._root = root
        for name in SUBDIRECTORIES:
            self.create_directory(root / name)

        return BackupPaths(
            root=root,
            data=root / "data",
            config=root / "config",
            external=root / "external",
            state=root / "state",
        )

    def create_directory(self, path: Path) -> None:
        try:
            path.mkdir(mode=self.dir_mode)
        except OSError as exc:
            raise FilesystemError(f"Failed to create directory - \"{path}\": {exc}") from exc

    def copy_paths(self, paths: Iterable[str], destination: Path, preserve_path: bool = False) -> bool:
        """Copy every path into ``destination``; returns False if any copy failed."""
        success = True
        for source in paths:
            if self._cleaned:
                LOG.warning("Storage was cleaned up, skipping copy of %s", source)
                success = False
                continue
            try:
                self._copy(Path(source), destination, preserve_path)
            except OSError as exc:
                LOG.error("Failed to copy %s to %s: %s", source, destination, exc)
                success = False
        return success

    def _copy(self, source: Path, destination: Path, preserve_path: bool) -> None:
        if not source.exists():
            raise FileNotFoundError(f"No such file or directory: '{source}'")

        target_dir = destination
        if preserve_path:
            relative_parent = source.parent.relative_to(source.parent.anchor)
            target_dir = destination / relative_parent
            target_dir.mkdir(parents=True, exist_ok=True)

        target = target_dir / source.name
        if source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
        else:
            shutil.copy2(source, target)

    @staticmethod
    def calculate_files_size(paths: Iterable[str]) -> int:
        total = 0
        for item in paths:
            path = Path(item)
            if path.is_dir():
                total += sum(child.stat().st_size for child in path.rglob("*") if child.is_file())
            elif path.is_file():
                total += path.stat().st_size
        return total

    def clean_up(self) -> None:
        """Remove the partially written backup of the current run."""
        self._cleaned = True
        if self._root is None or not self._root.exists():
            return
        LOG.info("Removing partial backup %s", self._root)
        try:
            shutil.rmtree(self._root)
        except OSError as exc:
            LOG.warning("Failed to remove partial backup %s: %s", self._root, exc)

    @staticmethod
    def sync() -> None:
        if hasattr(os, "sync"):
            os.sync()

