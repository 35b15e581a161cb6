from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .cancellation import CancellationToken
from .client import ManticoreClient
from .errors import BackupFailure, BackupInterrupted, FilesystemError, InvalidArgumentError, ProtocolError
from .reporter import BackupReporter, LoggingReporter, Stage
from .storage import BackupPaths, FilesystemStorage
from .versions import VersionInfo

LOG = logging.getLogger(__name__)

VERSIONS_FILENAME = "versions.json"

Clock = Callable[[], datetime]


@dataclass
class BackupResult:
    root: Path
    tables: List[str]
    is_all: bool
    started_at: datetime
    elapsed: float


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupOrchestrator:
    """Runs a single freeze-copy-unfreeze backup of a searchd instance.

    Structural failures (destination layout, per-table directories, control
    channel errors) abort the run at once. Copy failures are collected and
    raised together as :class:`BackupFailure` after every stage was attempted.
    Held freezes are always released before :meth:`run` returns or raises.
    An interruption observed at a checkpoint removes the partial backup and
    unfreezes every table before :class:`BackupInterrupted` propagates.
    """

    def __init__(
        self,
        client: ManticoreClient,
        storage: FilesystemStorage,
        *,
        reporter: Optional[BackupReporter] = None,
        token: Optional[CancellationToken] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._client = client
        self._storage = storage
        self._reporter = reporter or LoggingReporter()
        self._token = token or CancellationToken()
        self._clock = clock

    def run(self, tables: Optional[Sequence[str]] = None) -> BackupResult:
        try:
            return self._run(tables)
        except BackupInterrupted:
            self._abandon()
            raise

    def _run(self, tables: Optional[Sequence[str]]) -> BackupResult:
        started = time.monotonic()
        started_at = self._clock()
        self._reporter.run_started(tables)

        self._checkpoint(Stage.TABLES)
        is_all, names = self._resolve_tables(tables)

        self._checkpoint(Stage.LAYOUT)
        self._reporter.stage_started(Stage.LAYOUT)
        paths = self._storage.prepare_destination(started_at)

        self._checkpoint(Stage.VERSIONS)
        self._store_versions(self._client.get_versions(), paths.root)

        errors: List[str] = []
        try:
            self._backup_config(paths, errors)
            self._freeze_and_flush(names)
            self._backup_tables(names, paths, errors)
            if is_all:
                self._backup_external_files(names, paths, errors)
                self._backup_state(paths, errors)
        finally:
            if not self._client.release_held():
                LOG.warning("Some tables could not be unfrozen, run with --unlock to release them")

        if errors:
            raise BackupFailure(
                "Failed to make backup of tables. "
                "Please check that script has rights to access source and destination directories",
                errors=errors,
            )

        self._checkpoint(Stage.SYNC)
        self._storage.sync()
        self._checkpoint(Stage.SYNC)

        result = BackupResult(
            root=paths.root,
            tables=names,
            is_all=is_all,
            started_at=started_at,
            elapsed=round(time.monotonic() - started, 2),
        )
        self._reporter.run_completed(result)
        return result

    # Stages ----------------------------------------------------------------
    def _resolve_tables(self, tables: Optional[Sequence[str]]) -> Tuple[bool, List[str]]:
        catalog = self._client.get_tables()
        if not tables:
            return True, list(catalog)

        unknown = [name for name in tables if name not in catalog]
        if unknown:
            raise InvalidArgumentError(f"You passed unexisting tables: {', '.join(unknown)}")
        return False, list(dict.fromkeys(tables))

    def _store_versions(self, versions: VersionInfo, root: Path) -> None:
        target = root / VERSIONS_FILENAME
        try:
            with target.open("w", encoding="utf-8") as fh:
                json.dump(versions.to_dict(), fh)
        except OSError as exc:
            raise FilesystemError(f'Failed to store versions to "{root}": {exc}') from exc

    def _backup_config(self, paths: BackupPaths, errors: List[str]) -> None:
        self._checkpoint(Stage.CONFIG)
        self._reporter.stage_started(Stage.CONFIG)
        config = self._client.config
        is_ok = self._storage.copy_paths([str(config.path), config.schema_path], paths.config)
        self._record(Stage.CONFIG, "config files", is_ok, errors)

    def _freeze_and_flush(self, names: List[str]) -> None:
        if not names:
            return
        self._checkpoint(Stage.FREEZE)
        self._client.freeze(names)
        self._client.flush_attributes()

    def _backup_tables(self, names: List[str], paths: BackupPaths, errors: List[str]) -> None:
        self._reporter.stage_started(Stage.DATA)
        for name in names:
            self._checkpoint(Stage.DATA)
            files = self._client.freeze(name)
            self._reporter.item_started(Stage.DATA, name, self._storage.calculate_files_size(files))

            backup_path = paths.data / name
            try:
                self._storage.create_directory(backup_path)
            except FilesystemError:
                self._client.unfreeze(name)
                raise

            try:
                is_ok = self._storage.copy_paths(files, backup_path)
            finally:
                self._client.unfreeze(name)
            self._record(Stage.DATA, name, is_ok, errors)

    def _backup_external_files(self, names: List[str], paths: BackupPaths, errors: List[str]) -> None:
        self._reporter.stage_started(Stage.EXTERNAL)
        for name in names:
            self._checkpoint(Stage.EXTERNAL)
            self._reporter.item_started(Stage.EXTERNAL, name)
            try:
                files = self._client.get_table_external_files(name)
            except ProtocolError as exc:
                LOG.error("Failed to list external files of %s: %s", name, exc)
                self._record(Stage.EXTERNAL, name, False, errors)
                continue

            destination = paths.external / name
            try:
                self._storage.create_directory(destination)
            except FilesystemError as exc:
                LOG.error("%s", exc)
                self._record(Stage.EXTERNAL, name, False, errors)
                continue

            is_ok = self._storage.copy_paths(files, destination, preserve_path=True)
            self._record(Stage.EXTERNAL, name, is_ok, errors)

    def _backup_state(self, paths: BackupPaths, errors: List[str]) -> None:
        self._checkpoint(Stage.STATE)
        self._reporter.stage_started(Stage.STATE)
        state_paths = self._client.config.get_state_paths()
        is_ok = self._storage.copy_paths(state_paths, paths.state)
        self._record(Stage.STATE, "global state files", is_ok, errors)

    # Helpers ---------------------------------------------------------------
    def _record(self, stage: Stage, name: str, is_ok: bool, errors: List[str]) -> None:
        self._reporter.item_result(stage, name, is_ok)
        if not is_ok:
            errors.append(f"Backup of {stage.value} failed: {name}")

    def _checkpoint(self, stage: Stage) -> None:
        self._token.raise_if_cancelled(stage.value)

    def _abandon(self) -> None:
        LOG.warning("Backup interrupted, removing partial backup and unfreezing tables")
        self._storage.clean_up()
        if not self._client.unfreeze_all():
            LOG.warning("Some tables could not be unfrozen, run with --unlock to release them")
