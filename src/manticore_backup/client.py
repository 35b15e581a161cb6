from __future__ import annotations

import logging
import os
import re
import threading
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

import requests

from .cancellation import CancellationToken
from .config import ManticoreConfig
from .errors import IdentityMismatchError, ProtocolError
from .versions import MIN_DATE, MIN_VERSION, VersionInfo, ensure_supported, parse_versions

API_PATH = "/sql?mode=raw"
DEFAULT_TIMEOUT = 3

EXTERNAL_FILE_SETTINGS = ("stopwords", "exceptions", "wordforms", "hitless_words")
_EXTERNAL_SETTING_RE = re.compile(
    r"^\s*(" + "|".join(EXTERNAL_FILE_SETTINGS) + r")\s*=\s*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)

Tables = Union[str, Sequence[str]]
SignalHandler = Callable[[int, Optional[object]], None]


class CleanableStorage(Protocol):
    def clean_up(self) -> None:
        ...


class ManticoreClient:
    """Issues control commands to a running searchd over its HTTP SQL endpoint.

    Construction refuses to proceed unless the daemon is recent enough and is the
    instance that was started with ``config.path``.
    """

    def __init__(
        self,
        config: ManticoreConfig,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        min_version: str = MIN_VERSION,
        min_date: str = MIN_DATE,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._timeout = timeout
        self._url = f"http://{config.host}:{config.port}{API_PATH}"
        self._log = logging.getLogger(self.__class__.__name__)
        # Readers copy the ledger under the lock and never iterate it live.
        self._held_lock = threading.RLock()
        self._held: Counter[str] = Counter()

        versions = self.get_versions()
        ensure_supported(versions, min_version=min_version, min_date=min_date)

        config_path = self.get_config_path()
        if config_path != str(config.path):
            raise IdentityMismatchError(
                f"Configs mismatched: '{config.path}' <> '{config_path}', "
                "make sure the instance you are backing up is using the provided config"
            )

        self._log.info(
            "Manticore versions: manticore=%s columnar=%s secondary=%s",
            versions.manticore,
            versions.columnar,
            versions.secondary,
        )

    @property
    def config(self) -> ManticoreConfig:
        return self._config

    @property
    def held_tables(self) -> Dict[str, int]:
        with self._held_lock:
            snapshot = dict(self._held)
        return {name: count for name, count in snapshot.items() if count > 0}

    # Locking ---------------------------------------------------------------
    def freeze(self, tables: Tables) -> List[str]:
        names = _as_list(tables)
        if not names:
            raise ProtocolError("Failed to get lock for tables - no tables given")

        tables_string = ", ".join(names)
        result = self._first_result(f"FREEZE {tables_string}")
        if result.get("error"):
            raise ProtocolError(f"Failed to get lock for tables - {tables_string}: {result['error']}")

        with self._held_lock:
            self._held.update(names)
        return [row["file"] for row in result.get("data", []) if row.get("file")]

    def unfreeze(self, tables: Tables) -> bool:
        names = _as_list(tables)
        with self._held_lock:
            for name in names:
                if self._held[name] > 0:
                    self._held[name] -= 1

        try:
            result = self._first_result(f"UNFREEZE {', '.join(names)}")
        except ProtocolError as exc:
            self._log.error("Failed to unfreeze %s: %s", ", ".join(names), exc)
            return False
        return not result.get("error")

    def unfreeze_all(self) -> bool:
        """Release every table one by one; a failed release never stops the sweep."""
        self._log.info("Unfreezing all tables...")
        try:
            names = list(self.get_tables())
        except ProtocolError as exc:
            self._log.error("Failed to list tables, unfreezing held tables only: %s", exc)
            names = list(self.held_tables)

        success = True
        for name in names:
            is_ok = self.unfreeze(name)
            self._log.info("  %s... %s", name, "OK" if is_ok else "FAIL")
            success = success and is_ok

        with self._held_lock:
            self._held.clear()
        return success

    def release_held(self) -> bool:
        """Release every outstanding acquisition recorded by :meth:`freeze`."""
        with self._held_lock:
            snapshot = dict(self._held)
        pending = [name for name, count in snapshot.items() for _ in range(count)]

        success = True
        for name in pending:
            success = self.unfreeze(name) and success
        return success

    # Introspection ---------------------------------------------------------
    def get_tables(self) -> Dict[str, str]:
        result = self._first_result("SHOW TABLES")
        return {row["Index"]: row.get("Type", "") for row in result.get("data", [])}

    def get_versions(self) -> VersionInfo:
        result = self._first_result("SHOW STATUS LIKE 'version'")
        rows = result.get("data") or [{}]
        return parse_versions(str(rows[0].get("Value", "")))

    def get_config_path(self) -> str:
        result = self._first_result("SHOW SETTINGS")
        rows = result.get("data") or []
        value = next(
            (
                row.get("Value")
                for row in rows
                if row.get("Setting_name", row.get("Variable_name")) == "configuration_file"
            ),
            rows[0].get("Value") if rows else None,
        )
        if not value or not os.path.exists(value):
            raise IdentityMismatchError("Unable to get config path from SHOW SETTINGS")

        config_path = os.path.realpath(value)
        if config_path.startswith("//"):
            config_path = "/" + config_path.lstrip("/")
        return config_path

    def get_table_external_files(self, table: str) -> List[str]:
        result = self._first_result(f"SHOW TABLE {table} SETTINGS")
        if result.get("error"):
            raise ProtocolError(f"Failed to read settings of table {table}: {result['error']}")

        rows = result.get("data") or []
        settings = "\n".join(str(row.get("Value", "")) for row in rows)
        files: List[str] = []
        for match in _EXTERNAL_SETTING_RE.finditer(settings):
            files.extend(match.group(2).split())
        return files

    def flush_attributes(self) -> None:
        result = self._first_result("FLUSH ATTRIBUTES")
        if result.get("error"):
            self._log.warning("FLUSH ATTRIBUTES reported an error: %s", result["error"])

    # Transport -------------------------------------------------------------
    def execute(self, query: str) -> List[Dict[str, Any]]:
        try:
            response = self._session.post(self._url, data={"query": query}, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ProtocolError("Failed to connect to the manticoresearch daemon. Is it running?") from exc

        if not response.content:
            raise ProtocolError(f'Failed to execute query: "{query}" (status {response.status_code})')

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f'Failed to decode response for query: "{query}"') from exc

        if isinstance(payload, dict) and "error" in payload:
            payload = [{"data": [], "error": payload["error"]}]
        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise ProtocolError(f'Unexpected response for query: "{query}"')
        return payload

    def _first_result(self, query: str) -> Dict[str, Any]:
        self._log.debug("Executing %s", query)
        return self.execute(query)[0]

    # Interruption ----------------------------------------------------------
    def get_signal_handler(
        self,
        storage: CleanableStorage,
        token: Optional[CancellationToken] = None,
    ) -> SignalHandler:
        """Build a SIGINT/SIGTERM handler.

        With a ``token`` the handler only cancels it; the orchestrator then removes
        the partial backup and unfreezes tables at its next checkpoint. Without one
        the clean-up and the unfreeze sweep run inside the handler itself.
        """

        def _handle(signum: int, _frame: Optional[object]) -> None:
            self._log.warning("Caught signal %s", signum)
            if token is not None:
                token.cancel(signum)
                return
            storage.clean_up()
            self.unfreeze_all()

        return _handle

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "ManticoreClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _as_list(tables: Tables) -> List[str]:
    if isinstance(tables, str):
        return [tables]
    return list(tables)
