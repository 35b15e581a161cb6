from __future__ import annotations

import threading
from typing import Optional

from .errors import BackupInterrupted


class CancellationToken:
    """Shared flag set by the interruption handler and polled by the orchestrator."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._signum: Optional[int] = None

    def cancel(self, signum: Optional[int] = None) -> None:
        self._signum = signum
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def signum(self) -> Optional[int]:
        return self._signum

    def raise_if_cancelled(self, checkpoint: str) -> None:
        if self._event.is_set():
            raise BackupInterrupted(f"Backup interrupted before {checkpoint}", signum=self._signum)
