"""Error taxonomy for backup runs.

Every error declares how the orchestrator treats it. ``ABORT`` errors unwind the
run immediately (releasing held freezes); ``DEFERRED`` failures are recorded and
only reported through a single :class:`BackupFailure` once all stages ran.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class FailurePolicy(str, Enum):
    ABORT = "abort"
    DEFERRED = "deferred"


class BackupError(Exception):
    """Base class for all backup errors."""

    policy: FailurePolicy = FailurePolicy.ABORT


class ConfigError(BackupError):
    """Raised when the searchd config or tool settings are invalid."""


class IdentityMismatchError(BackupError):
    """Raised when the daemon reports a different config file than the one parsed."""


class VersionError(BackupError):
    """Raised when the daemon is older than the minimum supported release."""


class ProtocolError(BackupError):
    """Raised when the control channel fails or the daemon rejects a command."""


class FilesystemError(BackupError):
    """Raised on structural filesystem failures (existing destination, mkdir)."""


class InvalidArgumentError(BackupError):
    """Raised when requested tables are not present on the daemon."""


class BackupInterrupted(BackupError):
    """Raised at an orchestration checkpoint once the run has been cancelled."""

    def __init__(self, message: str, signum: Optional[int] = None) -> None:
        super().__init__(message)
        self.signum = signum


class BackupFailure(BackupError):
    """Raised at the end of a run when one or more copy steps failed."""

    policy = FailurePolicy.DEFERRED

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]
