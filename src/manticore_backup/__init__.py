"""Consistent file-level backups of a running Manticore Search daemon."""

from __future__ import annotations

__version__ = "1.0.0"

from .client import ManticoreClient  # noqa: E402,F401
from .config import ManticoreConfig, load_config  # noqa: E402,F401
from .orchestrator import BackupOrchestrator, BackupResult  # noqa: E402,F401
from .storage import FilesystemStorage  # noqa: E402,F401
