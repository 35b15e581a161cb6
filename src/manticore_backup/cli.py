from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence

from . import __version__
from .cancellation import CancellationToken
from .client import ManticoreClient, SignalHandler
from .config import load_config
from .errors import BackupError, BackupInterrupted, ConfigError, FailurePolicy, InvalidArgumentError
from .logger import configure_logging
from .orchestrator import BackupOrchestrator
from .settings import BackupSettings, load_settings
from .storage import FilesystemStorage

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="manticore-backup",
        description="Consistent file-level backup of a running Manticore Search daemon.",
    )
    parser.add_argument("--config", help="Path to the searchd config of the instance to back up.")
    parser.add_argument("--backup-dir", help="Directory where the backup-<timestamp> root is created.")
    parser.add_argument("--tables", help="Comma separated tables to back up. Backs up everything when omitted.")
    parser.add_argument(
        "--settings",
        default=os.getenv("MANTICORE_BACKUP_SETTINGS"),
        help="Optional YAML file with default options.",
    )
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL"), help="Log level (default INFO).")
    parser.add_argument(
        "--unlock",
        action="store_true",
        help="Unfreeze every table of the instance and exit; use after an aborted backup.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> BackupSettings:
    settings_path = Path(args.settings).expanduser() if args.settings else None
    overrides: Dict[str, object] = {
        "config": args.config,
        "backup_dir": args.backup_dir,
        "tables": args.tables,
        "log_level": args.log_level,
    }
    return load_settings(settings_path).merged(overrides)


@contextmanager
def signal_handlers(handler: SignalHandler) -> Iterator[None]:
    previous = {signum: signal.getsignal(signum) for signum in HANDLED_SIGNALS}
    for signum in HANDLED_SIGNALS:
        signal.signal(signum, handler)
    try:
        yield
    finally:
        for signum, prior in previous.items():
            signal.signal(signum, prior)


def run_backup(settings: BackupSettings, client: ManticoreClient, backup_dir: Path) -> int:
    storage = FilesystemStorage(backup_dir)
    token = CancellationToken()
    orchestrator = BackupOrchestrator(client, storage, token=token)

    with signal_handlers(client.get_signal_handler(storage, token)):
        try:
            orchestrator.run(settings.tables or None)
        except BackupInterrupted as exc:
            logging.warning("%s", exc)
            return 128 + (exc.signum or signal.SIGINT)
        except BackupError as exc:
            if exc.policy is not FailurePolicy.DEFERRED:
                raise
            logging.error("%s", exc)
            for error in getattr(exc, "errors", None) or [str(exc)]:
                logging.error("  %s", error)
            return EXIT_FAILURE
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO")

    try:
        settings = resolve_settings(args)
    except ConfigError as exc:
        logging.error("Configuration error: %s", exc)
        return EXIT_USAGE
    configure_logging(settings.log_level)

    if settings.backup_dir is None and not args.unlock:
        logging.error("--backup-dir is required unless --unlock is given")
        return EXIT_USAGE

    try:
        config = load_config(settings.config)
        with ManticoreClient(config, timeout=settings.timeout) as client:
            if args.unlock:
                return EXIT_OK if client.unfreeze_all() else EXIT_FAILURE
            return run_backup(settings, client, settings.backup_dir)
    except (ConfigError, InvalidArgumentError) as exc:
        logging.error("%s", exc)
        return EXIT_USAGE
    except BackupError as exc:
        logging.error("%s", exc)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
