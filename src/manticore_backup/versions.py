from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

from .errors import VersionError

MIN_VERSION = "5.0.3"
MIN_DATE = "220526"
UNKNOWN_VERSION = "0.0.0"

_VERSION_TOKEN = r"(\d+\.\d+\.\d+[^()]*)"
_VERSION_RE = re.compile(
    rf"^{_VERSION_TOKEN}(\(columnar\s{_VERSION_TOKEN}\))?([^(]*\(secondary\s{_VERSION_TOKEN}\))?$",
    re.IGNORECASE | re.DOTALL,
)
_NUMBER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True)
class VersionInfo:
    manticore: str = UNKNOWN_VERSION
    columnar: str = UNKNOWN_VERSION
    secondary: str = UNKNOWN_VERSION

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @property
    def engine_number(self) -> Optional[Tuple[int, int, int]]:
        return _version_tuple(self.manticore.split(" ", 1)[0])

    @property
    def build_date(self) -> Optional[str]:
        """The ``YYMMDD`` part of a ``<hash>@<date>`` suffix, if any."""
        parts = self.manticore.split(" ")
        if len(parts) < 2 or "@" not in parts[1]:
            return None
        return parts[1].split("@", 1)[1] or None


def parse_versions(status: str) -> VersionInfo:
    match = _VERSION_RE.match(status.strip())
    if not match:
        return VersionInfo()

    def _group(index: int) -> str:
        value = match.group(index)
        return value.strip() if value else UNKNOWN_VERSION

    return VersionInfo(manticore=_group(1), columnar=_group(3), secondary=_group(5))


def _version_tuple(value: str) -> Optional[Tuple[int, int, int]]:
    match = _NUMBER_RE.match(value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def ensure_supported(
    versions: VersionInfo,
    min_version: str = MIN_VERSION,
    min_date: str = MIN_DATE,
) -> None:
    """Reject daemons older than ``min_version`` whose build predates ``min_date``.

    A daemon is accepted when its engine version is newer than ``min_version``
    or, failing that, when its build date is at or after ``min_date``.
    """
    number = versions.engine_number
    if number is None or versions.manticore == UNKNOWN_VERSION:
        raise VersionError("Failed to find the version of the manticore searchd")

    minimum = _version_tuple(min_version)
    if minimum is not None and number > minimum:
        return

    build_date = versions.build_date
    if build_date is None:
        if number == minimum:
            raise VersionError("Failed to find the build date of the manticore searchd")
    elif build_date >= min_date:
        return

    raise VersionError(
        f"You are running old version of manticore searchd, minimum required: {min_version}"
    )
