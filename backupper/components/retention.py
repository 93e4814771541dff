"""
Retention bookkeeping shared by all storage destinations.

Every destination stores a package under {path}/{trigger}/{timestamp}/, so a
package's identity for retention purposes is (trigger, timestamp). Timestamps
use a fixed-width format that sorts lexicographically in time order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional

TIMESTAMP_FORMAT = '%Y.%m.%d.%H.%M.%S'


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as a package timestamp."""
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> Optional[datetime]:
    """
    Parse a package timestamp.

    Returns:
        datetime, or None if the text is not a package timestamp
    """
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT)
    except (TypeError, ValueError):
        return None


@dataclass
class RemotePackage:
    """
    A package that already exists at a destination.

    Attributes:
        trigger: Trigger the package belongs to
        timestamp: Package timestamp string
        location: Destination-specific location of the package directory
        files: Destination-specific locations of the package's files
    """
    trigger: str
    timestamp: str
    location: str
    files: List[Any] = field(default_factory=list)


def select_expired(packages: Iterable[RemotePackage], keep: int) -> List[RemotePackage]:
    """
    Select the packages to remove so that only the newest `keep` remain.

    Args:
        packages: Packages found at a destination for a single trigger
        keep: Number of packages to keep

    Returns:
        Packages to remove, oldest first
    """
    if keep is None:
        return []
    if keep < 0:
        raise ValueError(f"keep must not be negative: {keep}")

    ordered = sorted(packages, key=lambda package: package.timestamp)
    if len(ordered) <= keep:
        return []
    return ordered[:len(ordered) - keep]
