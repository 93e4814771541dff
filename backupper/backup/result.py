"""
Outcome of a backup run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from backupper.errors import StageError


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Status(Enum):
    """Outcome of a run, ordered by severity."""
    SUCCESS = 'success'
    WARNING = 'warning'
    FAILURE = 'failure'

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def worst(cls, statuses: Iterable['Status']) -> 'Status':
        return max(statuses, key=lambda status: status.severity, default=cls.SUCCESS)


_SEVERITY = {
    Status.SUCCESS: 0,
    Status.WARNING: 1,
    Status.FAILURE: 2,
}


@dataclass
class TransferResult:
    """What happened at one storage destination."""
    destination: str
    location: Optional[str] = None
    error: Optional[str] = None
    removed: List[str] = field(default_factory=list)
    retention_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """
    Result of executing one trigger.

    The status only ever gets worse: a warning never replaces a failure.
    """
    trigger: str
    label: str = ''
    status: Status = Status.SUCCESS
    stage: Optional[str] = None
    message: Optional[str] = None
    error: Optional[BaseException] = None
    warnings: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    package: Any = None
    transfers: List[TransferResult] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    def fail(self, error: BaseException, stage: Optional[str] = None):
        """Record the error that failed the run."""
        self.status = Status.FAILURE
        self.error = error
        self.stage = stage or getattr(error, 'stage', None)
        self.message = error.describe() if isinstance(error, StageError) else str(error)

    def warn(self, message: str):
        """Record a non-fatal problem."""
        self.warnings.append(message)
        if self.status is Status.SUCCESS:
            self.status = Status.WARNING

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.started_at and self.finished_at:
            return int((self.finished_at - self.started_at).total_seconds())
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trigger': self.trigger,
            'label': self.label,
            'status': self.status.value,
            'stage': self.stage,
            'message': self.message,
            'warnings': list(self.warnings),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'package': self.package.basename if self.package is not None else None,
            'chunk_count': self.package.chunk_count if self.package is not None else None,
            'transfers': [
                {
                    'destination': transfer.destination,
                    'location': transfer.location,
                    'error': transfer.error,
                    'removed': list(transfer.removed),
                    'retention_error': transfer.retention_error
                }
                for transfer in self.transfers
            ]
        }
