import logging

from sqlalchemy.exc import SQLAlchemyError

from backupper import db
from backupper.backup.result import utcnow

logger = logging.getLogger(__name__)


class RunRecord(db.Model):
    """Backup run history and logs"""
    __tablename__ = 'run_history'

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(255), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)  # success, warning, failure
    stage = db.Column(db.String(50))  # Failing stage, if any
    error_message = db.Column(db.Text)
    package_name = db.Column(db.String(500))
    size_bytes = db.Column(db.BigInteger)
    chunk_count = db.Column(db.Integer)
    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    logs = db.Column(db.Text)  # Detailed execution logs

    @classmethod
    def from_result(cls, result) -> 'RunRecord':
        """Build a history row from a RunResult."""
        package = result.package
        message = result.message
        if result.warnings and not message:
            message = '\n'.join(result.warnings)

        return cls(
            trigger=result.trigger,
            status=result.status.value,
            stage=result.stage,
            error_message=message,
            package_name=package.basename if package is not None else None,
            size_bytes=_package_size(package),
            chunk_count=package.chunk_count if package is not None else None,
            started_at=result.started_at or utcnow(),
            completed_at=result.finished_at,
            logs='\n'.join(result.logs) if result.logs else None
        )

    @property
    def duration_seconds(self):
        if self.completed_at and self.started_at:
            return int((self.completed_at - self.started_at).total_seconds())
        return None

    def to_dict(self, include_logs=False):
        data = {
            'id': self.id,
            'trigger': self.trigger,
            'status': self.status,
            'stage': self.stage,
            'error_message': self.error_message,
            'package_name': self.package_name,
            'size_bytes': self.size_bytes,
            'size_mb': round(self.size_bytes / 1024 / 1024, 2) if self.size_bytes else None,
            'chunk_count': self.chunk_count,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
        }
        if include_logs:
            data['logs'] = self.logs
        else:
            data['has_logs'] = bool(self.logs)
        return data

    def __repr__(self):
        return f'<RunRecord trigger={self.trigger} status={self.status}>'


class DatabaseHistory:
    """Records run results as RunRecord rows. Needs an application context."""

    def record(self, result):
        record = RunRecord.from_result(result)
        try:
            db.session.add(record)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to save run history for {result.trigger}: {e}")
            return None
        return record


def _package_size(package):
    if package is None:
        return None
    # Recorded by the manifest; chunk files are gone once the workspace is removed
    return package.total_size
