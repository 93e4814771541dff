"""
Error taxonomy for backup runs.

Stage errors carry the name of the pipeline stage that failed and the
diagnostic text of the underlying tool or library, so the executor can hand
both to the notifiers.

- ConfigurationError: raised while loading a trigger, before any stage runs
- DatabaseDumpError, PackagingError, CompressionError, EncryptionError:
  abort the remaining stages, outcome is failure
- StorageTransferError: aggregated across destinations, outcome is failure
- RetentionError: downgrades the outcome to warning
- NotifierError: logged and swallowed by the notifier
- UnhandledFault: anything else, caught at the run coordinator boundary
"""

from typing import List, Optional, Tuple


class BackupError(Exception):
    """Base exception for all backup failures."""
    pass


class ConfigurationError(BackupError):
    """Raised when a trigger or component is configured incorrectly."""
    pass


class StageError(BackupError):
    """
    Raised when a pipeline stage fails.

    Attributes:
        stage: Name of the failing stage (e.g. 'dump', 'store')
        diagnostic: Output of the underlying tool or library, if any
    """

    stage = 'unknown'

    def __init__(self, message: str, diagnostic: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic
        if stage is not None:
            self.stage = stage

    def describe(self) -> str:
        """Message followed by the diagnostic text, if there is one."""
        if self.diagnostic:
            return f"{self.message}\n{self.diagnostic.strip()}"
        return self.message


class DatabaseDumpError(StageError):
    """Raised when a database dump fails or produces no output."""
    stage = 'dump'


class PackagingError(StageError):
    """Raised when the archive cannot be created or split."""
    stage = 'package'


class CompressionError(StageError):
    """Raised when compressing the archive fails."""
    stage = 'compress'


class EncryptionError(StageError):
    """Raised when encrypting the archive fails."""
    stage = 'encrypt'


class StorageTransferError(StageError):
    """
    Raised when a package cannot be transferred.

    A single destination raises it with one failure; the executor raises an
    aggregated instance listing every destination that failed.
    """
    stage = 'store'

    def __init__(self, message: str, diagnostic: Optional[str] = None,
                 failures: Optional[List[Tuple[str, 'StorageTransferError']]] = None):
        super().__init__(message, diagnostic)
        self.failures = failures or []

    @classmethod
    def aggregate(cls, failures: List[Tuple[str, 'StorageTransferError']]) -> 'StorageTransferError':
        destinations = ', '.join(name for name, _ in failures)
        diagnostic = '\n'.join(f"{name}: {error.describe()}" for name, error in failures)
        return cls(
            f"Transfer failed for {len(failures)} destination(s): {destinations}",
            diagnostic=diagnostic,
            failures=failures
        )


class RetentionError(StageError):
    """Raised when old packages cannot be listed or removed."""
    stage = 'retain'


class NotifierError(BackupError):
    """Raised by a notifier transport; never propagated out of notify()."""
    pass


class UnhandledFault(BackupError):
    """
    Wraps an exception that escaped the taxonomy above.

    Attributes:
        original: The exception that was caught
    """

    stage = 'unhandled'

    def __init__(self, original: BaseException):
        super().__init__(f"Unhandled {type(original).__name__}: {original}")
        self.original = original
