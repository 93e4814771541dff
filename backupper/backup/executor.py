"""
Pipeline executor - runs the backup stages of one job.

Workflow:
1. Create the workspace (temporary directory owned by this run)
2. Dump every database, in configuration order
3. Package dumps and archive paths into a tar archive
4. Compress (if configured)
5. Encrypt (if configured)
6. Split into chunks and write the manifest
7. Transfer to every storage; a failed destination does not stop the others
8. Enforce retention at every destination that received the package
9. Notify every notifier, exactly once
10. Remove the workspace, whatever happened before
"""

import logging
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Optional

from backupper.components.retention import format_timestamp
from backupper.errors import (
    BackupError,
    StageError,
    DatabaseDumpError,
    PackagingError,
    CompressionError,
    EncryptionError,
    StorageTransferError,
    RetentionError,
)
from .packager import Package, create_archive, generate_package_basename, split_package, write_manifest
from .result import RunResult, Status, TransferResult, utcnow

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Executes the backup pipeline for a job.

    Stages run strictly one after another. Taxonomy errors (StageError and
    subclasses) end the run with a failure, are reported to the notifiers and
    returned in the RunResult. Any other exception still removes the
    workspace and then propagates to the caller, which is responsible for
    notifying.
    """

    def __init__(self, job, settings):
        """
        Initialize pipeline.

        Args:
            job: Job to execute
            settings: Settings with temp_dir and store_concurrency
        """
        self.job = job
        self.settings = settings
        self.result = None
        self.temp_dir = None
        self.dump_dir = None
        self.archive_path = None
        self.package = None
        self.logs = []
        self._log_lock = threading.Lock()

    def execute(self) -> RunResult:
        """
        Execute the pipeline.

        Returns:
            RunResult with the outcome of the run
        """
        started_at = utcnow()
        self.result = RunResult(
            trigger=self.job.trigger,
            label=self.job.label,
            started_at=started_at,
            logs=self.logs
        )

        self._log(f"Starting backup: {self.job.label or self.job.trigger} ({self.job.trigger})")

        try:
            try:
                self._execute_workflow(started_at)
            except BackupError as e:
                self.result.fail(e)
                self._log(f"Backup failed at stage '{self.result.stage}': {e}", logging.ERROR)
            else:
                if self.result.status is Status.SUCCESS:
                    self._log("Backup completed successfully")
                else:
                    self._log(f"Backup completed with {len(self.result.warnings)} warning(s)", logging.WARNING)

            self.result.finished_at = utcnow()
            self.notify(self.result)

        except Exception as e:
            self._log(f"Unhandled {type(e).__name__}: {e}", logging.ERROR)
            raise

        finally:
            self._cleanup()

        return self.result

    def _execute_workflow(self, started_at: datetime):
        """Execute the stages up to and including retention."""
        timestamp = format_timestamp(started_at)

        # Step 1: Workspace
        self.temp_dir = self._create_workspace(timestamp)
        self._log(f"Workspace: {self.temp_dir}")

        # Step 2: Dump databases
        if self.job.databases:
            self._log(f"Dumping {len(self.job.databases)} database(s)")
            self._run_stage('dump', DatabaseDumpError, self._dump_databases)
        else:
            self._log("No databases configured, skipping dump")

        # Step 3: Package
        self._log("Packaging archive")
        self.archive_path = self._run_stage('package', PackagingError, self._create_archive, started_at)
        self._log(f"Archive created: {self.archive_path.name} ({_megabytes(self.archive_path)} MB)")

        # Step 4: Compress
        if self.job.compressor is not None:
            self._log(f"Compressing with {self.job.compressor.label}")
            self.archive_path = self._run_stage('compress', CompressionError, self._wrap, self.job.compressor)
            self._log(f"Compressed: {self.archive_path.name} ({_megabytes(self.archive_path)} MB)")
        else:
            self._log("Compressor not configured, skipping")

        # Step 5: Encrypt
        if self.job.encryptor is not None:
            self._log(f"Encrypting with {self.job.encryptor.label}")
            self.archive_path = self._run_stage('encrypt', EncryptionError, self._wrap, self.job.encryptor)
            self._log(f"Encrypted: {self.archive_path.name}")
        else:
            self._log("Encryptor not configured, skipping")

        # Step 6: Split and write manifest
        self.package = self._run_stage('split', PackagingError, self._split, timestamp)
        self.result.package = self.package
        self._log(
            f"Package {self.package.basename}: {self.package.chunk_count} chunk(s), "
            f"{self.package.size / 1024 / 1024:.2f} MB"
        )

        # Steps 7 and 8: Transfer and retention
        self._store_and_retain()

    def _run_stage(self, stage: str, error_class, func, *args):
        """
        Run one stage, tagging taxonomy errors with the stage name.

        A TimeoutError raised inside the stage is reported as the stage's
        own error kind.
        """
        try:
            return func(*args)
        except StageError as e:
            e.stage = stage
            raise
        except TimeoutError as e:
            raise error_class(f"Stage '{stage}' timed out: {e}", stage=stage)

    def _create_workspace(self, timestamp: str) -> Path:
        """
        Create the workspace directory of this run.

        Raises:
            PackagingError: If the directory cannot be created
        """
        try:
            root = Path(self.settings.temp_dir)
            root.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=f"{self.job.trigger}-{timestamp}-", dir=str(root)))
        except OSError as e:
            raise PackagingError(f"Failed to create workspace: {e}", stage='workspace')

    def _dump_databases(self):
        """
        Run every database dump.

        Raises:
            DatabaseDumpError: If a dump fails
        """
        self.dump_dir = self.temp_dir / 'databases'
        self.dump_dir.mkdir(parents=True, exist_ok=True)

        for database in self.job.databases:
            self._log(f"Dumping {database.label}")
            produced = database.perform(self.dump_dir) or []

            if not produced:
                raise DatabaseDumpError(f"{database.label}: dump produced no files")

            for path in produced:
                path = Path(path)
                if not path.exists():
                    raise DatabaseDumpError(f"{database.label}: dump file not found: {path}")
                if not _is_within(path, self.dump_dir):
                    target_dir = self.dump_dir / database.kind
                    target_dir.mkdir(parents=True, exist_ok=True)
                    shutil.move(str(path), str(target_dir / path.name))
                    self._log(f"Moved {path.name} into workspace")

            self._log(f"{database.label}: {len(produced)} dump file(s)")

    def _create_archive(self, started_at: datetime) -> Path:
        """
        Create the tar archive in the workspace.

        Raises:
            PackagingError: If archive creation fails
        """
        filename = generate_package_basename(self.job.trigger, started_at)
        return create_archive(
            self.job.trigger,
            self.temp_dir / filename,
            dump_dir=self.dump_dir,
            archive_paths=self.job.archive_paths,
            exclude_patterns=self.job.archive_excludes
        )

    def _wrap(self, component) -> Path:
        """Apply a compressor or encryptor and drop its input."""
        output_path = component.wrap(self.archive_path)
        if output_path != self.archive_path and self.archive_path.exists():
            self.archive_path.unlink()
        return output_path

    def _split(self, timestamp: str) -> Package:
        """
        Split the artifact and write the manifest.

        Raises:
            PackagingError: If splitting or writing the manifest fails
        """
        basename = self.archive_path.name
        chunks = split_package(self.archive_path, self.job.splitter_chunk_size)
        package = Package(
            trigger=self.job.trigger,
            timestamp=timestamp,
            basename=basename,
            chunks=chunks
        )
        write_manifest(package, self.temp_dir)
        return package

    def _store_and_retain(self):
        """
        Transfer to every storage, then enforce retention where the transfer
        succeeded.

        Raises:
            StorageTransferError: If any destination failed, after all
                destinations were attempted and retention has run
        """
        storages = self.job.storages
        if not storages:
            self._log("No storages configured, skipping transfer")
            return

        self._log(f"Transferring package to {len(storages)} destination(s)")
        outcomes = self._transfer_all()

        failures = []
        for storage, (transfer, error) in zip(storages, outcomes):
            self.result.transfers.append(transfer)
            if error is not None:
                failures.append((storage.label, error))
                continue
            if storage.keep is not None:
                self._retain(storage, transfer)

        if failures:
            raise StorageTransferError.aggregate(failures)

    def _transfer_all(self):
        """Run every transfer, concurrently if configured. Results keep storage order."""
        storages = self.job.storages
        concurrency = max(1, int(getattr(self.settings, 'store_concurrency', 1) or 1))

        if concurrency > 1 and len(storages) > 1:
            with ThreadPoolExecutor(max_workers=min(concurrency, len(storages))) as pool:
                futures = [pool.submit(self._transfer_one, storage) for storage in storages]
                return [future.result() for future in futures]

        return [self._transfer_one(storage) for storage in storages]

    def _transfer_one(self, storage):
        """
        Transfer the package to one storage. Never raises.

        Returns:
            (TransferResult, StorageTransferError or None)
        """
        transfer = TransferResult(destination=storage.label)
        try:
            transfer.location = storage.transfer(self.package)
            self._log(f"Transferred to {storage.label}: {transfer.location}")
            return transfer, None
        except Exception as e:
            if isinstance(e, StorageTransferError):
                error = e
            else:
                error = StorageTransferError(f"{storage.label}: {type(e).__name__}: {e}")
            transfer.error = error.describe()
            self._log(f"Transfer to {storage.label} failed: {error.describe()}", logging.ERROR)
            return transfer, error

    def _retain(self, storage, transfer: TransferResult):
        """Enforce retention at one storage. Failures become warnings."""
        self._log(f"Enforcing retention at {storage.label} (keep {storage.keep})")
        try:
            removed = storage.retain(self.job.trigger, storage.keep)
            transfer.removed = [package.timestamp for package in removed]
            self._log(f"{storage.label}: removed {len(removed)} old package(s)")
        except Exception as e:
            if isinstance(e, RetentionError):
                error = e
            else:
                error = RetentionError(f"{storage.label}: {type(e).__name__}: {e}")
            transfer.retention_error = error.describe()
            self.result.warn(f"Retention failed at {storage.label}: {error.message}")
            self._log(f"Retention at {storage.label} failed: {error.describe()}", logging.WARNING)

    def notify(self, result: RunResult):
        """
        Report a result to every notifier of the job.

        Notifier failures are logged and never change the result.
        """
        notifiers = self.job.notifiers
        if not notifiers:
            self._log("No notifiers configured")
            return

        self._log(f"Notifying {len(notifiers)} notifier(s) ({result.status.value})")
        for notifier in notifiers:
            try:
                notifier.notify(result)
            except Exception as e:
                self._log(f"Notifier {notifier.label} raised {type(e).__name__}: {e}", logging.WARNING)

    def _cleanup(self):
        """Remove the workspace and everything in it."""
        if self.temp_dir and self.temp_dir.exists():
            try:
                shutil.rmtree(self.temp_dir)
                self._log("Cleaned up workspace")
            except OSError as e:
                self._log(f"Warning: Failed to clean up workspace {self.temp_dir}: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level used for the module logger
        """
        timestamp = utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        with self._log_lock:
            self.logs.append(f"[{timestamp}] {message}")
            logger.log(level, "[%s] %s", self.job.trigger, message)


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.resolve().relative_to(directory.resolve())
        return True
    except ValueError:
        return False


def _megabytes(path: Optional[Path]) -> str:
    if path is None or not path.exists():
        return '0.00'
    return f"{path.stat().st_size / 1024 / 1024:.2f}"
