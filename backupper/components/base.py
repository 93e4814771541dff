"""
Capability interfaces for pipeline components.

Every component category (database, compressor, encryptor, storage, notifier)
is a base class with a narrow contract. Concrete backends subclass one of
them and declare their options; construction validates the option mapping so
a configured instance is always complete.
"""

import logging
import os
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backupper.errors import (
    ConfigurationError,
    DatabaseDumpError,
    CompressionError,
    EncryptionError,
    StorageTransferError,
    RetentionError,
    NotifierError,
)
from .retention import RemotePackage, select_expired

logger = logging.getLogger(__name__)


class Category(Enum):
    """Component categories a trigger can be composed of."""
    DATABASE = 'database'
    STORAGE = 'storage'
    COMPRESSOR = 'compressor'
    ENCRYPTOR = 'encryptor'
    NOTIFIER = 'notifier'


class Component:
    """
    Base class for all configurable components.

    Subclasses declare `options` (option name -> default value) and
    `required` (option names that must be supplied). Option declarations are
    inherited, so a backend only lists what it adds to its category.
    """

    category: Category = None
    kind: str = None
    options: Dict[str, Any] = {}
    required: Tuple[str, ...] = ()

    def __init__(self, **options):
        declared = self.declared_options()
        unknown = sorted(set(options) - set(declared))
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s) for {self._kind()}: {', '.join(unknown)}. "
                f"Valid options: {sorted(declared)}"
            )

        missing = [key for key in self.required if options.get(key) is None]
        if missing:
            raise ConfigurationError(
                f"Missing required option(s) for {self._kind()}: {', '.join(missing)}"
            )

        for key, default in declared.items():
            value = options.get(key, default)
            # Copy mutable defaults so instances never share them
            if isinstance(value, (list, dict)) and key not in options:
                value = type(value)(value)
            setattr(self, key, value)

        self.validate()

    @classmethod
    def declared_options(cls) -> Dict[str, Any]:
        """All options declared along the class hierarchy."""
        declared = {}
        for klass in reversed(cls.__mro__):
            declared.update(klass.__dict__.get('options', {}))
        return declared

    def validate(self):
        """Check option values. Raise ConfigurationError on invalid values."""
        pass

    def _kind(self) -> str:
        category = self.category.value if self.category else 'component'
        return f"{category} '{self.kind or type(self).__name__}'"

    @property
    def label(self) -> str:
        """Short description used in logs."""
        return self.kind or type(self).__name__

    def _require_positive_int(self, option: str, allow_none: bool = False):
        value = getattr(self, option)
        if value is None and allow_none:
            return
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(
                f"Option '{option}' for {self._kind()} must be a positive integer, got {value!r}"
            )

    def __repr__(self):
        return f'<{type(self).__name__} {self.label}>'


class Database(Component):
    """
    A database that can dump itself into the workspace.

    Subclasses implement perform(); most build a command line and call
    run_dump_command().
    """

    category = Category.DATABASE
    options = {
        'utility_path': None,
        'additional_options': [],
    }

    # Default executable looked up on PATH when utility_path is not set
    utility: str = None

    def perform(self, dump_dir: Path) -> List[Path]:
        """
        Dump the database.

        Args:
            dump_dir: Directory inside the workspace to write dumps into

        Returns:
            Paths of the produced dump files

        Raises:
            DatabaseDumpError: If the dump fails or produces no output
        """
        raise NotImplementedError

    def utility_command(self) -> str:
        """
        Locate the dump utility.

        Raises:
            DatabaseDumpError: If the utility cannot be found
        """
        if self.utility_path:
            if not os.path.exists(self.utility_path):
                raise DatabaseDumpError(f"{self.label}: utility not found: {self.utility_path}")
            return self.utility_path

        found = shutil.which(self.utility)
        if not found:
            raise DatabaseDumpError(f"{self.label}: '{self.utility}' not found on PATH")
        return found

    def run_dump_command(self, args: Sequence[str], output_path: Optional[Path] = None,
                         env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        """
        Run a dump command and check its result.

        Args:
            args: Command line, executable first
            output_path: If given, stdout is written to this file and the file
                must be non-empty afterwards
            env: Extra environment variables (passwords are passed this way so
                they never appear in the process list)

        Returns:
            The completed process

        Raises:
            DatabaseDumpError: On non-zero exit status or empty output
        """
        process_env = dict(os.environ)
        if env:
            process_env.update({key: str(value) for key, value in env.items() if value is not None})

        logger.debug("Running dump command for %s: %s", self.label, args[0])

        try:
            if output_path is not None:
                with open(output_path, 'wb') as out:
                    completed = subprocess.run(list(args), stdout=out, stderr=subprocess.PIPE, env=process_env)
            else:
                completed = subprocess.run(list(args), stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=process_env)
        except OSError as e:
            raise DatabaseDumpError(f"{self.label}: failed to run {args[0]}: {e}")

        stderr = completed.stderr.decode('utf-8', errors='replace') if completed.stderr else ''
        if completed.returncode != 0:
            raise DatabaseDumpError(
                f"{self.label}: dump exited with status {completed.returncode}",
                diagnostic=stderr
            )

        if output_path is not None and (not output_path.exists() or output_path.stat().st_size == 0):
            raise DatabaseDumpError(f"{self.label}: dump produced no output", diagnostic=stderr)

        return completed


class Compressor(Component):
    """
    Compresses a file into a new file.

    wrap() is a stateless transform: the same input and configuration always
    produce the same bytes.
    """

    category = Category.COMPRESSOR
    extension: str = None

    def wrap(self, input_path: Path) -> Path:
        """
        Compress input_path into input_path + extension.

        Raises:
            CompressionError: If compression fails
        """
        input_path = Path(input_path)
        output_path = input_path.with_name(input_path.name + self.extension)
        try:
            self._compress(input_path, output_path)
        except Exception as e:
            _remove_partial(output_path)
            if isinstance(e, CompressionError):
                raise
            raise CompressionError(f"{self.label}: failed to compress {input_path.name}: {e}")
        return output_path

    def _compress(self, input_path: Path, output_path: Path):
        raise NotImplementedError


class Encryptor(Component):
    """
    Encrypts a file into a new file.

    `extension` is the suffix that identifies artifacts produced by this
    encryptor. Decryption is left to external tooling.
    """

    category = Category.ENCRYPTOR
    extension: str = None

    def wrap(self, input_path: Path) -> Path:
        """
        Encrypt input_path into input_path + extension.

        Raises:
            EncryptionError: If encryption fails
        """
        input_path = Path(input_path)
        output_path = input_path.with_name(input_path.name + self.extension)
        try:
            self._encrypt(input_path, output_path)
        except Exception as e:
            _remove_partial(output_path)
            if isinstance(e, EncryptionError):
                raise
            raise EncryptionError(f"{self.label}: failed to encrypt {input_path.name}: {e}")
        return output_path

    def _encrypt(self, input_path: Path, output_path: Path):
        raise NotImplementedError


class Storage(Component):
    """
    A backup destination.

    Packages are stored under {path}/{trigger}/{timestamp}/. Subclasses
    implement _transfer(), list_packages() and delete_package(); transfer()
    and retain() translate their failures into the error taxonomy.
    """

    category = Category.STORAGE
    options = {
        'path': 'backups',
        'keep': None,
    }

    def validate(self):
        if self.keep is not None and (isinstance(self.keep, bool) or not isinstance(self.keep, int) or self.keep < 1):
            raise ConfigurationError(
                f"Option 'keep' for {self._kind()} must be a positive integer, got {self.keep!r}"
            )

    def trigger_path(self, trigger: str) -> str:
        """Destination path holding all packages of a trigger."""
        base = str(self.path or '').rstrip('/')
        return f"{base}/{trigger}" if base else trigger

    def remote_path(self, trigger: str, timestamp: str) -> str:
        """Destination path of a package directory."""
        return f"{self.trigger_path(trigger)}/{timestamp}"

    def transfer(self, package) -> str:
        """
        Upload all files of a package.

        A package directory that already exists is never written into, so
        two runs of a trigger within the same second cannot merge or
        overwrite each other.

        Args:
            package: Package built by the packager

        Returns:
            Destination location of the package

        Raises:
            StorageTransferError: If the package already exists or any file
                cannot be transferred
        """
        try:
            if self.package_exists(package.trigger, package.timestamp):
                raise StorageTransferError(
                    f"{self.label}: package {package.trigger}/{package.timestamp} already exists"
                )
            return self._transfer(package)
        except StorageTransferError:
            raise
        except Exception as e:
            raise StorageTransferError(f"{self.label}: transfer failed: {e}")

    def retain(self, trigger: str, keep: int) -> List[RemotePackage]:
        """
        Remove all but the `keep` newest packages of a trigger.

        Returns:
            Packages that were removed

        Raises:
            RetentionError: If listing or deleting fails
        """
        try:
            packages = self.list_packages(trigger)
            expired = select_expired(packages, keep)
            for package in expired:
                logger.info("%s: removing expired package %s", self.label, package.location)
                self.delete_package(package)
            return expired
        except RetentionError:
            raise
        except Exception as e:
            raise RetentionError(f"{self.label}: retention failed for {trigger}: {e}")

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        """Whether a package directory for trigger/timestamp is already stored."""
        return any(package.timestamp == timestamp for package in self.list_packages(trigger))

    def _transfer(self, package) -> str:
        raise NotImplementedError

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        """List packages stored for a trigger, in any order."""
        raise NotImplementedError

    def delete_package(self, package: RemotePackage):
        """Remove every file of a stored package."""
        raise NotImplementedError


class Notifier(Component):
    """
    Reports the outcome of a run.

    notify() never raises. Transport failures are logged and swallowed so
    they cannot mask the outcome of the run itself.
    """

    category = Category.NOTIFIER
    options = {
        'on_success': True,
        'on_warning': True,
        'on_failure': True,
    }

    def should_deliver(self, result) -> bool:
        """Whether this notifier is configured to report the result's status."""
        return bool(getattr(self, f'on_{result.status.value}', True))

    def notify(self, result) -> bool:
        """
        Deliver a notification for a run result.

        Returns:
            True if a notification was delivered
        """
        if not self.should_deliver(result):
            logger.debug("%s: skipping %s notification", self.label, result.status.value)
            return False

        try:
            self._deliver(result)
            return True
        except Exception as e:
            error = e if isinstance(e, NotifierError) else NotifierError(f"{self.label}: {e}")
            logger.error("Notifier %s failed: %s", self.label, error)
            return False

    def _deliver(self, result):
        raise NotImplementedError

    @staticmethod
    def subject(result) -> str:
        """Subject line, e.g. '[Backup::Success] Nightly (nightly)'."""
        return f"[Backup::{result.status.value.capitalize()}] {result.label} ({result.trigger})"

    @staticmethod
    def body(result) -> str:
        """Plain text report of a run result."""
        lines = [
            f"Trigger: {result.trigger}",
            f"Status: {result.status.value}",
        ]
        if result.started_at:
            lines.append(f"Started: {result.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        if result.finished_at:
            lines.append(f"Finished: {result.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        if result.package is not None:
            lines.append(f"Package: {result.package.basename} ({result.package.chunk_count} chunk(s))")
        if result.stage:
            lines.append(f"Failed stage: {result.stage}")
        if result.message:
            lines.extend(['', result.message])
        for warning in result.warnings:
            lines.append(f"Warning: {warning}")
        if result.logs:
            lines.extend(['', 'Log:'] + list(result.logs))
        return '\n'.join(lines)


def _remove_partial(path: Path):
    if path.exists():
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Failed to remove partial file %s: %s", path, e)
