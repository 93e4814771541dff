"""
Shared pytest fixtures for backupper tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Database setup with in-memory SQLite
- In-memory components (database, storage, notifier) registered in a
  test registry, and a job factory using them
- Mock fixtures for external services (S3, SSH)
- Temporary file fixtures
"""

import os
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from backupper import create_app, db as _db
from backupper.backup.job import Job
from backupper.backup.registry import create_default_registry
from backupper.components import Category, Database, Notifier, RemotePackage, Storage, StorageError
from backupper.config import Settings


class FakeDatabase(Database):
    """Writes a small dump file, or raises the configured error."""

    kind = 'FakeDB'
    options = {
        'name': 'app',
        'content': 'CREATE TABLE users (id integer);\n',
        'error': None,
        'mtime': None,
    }

    def __init__(self, **options):
        super().__init__(**options)
        self.calls = 0

    def perform(self, dump_dir):
        self.calls += 1
        if self.error is not None:
            raise self.error
        output_dir = Path(dump_dir) / 'FakeDB'
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{self.name}.sql"
        output_path.write_text(self.content)
        if self.mtime is not None:
            os.utime(output_path, (self.mtime, self.mtime))
        return [output_path]


class MemoryStorage(Storage):
    """Keeps transferred packages in memory, keyed by timestamp."""

    kind = 'Memory'
    options = {
        'fail_transfer': False,
        'fail_retention': False,
    }

    def __init__(self, **options):
        super().__init__(**options)
        self.packages = {}
        self.transferred = []

    def _transfer(self, package):
        if self.fail_transfer:
            raise StorageError('connection refused')
        self.packages[package.timestamp] = {
            Path(path).name: Path(path).read_bytes() for path in package.files
        }
        self.transferred.append(package.timestamp)
        return f"memory://{self.remote_path(package.trigger, package.timestamp)}"

    def package_exists(self, trigger, timestamp):
        return timestamp in self.packages

    def list_packages(self, trigger):
        if self.fail_retention:
            raise StorageError('listing denied')
        return [
            RemotePackage(trigger, timestamp, timestamp, sorted(files))
            for timestamp, files in self.packages.items()
        ]

    def delete_package(self, package):
        del self.packages[package.timestamp]


class RecordingNotifier(Notifier):
    """Remembers every result it is asked to report."""

    kind = 'Recording'
    options = {
        'fail': False,
    }

    def __init__(self, **options):
        super().__init__(**options)
        self.calls = []
        self.delivered = []

    def notify(self, result):
        self.calls.append(result)
        return super().notify(result)

    def _deliver(self, result):
        if self.fail:
            raise RuntimeError('smtp server unreachable')
        self.delivered.append(result)


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')

    # Override configuration for testing
    app.config.update({
        'TEMP_DIR': str(tmp_path / 'temp'),
        'BACKUPPER_CONFIG': str(tmp_path / 'backupper.yml'),
        'STORE_CONCURRENCY': 1,
    })
    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def fakes():
    """In-memory component classes."""
    return SimpleNamespace(
        Database=FakeDatabase,
        Storage=MemoryStorage,
        Notifier=RecordingNotifier,
    )


@pytest.fixture
def registry():
    """Default registry plus the in-memory components."""
    test_registry = create_default_registry()
    test_registry.register(Category.DATABASE, 'FakeDB', FakeDatabase)
    test_registry.register(Category.STORAGE, 'Memory', MemoryStorage)
    test_registry.register(Category.NOTIFIER, 'Recording', RecordingNotifier)
    return test_registry


@pytest.fixture
def workspace_root(tmp_path):
    """Directory workspaces are created in."""
    root = tmp_path / 'workspaces'
    root.mkdir()
    return root


@pytest.fixture
def settings(workspace_root, tmp_path):
    """Settings with a per-test workspace root and triggers file path."""
    return Settings(
        temp_dir=str(workspace_root),
        config_file=str(tmp_path / 'backupper.yml'),
        store_concurrency=1
    )


@pytest.fixture
def make_job(registry):
    """
    Factory for jobs built from in-memory components.

    Defaults to one database, no storages and no notifiers.
    """
    def _make_job(trigger='nightly', **kwargs):
        kwargs.setdefault('databases', [FakeDatabase()])
        kwargs.setdefault('label', 'Nightly backup')
        return Job(trigger=trigger, registry=registry, **kwargs)

    return _make_job


@pytest.fixture
def triggers_file(tmp_path):
    """Write a triggers file and return its path."""
    def _write(content):
        path = tmp_path / 'backupper.yml'
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        # Create mock S3 resource
        s3 = boto3.resource('s3', region_name='us-east-1')

        # Create test bucket
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP and SCP testing.

    Returns the patched SSHClient class; its return_value.open_sftp
    returns a MagicMock SFTP client whose stat() raises FileNotFoundError,
    so every remote path starts out absent.
    """
    with patch('backupper.components.storages.SSHClient') as mock_ssh:
        # Mock SFTP client
        mock_sftp = MagicMock()
        mock_sftp.stat.side_effect = FileNotFoundError
        mock_ssh.return_value.open_sftp.return_value = mock_sftp

        # Mock connection success
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - data/test_file1.txt
    - data/test_file2.log
    - data/nested/test_file3.txt
    - data/test_file.pyc (should be excluded in tests)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()

    # Create files
    (data_dir / 'test_file1.txt').write_text('Test content 1')
    (data_dir / 'test_file2.log').write_text('Test log content')

    # Create nested directory
    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    # Create file that should be excluded
    (data_dir / 'test_file.pyc').write_bytes(b'compiled python')

    return data_dir
