"""
Unit tests for Job (backupper/backup/job.py), RunResult
(backupper/backup/result.py) and the error taxonomy (backupper/errors.py).
"""

import dataclasses

import pytest

from backupper.backup.job import Job
from backupper.backup.result import RunResult, Status
from backupper.components import Gzip, Local, S3
from backupper.errors import (
    ConfigurationError,
    DatabaseDumpError,
    RetentionError,
    StorageTransferError,
    UnhandledFault,
)


class TestJob:
    """Test Job validation."""

    def test_sequences_become_tuples(self, make_job, fakes):
        job = make_job(storages=[fakes.Storage()], archive_paths=['/etc/nginx'])

        assert isinstance(job.databases, tuple)
        assert isinstance(job.storages, tuple)
        assert job.archive_paths == ('/etc/nginx',)

    def test_frozen(self, make_job):
        job = make_job()

        with pytest.raises(dataclasses.FrozenInstanceError):
            job.label = 'changed'

    @pytest.mark.parametrize('trigger', ['', 'night ly', 'nightly/../etc', None])
    def test_invalid_trigger_name(self, make_job, trigger):
        with pytest.raises(ConfigurationError, match='Invalid trigger name'):
            make_job(trigger=trigger)

    def test_nothing_to_back_up(self, make_job):
        with pytest.raises(ConfigurationError, match='nothing to back up'):
            make_job(databases=[])

    def test_archive_paths_only(self, make_job):
        assert make_job(databases=[], archive_paths=['/srv/app']).databases == ()

    @pytest.mark.parametrize('size', [0, -1, True, 1.5])
    def test_invalid_chunk_size(self, make_job, size):
        with pytest.raises(ConfigurationError, match='chunk size'):
            make_job(splitter_chunk_size=size)

    def test_component_in_wrong_slot(self, make_job):
        with pytest.raises(ConfigurationError, match='is not a storage component'):
            make_job(storages=[Gzip()])

    def test_unregistered_component(self, fakes):
        # FakeDB is only known to the test registry, not the default one
        with pytest.raises(ConfigurationError, match='not a registered database component'):
            Job(trigger='nightly', databases=[fakes.Database()])

    def test_registered_components(self, make_job):
        job = make_job(storages=[Local(path='/srv/backups'), S3(bucket='backups')], compressor=Gzip())

        assert [storage.kind for storage in job.storages] == ['Local', 'S3']
        assert repr(job) == '<Job nightly>'


class TestRunResult:
    """Test status bookkeeping."""

    def test_warn(self):
        result = RunResult(trigger='nightly')

        result.warn('retention failed')

        assert result.status is Status.WARNING
        assert result.warnings == ['retention failed']

    def test_failure_is_not_downgraded(self):
        result = RunResult(trigger='nightly')
        result.fail(DatabaseDumpError('dump exited with status 1', diagnostic='access denied'))

        result.warn('retention failed')

        assert result.status is Status.FAILURE
        assert result.stage == 'dump'
        assert result.message == 'dump exited with status 1\naccess denied'

    def test_fail_with_explicit_stage(self):
        result = RunResult(trigger='nightly')

        result.fail(ConfigurationError("Unknown trigger 'hourly'"), stage='configuration')

        assert result.stage == 'configuration'
        assert result.message == "Unknown trigger 'hourly'"

    def test_worst_status(self):
        assert Status.worst([Status.SUCCESS, Status.FAILURE, Status.WARNING]) is Status.FAILURE
        assert Status.worst([]) is Status.SUCCESS


class TestErrors:
    """Test the error taxonomy."""

    def test_stages(self):
        assert DatabaseDumpError('x').stage == 'dump'
        assert StorageTransferError('x').stage == 'store'
        assert RetentionError('x').stage == 'retain'
        assert UnhandledFault(KeyError('x')).stage == 'unhandled'

    def test_aggregate_transfer_failures(self):
        error = StorageTransferError.aggregate([
            ('S3 (backups)', StorageTransferError('S3 (backups): transfer failed', diagnostic='AccessDenied')),
            ('SFTP (backup@host)', StorageTransferError('SFTP (backup@host): transfer failed')),
        ])

        assert error.message == 'Transfer failed for 2 destination(s): S3 (backups), SFTP (backup@host)'
        assert 'S3 (backups): S3 (backups): transfer failed\nAccessDenied' in error.diagnostic
        assert len(error.failures) == 2

    def test_unhandled_fault_message(self):
        fault = UnhandledFault(ZeroDivisionError('division by zero'))

        assert str(fault) == 'Unhandled ZeroDivisionError: division by zero'
        assert isinstance(fault.original, ZeroDivisionError)
