"""
Unit tests for database components (backupper/components/databases.py).

Dump utilities are never executed: subprocess.run is patched and writes
whatever the real utility would have produced.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from backupper.components import MongoDB, MySQL, PostgreSQL, Redis
from backupper.errors import ConfigurationError, DatabaseDumpError


def completed(returncode=0, stderr=b''):
    return MagicMock(returncode=returncode, stderr=stderr)


def writes_stdout(data=b'-- dump\n'):
    """subprocess.run replacement for utilities that dump to stdout."""
    def _run(args, stdout=None, stderr=None, env=None):
        stdout.write(data)
        return completed()
    return _run


@pytest.fixture
def mock_which():
    with patch('backupper.components.base.shutil.which', side_effect=lambda name: f'/usr/bin/{name}') as which:
        yield which


@pytest.fixture
def mock_run(mock_which):
    with patch('backupper.components.base.subprocess.run') as run:
        yield run


class TestMySQL:
    """Test MySQL dumps."""

    def test_perform(self, mock_run, tmp_path):
        mock_run.side_effect = writes_stdout()
        database = MySQL(
            name='shop',
            username='backup',
            password='s3cret',
            host='db.internal',
            port=3306,
            skip_tables=['sessions'],
            additional_options=['--single-transaction']
        )

        paths = database.perform(tmp_path)

        assert paths == [tmp_path / 'MySQL' / 'shop.sql']
        assert paths[0].read_bytes() == b'-- dump\n'
        args = mock_run.call_args[0][0]
        assert args == [
            '/usr/bin/mysqldump',
            '--user=backup',
            '--host=db.internal',
            '--port=3306',
            '--single-transaction',
            '--ignore-table=shop.sessions',
            'shop',
        ]
        assert mock_run.call_args.kwargs['env']['MYSQL_PWD'] == 's3cret'
        assert 's3cret' not in ' '.join(args)

    def test_only_tables(self, mock_run, tmp_path):
        mock_run.side_effect = writes_stdout()

        MySQL(name='shop', only_tables=['orders', 'customers']).perform(tmp_path)

        assert mock_run.call_args[0][0][-3:] == ['shop', 'orders', 'customers']

    def test_non_zero_exit(self, mock_run, tmp_path):
        mock_run.return_value = completed(2, b"mysqldump: Got error: 1045: Access denied for user 'backup'")

        with pytest.raises(DatabaseDumpError) as exc_info:
            MySQL(name='shop').perform(tmp_path)

        error = exc_info.value
        assert error.stage == 'dump'
        assert 'status 2' in error.message
        assert 'Access denied' in error.diagnostic

    def test_empty_output(self, mock_run, tmp_path):
        mock_run.return_value = completed()

        with pytest.raises(DatabaseDumpError, match='no output'):
            MySQL(name='shop').perform(tmp_path)

    def test_name_required(self):
        with pytest.raises(ConfigurationError, match='name'):
            MySQL()


class TestPostgreSQL:
    """Test PostgreSQL dumps."""

    def test_perform(self, mock_run, tmp_path):
        mock_run.side_effect = writes_stdout()

        paths = PostgreSQL(
            name='app',
            username='postgres',
            password='s3cret',
            port=5432,
            socket='/var/run/postgresql',
            skip_tables=['audit_log'],
            only_tables=['users']
        ).perform(tmp_path)

        assert paths == [tmp_path / 'PostgreSQL' / 'app.sql']
        args = mock_run.call_args[0][0]
        assert args == [
            '/usr/bin/pg_dump',
            '--username=postgres',
            '--host=/var/run/postgresql',
            '--port=5432',
            '--exclude-table=audit_log',
            '--table=users',
            'app',
        ]
        assert mock_run.call_args.kwargs['env']['PGPASSWORD'] == 's3cret'

    def test_utility_path(self, tmp_path):
        utility = tmp_path / 'pg_dump'
        utility.write_text('#!/bin/sh\n')

        with patch('backupper.components.base.subprocess.run', side_effect=writes_stdout()) as run:
            PostgreSQL(name='app', utility_path=str(utility)).perform(tmp_path)

        assert run.call_args[0][0][0] == str(utility)

    def test_missing_utility_path(self, tmp_path):
        database = PostgreSQL(name='app', utility_path=str(tmp_path / 'missing'))

        with pytest.raises(DatabaseDumpError, match='utility not found'):
            database.perform(tmp_path)

    def test_utility_not_on_path(self, tmp_path):
        with patch('backupper.components.base.shutil.which', return_value=None):
            with pytest.raises(DatabaseDumpError, match="'pg_dump' not found"):
                PostgreSQL(name='app').perform(tmp_path)

    def test_utility_cannot_start(self, mock_run, tmp_path):
        mock_run.side_effect = PermissionError('permission denied')

        with pytest.raises(DatabaseDumpError, match='failed to run'):
            PostgreSQL(name='app').perform(tmp_path)


class TestMongoDB:
    """Test MongoDB dumps."""

    def test_perform(self, mock_run, tmp_path):
        def _run(args, stdout=None, stderr=None, env=None):
            out = Path(next(arg for arg in args if arg.startswith('--out='))[len('--out='):])
            (out / 'catalog').mkdir(parents=True, exist_ok=True)
            (out / 'catalog' / 'products.bson').write_bytes(b'bson')
            return completed()

        mock_run.side_effect = _run

        paths = MongoDB(name='catalog', host='mongo.internal', username='backup', password='s3cret').perform(tmp_path)

        assert paths == [tmp_path / 'MongoDB' / 'catalog']
        args = mock_run.call_args[0][0]
        assert args[:3] == ['/usr/bin/mongodump', '--db=catalog', f"--out={tmp_path / 'MongoDB'}"]
        assert '--host=mongo.internal' in args
        assert '--password=s3cret' in args

    def test_only_collections(self, mock_run, tmp_path):
        def _run(args, stdout=None, stderr=None, env=None):
            (tmp_path / 'MongoDB' / 'catalog').mkdir(parents=True, exist_ok=True)
            (tmp_path / 'MongoDB' / 'catalog' / 'x.bson').write_bytes(b'bson')
            return completed()

        mock_run.side_effect = _run

        MongoDB(name='catalog', only_collections=['products', 'prices']).perform(tmp_path)

        assert mock_run.call_count == 2
        assert mock_run.call_args_list[0][0][0][-1] == '--collection=products'
        assert mock_run.call_args_list[1][0][0][-1] == '--collection=prices'

    def test_empty_output(self, mock_run, tmp_path):
        mock_run.return_value = completed()

        with pytest.raises(DatabaseDumpError, match='no output'):
            MongoDB(name='catalog').perform(tmp_path)


class TestRedis:
    """Test Redis snapshots."""

    def test_perform(self, mock_run, tmp_path):
        def _run(args, stdout=None, stderr=None, env=None):
            Path(args[-1]).write_bytes(b'REDIS0009')
            return completed()

        mock_run.side_effect = _run

        paths = Redis(host='cache.internal', port=6379, password='s3cret').perform(tmp_path)

        assert paths == [tmp_path / 'Redis' / 'dump.rdb']
        args = mock_run.call_args[0][0]
        assert args == [
            '/usr/bin/redis-cli',
            '-h', 'cache.internal',
            '-p', '6379',
            '--rdb', str(tmp_path / 'Redis' / 'dump.rdb'),
        ]
        assert mock_run.call_args.kwargs['env']['REDISCLI_AUTH'] == 's3cret'

    def test_socket(self, mock_run, tmp_path):
        def _run(args, stdout=None, stderr=None, env=None):
            Path(args[-1]).write_bytes(b'REDIS0009')
            return completed()

        mock_run.side_effect = _run

        Redis(name='sessions', socket='/tmp/redis.sock', host='ignored').perform(tmp_path)

        args = mock_run.call_args[0][0]
        assert args[1:3] == ['-s', '/tmp/redis.sock']
        assert '-h' not in args

    def test_empty_output(self, mock_run, tmp_path):
        mock_run.return_value = completed()

        with pytest.raises(DatabaseDumpError, match='no output'):
            Redis().perform(tmp_path)

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match='Unknown option'):
            Redis(database=3)
