"""
Database dump components.

Supports:
- MySQL: mysqldump
- PostgreSQL: pg_dump
- MongoDB: mongodump
- Redis: redis-cli --rdb

Each component writes into {dump_dir}/{component kind}/ and passes
passwords to the dump utility through its environment.
"""

import logging
from pathlib import Path
from typing import List

from backupper.errors import DatabaseDumpError
from .base import Database

logger = logging.getLogger(__name__)


class MySQL(Database):
    """Dumps a MySQL/MariaDB database with mysqldump."""

    kind = 'MySQL'
    utility = 'mysqldump'
    options = {
        'name': None,
        'username': None,
        'password': None,
        'host': None,
        'port': None,
        'socket': None,
        'skip_tables': [],
        'only_tables': [],
    }
    required = ('name',)

    @property
    def label(self) -> str:
        return f"MySQL ({self.name})"

    def perform(self, dump_dir: Path) -> List[Path]:
        output_dir = Path(dump_dir) / 'MySQL'
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{self.name}.sql"

        args = [self.utility_command()]
        if self.username:
            args.append(f"--user={self.username}")
        if self.host:
            args.append(f"--host={self.host}")
        if self.port:
            args.append(f"--port={self.port}")
        if self.socket:
            args.append(f"--socket={self.socket}")
        args.extend(self.additional_options)
        args.extend(f"--ignore-table={self.name}.{table}" for table in self.skip_tables)
        args.append(self.name)
        args.extend(self.only_tables)

        self.run_dump_command(args, output_path, env={'MYSQL_PWD': self.password})
        return [output_path]


class PostgreSQL(Database):
    """Dumps a PostgreSQL database with pg_dump."""

    kind = 'PostgreSQL'
    utility = 'pg_dump'
    options = {
        'name': None,
        'username': None,
        'password': None,
        'host': None,
        'port': None,
        'socket': None,
        'skip_tables': [],
        'only_tables': [],
    }
    required = ('name',)

    @property
    def label(self) -> str:
        return f"PostgreSQL ({self.name})"

    def perform(self, dump_dir: Path) -> List[Path]:
        output_dir = Path(dump_dir) / 'PostgreSQL'
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{self.name}.sql"

        args = [self.utility_command()]
        if self.username:
            args.append(f"--username={self.username}")
        # pg_dump takes the socket directory as its host
        host = self.socket or self.host
        if host:
            args.append(f"--host={host}")
        if self.port:
            args.append(f"--port={self.port}")
        args.extend(self.additional_options)
        args.extend(f"--exclude-table={table}" for table in self.skip_tables)
        args.extend(f"--table={table}" for table in self.only_tables)
        args.append(self.name)

        self.run_dump_command(args, output_path, env={'PGPASSWORD': self.password})
        return [output_path]


class MongoDB(Database):
    """Dumps a MongoDB database with mongodump."""

    kind = 'MongoDB'
    utility = 'mongodump'
    options = {
        'name': None,
        'username': None,
        'password': None,
        'host': None,
        'port': None,
        'only_collections': [],
    }
    required = ('name',)

    @property
    def label(self) -> str:
        return f"MongoDB ({self.name})"

    def perform(self, dump_dir: Path) -> List[Path]:
        output_dir = Path(dump_dir) / 'MongoDB'
        output_dir.mkdir(parents=True, exist_ok=True)

        base_args = [self.utility_command(), f"--db={self.name}", f"--out={output_dir}"]
        if self.host:
            base_args.append(f"--host={self.host}")
        if self.port:
            base_args.append(f"--port={self.port}")
        if self.username:
            base_args.append(f"--username={self.username}")
        if self.password:
            base_args.append(f"--password={self.password}")
        base_args.extend(self.additional_options)

        if self.only_collections:
            for collection in self.only_collections:
                self.run_dump_command(base_args + [f"--collection={collection}"])
        else:
            self.run_dump_command(base_args)

        database_dir = output_dir / self.name
        if not database_dir.is_dir() or not any(database_dir.iterdir()):
            raise DatabaseDumpError(f"{self.label}: dump produced no output")
        return [database_dir]


class Redis(Database):
    """Copies a Redis snapshot with redis-cli --rdb."""

    kind = 'Redis'
    utility = 'redis-cli'
    options = {
        'name': 'dump',
        'password': None,
        'host': None,
        'port': None,
        'socket': None,
    }

    @property
    def label(self) -> str:
        return f"Redis ({self.name})"

    def perform(self, dump_dir: Path) -> List[Path]:
        output_dir = Path(dump_dir) / 'Redis'
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{self.name}.rdb"

        args = [self.utility_command()]
        if self.socket:
            args.extend(['-s', self.socket])
        else:
            if self.host:
                args.extend(['-h', self.host])
            if self.port:
                args.extend(['-p', str(self.port)])
        args.extend(self.additional_options)
        args.extend(['--rdb', str(output_path)])

        self.run_dump_command(args, env={'REDISCLI_AUTH': self.password})

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise DatabaseDumpError(f"{self.label}: dump produced no output")
        return [output_path]
