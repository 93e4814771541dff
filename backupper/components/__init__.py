"""
Pipeline components for backupper.

Capability interfaces (base) and their built-in implementations:
- Databases: MySQL, PostgreSQL, MongoDB, Redis
- Storages: S3, Local, SFTP, SCP, FTP, RSync
- Compressors: Gzip, Bzip2, Xz
- Encryptors: AES, GPG
- Notifiers: Mail, Webhook
"""

from .base import Category, Component, Database, Compressor, Encryptor, Storage, Notifier
from .databases import MySQL, PostgreSQL, MongoDB, Redis
from .storages import S3, Local, SFTP, SCP, FTP, RSync, StorageError
from .compressors import Gzip, Bzip2, Xz
from .encryptors import AES, GPG
from .notifiers import Mail, Webhook
from .retention import RemotePackage, select_expired

DATABASES = [MySQL, PostgreSQL, MongoDB, Redis]
STORAGES = [S3, Local, SFTP, SCP, FTP, RSync]
COMPRESSORS = [Gzip, Bzip2, Xz]
ENCRYPTORS = [AES, GPG]
NOTIFIERS = [Mail, Webhook]

__all__ = [
    'Category',
    'Component',
    'Database',
    'Compressor',
    'Encryptor',
    'Storage',
    'Notifier',
    'MySQL',
    'PostgreSQL',
    'MongoDB',
    'Redis',
    'S3',
    'Local',
    'SFTP',
    'SCP',
    'FTP',
    'RSync',
    'StorageError',
    'Gzip',
    'Bzip2',
    'Xz',
    'AES',
    'GPG',
    'Mail',
    'Webhook',
    'RemotePackage',
    'select_expired',
    'DATABASES',
    'STORAGES',
    'COMPRESSORS',
    'ENCRYPTORS',
    'NOTIFIERS',
]
