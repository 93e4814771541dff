"""
Storage components for backup packages.

Supports:
- S3: Upload to AWS S3 (or an S3 compatible endpoint)
- Local: Copy into a local directory
- SFTP: Upload to a remote host over SSH/SFTP
- SCP: Upload to a remote host with scp, managed over SSH
- FTP: Upload to an FTP (or FTPS) server
- RSync: Mirror into a local or remote directory with the rsync binary

All destinations use the same layout: {path}/{trigger}/{timestamp}/{file}
"""

import ftplib
import logging
import os
import posixpath
import shlex
import shutil
import stat
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import List, Tuple

import boto3
import paramiko
from botocore.exceptions import ClientError, BotoCoreError
from paramiko import SSHClient, AutoAddPolicy

from .base import Storage
from .retention import RemotePackage, parse_timestamp

logger = logging.getLogger(__name__)

# Use multipart upload for files larger than 100MB
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when a storage backend operation fails."""
    pass


class S3(Storage):
    """
    Stores packages in an S3 bucket.

    Objects are written to {path}/{trigger}/{timestamp}/{filename}.
    """

    kind = 'S3'
    options = {
        'access_key_id': None,
        'secret_access_key': None,
        'region': 'us-east-1',
        'bucket': None,
        'endpoint_url': None,
    }
    required = ('bucket',)

    def __init__(self, **options):
        super().__init__(**options)
        self._client = None

    @property
    def label(self) -> str:
        return f"S3 ({self.bucket})"

    @property
    def s3_client(self):
        """Lazily created boto3 client."""
        if self._client is None:
            try:
                self._client = boto3.client(
                    's3',
                    aws_access_key_id=self.access_key_id,
                    aws_secret_access_key=self.secret_access_key,
                    region_name=self.region,
                    endpoint_url=self.endpoint_url
                )
            except Exception as e:
                raise StorageError(f"Failed to initialize S3 client: {e}")
        return self._client

    def trigger_path(self, trigger: str) -> str:
        # S3 keys never start with a slash
        return super().trigger_path(trigger).lstrip('/')

    def _transfer(self, package) -> str:
        prefix = self.remote_path(package.trigger, package.timestamp)

        for local_path in package.files:
            s3_key = f"{prefix}/{Path(local_path).name}"
            logger.debug("Uploading %s to s3://%s/%s", local_path, self.bucket, s3_key)
            self.upload(str(local_path), s3_key)

        return f"s3://{self.bucket}/{prefix}"

    def upload(self, local_path: str, s3_key: str):
        """
        Upload a single file.

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)
            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except Exception as abort_error:
                logger.warning("Failed to abort multipart upload of %s: %s", s3_key, abort_error)
            raise

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        prefix = self.remote_path(trigger, timestamp) + '/'
        try:
            response = self.s3_client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")
        return response.get('KeyCount', 0) > 0

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        """
        List packages of a trigger, grouped by timestamp directory.

        Raises:
            StorageError: If listing fails
        """
        prefix = self.trigger_path(trigger) + '/'
        packages = {}

        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get('Contents', []):
                    timestamp = obj['Key'][len(prefix):].split('/', 1)[0]
                    if parse_timestamp(timestamp) is None:
                        continue
                    package = packages.setdefault(
                        timestamp,
                        RemotePackage(trigger, timestamp, f"{prefix}{timestamp}")
                    )
                    package.files.append(obj['Key'])

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")

        return list(packages.values())

    def delete_package(self, package: RemotePackage):
        """
        Delete every object of a package.

        Raises:
            StorageError: If deletion fails
        """
        keys = list(package.files)

        try:
            # delete_objects accepts at most 1000 keys per request
            for start in range(0, len(keys), 1000):
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket,
                    Delete={
                        'Objects': [{'Key': key} for key in keys[start:start + 1000]],
                        'Quiet': True
                    }
                )
                errors = response.get('Errors', [])
                if errors:
                    failed = ', '.join(error.get('Key', '?') for error in errors)
                    raise StorageError(f"S3 delete failed for: {failed}")

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {e}")


class Local(Storage):
    """
    Stores packages in a local directory.

    Files are copied to {path}/{trigger}/{timestamp}/{filename}.
    """

    kind = 'Local'
    options = {
        'path': None,
    }
    required = ('path',)

    @property
    def label(self) -> str:
        return f"Local ({self.path})"

    def _base(self) -> Path:
        return Path(self.path).expanduser()

    def _transfer(self, package) -> str:
        dest_dir = self._base() / package.trigger / package.timestamp

        try:
            dest_dir.parent.mkdir(parents=True, exist_ok=True)
            dest_dir.mkdir()
            for local_path in package.files:
                shutil.copy2(local_path, dest_dir / Path(local_path).name)
        except FileExistsError:
            raise StorageError(f"Package directory already exists: {dest_dir}")
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_dir}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

        return str(dest_dir)

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        return (self._base() / trigger / timestamp).exists()

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        trigger_dir = self._base() / trigger

        if not trigger_dir.exists():
            return []

        packages = []
        for package_dir in trigger_dir.iterdir():
            if not package_dir.is_dir() or parse_timestamp(package_dir.name) is None:
                continue
            packages.append(RemotePackage(
                trigger,
                package_dir.name,
                str(package_dir),
                sorted(str(path) for path in package_dir.iterdir() if path.is_file())
            ))
        return packages

    def delete_package(self, package: RemotePackage):
        try:
            shutil.rmtree(package.location)
        except FileNotFoundError:
            pass
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {package.location}: {e}")


class SFTP(Storage):
    """
    Stores packages on a remote host over SFTP.

    Files are uploaded to {path}/{trigger}/{timestamp}/{filename}; a
    relative path is relative to the login directory.
    """

    kind = 'SFTP'
    options = {
        'ip': None,
        'port': 22,
        'username': None,
        'password': None,
        'private_key': None,
        'timeout': 30,
    }
    required = ('ip', 'username')

    @property
    def label(self) -> str:
        return f"{self.kind} ({self.username}@{self.ip})"

    @contextmanager
    def _ssh_session(self):
        """
        Open an SSH connection for the duration of a block.

        Raises:
            StorageError: If connection fails
        """
        connect_kwargs = {
            'hostname': self.ip,
            'port': self.port,
            'username': self.username,
            'timeout': self.timeout
        }

        if self.password:
            connect_kwargs['password'] = self.password
        elif self.private_key:
            key_path = Path(self.private_key).expanduser()
            if not key_path.exists():
                raise StorageError(f"Private key not found: {self.private_key}")
            connect_kwargs['key_filename'] = str(key_path)

        ssh_client = SSHClient()
        ssh_client.set_missing_host_key_policy(AutoAddPolicy())

        try:
            ssh_client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            ssh_client.close()
            raise StorageError(f"SSH authentication failed: {e}")
        except (paramiko.SSHException, OSError) as e:
            ssh_client.close()
            raise StorageError(f"Failed to connect to {self.ip}: {e}")

        try:
            yield ssh_client
        finally:
            ssh_client.close()

    @contextmanager
    def _session(self):
        """Open an SFTP session for the duration of a block."""
        with self._ssh_session() as ssh_client:
            try:
                sftp_client = ssh_client.open_sftp()
            except (paramiko.SSHException, OSError) as e:
                raise StorageError(f"Failed to open SFTP session on {self.ip}: {e}")

            try:
                yield sftp_client
            finally:
                sftp_client.close()

    def _transfer(self, package) -> str:
        remote_dir = self.remote_path(package.trigger, package.timestamp)

        with self._session() as sftp:
            self._makedirs(sftp, remote_dir)
            for local_path in package.files:
                remote_file = f"{remote_dir}/{Path(local_path).name}"
                try:
                    sftp.put(str(local_path), remote_file)
                except (IOError, OSError) as e:
                    raise StorageError(f"Failed to upload {remote_file}: {e}")

        return f"sftp://{self.ip}/{remote_dir.lstrip('/')}"

    @staticmethod
    def _makedirs(sftp, remote_dir: str):
        """Create remote_dir and any missing parents."""
        current = '/' if remote_dir.startswith('/') else ''
        for part in [p for p in remote_dir.split('/') if p]:
            current = f"{current}{part}" if current in ('', '/') else f"{current}/{part}"
            try:
                sftp.stat(current)
            except FileNotFoundError:
                sftp.mkdir(current)

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        with self._session() as sftp:
            try:
                sftp.stat(self.remote_path(trigger, timestamp))
            except FileNotFoundError:
                return False
        return True

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        trigger_dir = self.trigger_path(trigger)
        packages = []

        with self._session() as sftp:
            try:
                entries = sftp.listdir_attr(trigger_dir)
            except FileNotFoundError:
                return []

            for entry in entries:
                if not stat.S_ISDIR(entry.st_mode or 0) or parse_timestamp(entry.filename) is None:
                    continue
                package_dir = f"{trigger_dir}/{entry.filename}"
                files = [f"{package_dir}/{name}" for name in sorted(sftp.listdir(package_dir))]
                packages.append(RemotePackage(trigger, entry.filename, package_dir, files))

        return packages

    def delete_package(self, package: RemotePackage):
        with self._session() as sftp:
            for remote_file in package.files:
                try:
                    sftp.remove(remote_file)
                except FileNotFoundError:
                    pass
            try:
                sftp.rmdir(package.location)
            except (IOError, OSError) as e:
                raise StorageError(f"Failed to remove {package.location}: {e}")


class SCP(SFTP):
    """
    Stores packages on a remote host with scp.

    For hosts that allow shell access but have no SFTP subsystem. Files
    are sent with the scp sink protocol; directories are created, listed
    and removed with plain shell commands over the same SSH connection.
    """

    kind = 'SCP'

    # scp sink acknowledgements: 0 ok, 1 warning, 2 fatal
    ACK_OK = b'\x00'

    def _run(self, ssh_client, command: str, check: bool = True):
        """
        Run a remote command.

        Returns:
            Tuple of (exit status, stdout)

        Raises:
            StorageError: If check is set and the command fails
        """
        _, stdout, stderr = ssh_client.exec_command(command, timeout=self.timeout)
        status = stdout.channel.recv_exit_status()
        output = stdout.read().decode('utf-8', errors='replace')
        if check and status != 0:
            message = stderr.read().decode('utf-8', errors='replace').strip()
            raise StorageError(f"Remote command failed with status {status}: {command}: {message}")
        return status, output

    def _transfer(self, package) -> str:
        remote_dir = self.remote_path(package.trigger, package.timestamp)

        with self._ssh_session() as ssh_client:
            self._run(ssh_client, f"mkdir -p {shlex.quote(remote_dir)}")
            for local_path in package.files:
                self._send(ssh_client, Path(local_path), remote_dir)

        return f"scp://{self.ip}/{remote_dir.lstrip('/')}"

    def _send(self, ssh_client, local_path: Path, remote_dir: str):
        """Copy one file into remote_dir with `scp -t`."""
        channel = ssh_client.get_transport().open_session()
        try:
            channel.settimeout(self.timeout)
            channel.exec_command(f"scp -t {shlex.quote(remote_dir)}")
            self._expect_ack(channel, local_path)

            size = local_path.stat().st_size
            channel.sendall(f"C0644 {size} {local_path.name}\n".encode('utf-8'))
            self._expect_ack(channel, local_path)

            with open(local_path, 'rb') as f:
                for block in iter(lambda: f.read(64 * 1024), b''):
                    channel.sendall(block)
            channel.sendall(self.ACK_OK)
            self._expect_ack(channel, local_path)
        except (paramiko.SSHException, OSError) as e:
            raise StorageError(f"Failed to upload {local_path.name}: {e}")
        finally:
            channel.close()

    def _expect_ack(self, channel, local_path: Path):
        ack = channel.recv(1)
        if ack == self.ACK_OK:
            return
        message = b''
        while not message.endswith(b'\n'):
            data = channel.recv(1)
            if not data:
                break
            message += data
        reason = message.decode('utf-8', errors='replace').strip() or 'connection closed'
        raise StorageError(f"scp refused {local_path.name}: {reason}")

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        with self._ssh_session() as ssh_client:
            status, _ = self._run(
                ssh_client, f"test -e {shlex.quote(self.remote_path(trigger, timestamp))}", check=False
            )
        return status == 0

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        trigger_dir = self.trigger_path(trigger)
        quoted = shlex.quote(trigger_dir)

        with self._ssh_session() as ssh_client:
            _, output = self._run(ssh_client, f"if [ -d {quoted} ]; then cd {quoted} && ls -1 -p; fi")
            timestamps = [
                name.rstrip('/') for name in output.splitlines()
                if name.endswith('/') and parse_timestamp(name.rstrip('/')) is not None
            ]

            packages = []
            for timestamp in timestamps:
                package_dir = f"{trigger_dir}/{timestamp}"
                _, listing = self._run(ssh_client, f"ls -1 {shlex.quote(package_dir)}")
                files = [f"{package_dir}/{name}" for name in sorted(listing.splitlines()) if name]
                packages.append(RemotePackage(trigger, timestamp, package_dir, files))

        return packages

    def delete_package(self, package: RemotePackage):
        with self._ssh_session() as ssh_client:
            self._run(ssh_client, f"rm -rf {shlex.quote(package.location)}")


class FTP(Storage):
    """
    Stores packages on an FTP server.

    Files are uploaded to {path}/{trigger}/{timestamp}/{filename}. Set
    `tls` to use explicit FTPS.
    """

    kind = 'FTP'
    options = {
        'ip': None,
        'port': 21,
        'username': None,
        'password': None,
        'passive_mode': True,
        'tls': False,
        'timeout': 30,
    }
    required = ('ip', 'username')

    @property
    def label(self) -> str:
        return f"FTP ({self.username}@{self.ip})"

    @contextmanager
    def _session(self):
        """
        Log in for the duration of a block.

        Raises:
            StorageError: If connection or login fails
        """
        ftp = ftplib.FTP_TLS() if self.tls else ftplib.FTP()

        try:
            ftp.connect(self.ip, self.port, timeout=self.timeout)
            ftp.login(self.username, self.password or '')
            if self.tls:
                ftp.prot_p()
            ftp.set_pasv(bool(self.passive_mode))
        except ftplib.error_perm as e:
            ftp.close()
            raise StorageError(f"FTP login failed: {e}")
        except ftplib.all_errors as e:
            ftp.close()
            raise StorageError(f"Failed to connect to {self.ip}: {e}")

        try:
            yield ftp
        finally:
            try:
                ftp.quit()
            except ftplib.all_errors:
                ftp.close()

    def _transfer(self, package) -> str:
        remote_dir = self.remote_path(package.trigger, package.timestamp)

        with self._session() as ftp:
            self._makedirs(ftp, remote_dir)
            for local_path in package.files:
                remote_file = f"{remote_dir}/{Path(local_path).name}"
                try:
                    with open(local_path, 'rb') as f:
                        ftp.storbinary(f"STOR {remote_file}", f)
                except ftplib.all_errors as e:
                    raise StorageError(f"Failed to upload {remote_file}: {e}")

        return f"ftp://{self.ip}/{remote_dir.lstrip('/')}"

    @staticmethod
    def _makedirs(ftp, remote_dir: str):
        """Create remote_dir and any missing parents."""
        current = '/' if remote_dir.startswith('/') else ''
        for part in [p for p in remote_dir.split('/') if p]:
            current = f"{current}{part}" if current in ('', '/') else f"{current}/{part}"
            try:
                ftp.mkd(current)
            except ftplib.error_perm as e:
                # 550 when the directory is already there
                if not str(e).startswith('550'):
                    raise

    @staticmethod
    def _names(ftp, directory: str) -> List[str]:
        """Entry names of a directory, empty if it does not exist."""
        try:
            names = ftp.nlst(directory)
        except ftplib.error_perm as e:
            if str(e).startswith('550'):
                return []
            raise
        return [posixpath.basename(name.rstrip('/')) for name in names]

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        with self._session() as ftp:
            return timestamp in self._names(ftp, self.trigger_path(trigger))

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        trigger_dir = self.trigger_path(trigger)
        packages = []

        with self._session() as ftp:
            for name in self._names(ftp, trigger_dir):
                if parse_timestamp(name) is None:
                    continue
                package_dir = f"{trigger_dir}/{name}"
                files = [f"{package_dir}/{entry}" for entry in sorted(self._names(ftp, package_dir))]
                packages.append(RemotePackage(trigger, name, package_dir, files))

        return packages

    def delete_package(self, package: RemotePackage):
        with self._session() as ftp:
            for remote_file in package.files:
                try:
                    ftp.delete(remote_file)
                except ftplib.error_perm as e:
                    if not str(e).startswith('550'):
                        raise StorageError(f"Failed to remove {remote_file}: {e}")
            try:
                ftp.rmd(package.location)
            except ftplib.all_errors as e:
                raise StorageError(f"Failed to remove {package.location}: {e}")


class RSync(Storage):
    """
    Stores packages with the rsync binary.

    Without `ip` the destination is a local directory (an NFS mount, for
    example); with it, rsync runs over ssh as `username@ip`.
    """

    kind = 'RSync'
    utility = 'rsync'
    options = {
        'ip': None,
        'port': 22,
        'username': None,
        'private_key': None,
        'utility_path': None,
        'additional_options': [],
    }

    @property
    def label(self) -> str:
        if self.ip:
            user = f"{self.username}@" if self.username else ''
            return f"RSync ({user}{self.ip}:{self.path})"
        return f"RSync ({self.path})"

    def utility_command(self) -> str:
        """
        Locate the rsync executable.

        Raises:
            StorageError: If rsync cannot be found
        """
        if self.utility_path:
            if not os.path.exists(self.utility_path):
                raise StorageError(f"rsync not found: {self.utility_path}")
            return self.utility_path

        found = shutil.which(self.utility)
        if not found:
            raise StorageError("'rsync' not found on PATH")
        return found

    def _destination(self, path: str) -> str:
        """rsync destination argument for a path, remote when ip is set."""
        if not self.ip:
            return path
        user = f"{self.username}@" if self.username else ''
        return f"{user}{self.ip}:{path}"

    def _base_args(self) -> List[str]:
        args = [self.utility_command()]
        if self.ip:
            ssh = ['ssh', '-p', str(self.port)]
            if self.private_key:
                ssh += ['-i', str(Path(self.private_key).expanduser())]
            args += ['-e', ' '.join(shlex.quote(part) for part in ssh)]
        return args

    def _rsync(self, args: List[str]) -> subprocess.CompletedProcess:
        """
        Run rsync.

        Raises:
            StorageError: If rsync exits with a non-zero status
        """
        logger.debug("Running rsync for %s", self.label)
        try:
            completed = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise StorageError(f"Failed to run rsync: {e}")

        if completed.returncode != 0:
            stderr = completed.stderr.decode('utf-8', errors='replace').strip()
            raise StorageError(f"rsync exited with status {completed.returncode}: {stderr}")
        return completed

    def _transfer(self, package) -> str:
        remote_dir = self.remote_path(package.trigger, package.timestamp)
        args = self._base_args() + ['--archive', *self.additional_options]

        if self.ip:
            # Create the package directory on the remote side before rsync starts
            args += ['--rsync-path', f"mkdir -p {shlex.quote(remote_dir)} && rsync"]
        else:
            try:
                Path(remote_dir).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create {remote_dir}: {e}")

        args += [str(path) for path in package.files]
        args.append(self._destination(remote_dir) + '/')
        self._rsync(args)

        return self._destination(remote_dir)

    def _list(self, path: str) -> List[Tuple[bool, str]]:
        """
        Entries of a directory as (is_dir, name) pairs.

        A directory that does not exist yet lists as empty.
        """
        args = self._base_args() + ['--list-only', self._destination(path) + '/']
        try:
            completed = self._rsync(args)
        except StorageError as e:
            if 'No such file or directory' in str(e):
                return []
            raise

        entries = []
        for line in completed.stdout.decode('utf-8', errors='replace').splitlines():
            fields = line.split(None, 4)
            if len(fields) < 5 or fields[4] == '.':
                continue
            entries.append((line.startswith('d'), fields[4]))
        return entries

    def package_exists(self, trigger: str, timestamp: str) -> bool:
        return any(is_dir and name == timestamp for is_dir, name in self._list(self.trigger_path(trigger)))

    def list_packages(self, trigger: str) -> List[RemotePackage]:
        trigger_dir = self.trigger_path(trigger)
        packages = []

        for is_dir, name in self._list(trigger_dir):
            if not is_dir or parse_timestamp(name) is None:
                continue
            package_dir = f"{trigger_dir}/{name}"
            files = sorted(f"{package_dir}/{entry}" for entry_is_dir, entry in self._list(package_dir)
                           if not entry_is_dir)
            packages.append(RemotePackage(trigger, name, package_dir, files))

        return packages

    def delete_package(self, package: RemotePackage):
        """Sync an empty directory over the package with --delete, limited to it by filters."""
        trigger_dir = posixpath.dirname(package.location)

        with tempfile.TemporaryDirectory(prefix='backupper-rsync-') as empty:
            args = self._base_args() + [
                '--recursive',
                '--delete',
                f"--include=/{package.timestamp}/***",
                '--exclude=*',
                empty + '/',
                self._destination(trigger_dir) + '/',
            ]
            self._rsync(args)
