"""
Archive packaging for backup runs.

Builds the package of a run:
1. create_archive: tar of database dumps and declared paths
2. split_package: optional fixed-size chunks
3. write_manifest: chunk list and checksums, used to identify the package

Archives are deterministic: entries are added in sorted order with owner
fields normalized, and database dump entries, which are written fresh by
every run, also get a zero mtime and fixed permissions. Identical dump
content and unchanged archive paths give byte-identical archives.
"""

import hashlib
import json
import os
import tarfile
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from backupper.components.retention import format_timestamp
from backupper.errors import PackagingError

CHUNK_SUFFIX_DIGITS = 3
COPY_BUFFER_SIZE = 1024 * 1024


@dataclass
class Package:
    """
    The backup artifact of one run.

    Attributes:
        trigger: Trigger that produced the package
        timestamp: Package timestamp (see retention.TIMESTAMP_FORMAT)
        basename: File name of the unsplit artifact, e.g.
            2024.01.15.02.00.00.nightly.tar.gz
        chunks: Chunk files, in order
        manifest: Manifest file describing the chunks
        total_size: Size of all chunks, recorded when the manifest is written
    """
    trigger: str
    timestamp: str
    basename: str
    chunks: List[Path] = field(default_factory=list)
    manifest: Optional[Path] = None
    total_size: Optional[int] = None

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def size(self) -> int:
        if self.total_size is not None:
            return self.total_size
        return sum(chunk.stat().st_size for chunk in self.chunks if chunk.exists())

    @property
    def files(self) -> List[Path]:
        """Every file to transfer: chunks followed by the manifest."""
        return list(self.chunks) + ([self.manifest] if self.manifest else [])

    @property
    def manifest_name(self) -> str:
        return manifest_filename(self.trigger, self.timestamp)


def generate_package_basename(trigger: str, moment: datetime) -> str:
    """
    Generate the archive file name of a package.

    Format: {YYYY.MM.DD.HH.MM.SS}.{trigger}.tar
    """
    return f"{format_timestamp(moment)}.{trigger}.tar"


def manifest_filename(trigger: str, timestamp: str) -> str:
    return f"{timestamp}.{trigger}.manifest.json"


def should_exclude(path: Path, exclude_patterns: Sequence[str]) -> bool:
    """
    Check if a path matches any exclude pattern.

    A pattern matches the full path, the file name, or is a path that the
    given path is equal to or inside of.
    """
    if not exclude_patterns:
        return False

    path_str = str(path)
    path_name = path.name

    for pattern in exclude_patterns:
        if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
            return True
        if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
            return True
        if os.path.isabs(pattern):
            excluded = pattern.rstrip('/')
            if path_str == excluded or path_str.startswith(excluded + '/'):
                return True

    return False


def _normalize(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    tarinfo.uid = 0
    tarinfo.gid = 0
    tarinfo.uname = ''
    tarinfo.gname = ''
    return tarinfo


def _normalize_dump(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    _normalize(tarinfo)
    tarinfo.mtime = 0
    tarinfo.mode = 0o755 if tarinfo.isdir() else 0o644
    return tarinfo


def _add_tree(tar: tarfile.TarFile, source: Path, arcname: str, exclude_patterns: Sequence[str],
              normalize=_normalize):
    """Add source and, for directories, its contents in sorted order."""
    if should_exclude(source, exclude_patterns):
        return

    tar.add(str(source), arcname=arcname, recursive=False, filter=normalize)

    if source.is_dir() and not source.is_symlink():
        for child in sorted(source.iterdir(), key=lambda item: item.name):
            _add_tree(tar, child, f"{arcname}/{child.name}", exclude_patterns, normalize)


def create_archive(
    trigger: str,
    output_path: Path,
    dump_dir: Optional[Path] = None,
    archive_paths: Iterable[str] = (),
    exclude_patterns: Sequence[str] = ()
) -> Path:
    """
    Create an uncompressed tar archive.

    Layout inside the archive:
        {trigger}/databases/...      database dumps
        {trigger}/archive/{path}     declared paths, by absolute path

    Args:
        trigger: Trigger name, used as the top-level directory
        output_path: Archive file to create
        dump_dir: Directory holding the database dumps, if any
        archive_paths: Files/directories to include
        exclude_patterns: Glob patterns or absolute paths to leave out

    Returns:
        Path to the created archive

    Raises:
        PackagingError: If a path is missing or the archive cannot be written
    """
    output_path = Path(output_path)
    archive_paths = list(archive_paths)
    exclude_patterns = list(exclude_patterns)

    for path in archive_paths:
        if not os.path.lexists(os.path.expanduser(path)):
            raise PackagingError(f"Path does not exist: {path}")

    try:
        with tarfile.open(output_path, 'w', format=tarfile.GNU_FORMAT) as tar:
            if dump_dir is not None and Path(dump_dir).is_dir():
                for child in sorted(Path(dump_dir).iterdir(), key=lambda item: item.name):
                    _add_tree(tar, child, f"{trigger}/databases/{child.name}", (), _normalize_dump)

            for path in archive_paths:
                source = Path(os.path.abspath(os.path.expanduser(path)))
                _add_tree(tar, source, f"{trigger}/archive/{str(source).lstrip('/')}", exclude_patterns)

    except (OSError, tarfile.TarError) as e:
        if output_path.exists():
            output_path.unlink()
        raise PackagingError(f"Failed to create archive: {e}")

    return output_path


def split_package(path: Path, chunk_size: Optional[int]) -> List[Path]:
    """
    Split a file into numbered chunks of at most chunk_size bytes.

    Chunks are named {name}-001, {name}-002, ... and replace the original
    file. Without a chunk size, or when the file already fits in one chunk,
    the file itself is the only chunk.

    Raises:
        PackagingError: If splitting fails
    """
    path = Path(path)

    if chunk_size is None:
        return [path]
    if chunk_size < 1:
        raise PackagingError(f"Invalid chunk size: {chunk_size}")

    try:
        if path.stat().st_size <= chunk_size:
            return [path]

        chunks = []
        with open(path, 'rb') as src:
            index = 1
            while True:
                remaining = chunk_size
                chunk_path = path.with_name(f"{path.name}-{index:0{CHUNK_SUFFIX_DIGITS}d}")
                written = 0
                with open(chunk_path, 'wb') as dst:
                    while remaining:
                        data = src.read(min(COPY_BUFFER_SIZE, remaining))
                        if not data:
                            break
                        dst.write(data)
                        written += len(data)
                        remaining -= len(data)

                if written == 0:
                    chunk_path.unlink()
                    break

                chunks.append(chunk_path)
                if remaining:
                    break
                index += 1

        path.unlink()
        return chunks

    except OSError as e:
        raise PackagingError(f"Failed to split {path.name}: {e}")


def file_checksum(path: Path) -> str:
    """SHA-256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for block in iter(lambda: f.read(COPY_BUFFER_SIZE), b''):
            digest.update(block)
    return digest.hexdigest()


def write_manifest(package: Package, directory: Path) -> Path:
    """
    Write the manifest of a package and attach it to the package.

    Raises:
        PackagingError: If the manifest cannot be written
    """
    manifest_path = Path(directory) / package.manifest_name

    try:
        chunks = [
            {
                'name': chunk.name,
                'size': chunk.stat().st_size,
                'sha256': file_checksum(chunk)
            }
            for chunk in package.chunks
        ]
        document = {
            'trigger': package.trigger,
            'timestamp': package.timestamp,
            'basename': package.basename,
            'chunk_count': len(chunks),
            'size': sum(chunk['size'] for chunk in chunks),
            'chunks': chunks
        }
        with open(manifest_path, 'w') as f:
            json.dump(document, f, indent=2, sort_keys=True)

    except OSError as e:
        raise PackagingError(f"Failed to write manifest: {e}")

    package.manifest = manifest_path
    package.total_size = document['size']
    return manifest_path
