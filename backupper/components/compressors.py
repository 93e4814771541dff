"""
Compressor components.

Supports:
- Gzip: .gz
- Bzip2: .bz2
- Xz: .xz (LZMA)

Output is deterministic: the gzip header carries no file name and a zero
modification time.
"""

import bz2
import gzip
import lzma
import shutil
from pathlib import Path

from backupper.errors import ConfigurationError
from .base import Compressor

COPY_BUFFER_SIZE = 1024 * 1024


class Gzip(Compressor):
    """Gzip compression."""

    kind = 'Gzip'
    extension = '.gz'
    options = {'level': 6}

    def validate(self):
        _check_level(self, 1, 9)

    def _compress(self, input_path: Path, output_path: Path):
        with open(input_path, 'rb') as src, open(output_path, 'wb') as raw:
            with gzip.GzipFile(filename='', mode='wb', fileobj=raw,
                               compresslevel=self.level, mtime=0) as dst:
                shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)


class Bzip2(Compressor):
    """Bzip2 compression."""

    kind = 'Bzip2'
    extension = '.bz2'
    options = {'level': 9}

    def validate(self):
        _check_level(self, 1, 9)

    def _compress(self, input_path: Path, output_path: Path):
        with open(input_path, 'rb') as src, bz2.open(output_path, 'wb', compresslevel=self.level) as dst:
            shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)


class Xz(Compressor):
    """Xz (LZMA2) compression."""

    kind = 'Xz'
    extension = '.xz'
    options = {'level': 6}

    def validate(self):
        _check_level(self, 0, 9)

    def _compress(self, input_path: Path, output_path: Path):
        with open(input_path, 'rb') as src, lzma.open(output_path, 'wb', preset=self.level) as dst:
            shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)


def _check_level(compressor: Compressor, lowest: int, highest: int):
    level = compressor.level
    if isinstance(level, bool) or not isinstance(level, int) or not lowest <= level <= highest:
        raise ConfigurationError(
            f"Option 'level' for compressor '{compressor.kind}' must be between "
            f"{lowest} and {highest}, got {level!r}"
        )
