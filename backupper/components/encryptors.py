"""
Encryptor components.

Supports:
- AES: password based, key derived with PBKDF2-HMAC-SHA256, AES-SIV per
  chunk. Suffix .enc
- GPG: public key encryption with the gpg binary. Suffix .gpg

AES file layout:

    MAGIC (8 bytes) | salt (16 bytes) | chunk size (4 bytes, big endian)
    frame* where frame = length (4 bytes, big endian) | ciphertext

Each frame encrypts one flag byte (1 on the final chunk, 0 otherwise)
followed by up to `chunk size` bytes of plaintext. The header and the frame
index are authenticated as associated data, so frames cannot be reordered,
dropped or truncated unnoticed. AES-SIV is deterministic: the same input,
password and salt always produce the same output.
"""

import base64
import hashlib
import logging
import os
import shutil
import subprocess
from pathlib import Path

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESSIV
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backupper.errors import ConfigurationError, EncryptionError
from .base import Encryptor

logger = logging.getLogger(__name__)

MAGIC = b'BKUPAES1'
SALT_SIZE = 16
KDF_ITERATIONS = 480000
DEFAULT_CHUNK_SIZE = 1024 * 1024


def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive a 64-byte AES-SIV key (AES-256) from a password.

    Args:
        password: Encryption password
        salt: 16-byte salt

    Returns:
        Raw key bytes
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=64,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(password.encode())


class AES(Encryptor):
    """Password based AES-SIV encryption."""

    kind = 'AES'
    extension = '.enc'
    options = {
        'password': None,
        'salt': None,
        'chunk_size': DEFAULT_CHUNK_SIZE,
    }
    required = ('password',)

    def validate(self):
        if not isinstance(self.password, str) or not self.password:
            raise ConfigurationError("Option 'password' for encryptor 'AES' must be a non-empty string")
        self._require_positive_int('chunk_size')
        self._salt_bytes = self._resolve_salt()

    def _resolve_salt(self) -> bytes:
        """
        Decode the configured salt, or derive one from the password.

        The salt may be given as hex or urlsafe base64 and must decode to 16
        bytes.
        """
        if self.salt is None:
            return hashlib.sha256(b'backupper:aes:' + self.password.encode()).digest()[:SALT_SIZE]

        for decode in (bytes.fromhex, base64.urlsafe_b64decode):
            try:
                decoded = decode(str(self.salt))
            except ValueError:
                continue
            if len(decoded) == SALT_SIZE:
                return decoded

        raise ConfigurationError(
            f"Option 'salt' for encryptor 'AES' must be {SALT_SIZE} bytes in hex or base64"
        )

    def _encrypt(self, input_path: Path, output_path: Path):
        cipher = AESSIV(derive_key(self.password, self._salt_bytes))
        header = MAGIC + self._salt_bytes + self.chunk_size.to_bytes(4, 'big')

        with open(input_path, 'rb') as src, open(output_path, 'wb') as dst:
            dst.write(header)

            index = 0
            chunk = src.read(self.chunk_size)
            while True:
                following = src.read(self.chunk_size)
                flag = b'\x01' if not following else b'\x00'

                ciphertext = cipher.encrypt(flag + chunk, [header, index.to_bytes(8, 'big')])
                dst.write(len(ciphertext).to_bytes(4, 'big'))
                dst.write(ciphertext)

                if not following:
                    break
                chunk = following
                index += 1


class GPG(Encryptor):
    """Encrypts for a public key recipient with the gpg binary."""

    kind = 'GPG'
    extension = '.gpg'
    options = {
        'recipient': None,
        'homedir': None,
        'utility_path': None,
        'additional_options': [],
    }
    required = ('recipient',)

    def _encrypt(self, input_path: Path, output_path: Path):
        gpg = self.utility_path or shutil.which('gpg')
        if not gpg or not os.path.exists(gpg):
            raise EncryptionError(f"{self.label}: gpg not found")

        args = [gpg, '--batch', '--yes', '--trust-model', 'always']
        if self.homedir:
            args.extend(['--homedir', str(self.homedir)])
        args.extend(self.additional_options)
        args.extend(['--recipient', self.recipient, '--output', str(output_path), '--encrypt', str(input_path)])

        try:
            completed = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise EncryptionError(f"{self.label}: failed to run gpg: {e}")

        if completed.returncode != 0:
            raise EncryptionError(
                f"{self.label}: gpg exited with status {completed.returncode}",
                diagnostic=completed.stderr.decode('utf-8', errors='replace')
            )
