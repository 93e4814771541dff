"""
Unit tests for encryptor components (backupper/components/encryptors.py).

Tests AES framing and determinism, and the GPG command line.
"""

from unittest.mock import MagicMock, patch

import pytest
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESSIV

from backupper.components import AES, GPG
from backupper.components.encryptors import MAGIC, SALT_SIZE, derive_key
from backupper.errors import ConfigurationError, EncryptionError

SALT_HEX = '00112233445566778899aabbccddeeff'


def decrypt(path, password):
    """Reverse the AES frame format."""
    data = path.read_bytes()
    header_size = len(MAGIC) + SALT_SIZE + 4
    header = data[:header_size]
    salt = header[len(MAGIC):len(MAGIC) + SALT_SIZE]
    cipher = AESSIV(derive_key(password, salt))

    plaintext = b''
    offset = header_size
    index = 0
    final = False
    while offset < len(data):
        length = int.from_bytes(data[offset:offset + 4], 'big')
        frame = data[offset + 4:offset + 4 + length]
        chunk = cipher.decrypt(frame, [header, index.to_bytes(8, 'big')])
        final = chunk[:1] == b'\x01'
        plaintext += chunk[1:]
        offset += 4 + length
        index += 1

    assert final
    return plaintext


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / 'package.tar.gz'
    path.write_bytes(b'compressed backup data ' * 500)
    return path


class TestAES:
    """Test AES encryptor."""

    def test_wrap(self, archive):
        encryptor = AES(password='s3cret', salt=SALT_HEX, chunk_size=1000)

        output = encryptor.wrap(archive)

        assert output.name == 'package.tar.gz.enc'
        data = output.read_bytes()
        assert data.startswith(MAGIC + bytes.fromhex(SALT_HEX))
        assert decrypt(output, 's3cret') == archive.read_bytes()

    def test_empty_input(self, tmp_path):
        path = tmp_path / 'empty.tar'
        path.write_bytes(b'')

        output = AES(password='s3cret').wrap(path)

        assert decrypt(output, 's3cret') == b''

    def test_wrap_is_deterministic(self, tmp_path):
        outputs = []
        for name in ('first', 'second'):
            directory = tmp_path / name
            directory.mkdir()
            path = directory / 'package.tar'
            path.write_bytes(b'same input' * 100)
            outputs.append(AES(password='s3cret', chunk_size=256).wrap(path).read_bytes())

        assert outputs[0] == outputs[1]

    def test_different_password_different_output(self, archive):
        first = AES(password='one').wrap(archive).read_bytes()
        second = AES(password='two').wrap(archive).read_bytes()

        assert first != second

    def test_wrong_password_fails_to_decrypt(self, archive):
        output = AES(password='s3cret', salt=SALT_HEX).wrap(archive)

        with pytest.raises(InvalidTag):
            decrypt(output, 'wrong')

    def test_reordered_frames_are_detected(self, archive):
        output = AES(password='s3cret', salt=SALT_HEX, chunk_size=1000).wrap(archive)
        data = output.read_bytes()
        header_size = len(MAGIC) + SALT_SIZE + 4
        # Every frame except the last has the same length
        frame_size = 4 + int.from_bytes(data[header_size:header_size + 4], 'big')
        first = data[header_size:header_size + frame_size]
        second = data[header_size + frame_size:header_size + 2 * frame_size]
        output.write_bytes(data[:header_size] + second + first + data[header_size + 2 * frame_size:])

        with pytest.raises(InvalidTag):
            decrypt(output, 's3cret')

    def test_base64_salt(self):
        encryptor = AES(password='s3cret', salt='ABEiM0RVZneImaq7zN3u_w==')

        assert encryptor._salt_bytes == bytes.fromhex(SALT_HEX)

    @pytest.mark.parametrize('salt', ['abcd', 'not a salt at all!'])
    def test_invalid_salt(self, salt):
        with pytest.raises(ConfigurationError, match="'salt'"):
            AES(password='s3cret', salt=salt)

    def test_missing_password(self):
        with pytest.raises(ConfigurationError, match='password'):
            AES()

    def test_empty_password(self):
        with pytest.raises(ConfigurationError, match='password'):
            AES(password='')

    def test_invalid_chunk_size(self):
        with pytest.raises(ConfigurationError, match='chunk_size'):
            AES(password='s3cret', chunk_size=0)


class TestGPG:
    """Test GPG encryptor."""

    @patch('backupper.components.encryptors.shutil.which', return_value='/usr/bin/gpg')
    @patch('backupper.components.encryptors.os.path.exists', return_value=True)
    @patch('backupper.components.encryptors.subprocess.run')
    def test_wrap(self, mock_run, mock_exists, mock_which, archive):
        mock_run.return_value = MagicMock(returncode=0, stderr=b'')

        output = GPG(recipient='ops@example.com', homedir='/etc/backupper/gnupg').wrap(archive)

        assert output.name == 'package.tar.gz.gpg'
        args = mock_run.call_args[0][0]
        assert args[0] == '/usr/bin/gpg'
        assert '--batch' in args
        assert args[args.index('--homedir') + 1] == '/etc/backupper/gnupg'
        assert args[args.index('--recipient') + 1] == 'ops@example.com'
        assert args[args.index('--output') + 1] == str(output)
        assert args[-1] == str(archive)

    @patch('backupper.components.encryptors.shutil.which', return_value='/usr/bin/gpg')
    @patch('backupper.components.encryptors.os.path.exists', return_value=True)
    @patch('backupper.components.encryptors.subprocess.run')
    def test_gpg_failure(self, mock_run, mock_exists, mock_which, archive):
        mock_run.return_value = MagicMock(returncode=2, stderr=b'gpg: ops@example.com: skipped: No public key')

        with pytest.raises(EncryptionError) as exc_info:
            GPG(recipient='ops@example.com').wrap(archive)

        assert 'No public key' in exc_info.value.describe()

    @patch('backupper.components.encryptors.shutil.which', return_value=None)
    def test_gpg_not_installed(self, mock_which, archive):
        with pytest.raises(EncryptionError, match='gpg not found'):
            GPG(recipient='ops@example.com').wrap(archive)

    def test_missing_recipient(self):
        with pytest.raises(ConfigurationError, match='recipient'):
            GPG()
