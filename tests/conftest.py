"""Shared fixtures: package archives built on the fly."""

import io
import struct
import zipfile
from pathlib import Path

import pytest

SIGNATURE_BLOCK_MAGIC = b'APK Sig Block 42'


def insert_signature_block(data: bytes, pairs: bytes, corrupt_size: bool = False) -> bytes:
    """Insert a signature block before the central directory and fix the EOCD offset."""
    eocd = data.rfind(b'PK\x05\x06')
    cd_offset = struct.unpack_from('<I', data, eocd + 16)[0]

    size = len(pairs) + 8 + len(SIGNATURE_BLOCK_MAGIC)
    leading = size + 1 if corrupt_size else size
    block = struct.pack('<Q', leading) + pairs + struct.pack('<Q', size) + SIGNATURE_BLOCK_MAGIC

    patched = bytearray(data[:cd_offset] + block + data[cd_offset:])
    struct.pack_into('<I', patched, eocd + len(block) + 16, cd_offset + len(block))
    return bytes(patched)


def build_archive(
    path,
    entries,
    comment: bytes = b"",
    signature_block: bytes = None,
    corrupt_signature_size: bool = False,
    compression: int = zipfile.ZIP_DEFLATED
) -> Path:
    """Write a zip archive holding entries (name -> str|bytes) to path."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
        archive.comment = comment
    data = buffer.getvalue()

    if signature_block is not None:
        data = insert_signature_block(data, signature_block, corrupt_signature_size)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


@pytest.fixture
def make_archive(tmp_path):
    """Factory: make_archive("old/app.apk", {"app/main.py": "..."}) -> Path."""
    def _make(name, entries, **kwargs):
        return build_archive(tmp_path / name, entries, **kwargs)
    return _make
