"""Unit tests for ArchiveIndex.

Archives are built with zipfile in a temp directory; the index must find the
same entries by reading only the central directory.
"""

import hashlib
import os
import struct
import warnings
import zipfile
import zlib

import pytest

from swapdeploy.archive import ArchiveIndex
from swapdeploy.archive.cursor import ByteCursor
from swapdeploy.exceptions import ArchiveError


ENTRIES = {
    "app/__init__.py": "",
    "app/main.py": "def main():\n    return 1\n",
    "res/logo.txt": b"\x89PNG not really",
}


class TestArchiveIndexEntries:
    """Test entry listing from the central directory."""

    def test_lists_every_entry_with_crc_and_sizes(self, make_archive):
        """Entries match what zipfile wrote, in order."""
        path = make_archive("app.apk", ENTRIES)

        archive = ArchiveIndex().index(str(path))

        assert [e.name for e in archive.entries] == list(ENTRIES)
        main = archive.entry("app/main.py")
        assert main.crc == zlib.crc32(ENTRIES["app/main.py"].encode())
        assert main.size == len(ENTRIES["app/main.py"])
        assert main.archive_path == str(path)

    def test_offsets_match_zipfile(self, make_archive):
        """Local header offsets agree with zipfile's own reading."""
        path = make_archive("app.apk", ENTRIES)

        archive = ArchiveIndex().index(str(path))

        with zipfile.ZipFile(path) as zf:
            expected = {info.filename: info.header_offset for info in zf.infolist()}
        assert {e.name: e.offset for e in archive.entries} == expected

    def test_path_is_absolute_and_name_is_basename(self, make_archive, monkeypatch, tmp_path):
        """Relative paths are resolved once at index time."""
        make_archive("app.apk", ENTRIES)
        monkeypatch.chdir(tmp_path)

        archive = ArchiveIndex().index("app.apk")

        assert os.path.isabs(archive.path)
        assert os.path.samefile(archive.path, tmp_path / "app.apk")
        assert archive.name == "app.apk"

    def test_crcs_maps_names(self, make_archive):
        path = make_archive("app.apk", {"a.txt": "a", "b.txt": "b"})

        crcs = ArchiveIndex().index(str(path)).crcs()

        assert crcs == {"a.txt": zlib.crc32(b"a"), "b.txt": zlib.crc32(b"b")}

    def test_utf8_names(self, make_archive):
        """Non-ASCII names are flagged UTF-8 by zipfile and decoded as such."""
        path = make_archive("app.apk", {"res/café.txt": "x"})

        archive = ArchiveIndex().index(str(path))

        assert archive.entries[0].name == "res/café.txt"

    def test_empty_archive(self, make_archive):
        """An archive without entries is valid."""
        path = make_archive("empty.apk", {})

        archive = ArchiveIndex().index(str(path))

        assert archive.entries == ()
        assert archive.cd_size == 0

    def test_stored_entries(self, make_archive):
        """Compression method is irrelevant to indexing."""
        path = make_archive("app.apk", ENTRIES, compression=zipfile.ZIP_STORED)

        archive = ArchiveIndex().index(str(path))

        assert len(archive.entries) == 3

    def test_duplicate_entry_rejected(self, make_archive):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")  # zipfile warns about the duplicate
            path = make_archive("dup.apk", {})
            with zipfile.ZipFile(path, 'w') as zf:
                zf.writestr("a.txt", "1")
                zf.writestr("a.txt", "2")

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.DUPLICATE_ENTRY
        assert "a.txt" in str(exc_info.value)


class TestArchiveIndexComments:
    """Test the backward EOCD scan over trailing comments."""

    @pytest.mark.parametrize("length", [0, 1, 21, 22, 1000, 65534, 65535])
    def test_finds_eocd_for_any_comment_length(self, make_archive, length):
        path = make_archive("app.apk", ENTRIES, comment=b"c" * length)

        archive = ArchiveIndex().index(str(path))

        assert len(archive.entries) == 3
        assert archive.eocd_offset == path.stat().st_size - 22 - length

    def test_skips_signature_inside_comment(self, make_archive):
        """EOCD signature bytes inside the comment are not mistaken for the record."""
        comment = b"xx" + b"PK\x05\x06" + b"\x00" * 16 + b"tail"
        path = make_archive("app.apk", ENTRIES, comment=comment)

        archive = ArchiveIndex().index(str(path))

        assert len(archive.entries) == 3

    def test_scan_is_bounded(self, make_archive):
        """A smaller max comment size stops the scan before the EOCD."""
        path = make_archive("app.apk", ENTRIES, comment=b"c" * 100)

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex(max_comment_size=50).index(str(path))

        assert exc_info.value.kind == ArchiveError.NO_EOCD

    @pytest.mark.parametrize("trailing", [b"\x00" * 7, b"junk" * 100])
    def test_trailing_bytes_keep_central_directory(self, make_archive, trailing):
        """Bytes appended after the EOCD do not move the located central directory."""
        path = make_archive("app.apk", ENTRIES)
        expected = ArchiveIndex().index(str(path))
        path.write_bytes(path.read_bytes() + trailing)

        archive = ArchiveIndex().index(str(path))

        assert archive.cd_offset == expected.cd_offset
        assert archive.eocd_offset == expected.eocd_offset
        assert archive.digest == expected.digest
        assert [e.name for e in archive.entries] == list(ENTRIES)

    def test_exact_comment_wins_over_trailing_candidate(self, make_archive):
        """A record that ends the file is preferred to an earlier one."""
        comment = b"xx" + b"PK\x05\x06" + b"\x00" * 16 + b"tail"
        path = make_archive("app.apk", ENTRIES, comment=comment)

        archive = ArchiveIndex().index(str(path))

        assert archive.eocd_offset == path.stat().st_size - 22 - len(comment)


class TestArchiveIndexSignatureBlock:
    """Test signature block detection and digest selection."""

    def test_detects_signature_block(self, make_archive):
        pairs = struct.pack('<QI', 12, 0x7109871a) + b"signatur"
        path = make_archive("app.apk", ENTRIES, signature_block=pairs)

        archive = ArchiveIndex().index(str(path))

        assert archive.has_signature_block
        assert archive.signature_block_size == len(pairs) + 32
        assert archive.signature_block_offset + archive.signature_block_size == archive.cd_offset
        data = path.read_bytes()
        block = data[archive.signature_block_offset:archive.cd_offset]
        assert archive.digest == hashlib.sha256(block).hexdigest()

    def test_entries_still_readable_after_block(self, make_archive):
        path = make_archive("app.apk", ENTRIES, signature_block=b"\x00" * 16)

        archive = ArchiveIndex().index(str(path))

        assert [e.name for e in archive.entries] == list(ENTRIES)

    def test_mismatched_sizes_mean_no_block(self, make_archive):
        """Magic without agreeing sizes is not a signature block."""
        path = make_archive("app.apk", ENTRIES, signature_block=b"\x00" * 16, corrupt_signature_size=True)

        archive = ArchiveIndex().index(str(path))

        assert not archive.has_signature_block
        assert archive.signature_block_offset is None

    def test_digest_covers_central_directory_without_block(self, make_archive):
        path = make_archive("app.apk", ENTRIES)

        archive = ArchiveIndex().index(str(path))

        data = path.read_bytes()
        cd = data[archive.cd_offset:archive.cd_offset + archive.cd_size]
        assert archive.digest == hashlib.sha256(cd).hexdigest()

    def test_digest_changes_with_content(self, make_archive):
        first = make_archive("a/app.apk", {"x.py": "x = 1\n"})
        second = make_archive("b/app.apk", {"x.py": "x = 2\n"})

        index = ArchiveIndex()

        assert index.index(str(first)).digest != index.index(str(second)).digest


class TestArchiveIndexErrors:
    """Test typed failures."""

    def test_too_short(self, tmp_path):
        path = tmp_path / "short.apk"
        path.write_bytes(b"PK\x05\x06")

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.TOO_SHORT

    def test_not_an_archive(self, tmp_path):
        path = tmp_path / "noise.apk"
        path.write_bytes(b"\x01" * 4096)

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.NO_EOCD

    def test_missing_file(self, tmp_path):
        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(tmp_path / "missing.apk"))

        assert exc_info.value.kind == ArchiveError.UNREADABLE

    def test_central_directory_offset_out_of_range(self, make_archive):
        path = make_archive("app.apk", ENTRIES)
        data = bytearray(path.read_bytes())
        eocd = data.rfind(b"PK\x05\x06")
        struct.pack_into('<I', data, eocd + 16, 3)  # points into local data
        path.write_bytes(bytes(data))

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.BAD_CENTRAL_DIRECTORY

    def test_zip64_unsupported(self, make_archive):
        path = make_archive("app.apk", ENTRIES)
        data = bytearray(path.read_bytes())
        eocd = data.rfind(b"PK\x05\x06")
        struct.pack_into('<I', data, eocd + 16, 0xFFFFFFFF)
        path.write_bytes(bytes(data))

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.UNSUPPORTED

    def test_error_mentions_path(self, tmp_path):
        path = tmp_path / "noise.apk"
        path.write_bytes(b"\x01" * 64)

        with pytest.raises(ArchiveError, match="noise.apk"):
            ArchiveIndex().index(str(path))


class TestByteCursor:
    """Test bounds checking of the cursor."""

    def test_reads_little_endian(self):
        cursor = ByteCursor(struct.pack('<HIQ', 1, 2, 3))

        assert cursor.read_u16() == 1
        assert cursor.read_u32() == 2
        assert cursor.read_u64() == 3
        assert cursor.position == 14

    def test_read_past_end_raises(self):
        cursor = ByteCursor(b"\x00\x01")

        with pytest.raises(ArchiveError):
            cursor.read_u32()

    def test_seek_out_of_range_raises(self):
        with pytest.raises(ArchiveError):
            ByteCursor(b"abc").seek(4)

    def test_matches_does_not_move(self):
        cursor = ByteCursor(b"xxPKyy")

        assert cursor.matches(2, b"PK")
        assert not cursor.matches(5, b"PK")
        assert cursor.position == 0

    def test_scan_backward(self):
        data = b"PK" + b"." * 10 + b"PK" + b"." * 4
        cursor = ByteCursor(data)

        assert cursor.scan_backward(b"PK", len(data), 100) == 12
        assert cursor.scan_backward(b"PK", 11, 100) == 0
        assert cursor.scan_backward(b"PK", 11, 5) is None

    def test_invalid_utf8_name(self, make_archive):
        """A name flagged as UTF-8 that does not decode is a malformed directory."""
        path = make_archive("app.apk", {"app/é.py": "x = 1\n"})
        data = path.read_bytes()
        assert b"app/\xc3\xa9.py" in data
        path.write_bytes(data.replace(b"app/\xc3\xa9.py", b"app/\xff\xfe.py"))

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveIndex().index(str(path))

        assert exc_info.value.kind == ArchiveError.BAD_CENTRAL_DIRECTORY
        assert "UTF-8" in str(exc_info.value)
