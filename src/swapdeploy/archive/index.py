"""
ArchiveIndex - locate the central directory and signature block of a package.

Works directly on the archive bytes: nothing is decompressed and no
particular compression method is assumed.

Layout handled (all integers little-endian):

    [local headers + data] [signature block?] [central directory] [EOCD] [comment]

    EOCD (22 bytes + comment):
        +0  u32 signature 0x06054b50
        +10 u16 total number of entries
        +12 u32 central directory size
        +16 u32 central directory offset
        +20 u16 comment length

    Signature block (immediately before the central directory):
        u64 size | id-value pairs | u64 size | "APK Sig Block 42"

The EOCD has no fixed position because of the trailing comment, so it is
found by scanning backward one byte at a time, at most 65535 bytes.
"""

import hashlib
import mmap
import os
from dataclasses import dataclass
from typing import Optional

from swapdeploy.archive.cursor import ByteCursor
from swapdeploy.exceptions import ArchiveError

EOCD_SIGNATURE = b'PK\x05\x06'
CD_SIGNATURE = b'PK\x01\x02'
SIGNATURE_BLOCK_MAGIC = b'APK Sig Block 42'

EOCD_SIZE = 22
CD_RECORD_SIZE = 46
MAX_COMMENT_SIZE = 0xFFFF
ZIP64_MARKER = 0xFFFFFFFF
UTF8_FLAG = 0x0800

# u64 size + magic; the smallest block also has the leading u64 size
SIGNATURE_TRAILER_SIZE = 8 + len(SIGNATURE_BLOCK_MAGIC)
MIN_SIGNATURE_BLOCK_SIZE = 8 + SIGNATURE_TRAILER_SIZE


@dataclass(frozen=True)
class ArchiveEntry:
    """
    One named record of the central directory.

    Attributes:
        name: Entry name, unique within its archive
        crc: CRC-32 of the uncompressed data as recorded by the archiver
        size: Uncompressed size in bytes
        compressed_size: Stored size in bytes
        offset: Offset of the local file header
        archive_path: Absolute path of the owning archive
    """
    name: str
    crc: int
    size: int
    compressed_size: int
    offset: int
    archive_path: str

    @property
    def identity(self) -> tuple[str, int]:
        """Cache key for this entry."""
        return (self.name, self.crc)


@dataclass(frozen=True)
class PackageArchive:
    """
    Immutable view of one on-disk archive.

    digest is SHA-256 over the signature block when present, otherwise over the
    central directory, so byte-identical packages always share a digest.
    """
    path: str
    cd_offset: int
    cd_size: int
    eocd_offset: int
    entries: tuple[ArchiveEntry, ...]
    digest: str
    signature_block_offset: Optional[int] = None
    signature_block_size: Optional[int] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def has_signature_block(self) -> bool:
        return self.signature_block_offset is not None

    def entry(self, name: str) -> Optional[ArchiveEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def crcs(self) -> dict[str, int]:
        """Map of entry name to CRC-32."""
        return {entry.name: entry.crc for entry in self.entries}


class ArchiveIndex:
    """Builds PackageArchive views from archive files."""

    def __init__(self, max_comment_size: int = MAX_COMMENT_SIZE):
        self.max_comment_size = max_comment_size

    def index(self, path: str) -> PackageArchive:
        """
        Index an archive without decompressing it.

        Args:
            path: Path to the archive file

        Returns:
            PackageArchive with central directory, signature block and entries

        Raises:
            ArchiveError: If the file is unreadable, too short, or malformed
        """
        path = os.path.abspath(path)
        try:
            with open(path, 'rb') as f:
                length = os.fstat(f.fileno()).st_size
                if length < EOCD_SIZE:
                    raise ArchiveError(
                        ArchiveError.TOO_SHORT,
                        f"File is {length} bytes, smaller than an end of central directory record",
                        path
                    )
                with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as buffer:
                    return self._parse(ByteCursor(buffer, path), path)
        except OSError as e:
            raise ArchiveError(ArchiveError.UNREADABLE, f"Unable to open archive: {e}", path) from e

    def _parse(self, cursor: ByteCursor, path: str) -> PackageArchive:
        eocd_offset, cd_offset, cd_size, count = self._find_central_directory(cursor, path)

        signature_block = self._find_signature_block(cursor, cd_offset)
        entries = self._read_entries(cursor, cd_offset, cd_size, count, path)

        if signature_block is not None:
            digest_start, digest_size = signature_block
        else:
            digest_start, digest_size = cd_offset, cd_size
        digest = hashlib.sha256(cursor.seek(digest_start).read_bytes(digest_size)).hexdigest()

        return PackageArchive(
            path=path,
            cd_offset=cd_offset,
            cd_size=cd_size,
            eocd_offset=eocd_offset,
            entries=entries,
            digest=digest,
            signature_block_offset=signature_block[0] if signature_block else None,
            signature_block_size=signature_block[1] if signature_block else None,
        )

    def _find_central_directory(self, cursor: ByteCursor, path: str) -> tuple[int, int, int, int]:
        """
        Scan backward for an EOCD whose central directory checks out.

        A comment can itself contain the EOCD signature, so the preferred
        candidate is one whose comment length ends the file exactly. Bytes
        appended after the record break that rule; when no candidate ends
        the file, the nearest one with a valid central directory is used.
        """
        start = len(cursor) - EOCD_SIZE
        limit = start - self.max_comment_size
        last_problem = "end of central directory signature not found"
        last_kind = ArchiveError.NO_EOCD
        fallback = None

        position = cursor.scan_backward(EOCD_SIGNATURE, start, self.max_comment_size)
        while position is not None:
            if position + EOCD_SIZE <= len(cursor):
                cursor.seek(position + 10)
                count = cursor.read_u16()
                cd_size = cursor.read_u32()
                cd_offset = cursor.read_u32()
                comment_length = cursor.read_u16()
                record = (position, cd_offset, cd_size, count)
                zip64 = cd_offset == ZIP64_MARKER or cd_size == ZIP64_MARKER or count == 0xFFFF
                record_end = position + EOCD_SIZE + comment_length

                if record_end == len(cursor):
                    if zip64:
                        raise ArchiveError(ArchiveError.UNSUPPORTED, "ZIP64 archives are not supported", path)
                    problem = self._central_directory_problem(cursor, *record)
                    if problem is None:
                        return record
                    last_problem = problem
                    last_kind = ArchiveError.BAD_CENTRAL_DIRECTORY
                elif (fallback is None and record_end < len(cursor) and not zip64
                        and self._central_directory_problem(cursor, *record) is None):
                    # Trailing bytes after the record
                    fallback = record

            position = self._next_candidate(cursor, position, limit)

        if fallback is not None:
            return fallback
        raise ArchiveError(last_kind, f"Malformed archive: {last_problem}", path)

    @staticmethod
    def _central_directory_problem(
        cursor: ByteCursor,
        position: int,
        cd_offset: int,
        cd_size: int,
        count: int
    ) -> Optional[str]:
        """Describe why the central directory an EOCD points at is invalid, or None."""
        if cd_offset + cd_size > position:
            return f"central directory [{cd_offset}, {cd_offset + cd_size}) overlaps EOCD at {position}"
        if count == 0 and cd_size == 0:
            return None
        if not cursor.matches(cd_offset, CD_SIGNATURE):
            return f"central directory signature invalid at offset {cd_offset}"
        return None

    @staticmethod
    def _next_candidate(cursor: ByteCursor, position: int, limit: int) -> Optional[int]:
        if position - 1 < max(0, limit):
            return None
        return cursor.scan_backward(EOCD_SIGNATURE, position - 1, position - 1 - max(0, limit))

    def _find_signature_block(self, cursor: ByteCursor, cd_offset: int) -> Optional[tuple[int, int]]:
        """
        Probe for a signature block ending right before the central directory.

        The magic alone is not enough: the size stored next to the magic must
        equal the size stored at the start of the block, which rejects
        truncated or corrupt trailers.

        Returns:
            (offset, size) covering the whole block, or None
        """
        magic_offset = cd_offset - len(SIGNATURE_BLOCK_MAGIC)
        if cd_offset < MIN_SIGNATURE_BLOCK_SIZE or not cursor.matches(magic_offset, SIGNATURE_BLOCK_MAGIC):
            return None

        lower_size = cursor.seek(magic_offset - 8).read_u64()
        if lower_size < SIGNATURE_TRAILER_SIZE or lower_size + 8 > cd_offset:
            return None

        block_offset = cd_offset - lower_size - 8
        upper_size = cursor.seek(block_offset).read_u64()
        if upper_size != lower_size:
            return None

        return block_offset, lower_size + 8

    def _read_entries(
        self,
        cursor: ByteCursor,
        cd_offset: int,
        cd_size: int,
        count: int,
        path: str
    ) -> tuple[ArchiveEntry, ...]:
        """Read every central directory record (headers only)."""
        entries = []
        seen = set()
        end = cd_offset + cd_size
        cursor.seek(cd_offset)

        for _ in range(count):
            if cursor.position + CD_RECORD_SIZE > end or not cursor.matches(cursor.position, CD_SIGNATURE):
                raise ArchiveError(
                    ArchiveError.BAD_CENTRAL_DIRECTORY,
                    f"Central directory record signature invalid at offset {cursor.position}",
                    path
                )
            cursor.skip(8)  # signature, version made by, version needed
            flags = cursor.read_u16()
            cursor.skip(6)  # method, time, date
            crc = cursor.read_u32()
            compressed_size = cursor.read_u32()
            size = cursor.read_u32()
            name_length = cursor.read_u16()
            extra_length = cursor.read_u16()
            comment_length = cursor.read_u16()
            cursor.skip(8)  # disk start, internal attrs, external attrs
            offset = cursor.read_u32()
            raw_name = cursor.read_bytes(name_length)
            cursor.skip(extra_length + comment_length)

            if cursor.position > end:
                raise ArchiveError(
                    ArchiveError.BAD_CENTRAL_DIRECTORY,
                    "Central directory record extends past the directory",
                    path
                )

            try:
                name = raw_name.decode('utf-8' if flags & UTF8_FLAG else 'cp437')
            except UnicodeDecodeError as e:
                raise ArchiveError(
                    ArchiveError.BAD_CENTRAL_DIRECTORY,
                    f"Entry name at offset {offset} is not valid UTF-8: {e}",
                    path
                ) from e
            if name in seen:
                raise ArchiveError(ArchiveError.DUPLICATE_ENTRY, f"Duplicate entry '{name}'", path)
            seen.add(name)

            entries.append(ArchiveEntry(
                name=name,
                crc=crc,
                size=size,
                compressed_size=compressed_size,
                offset=offset,
                archive_path=path,
            ))

        return tuple(entries)
