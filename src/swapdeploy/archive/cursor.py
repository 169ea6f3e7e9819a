"""
Bounds-checked little-endian cursor over an archive buffer.

Every read is validated against the buffer length, so a corrupt offset in an
archive produces an ArchiveError instead of an IndexError or a silent
out-of-range slice. Backward scans are capped at a caller-supplied distance.
"""

import struct
from typing import Optional

from swapdeploy.exceptions import ArchiveError

_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')
_U64 = struct.Struct('<Q')


class ByteCursor:
    """Positioned reader over a bytes-like object (bytes, memoryview, mmap)."""

    def __init__(self, buffer, path: Optional[str] = None):
        self._buffer = buffer
        self._length = len(buffer)
        self._position = 0
        self._path = path

    def __len__(self) -> int:
        return self._length

    @property
    def position(self) -> int:
        return self._position

    def seek(self, position: int) -> 'ByteCursor':
        """Move to an absolute position (end of buffer is allowed)."""
        if position < 0 or position > self._length:
            raise ArchiveError(
                ArchiveError.BAD_CENTRAL_DIRECTORY,
                f"Offset {position} outside archive of {self._length} bytes",
                self._path
            )
        self._position = position
        return self

    def _take(self, size: int) -> int:
        start = self._position
        end = start + size
        if size < 0 or end > self._length:
            raise ArchiveError(
                ArchiveError.BAD_CENTRAL_DIRECTORY,
                f"Read of {size} bytes at offset {start} exceeds archive of {self._length} bytes",
                self._path
            )
        self._position = end
        return start

    def read_bytes(self, size: int) -> bytes:
        start = self._take(size)
        return bytes(self._buffer[start:start + size])

    def read_u16(self) -> int:
        start = self._take(2)
        return _U16.unpack_from(self._buffer, start)[0]

    def read_u32(self) -> int:
        start = self._take(4)
        return _U32.unpack_from(self._buffer, start)[0]

    def read_u64(self) -> int:
        start = self._take(8)
        return _U64.unpack_from(self._buffer, start)[0]

    def skip(self, size: int) -> 'ByteCursor':
        self._take(size)
        return self

    def matches(self, position: int, magic: bytes) -> bool:
        """Check for magic at position without moving the cursor."""
        if position < 0 or position + len(magic) > self._length:
            return False
        return self._buffer[position:position + len(magic)] == magic

    def scan_backward(self, magic: bytes, start: int, max_distance: int) -> Optional[int]:
        """
        Find magic at or before start, stepping back one byte at a time.

        Args:
            magic: Byte signature to look for
            start: First candidate position (clamped to the last valid one)
            max_distance: How many bytes before start may be examined

        Returns:
            Position of the signature, or None if it is not found within
            max_distance bytes.
        """
        start = min(start, self._length - len(magic))
        stop = max(0, start - max_distance)
        position = start
        while position >= stop:
            if self._buffer[position:position + len(magic)] == magic:
                return position
            position -= 1
        return None
