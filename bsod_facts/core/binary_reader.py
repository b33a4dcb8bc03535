"""
Bounds-checked little-endian reads over an in-memory dump buffer.

Every structured read returns None instead of raising when it would run
past either end of the buffer.
"""

import struct
from typing import Optional


class BinaryReader:
    """Read-only view over a dump buffer with fallible field access."""

    _U32 = struct.Struct("<I")
    _U64 = struct.Struct("<Q")

    def __init__(self, data: bytes):
        self._data = data if isinstance(data, bytes) else bytes(data)

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def fits(self, offset: int, size: int) -> bool:
        """Check that ``size`` bytes starting at ``offset`` lie inside the buffer."""
        return offset >= 0 and size >= 0 and offset + size <= len(self._data)

    def bytes_at(self, offset: int, size: int) -> Optional[bytes]:
        if not self.fits(offset, size):
            return None
        return self._data[offset:offset + size]

    def u32(self, offset: int) -> Optional[int]:
        return self._unpack(self._U32, offset)

    def u64(self, offset: int) -> Optional[int]:
        return self._unpack(self._U64, offset)

    def _unpack(self, layout: struct.Struct, offset: int) -> Optional[int]:
        if not self.fits(offset, layout.size):
            return None
        return layout.unpack_from(self._data, offset)[0]
