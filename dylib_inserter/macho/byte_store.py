"""Random-access views over the bytes of a target binary.
The patch engine only ever talks to a ByteStore, so the same code runs against a file on disk or an in-memory buffer.
"""
import os
from abc import ABC, abstractmethod
from ctypes import LittleEndianStructure, sizeof
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Optional, Type, TypeVar, Union

from dylib_inserter.logger import dylib_inserter_logger
from dylib_inserter.macho.errors import IoFailureError, TruncatedHeaderError

logger = dylib_inserter_logger.getChild(__name__)

_StructureT = TypeVar("_StructureT", bound=LittleEndianStructure)


class ByteStore(ABC):
    @abstractmethod
    def size(self) -> int:
        """The current byte-length of the store."""

    @abstractmethod
    def read(self, offset: int, size: int) -> bytes:
        """Read up to `size` bytes starting at `offset`. The result is short if the store ends first."""

    @abstractmethod
    def write(self, offset: int, data: bytes) -> None:
        """Overwrite `len(data)` bytes starting at `offset`."""

    def read_exact(self, offset: int, size: int) -> bytes:
        """Read exactly `size` bytes starting at `offset`

        Raises:
            TruncatedHeaderError: The store ends before `offset + size`
        """
        if offset < 0:
            raise ValueError(f"read_exact() passed negative offset: {offset:#x}")
        data = self.read(offset, size)
        if len(data) != size:
            raise TruncatedHeaderError(offset, size, len(data))
        return data

    def read_struct(self, offset: int, layout: Type[_StructureT]) -> _StructureT:
        """Given a file offset, return the structure it describes.

        Args:
            offset: Offset of the first byte of the structure
            layout: ctypes layout to decode the bytes with

        Returns:
            A decoded copy of the structure. Modifying it does not touch the store.
        """
        return layout.from_buffer_copy(self.read_exact(offset, sizeof(layout)))

    def write_struct(self, offset: int, structure: LittleEndianStructure) -> None:
        """Serialize the structure and write it at the provided file offset."""
        self.write(offset, bytes(structure))

    def flush(self) -> None:
        """Push any buffered writes to the backing storage."""


class MemoryByteStore(ByteStore):
    """A ByteStore backed by a bytearray. Writes past the end grow the buffer."""

    def __init__(self, data: Union[bytes, bytearray] = b"") -> None:
        self.data = bytearray(data)

    def __repr__(self) -> str:
        return f"<MemoryByteStore size={len(self.data):#x}>"

    def size(self) -> int:
        return len(self.data)

    def read(self, offset: int, size: int) -> bytes:
        return bytes(self.data[offset : offset + size])

    def write(self, offset: int, data: bytes) -> None:
        if offset > len(self.data):
            self.data += bytearray(offset - len(self.data))
        self.data[offset : offset + len(data)] = data


class FileByteStore(ByteStore):
    """A ByteStore over a file opened for reading and writing.
    Use as a context manager; the file stays open for the lifetime of the patch operation.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: Optional[BinaryIO] = None

    def __repr__(self) -> str:
        return f"<FileByteStore path={self.path}>"

    def __enter__(self) -> "FileByteStore":
        self.open()
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        self.close()

    def open(self) -> None:
        try:
            self._file = open(self.path, "r+b")
        except OSError as e:
            raise IoFailureError(e) from e
        logger.debug(f"opened {self.path} for patching")

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            raise IoFailureError(e) from e
        finally:
            self._file = None

    @property
    def file(self) -> BinaryIO:
        if self._file is None:
            raise RuntimeError(f"{self} was used before being opened")
        return self._file

    def size(self) -> int:
        try:
            # Buffered writes may extend the file
            self.file.flush()
            return os.fstat(self.file.fileno()).st_size
        except OSError as e:
            raise IoFailureError(e) from e

    def read(self, offset: int, size: int) -> bytes:
        try:
            self.file.seek(offset)
            return self.file.read(size)
        except OSError as e:
            raise IoFailureError(e) from e

    def write(self, offset: int, data: bytes) -> None:
        try:
            self.file.seek(offset)
            self.file.write(data)
        except OSError as e:
            raise IoFailureError(e) from e

    def flush(self) -> None:
        try:
            self.file.flush()
            os.fsync(self.file.fileno())
        except OSError as e:
            raise IoFailureError(e) from e
