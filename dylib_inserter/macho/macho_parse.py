import struct
from ctypes import c_uint32, sizeof
from dataclasses import dataclass
from typing import List, Optional

from more_itertools import first_true

from dylib_inserter.logger import dylib_inserter_logger
from dylib_inserter.macho.byte_store import ByteStore
from dylib_inserter.macho.errors import NoArchitecturesError, UnknownMagicError, UnsupportedArchitectureError
from dylib_inserter.macho.events import BinaryFormat
from dylib_inserter.macho.macho_definitions import (
    CPU_TYPE,
    MachArch,
    MachoFatArch,
    MachoFatHeader,
    StaticFilePointer,
    swap32,
    swap_fields,
)

logger = dylib_inserter_logger.getChild(__name__)


@dataclass
class FatSlice:
    """An entry of a FAT archive's architecture table, in host byte order."""

    index: int
    cpu_type: CPU_TYPE
    fat_arch: MachoFatArch

    @property
    def arch_name(self) -> str:
        return self.cpu_type.arch_name

    @property
    def offset(self) -> StaticFilePointer:
        return StaticFilePointer(self.fat_arch.offset)

    @property
    def size(self) -> int:
        return self.fat_arch.size

    @property
    def end(self) -> StaticFilePointer:
        return self.offset + self.size

    def __repr__(self) -> str:
        return f"<FatSlice #{self.index} {self.arch_name} [{self.offset:#x} - {self.end:#x}]>"


class MachoParser:
    """Identify the format of a target binary, and walk the architecture table of FAT archives.
    Nothing in this class writes to the store.
    """

    _FORMAT_FOR_MAGIC = {
        MachArch.MH_MAGIC_64: BinaryFormat.MACHO_64,
        MachArch.MH_MAGIC: BinaryFormat.MACHO_32,
        MachArch.FAT_MAGIC: BinaryFormat.FAT,
        MachArch.FAT_CIGAM: BinaryFormat.FAT_SWAPPED,
    }
    _FAT_FORMATS = [BinaryFormat.FAT, BinaryFormat.FAT_SWAPPED]

    def __init__(self, store: ByteStore) -> None:
        self.store = store
        self.header: Optional[MachoFatHeader] = None
        self._file_magic: Optional[int] = None
        self._binary_format: Optional[BinaryFormat] = None

    @property
    def file_magic(self) -> int:
        """Read file magic.
        The magic is compared against both byte orders, so it's decoded as little-endian without any swapping.
        """
        if self._file_magic is None:
            magic_bytes = self.store.read_exact(0, sizeof(c_uint32))
            self._file_magic = struct.unpack("<I", magic_bytes)[0]
        return self._file_magic

    @property
    def binary_format(self) -> BinaryFormat:
        """Map the file magic to the format it denotes

        Raises:
            UnknownMagicError: The magic is not one of the Mach-O or FAT magics we understand
        """
        if self._binary_format is None:
            magic = self.file_magic
            binary_format = MachoParser._FORMAT_FOR_MAGIC.get(magic)  # type: ignore
            if binary_format is None:
                raise UnknownMagicError(magic)
            self._binary_format = binary_format
        return self._binary_format

    @property
    def is_fat(self) -> bool:
        return self.binary_format in MachoParser._FAT_FORMATS

    @property
    def is_swapped(self) -> bool:
        """Check whether the FAT header words are stored in the opposite byte order to the one we decode with

        Returns:
            True if fields read from the FAT header need to be passed through swap32, False otherwise
        """
        return self.binary_format == BinaryFormat.FAT_SWAPPED

    def parse_fat_header(self) -> MachoFatHeader:
        """Parse the FAT header implicitly found at the start of the file.
        nfat_arch is returned in host byte order.

        Raises:
            NoArchitecturesError: The archive declares no slices
        """
        header = self.store.read_struct(0, MachoFatHeader)
        # remember to swap fields if file contains non-native byte order
        if self.is_swapped:
            header.nfat_arch = swap32(header.nfat_arch)

        logger.debug(f"FAT header declares {header.nfat_arch} architectures (swapped? {self.is_swapped})")
        if header.nfat_arch == 0:
            raise NoArchitecturesError()

        self.header = header
        return header

    def parse_fat_archs(self) -> List[FatSlice]:
        """Read every fat_arch entry, which directly follow the FAT header.
        Every entry is decoded and classified before returning, so an unsupported slice is reported before anything
        acts on the supported ones.

        Raises:
            NoArchitecturesError: The archive declares no slices
            UnsupportedArchitectureError: A slice is built for a CPU other than x86_64 or arm64

        Returns:
            The architecture table, in file order
        """
        header = self.header or self.parse_fat_header()

        fat_archs: List[MachoFatArch] = []
        read_off = sizeof(MachoFatHeader)
        for _ in range(header.nfat_arch):
            fat_arch = self.store.read_struct(read_off, MachoFatArch)
            if self.is_swapped:
                # non-native byte order, swap every field in fat_arch
                swap_fields(fat_arch)
            fat_archs.append(fat_arch)
            # move to next fat_arch structure in file
            read_off += sizeof(MachoFatArch)

        supported_cputypes = [cpu.value for cpu in CPU_TYPE]
        unsupported_index = first_true(
            range(len(fat_archs)), default=None, pred=lambda i: fat_archs[i].cputype not in supported_cputypes
        )
        if unsupported_index is not None:
            raise UnsupportedArchitectureError(fat_archs[unsupported_index].cputype, unsupported_index)

        slices = [FatSlice(idx, CPU_TYPE(fat_arch.cputype), fat_arch) for idx, fat_arch in enumerate(fat_archs)]
        logger.debug(f"parsed FAT architecture table: {slices}")
        return slices
