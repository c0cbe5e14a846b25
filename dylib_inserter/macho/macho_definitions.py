import struct
from ctypes import LittleEndianStructure, c_char, c_int32, c_uint32, c_uint64, sizeof
from enum import IntEnum
from typing import TypeVar

_BasePointerT = TypeVar("_BasePointerT", bound="_BasePointer")
_StructureT = TypeVar("_StructureT", bound=LittleEndianStructure)


class _BasePointer(int):
    def __add__(self: _BasePointerT, other: int) -> _BasePointerT:
        return type(self)(super().__add__(other))

    def __sub__(self: _BasePointerT, other: int) -> _BasePointerT:
        return self.__class__(super().__sub__(other))

    def __str__(self) -> str:
        return hex(self)

    def __repr__(self) -> str:
        return hex(self)


class StaticFilePointer(_BasePointer):
    """A pointer analogous to a file offset within the target file
    """

    def __str__(self) -> str:
        return f"Phys[{super().__str__()}]"

    def __repr__(self) -> str:
        return f"Phys[{super().__repr__()}]"


def swap32(i: int) -> int:
    """Reverse the bytes of a little-endian integer representation ie (3) -> 50331648"""
    return struct.unpack("<I", struct.pack(">I", i))[0]


def swap_fields(structure: _StructureT) -> _StructureT:
    """Reverse the byte order of every 32-bit word in a structure, in place.
    Used for FAT headers stored in the opposite byte order to the one they were decoded with.

    Returns:
        The same structure, for chaining
    """
    for field_name, field_type, *_ in structure._fields_:
        if sizeof(field_type) != sizeof(c_uint32):
            raise TypeError(f"Cannot byte-swap non-u32 field {type(structure).__name__}.{field_name}")
        setattr(structure, field_name, swap32(getattr(structure, field_name)))
    return structure


class MachArch(IntEnum):
    MH_MAGIC = 0xFEEDFACE
    MH_MAGIC_64 = 0xFEEDFACF

    FAT_MAGIC = 0xCAFEBABE
    FAT_CIGAM = 0xBEBAFECA

    MH_CPU_ARCH_ABI64 = 0x01000000
    MH_CPU_TYPE_X86 = 7
    MH_CPU_TYPE_X86_64 = MH_CPU_TYPE_X86 | MH_CPU_ARCH_ABI64
    MH_CPU_TYPE_ARM = 12
    MH_CPU_TYPE_ARM64 = MH_CPU_TYPE_ARM | MH_CPU_ARCH_ABI64


class CPU_TYPE(IntEnum):
    """CPU types a dylib can be inserted into. The value is the Mach-O cputype."""

    X86_64 = MachArch.MH_CPU_TYPE_X86_64
    ARM64 = MachArch.MH_CPU_TYPE_ARM64

    @property
    def arch_name(self) -> str:
        return self.name.lower()


class MachoLoadCommands(IntEnum):
    LC_LOAD_DYLIB = 0xC
    LC_SEGMENT_64 = 0x19


class MachoFileType(IntEnum):
    MH_OBJECT = 1  # relocatable object file
    MH_EXECUTE = 2  # demand paged executable file
    MH_FVMLIB = 3  # fixed VM shared library file
    MH_CORE = 4  # core file
    MH_PRELOAD = 5  # preloaded executable file
    MH_DYLIB = 6  # dynamically bound shared library
    MH_DYLINKER = 7  # dynamic link editor
    MH_BUNDLE = 8  # dynamically bound bundle file
    MH_DYLIB_STUB = 9  # shared library stub for static linking only, no section contents
    MH_DSYM = 10  # shared library stub for static
    MH_KEXT_BUNDLE = 11  # x86_64 kext


class MachoHeader64(LittleEndianStructure):
    """Python representation of struct mach_header_64

    Definition found in <mach-o/loader.h>
    """

    _fields_ = [
        ("magic", c_uint32),
        ("cputype", c_int32),
        ("cpusubtype", c_int32),
        ("filetype", c_uint32),
        ("ncmds", c_uint32),
        ("sizeofcmds", c_uint32),
        ("flags", c_uint32),
        ("reserved", c_uint32),
    ]


class MachoLoadCommand(LittleEndianStructure):
    _fields_ = [("cmd", c_uint32), ("cmdsize", c_uint32)]


class MachoSegmentCommand64(LittleEndianStructure):
    _fields_ = [
        *MachoLoadCommand._fields_,
        ("segname", c_char * 16),
        ("vmaddr", c_uint64),
        ("vmsize", c_uint64),
        ("fileoff", c_uint64),
        ("filesize", c_uint64),
        ("maxprot", c_uint32),
        ("initprot", c_uint32),
        ("nsects", c_uint32),
        ("flags", c_uint32),
    ]


class MachoSection64Raw(LittleEndianStructure):
    _fields_ = [
        ("sectname", c_char * 16),
        ("segname", c_char * 16),
        ("addr", c_uint64),
        ("size", c_uint64),
        ("offset", c_uint32),
        ("align", c_uint32),
        ("reloff", c_uint32),
        ("nreloc", c_uint32),
        ("flags", c_uint32),
        ("reserved1", c_uint32),
        ("reserved2", c_uint32),
        ("reserved3", c_uint32),
    ]


class DylibCommand(LittleEndianStructure):
    """Python representation of struct dylib_command, with the embedded struct dylib flattened.
    The lc_str union is always stored as an offset on disk, so it's declared as one.

    Definition found in <mach-o/loader.h>
    """

    _fields_ = [
        *MachoLoadCommand._fields_,
        ("name_offset", c_uint32),
        ("timestamp", c_uint32),
        ("current_version", c_uint32),
        ("compatibility_version", c_uint32),
    ]


class MachoFatHeader(LittleEndianStructure):
    """Python representation of a struct fat_header

    Definition found in <mach-o/fat.h>
    """

    _fields_ = [("magic", c_uint32), ("nfat_arch", c_uint32)]


class MachoFatArch(LittleEndianStructure):
    """Python representation of a struct fat_arch

    Definition found in <mach-o/fat.h>
    """

    _fields_ = [
        ("cputype", c_uint32),
        ("cpusubtype", c_uint32),
        ("offset", c_uint32),
        ("size", c_uint32),
        ("align", c_uint32),
    ]


# Load commands must be sized to a multiple of this on 64-bit Mach-O
LOAD_COMMAND_ALIGNMENT = 8
