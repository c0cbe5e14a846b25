"""Builders for synthetic Mach-O and FAT binaries, and helpers to read back what the patcher wrote."""
import struct
from ctypes import sizeof
from typing import List, Optional, Tuple

from dylib_inserter.macho import (
    CPU_TYPE,
    ByteStore,
    DylibCommand,
    IoFailureError,
    MachArch,
    MachoFatArch,
    MachoFatHeader,
    MachoFileType,
    MachoHeader64,
    MachoLoadCommands,
    MachoSection64Raw,
    MachoSegmentCommand64,
    MemoryByteStore,
)

DEFAULT_PADDING = 256
SECTION_DATA = b"\xcc" * 16
# The fixture's only load command is an LC_SEGMENT_64 with one section
FIXTURE_SIZEOFCMDS = sizeof(MachoSegmentCommand64) + sizeof(MachoSection64Raw)
FIXTURE_COMMANDS_END = sizeof(MachoHeader64) + FIXTURE_SIZEOFCMDS


def build_macho(cputype: int = CPU_TYPE.ARM64, padding: int = DEFAULT_PADDING) -> bytearray:
    """Build a minimal 64-bit Mach-O image with one __TEXT segment.

    Layout:
      [0..32)     Mach-O header
      [32..H)     Load commands (one LC_SEGMENT_64 with one __text section pointing to the data)
      [H..H+pad)  Zero padding, where load commands can be inserted
      [H+pad..)   Section data
    """
    data_offset = FIXTURE_COMMANDS_END + padding

    header = MachoHeader64()
    header.magic = MachArch.MH_MAGIC_64
    header.cputype = cputype
    header.cpusubtype = 0
    header.filetype = MachoFileType.MH_EXECUTE
    header.ncmds = 1
    header.sizeofcmds = FIXTURE_SIZEOFCMDS

    segment = MachoSegmentCommand64()
    segment.cmd = MachoLoadCommands.LC_SEGMENT_64
    segment.cmdsize = FIXTURE_SIZEOFCMDS
    segment.segname = b"__TEXT"
    segment.vmaddr = 0x100000000
    segment.vmsize = 0x1000
    segment.fileoff = 0
    segment.filesize = data_offset + len(SECTION_DATA)
    segment.maxprot = 5
    segment.initprot = 5
    segment.nsects = 1

    section = MachoSection64Raw()
    section.sectname = b"__text"
    section.segname = b"__TEXT"
    section.addr = 0x100000000 + data_offset
    section.size = len(SECTION_DATA)
    section.offset = data_offset

    return bytearray(bytes(header) + bytes(segment) + bytes(section) + bytes(padding) + SECTION_DATA)


def build_fat(
    slices: List[bytes],
    byteorder: str = "big",
    cputypes: Optional[List[int]] = None,
    sizes: Optional[List[int]] = None,
    page_size: int = 0x1000,
) -> bytearray:
    """Wrap Mach-O slices into a FAT archive, each slice starting on a page boundary.
    Real FAT headers are big-endian on disk. cputypes and sizes override what's recorded in the fat_arch table.
    """
    fmt = ">" if byteorder == "big" else "<"
    header_size = sizeof(MachoFatHeader) + sizeof(MachoFatArch) * len(slices)

    buf = bytearray(struct.pack(f"{fmt}2I", MachArch.FAT_MAGIC, len(slices)))
    offsets = []
    offset = header_size
    for idx, macho in enumerate(slices):
        offset = (offset + page_size - 1) & ~(page_size - 1)
        cputype = cputypes[idx] if cputypes else struct.unpack_from("<I", macho, 4)[0]
        size = sizes[idx] if sizes else len(macho)
        # cputype, cpusubtype, offset, size, align
        buf += struct.pack(f"{fmt}5I", cputype, 0, offset, size, 12)
        offsets.append(offset)
        offset += len(macho)

    for offset, macho in zip(offsets, slices):
        buf += bytes(offset - len(buf))
        buf += macho
    return buf


def fat_slice_offsets(fat: bytes, byteorder: str = "big") -> List[int]:
    fmt = ">" if byteorder == "big" else "<"
    nfat_arch = struct.unpack_from(f"{fmt}I", fat, 4)[0]
    return [
        struct.unpack_from(f"{fmt}5I", fat, sizeof(MachoFatHeader) + idx * sizeof(MachoFatArch))[2]
        for idx in range(nfat_arch)
    ]


def read_header(data: bytes, base_offset: int = 0) -> MachoHeader64:
    return MachoHeader64.from_buffer_copy(bytes(data[base_offset : base_offset + sizeof(MachoHeader64)]))


def read_load_dylib(data: bytes, offset: int) -> Tuple[DylibCommand, bytes]:
    """Parse the LC_LOAD_DYLIB at a file offset, returning the command and its path with the NUL padding trimmed."""
    load_cmd = DylibCommand.from_buffer_copy(bytes(data[offset : offset + sizeof(DylibCommand)]))
    raw_name = bytes(data[offset + load_cmd.name_offset : offset + load_cmd.cmdsize])
    return load_cmd, raw_name.split(b"\x00", 1)[0]


class RecordingByteStore(MemoryByteStore):
    """A MemoryByteStore which records the offset and length of every read and write."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.reads: List[Tuple[int, int]] = []
        self.writes: List[Tuple[int, int]] = []

    def read(self, offset: int, size: int) -> bytes:
        self.reads.append((offset, size))
        return super().read(offset, size)

    def write(self, offset: int, data: bytes) -> None:
        self.writes.append((offset, len(data)))
        super().write(offset, data)


class FailingByteStore(MemoryByteStore):
    """A MemoryByteStore whose writes fail once they reach a given offset."""

    def __init__(self, data: bytes, fail_at_offset: int) -> None:
        super().__init__(data)
        self.fail_at_offset = fail_at_offset

    def write(self, offset: int, data: bytes) -> None:
        if offset == self.fail_at_offset:
            raise IoFailureError(OSError(28, "No space left on device"))
        super().write(offset, data)


class ScriptedConfirm:
    """A confirm() callback giving pre-recorded answers, and recording the questions asked."""

    def __init__(self, answers: List[bool]) -> None:
        self.answers = list(answers)
        self.prompts: List[str] = []

    def __call__(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected question: {prompt}")
        return self.answers.pop(0)


def store_bytes(store: ByteStore) -> bytes:
    return store.read(0, store.size())
