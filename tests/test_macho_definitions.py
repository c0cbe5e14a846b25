from ctypes import sizeof

import pytest

from dylib_inserter.macho import (
    CPU_TYPE,
    DylibCommand,
    MachArch,
    MachoFatArch,
    MachoFatHeader,
    MachoHeader64,
    MachoLoadCommands,
    MachoSection64Raw,
    MachoSegmentCommand64,
    swap32,
    swap_fields,
)


class TestMachoDefinitions:
    def test_struct_sizes(self) -> None:
        # These must match <mach-o/loader.h> and <mach-o/fat.h> exactly
        assert sizeof(MachoHeader64) == 32
        assert sizeof(DylibCommand) == 24
        assert sizeof(MachoFatHeader) == 8
        assert sizeof(MachoFatArch) == 20
        assert sizeof(MachoSegmentCommand64) == 72
        assert sizeof(MachoSection64Raw) == 80

    def test_header_is_little_endian_on_disk(self) -> None:
        header = MachoHeader64()
        header.magic = 0xFEEDFACF
        header.ncmds = 0x11223344
        encoded = bytes(header)
        assert encoded[:4] == b"\xcf\xfa\xed\xfe"
        assert encoded[16:20] == b"\x44\x33\x22\x11"

    def test_swap32(self) -> None:
        assert swap32(3) == 50331648
        assert swap32(0xCAFEBABE) == 0xBEBAFECA
        assert swap32(swap32(0x0100000C)) == 0x0100000C

    def test_swap_fields(self) -> None:
        fat_arch = MachoFatArch.from_buffer_copy(bytes.fromhex("0100000c 00000000 00001000 000001c8 0000000c"))
        swap_fields(fat_arch)
        assert fat_arch.cputype == CPU_TYPE.ARM64
        assert fat_arch.cpusubtype == 0
        assert fat_arch.offset == 0x1000
        assert fat_arch.size == 0x1C8
        assert fat_arch.align == 12

    def test_swap_fields_rejects_wide_fields(self) -> None:
        with pytest.raises(TypeError):
            swap_fields(MachoSegmentCommand64())

    def test_cpu_type_names(self) -> None:
        assert CPU_TYPE.X86_64 == 0x01000007
        assert CPU_TYPE.ARM64 == 0x0100000C
        assert CPU_TYPE.X86_64.arch_name == "x86_64"
        assert CPU_TYPE.ARM64.arch_name == "arm64"

    def test_constants(self) -> None:
        assert MachArch.MH_MAGIC == 0xFEEDFACE
        assert MachArch.MH_MAGIC_64 == 0xFEEDFACF
        assert MachArch.FAT_MAGIC == 0xCAFEBABE
        assert MachArch.FAT_CIGAM == 0xBEBAFECA
        assert [(c.name, c.value) for c in MachoLoadCommands] == [("LC_LOAD_DYLIB", 0xC), ("LC_SEGMENT_64", 0x19)]
