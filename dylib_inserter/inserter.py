from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Union

from dylib_inserter.logger import dylib_inserter_logger
from dylib_inserter.macho.byte_store import ByteStore, FileByteStore
from dylib_inserter.macho.errors import UnsupportedFormatError
from dylib_inserter.macho.events import (
    ArchitectureMatched,
    ArchitecturesFound,
    ArchitectureSkipped,
    BinaryFormat,
    EventCallback,
    FormatMatched,
    log_event,
)
from dylib_inserter.macho.macho_binary_writer import InsertedLoadCommand, MachoBinaryWriter, pad_dylib_path
from dylib_inserter.macho.macho_definitions import StaticFilePointer
from dylib_inserter.macho.macho_parse import FatSlice, MachoParser

logger = dylib_inserter_logger.getChild(__name__)

ConfirmCallback = Callable[[str], bool]


def always_yes(prompt: str) -> bool:
    return True


@dataclass
class PatchResult:
    binary_format: BinaryFormat
    insertions: List[InsertedLoadCommand] = field(default_factory=list)
    skipped: List[FatSlice] = field(default_factory=list)


class DylibInserter:
    """Insert an LC_LOAD_DYLIB command into a thin 64-bit Mach-O, or into the slices of a FAT archive.

    The target's format is identified by its magic. For FAT archives, every architecture entry is validated before
    the user is asked anything, and every insertion is validated before any byte is written. Any error aborts the
    whole operation.
    """

    APPLY_TO_ALL_PROMPT = "More than one arch found, insert dylib to all?"

    def __init__(
        self,
        store: ByteStore,
        dylib_path: bytes,
        confirm: ConfirmCallback = always_yes,
        on_event: EventCallback = log_event,
    ) -> None:
        self.store = store
        self.dylib_path = dylib_path
        self.padded_path = pad_dylib_path(dylib_path)
        self.confirm = confirm
        self.on_event = on_event

    def run(self) -> PatchResult:
        """Patch the store

        Raises:
            DylibInserterError: The target could not be patched. Nothing was written, unless the error is an
                InconsistentBinaryError raised while committing.

        Returns:
            A description of every load command which was inserted, and of the FAT slices the user declined
        """
        parser = MachoParser(self.store)
        binary_format = parser.binary_format
        self.on_event(FormatMatched(binary_format=binary_format, magic=parser.file_magic))
        logger.debug(f"matched {binary_format.value} file")

        if binary_format == BinaryFormat.MACHO_32:
            raise UnsupportedFormatError(binary_format.value)
        if binary_format == BinaryFormat.MACHO_64:
            return self._patch_thin()
        return self._patch_fat(parser)

    def _patch_thin(self) -> PatchResult:
        with MachoBinaryWriter(self.store, self.on_event) as writer:
            writer.insert_load_dylib_cmd(StaticFilePointer(0), self.padded_path)
        return PatchResult(BinaryFormat.MACHO_64, insertions=writer.written_insertions)

    def _patch_fat(self, parser: MachoParser) -> PatchResult:
        header = parser.parse_fat_header()
        self.on_event(ArchitecturesFound(count=header.nfat_arch))
        slices = parser.parse_fat_archs()

        apply_to_all = len(slices) == 1 or self.confirm(self.APPLY_TO_ALL_PROMPT)

        selected: List[FatSlice] = []
        skipped: List[FatSlice] = []
        for fat_slice in slices:
            self.on_event(
                ArchitectureMatched(
                    index=fat_slice.index,
                    arch_name=fat_slice.arch_name,
                    cputype=fat_slice.fat_arch.cputype,
                    offset=fat_slice.offset,
                    size=fat_slice.size,
                )
            )
            if apply_to_all or self.confirm(f"Insert dylib into {fat_slice.arch_name} slice?"):
                selected.append(fat_slice)
            else:
                self.on_event(ArchitectureSkipped(index=fat_slice.index, arch_name=fat_slice.arch_name))
                skipped.append(fat_slice)

        with MachoBinaryWriter(self.store, self.on_event) as writer:
            for fat_slice in selected:
                writer.insert_load_dylib_cmd(fat_slice.offset, self.padded_path, slice_end=fat_slice.end)

        return PatchResult(parser.binary_format, insertions=writer.written_insertions, skipped=skipped)


def insert_dylib(
    path: Path,
    dylib_path: Union[str, bytes],
    confirm: ConfirmCallback = always_yes,
    on_event: EventCallback = log_event,
) -> PatchResult:
    """Insert an LC_LOAD_DYLIB command for dylib_path into the binary at path, in place.
    This will invalidate the binary's code signature, if any.
    """
    if isinstance(dylib_path, str):
        dylib_path = dylib_path.encode("utf-8")
    with FileByteStore(path) as store:
        return DylibInserter(store, dylib_path, confirm, on_event).run()
