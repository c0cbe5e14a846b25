from ctypes import sizeof
from dataclasses import dataclass
from types import TracebackType
from typing import Dict, List, Optional, Type

from more_itertools import first

from dylib_inserter.logger import dylib_inserter_logger
from dylib_inserter.macho.byte_store import ByteStore
from dylib_inserter.macho.errors import InconsistentBinaryError, IoFailureError, NoEmptySpaceForLoadCommandError
from dylib_inserter.macho.events import EventCallback, HeaderUpdated, LoadCommandWritten, log_event
from dylib_inserter.macho.macho_definitions import (
    LOAD_COMMAND_ALIGNMENT,
    DylibCommand,
    MachArch,
    MachoHeader64,
    MachoLoadCommand,
    MachoLoadCommands,
    MachoSection64Raw,
    MachoSegmentCommand64,
    StaticFilePointer,
)

logger = dylib_inserter_logger.getChild(__name__)

_UINT32_MAX = 0xFFFFFFFF


def pad_dylib_path(dylib_path: bytes) -> bytes:
    """Zero-pad a dylib path so it can directly follow a dylib_command.
    At least one NUL is always appended, so a path whose length is already 8-byte aligned gets a full 8 bytes
    of padding. The padded length is a multiple of 8, which keeps the enclosing load command 8-byte aligned.
    """
    if not dylib_path:
        raise ValueError("The dylib path must not be empty")
    if b"\x00" in dylib_path:
        raise ValueError(f"The dylib path must not contain NUL bytes: {dylib_path!r}")

    padding = LOAD_COMMAND_ALIGNMENT - (len(dylib_path) % LOAD_COMMAND_ALIGNMENT)
    return dylib_path + bytes(padding)


def build_load_dylib_cmd(padded_path: bytes) -> DylibCommand:
    """Build the fixed part of an LC_LOAD_DYLIB command for a padded path.
    The name is stored directly after the command, so name.offset is the size of the command struct.
    """
    if not padded_path or len(padded_path) % LOAD_COMMAND_ALIGNMENT:
        raise ValueError(f"Dylib path payload must be padded to a multiple of {LOAD_COMMAND_ALIGNMENT} bytes")

    load_cmd = DylibCommand()
    load_cmd.cmd = MachoLoadCommands.LC_LOAD_DYLIB
    load_cmd.cmdsize = sizeof(DylibCommand) + len(padded_path)
    load_cmd.name_offset = sizeof(DylibCommand)
    load_cmd.timestamp = 0x0
    load_cmd.current_version = 0x0
    load_cmd.compatibility_version = 0x0
    return load_cmd


@dataclass
class InsertedLoadCommand:
    """A load command queued for (or written to) a Mach-O image, and the header bookkeeping it changes."""

    base_offset: StaticFilePointer
    insertion_offset: StaticFilePointer
    load_cmd: DylibCommand
    padded_path: bytes
    original_header: MachoHeader64
    updated_header: MachoHeader64

    @property
    def cmdsize(self) -> int:
        return self.load_cmd.cmdsize

    @property
    def command_bytes(self) -> bytes:
        return bytes(self.load_cmd)

    @property
    def dylib_path(self) -> bytes:
        return self.padded_path.rstrip(b"\x00")

    def __repr__(self) -> str:
        return (
            f"<InsertedLoadCommand {self.dylib_path!r} @ {self.insertion_offset:#x} "
            f"(image {self.base_offset:#x}, ncmds {self.original_header.ncmds} -> {self.updated_header.ncmds})>"
        )


class MachoBinaryWriter:
    """Append LC_LOAD_DYLIB commands to the Mach-O images in a ByteStore.

    Insertions are validated and queued, then written when the context manager exits cleanly.
    Every command body is written before any header is updated to advertise it. If an exception escapes the
    context, the queued writes are dropped and the store is left untouched.
    """

    def __init__(self, store: ByteStore, on_event: EventCallback = log_event) -> None:
        self.store = store
        self.on_event = on_event
        self.queued_insertions: List[InsertedLoadCommand] = []
        self.written_insertions: List[InsertedLoadCommand] = []
        # Header to write for each image, after every queued insertion into it
        self._pending_headers: Dict[StaticFilePointer, MachoHeader64] = {}

    def __enter__(self) -> "MachoBinaryWriter":
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        if exc_type is not None:
            logger.debug(f"dropping {len(self.queued_insertions)} queued load commands after {exc_type.__name__}")
            self.queued_insertions = []
            self._pending_headers = {}
            return
        self.commit()

    def read_header(self, base_offset: StaticFilePointer) -> MachoHeader64:
        """Read the Mach-O header of the image at base_offset, including any insertions queued for it

        Raises:
            TruncatedHeaderError: Fewer than 32 bytes are available at base_offset
            InconsistentBinaryError: The data at base_offset is not a 64-bit Mach-O header
        """
        pending = self._pending_headers.get(base_offset)
        if pending is not None:
            return MachoHeader64.from_buffer_copy(bytes(pending))

        header = self.store.read_struct(base_offset, MachoHeader64)
        if header.magic != MachArch.MH_MAGIC_64:
            raise InconsistentBinaryError(
                f"Data at file offset {base_offset:#x} was not a 64-bit Mach-O header (magic {header.magic:#x})"
            )
        return header

    def insert_load_dylib_cmd(
        self, base_offset: StaticFilePointer, padded_path: bytes, slice_end: Optional[StaticFilePointer] = None
    ) -> InsertedLoadCommand:
        """Queue an LC_LOAD_DYLIB command directly after the last load command of the image at base_offset.
        This will increase mh_header->ncmds by 1, and mh_header->sizeofcmds by the size of the new load command,
        including the pathname.
        Note: This will invalidate the binary's code signature, if present.

        Args:
            base_offset: File offset of the image's mach_header_64. 0 for a thin binary.
            padded_path: Dylib path, as returned by pad_dylib_path()
            slice_end: File offset where the image ends, if it's embedded in a FAT archive

        Raises:
            TruncatedHeaderError: The image's header runs past the end of the store
            InconsistentBinaryError: The header at base_offset is not a 64-bit Mach-O header, or ncmds/sizeofcmds
                would overflow a u32
            NoEmptySpaceForLoadCommandError: There's not enough zero-filled space after the load commands

        Returns:
            The queued insertion
        """
        header = self.read_header(base_offset)
        load_cmd = build_load_dylib_cmd(padded_path)

        # load commands begin directly after the Mach-O header and are tightly packed
        insertion_offset = base_offset + sizeof(MachoHeader64) + header.sizeofcmds
        if header.sizeofcmds + load_cmd.cmdsize > _UINT32_MAX or header.ncmds + 1 > _UINT32_MAX:
            raise InconsistentBinaryError(f"Load command bookkeeping of image at {base_offset:#x} would overflow")
        self._check_empty_space(base_offset, header, insertion_offset, load_cmd.cmdsize, slice_end)

        updated_header = MachoHeader64.from_buffer_copy(bytes(header))
        updated_header.ncmds += 1
        updated_header.sizeofcmds += load_cmd.cmdsize

        insertion = InsertedLoadCommand(
            base_offset=base_offset,
            insertion_offset=insertion_offset,
            load_cmd=load_cmd,
            padded_path=padded_path,
            original_header=header,
            updated_header=updated_header,
        )
        logger.debug(f"queued {insertion}")
        self.queued_insertions.append(insertion)
        self._pending_headers[base_offset] = updated_header
        return insertion

    def _first_data_offset(self, base_offset: StaticFilePointer, header: MachoHeader64) -> Optional[int]:
        """Find the lowest image-relative file offset of segment or section contents, if any segment declares one.
        Only the commands inside the region advertised by ncmds/sizeofcmds are visited.
        """
        offset = base_offset + sizeof(MachoHeader64)
        commands_end = offset + header.sizeofcmds
        data_offsets: List[int] = []

        for _ in range(header.ncmds):
            if offset + sizeof(MachoLoadCommand) > commands_end:
                break
            load_command = self.store.read_struct(offset, MachoLoadCommand)
            if load_command.cmdsize < sizeof(MachoLoadCommand) or offset + load_command.cmdsize > commands_end:
                logger.debug(f"stopped walking load commands at malformed command @ {offset:#x}")
                break

            if load_command.cmd == MachoLoadCommands.LC_SEGMENT_64:
                segment = self.store.read_struct(offset, MachoSegmentCommand64)
                if segment.nsects == 0 and segment.fileoff and segment.filesize:
                    data_offsets.append(segment.fileoff)

                section_offset = offset + sizeof(MachoSegmentCommand64)
                for _ in range(segment.nsects):
                    if section_offset + sizeof(MachoSection64Raw) > offset + load_command.cmdsize:
                        break
                    section = self.store.read_struct(section_offset, MachoSection64Raw)
                    # zerofill sections have no file contents
                    if section.offset:
                        data_offsets.append(section.offset)
                    section_offset += sizeof(MachoSection64Raw)

            # move to next load command in header
            offset += load_command.cmdsize

        return min(data_offsets, default=None)

    def _check_empty_space(
        self,
        base_offset: StaticFilePointer,
        header: MachoHeader64,
        insertion_offset: StaticFilePointer,
        cmdsize: int,
        slice_end: Optional[StaticFilePointer],
    ) -> None:
        """Ensure the new command only overwrites zero-filled padding between the load commands and the image's data.

        Raises:
            NoEmptySpaceForLoadCommandError: The command would overwrite data, or run past the image or the file
        """
        limit = self.store.size()
        if slice_end is not None:
            limit = min(limit, slice_end)
        first_data = self._first_data_offset(base_offset, header)
        if first_data is not None:
            limit = min(limit, base_offset + first_data)

        available = max(limit - insertion_offset, 0)
        if available < cmdsize:
            raise NoEmptySpaceForLoadCommandError(insertion_offset, cmdsize, available)

        # Anything other than zeroes here is data which the header bookkeeping doesn't account for
        region = self.store.read(insertion_offset, cmdsize)
        first_used = first((idx for idx, byte in enumerate(region) if byte), None)
        if first_used is not None:
            raise NoEmptySpaceForLoadCommandError(insertion_offset, cmdsize, first_used)

        logger.debug(f"{available} bytes of header padding available at {insertion_offset:#x}, need {cmdsize}")

    def commit(self) -> List[InsertedLoadCommand]:
        """Write every queued insertion to the store.
        Command bodies are written first, then each touched header is rewritten with a single 32-byte write.

        Raises:
            IoFailureError: Writing a command body failed. No header advertises it.
            InconsistentBinaryError: A header write failed after its command body was written.

        Returns:
            The insertions which were written
        """
        insertions, self.queued_insertions = self.queued_insertions, []
        pending_headers, self._pending_headers = self._pending_headers, {}

        for insertion in insertions:
            self.store.write(insertion.insertion_offset, insertion.command_bytes + insertion.padded_path)
            self.on_event(
                LoadCommandWritten(
                    offset=insertion.insertion_offset,
                    command_bytes=insertion.command_bytes,
                    path_bytes=insertion.padded_path,
                )
            )
        self.store.flush()

        try:
            for base_offset, header in pending_headers.items():
                self.store.write_struct(base_offset, header)
                self.on_event(HeaderUpdated(offset=base_offset, ncmds=header.ncmds, sizeofcmds=header.sizeofcmds))
            self.store.flush()
        except IoFailureError as e:
            raise InconsistentBinaryError(
                f"Load commands were written but a Mach-O header could not be updated: {e.cause}"
            ) from e

        self.written_insertions += insertions
        return insertions
