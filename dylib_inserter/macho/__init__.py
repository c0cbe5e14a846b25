from .macho_definitions import (
    swap32,
    swap_fields,
    CPU_TYPE,
    LOAD_COMMAND_ALIGNMENT,
    StaticFilePointer,

    MachArch,
    DylibCommand,
    MachoFatArch,
    MachoFileType,
    MachoFatHeader,
    MachoHeader64,
    MachoLoadCommand,
    MachoLoadCommands,
    MachoSection64Raw,
    MachoSegmentCommand64,
)

from .errors import (
    ExitStatus,
    IoFailureError,
    DylibInserterError,
    UnknownMagicError,
    NoArchitecturesError,
    TruncatedHeaderError,
    UnsupportedFormatError,
    InconsistentBinaryError,
    UnsupportedArchitectureError,
    NoEmptySpaceForLoadCommandError,
)

from .events import (
    PatchEvent,
    BinaryFormat,
    EventCallback,
    FormatMatched,
    HeaderUpdated,
    ArchitecturesFound,
    LoadCommandWritten,
    ArchitectureMatched,
    ArchitectureSkipped,
    log_event,
)

from .byte_store import (
    ByteStore,
    FileByteStore,
    MemoryByteStore,
)

from .macho_parse import (
    FatSlice,
    MachoParser,
)

from .macho_binary_writer import (
    MachoBinaryWriter,
    InsertedLoadCommand,
    pad_dylib_path,
    build_load_dylib_cmd,
)
