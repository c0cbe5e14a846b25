"""Errors raised while inserting a load command.
Every error aborts the patch operation. `exit_status` groups them into the categories the CLI reports.
"""
from enum import IntEnum
from typing import Optional


class ExitStatus(IntEnum):
    BAD_INPUT = 2
    UNSUPPORTED_FORMAT = 3
    IO_FAILURE = 4
    INCONSISTENT = 5


class DylibInserterError(Exception):
    """Base class for every fatal error raised by dylib_inserter."""

    exit_status = ExitStatus.BAD_INPUT


class UnknownMagicError(DylibInserterError):
    """Raised when the file does not start with a Mach-O or FAT magic."""

    def __init__(self, magic: int) -> None:
        super().__init__(f"Unknown magic num: {magic:#x}")
        self.magic = magic


class NoArchitecturesError(DylibInserterError):
    """Raised when a FAT archive declares zero architectures."""

    def __init__(self) -> None:
        super().__init__("No arch found in FAT archive")


class TruncatedHeaderError(DylibInserterError):
    """Raised when the file ends before a header which should be present."""

    def __init__(self, offset: int, expected: int, available: int) -> None:
        super().__init__(
            f"Truncated header at offset {offset:#x}: expected {expected} bytes, only {available} available"
        )
        self.offset = offset
        self.expected = expected
        self.available = available


class UnsupportedFormatError(DylibInserterError):
    """Raised when the file is a recognized format which we don't know how to patch."""

    exit_status = ExitStatus.UNSUPPORTED_FORMAT

    def __init__(self, description: str) -> None:
        super().__init__(f"{description} is not supported yet")
        self.description = description


class UnsupportedArchitectureError(UnsupportedFormatError):
    """Raised when a FAT archive contains a slice for a CPU we don't patch.
    The whole operation is aborted, rather than skipping the slice.
    """

    def __init__(self, cputype: int, index: Optional[int] = None) -> None:
        location = f" (fat_arch #{index})" if index is not None else ""
        super().__init__(f"cputype {cputype:#x}{location}")
        self.cputype = cputype
        self.index = index


class IoFailureError(DylibInserterError):
    """Raised when reading or writing the target fails at the OS level."""

    exit_status = ExitStatus.IO_FAILURE

    def __init__(self, cause: OSError) -> None:
        super().__init__(f"I/O failure: {cause}")
        self.cause = cause


class InconsistentBinaryError(DylibInserterError):
    """Raised when the Mach-O bookkeeping does not match the file contents,
    or when a write could only be partially completed.
    """

    exit_status = ExitStatus.INCONSISTENT


class NoEmptySpaceForLoadCommandError(InconsistentBinaryError):
    """Raised when we fail to insert a load command because there's not enough empty space left in the Mach-O header."""

    def __init__(self, offset: int, required: int, available: int) -> None:
        super().__init__(
            f"Not enough header padding at {offset:#x} to insert a load command ({available} < {required} bytes)"
        )
        self.offset = offset
        self.required = required
        self.available = available
