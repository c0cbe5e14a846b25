"""Structured progress events emitted while patching.
The core never prints; whoever drives it decides how (and whether) to render these.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from dylib_inserter.logger import dylib_inserter_logger

logger = dylib_inserter_logger.getChild(__name__)


class BinaryFormat(Enum):
    MACHO_64 = "64-bit Mach-O"
    MACHO_32 = "32-bit Mach-O"
    FAT = "fat_be"
    FAT_SWAPPED = "fat_le"


@dataclass(frozen=True)
class FormatMatched:
    binary_format: BinaryFormat
    magic: int


@dataclass(frozen=True)
class ArchitecturesFound:
    count: int


@dataclass(frozen=True)
class ArchitectureMatched:
    index: int
    arch_name: str
    cputype: int
    offset: int
    size: int


@dataclass(frozen=True)
class ArchitectureSkipped:
    index: int
    arch_name: str


@dataclass(frozen=True)
class LoadCommandWritten:
    offset: int
    command_bytes: bytes
    path_bytes: bytes


@dataclass(frozen=True)
class HeaderUpdated:
    offset: int
    ncmds: int
    sizeofcmds: int


PatchEvent = Union[
    FormatMatched, ArchitecturesFound, ArchitectureMatched, ArchitectureSkipped, LoadCommandWritten, HeaderUpdated
]
EventCallback = Callable[[PatchEvent], None]


def log_event(event: PatchEvent) -> None:
    """Default event sink."""
    logger.debug(repr(event))
