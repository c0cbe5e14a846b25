import logging
import sys
from typing import Optional, TextIO

from more_itertools import chunked

from dylib_inserter.macho import (
    ArchitectureMatched,
    ArchitecturesFound,
    ArchitectureSkipped,
    FormatMatched,
    HeaderUpdated,
    LoadCommandWritten,
    PatchEvent,
)


class StringFormatter:
    @staticmethod
    def green(string: str) -> str:
        return f"\033[0;32m{string}\033[0m"

    @staticmethod
    def red(string: str) -> str:
        return f"\033[31;1m{string}\033[0m"

    @staticmethod
    def blue(string: str) -> str:
        return f"\033[34;1m{string}\033[0m"

    @staticmethod
    def bold(string: str) -> str:
        return f"\033[1m{string}\033[0m"

    @staticmethod
    def negative(string: str) -> str:
        return f"\033[7m{string}\033[0m"


def configure_logger() -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    ch.setFormatter(formatter)
    root.addHandler(ch)


def prompt_yes_no(message: str, default: bool = True) -> bool:
    """Ask a yes/no question on the terminal. An empty answer picks the default, a closed stdin answers no."""
    choices = "[Y/n]" if default else "[y/N]"
    while True:
        try:
            answer = input(f"{message} {choices} ").strip().lower()
        except EOFError:
            print()
            return False

        if not answer:
            return default
        if answer in ["y", "yes"]:
            return True
        if answer in ["n", "no"]:
            return False
        print("Please answer 'y' or 'n'.")


def format_path_payload(payload: bytes) -> str:
    """Render the padded dylib path, drawing the NUL padding as inverted dots."""
    return "".join(StringFormatter.negative(".") if byte == 0 else chr(byte) for byte in payload)


def format_words(data: bytes) -> str:
    """Render bytes as space-separated 32-bit words, in file order."""
    return " ".join(bytes(word).hex() for word in chunked(data, 4))


class EventPrinter:
    """Render the core's structured events on the console."""

    def __init__(self, output: Optional[TextIO] = None) -> None:
        self.output = output

    def _print(self, line: str) -> None:
        print(line, file=self.output or sys.stdout)

    def __call__(self, event: PatchEvent) -> None:
        if isinstance(event, FormatMatched):
            self._print(f"match {StringFormatter.red(event.binary_format.value)} file")

        elif isinstance(event, ArchitecturesFound):
            self._print(f"find {event.count} archs")

        elif isinstance(event, ArchitectureMatched):
            self._print(
                f"match {StringFormatter.red(event.arch_name)} arch (offset {event.offset:#x}, size {event.size:#x})"
            )

        elif isinstance(event, ArchitectureSkipped):
            self._print(f"skip {StringFormatter.blue(event.arch_name)} arch")

        elif isinstance(event, LoadCommandWritten):
            self._print(f"writing at offset: {event.offset:#x}")
            self._print(f"writing: `{format_words(event.command_bytes)}`")
            self._print(f"writing: `{format_path_payload(event.path_bytes)}`")

        elif isinstance(event, HeaderUpdated):
            self._print(f"updated header at {event.offset:#x}: ncmds={event.ncmds}, sizeofcmds={event.sizeofcmds:#x}")
