"""Add an LC_LOAD_DYLIB load command to a Mach-O binary.
This will invalidate the binary's code signature, if any.
"""
import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from dylib_inserter.cli.utils import EventPrinter, StringFormatter, configure_logger, prompt_yes_no
from dylib_inserter.inserter import ConfirmCallback, always_yes, insert_dylib
from dylib_inserter.macho import DylibInserterError, ExitStatus

# Returned when the input file is missing or isn't a regular file
EXIT_INVALID_ARGUMENTS = 1


def build_arg_parser() -> argparse.ArgumentParser:
    arg_parser = argparse.ArgumentParser(prog="insert-dylib", description="Add a load command to a Mach-O binary")
    arg_parser.add_argument("input_file", type=str, help="The input file to be modified")
    arg_parser.add_argument("dylib", type=str, help="The dylib path to be inserted")

    output_group = arg_parser.add_mutually_exclusive_group()
    output_group.add_argument("-i", "--inplace", action="store_true", help="Modify the input file in place")
    output_group.add_argument(
        "-o", dest="output_file", type=str, help="Output path (defaults to <input_file>_patched)"
    )

    arg_parser.add_argument("-y", "--all-yes", action="store_true", help="Run without asking for confirmation")
    arg_parser.add_argument("--verbose", action="store_true", help="Output debug logs while patching")
    return arg_parser


def _error(message: str) -> None:
    print(StringFormatter.red(message), file=sys.stderr)


def _prepare_target(args: argparse.Namespace, input_path: Path, confirm: ConfirmCallback) -> Optional[Path]:
    """Decide which file gets patched, copying the input if we're not patching in place.
    Returns None if the user declined.
    """
    if args.inplace:
        if not confirm(f"Input file `{input_path}` will be modified in place, continue?"):
            return None
        return input_path

    output_path = Path(args.output_file) if args.output_file else Path(f"{args.input_file}_patched")
    if output_path.exists() and not confirm(f"Output file `{output_path}` already exists, overwrite?"):
        return None
    shutil.copy2(input_path, output_path)
    return output_path


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    if args.verbose:
        configure_logger()

    confirm: ConfirmCallback = always_yes if args.all_yes else prompt_yes_no

    input_path = Path(args.input_file)
    if not input_path.exists():
        _error("Input file does not exist")
        return EXIT_INVALID_ARGUMENTS
    if not input_path.is_file():
        _error("Input file is not a file")
        return EXIT_INVALID_ARGUMENTS

    if not args.dylib:
        _error("The dylib path must not be empty")
        return ExitStatus.BAD_INPUT
    if not Path(args.dylib).exists():
        if not confirm(f"Dylib file `{args.dylib}` does not exist, continue?"):
            return 0

    try:
        target_path = _prepare_target(args, input_path, confirm)
    except OSError as e:
        _error(f"Error: could not copy the input file: {e}")
        return ExitStatus.IO_FAILURE
    if target_path is None:
        return 0

    try:
        result = insert_dylib(target_path, os.fsencode(args.dylib), confirm=confirm, on_event=EventPrinter())
    except DylibInserterError as e:
        _error(f"Error: {e}")
        if target_path != input_path:
            # The copy is useless if the patch failed
            target_path.unlink()
        return e.exit_status

    if not result.insertions:
        print("No architecture was selected, the binary was not modified")
    print(StringFormatter.bold(StringFormatter.green("Done!")))
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
