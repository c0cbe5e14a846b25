"""Insert LC_LOAD_DYLIB commands into Mach-O binaries"""

from .inserter import DylibInserter, PatchResult, always_yes, insert_dylib

__version__ = "1.0.0"

__all__ = ["DylibInserter", "PatchResult", "always_yes", "insert_dylib"]
