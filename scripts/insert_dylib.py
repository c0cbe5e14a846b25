"""Add a load command to a binary.
This will invalidate the binary's load signature, if any.
"""
from dylib_inserter.cli.insert_dylib import run

if __name__ == "__main__":
    run()
