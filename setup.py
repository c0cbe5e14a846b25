import re
from pathlib import Path

from setuptools import find_packages, setup


def read_version() -> str:
    # Importing the package here would require its dependencies to be installed already
    init_source = (Path(__file__).parent / "dylib_inserter" / "__init__.py").read_text()
    match = re.search(r'^__version__ = "([^"]+)"', init_source, re.MULTILINE)
    if not match:
        raise RuntimeError("Could not find __version__ in dylib_inserter/__init__.py")
    return match.group(1)


setup(
    name="dylib-inserter",
    version=read_version(),
    description="Insert LC_LOAD_DYLIB load commands into Mach-O and FAT binaries",
    python_requires=">=3.7",
    packages=find_packages(exclude=["tests"]),
    install_requires=["more_itertools"],
    extras_require={
        "test": ["pytest", "pytest-xdist", "mypy"],
        "lint": ["invoke", "autoflake", "isort", "black", "flake8"],
    },
    package_data={"dylib_inserter": ["py.typed"]},
    entry_points={"console_scripts": ["insert-dylib=dylib_inserter.cli.insert_dylib:run"]},
)
