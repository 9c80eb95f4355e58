"""Protocols for merge sources and fetch collaborators.

Composition over inheritance: DirectorySource, Nested and Composite all satisfy
TransactionSource structurally, so merge plans nest uniformly. The download
cache only needs something that turns a URL into an unpacked directory.
"""

from collections.abc import Awaitable
from collections.abc import Callable
from pathlib import Path
from typing import Protocol
from typing import runtime_checkable

from .keys import AddonKey


@runtime_checkable
class TransactionSource(Protocol):
    """A tree of files that can be merged into a destination directory."""

    def relative_paths(self) -> set[Path]:
        """Every file this source writes, relative to the destination root.

        Directories are not enumerated separately.
        """
        ...

    def apply(self, destination_root: Path) -> None:
        """Overwrite-merge all files into destination_root.

        Creates intermediate directories as needed and never deletes files
        that are not part of the source.

        Raises:
            OSError: If any file could not be written
        """
        ...


class FetchAndUnpack(Protocol):
    """Download an archive and unpack it into a fresh directory.

    The returned directory is handed over to the caller, who owns its deletion.
    """

    async def __call__(self, url: str) -> Path: ...


Resolver = Callable[[AddonKey], Awaitable[str]]
