"""Addon folder locator - Find the payload root inside an unpacked archive.

Convention: an addon's payload folder is any directory that directly contains
the game's content directory (`gamedata`). Archives may bundle several addons,
so the whole tree is searched and the catalogue entry picks one.
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from .exceptions import AddonFolderError
from .keys import AddonKey
from .keys import FolderEntry

logger = logging.getLogger(__name__)

CONTENT_MARKER = "gamedata"


def find_addon_folders(unpacked_root: Path) -> set[Path]:
    """
    Find every payload folder candidate in an unpacked tree.

    Args:
        unpacked_root: Root of the unpacked archive

    Returns:
        Directories (unpacked_root included) that directly contain a
        `gamedata` directory

    Example:
        >>> find_addon_folders(Path("/tmp/unpacked"))
        {PosixPath('/tmp/unpacked/BaseGame_TP'), PosixPath('/tmp/unpacked/GhenTuong_TP')}
    """
    candidates: set[Path] = set()
    for dirpath, dirnames, _filenames in os.walk(unpacked_root):
        if CONTENT_MARKER in dirnames:
            candidates.add(Path(dirpath))
    return candidates


def select_addon_folder(
    unpacked_root: Path,
    candidates: set[Path],
    addon_subfolder: str | None = None,
) -> Path:
    """
    Pick the payload folder among candidates.

    Selection:
    1. addon_subfolder set -> candidate whose directory name matches
    2. otherwise (or no match) -> unpacked_root itself, if it is a candidate
    3. no addon_subfolder -> the only candidate, if there is exactly one

    Raises:
        AddonFolderError: If no candidate matches the rule
    """
    if addon_subfolder is not None:
        for candidate in sorted(candidates):
            if candidate.name == addon_subfolder:
                return candidate
    if unpacked_root in candidates:
        return unpacked_root
    if addon_subfolder is None and len(candidates) == 1:
        return next(iter(candidates))

    names = sorted(str(c.relative_to(unpacked_root)) for c in candidates)
    if not candidates:
        message = f"No folder containing '{CONTENT_MARKER}' found in archive"
    elif addon_subfolder is not None:
        message = f"No addon folder named '{addon_subfolder}' in archive (found: {', '.join(names)})"
    else:
        message = f"Archive contains several addon folders, pick one with addon_folder: {', '.join(names)}"

    raise AddonFolderError(
        message,
        candidates=candidates,
        context={"unpacked_root": str(unpacked_root), "addon_subfolder": addon_subfolder},
    )


def locate_addon_folder(unpacked_root: Path, addon_subfolder: str | None = None) -> Path:
    """Find and select the payload folder of an unpacked archive."""
    candidates = find_addon_folders(unpacked_root)
    logger.debug(f"Addon folder candidates in {unpacked_root}: {sorted(candidates)}")
    folder = select_addon_folder(unpacked_root, candidates, addon_subfolder)
    logger.debug(f"Selected addon folder {folder}")
    return folder


def folder_entries_for(
    candidates: Iterable[Path],
    key: AddonKey,
    unpacked_root: Path,
) -> dict[Path, FolderEntry]:
    """
    Build one catalogue entry per payload candidate of a downloaded archive.

    Used when authoring a catalogue from a multi-addon archive: the root
    candidate needs no subfolder hint, every other candidate is selected by
    its directory name.
    """
    return {
        candidate: FolderEntry(
            key=key,
            addon_subfolder=None if candidate == unpacked_root else candidate.name,
        )
        for candidate in candidates
    }
