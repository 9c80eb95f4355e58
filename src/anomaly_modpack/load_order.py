"""Addon registry and load order.

The registry is the catalogue of known addons (name -> FolderEntry). Names are
exactly the directory names created under the mods directory.

The load order is the ordered list of enabled addons, first = lowest priority,
rendered into Mod Organizer's modlist.txt format:

    # This file was automatically generated by anomaly-modpack. Do not edit by hand.
    +first-enabled
    +second-enabled
    -some-disabled
"""

import logging
from collections.abc import Iterable
from collections.abc import Iterator
from pathlib import Path

from .exceptions import DuplicateAddonError
from .exceptions import UnknownAddonError
from .keys import FolderEntry

logger = logging.getLogger(__name__)

MODLIST_HEADER = "# This file was automatically generated by anomaly-modpack. Do not edit by hand.\n"


class AddonRegistry:
    """Catalogue of known addons, in insertion order."""

    def __init__(self, entries: dict[str, FolderEntry] | None = None):
        self._entries: dict[str, FolderEntry] = dict(entries or {})

    def insert(self, name: str, entry: FolderEntry) -> FolderEntry | None:
        """Add or replace an addon entry, returning the previous one."""
        previous = self._entries.get(name)
        self._entries[name] = entry
        return previous

    def get(self, name: str) -> FolderEntry | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return list(self._entries)

    def items(self) -> list[tuple[str, FolderEntry]]:
        return list(self._entries.items())

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def missing_addons(self, mods_root: Path) -> list[str]:
        """
        List addons without an installed directory under mods_root.

        Only directory existence is checked, so a partially installed addon
        counts as installed.

        Args:
            mods_root: The managed mods directory

        Returns:
            Missing addon names, in registry order
        """
        missing = [name for name in self._entries if not (mods_root / name).is_dir()]
        logger.debug(f"{len(missing)} of {len(self._entries)} addons missing from {mods_root}")
        return missing


class LoadOrder:
    """Ordered list of enabled addon names (no duplicates)."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: list[str] = []
        for name in names:
            self.push(name)

    def push(self, name: str) -> None:
        if name in self._names:
            raise DuplicateAddonError(name)
        self._names.append(name)

    def remove(self, name: str) -> None:
        if name not in self._names:
            raise UnknownAddonError(name)
        self._names.remove(name)

    def names(self) -> list[str]:
        return list(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def change_position(self, name: str, index: int) -> None:
        """
        Move an addon to a new position, shifting the others.

        Args:
            name: Addon to move
            index: Target position; past-the-end values append

        Raises:
            UnknownAddonError: If name is not in the load order
        """
        try:
            current = self._names.index(name)
        except ValueError:
            raise UnknownAddonError(name) from None

        self._names.pop(current)
        self._names.insert(min(max(index, 0), len(self._names)), name)

    def validate(self, registry: AddonRegistry) -> None:
        """Raise UnknownAddonError for the first enabled name absent from registry."""
        for name in self._names:
            if name not in registry:
                raise UnknownAddonError(name, context={"registry_size": len(registry)})

    def render(self, registry: AddonRegistry) -> str:
        """
        Render as Mod Organizer modlist text.

        Enabled addons come first in load order, then every registry addon that
        is not enabled, in registry order.

        Raises:
            UnknownAddonError: If an enabled addon is not in the registry
        """
        self.validate(registry)

        lines = [MODLIST_HEADER]
        lines.extend(f"+{name}\n" for name in self._names)
        lines.extend(f"-{name}\n" for name in registry if name not in self._names)
        return "".join(lines)

    def write(self, modlist_path: Path, registry: AddonRegistry) -> None:
        """Write rendered modlist as UTF-8, creating parent directories."""
        text = self.render(registry)
        modlist_path.parent.mkdir(parents=True, exist_ok=True)
        modlist_path.write_text(text, encoding="utf-8", newline="\n")
        logger.debug(f"Wrote modlist with {len(self._names)} enabled addons to {modlist_path}")
