"""Modpack catalogue schema - Parse the JSON configuration document.

Document shape:
{
  "metadata": {"config_version": 1, "name": "My pack"},
  "mods": {
    "Anomaly-Mod-Configuration-Menu": {
      "moddb": {"url": "anomaly-mod-configuration-menu", "updated": "Aug 8th, 2022"}
    },
    "Some-Github-Addon": {
      "github": {"url": "org/repo", "tag": "latest", "filename": "Addon-$VERSION.zip"}
    },
    "Plain": {"url": {"url": "https://example.com/plain.zip"}, "addon_folder": "Plain"}
  }
}

Each mod entry holds exactly one source description.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import ValidationError
from pydantic import model_validator

from .exceptions import ConfigError
from .keys import LATEST_TAG
from .keys import AddonKey
from .keys import DirectUrl
from .keys import FolderEntry
from .keys import PortalLink
from .keys import VersionedRepo
from .load_order import AddonRegistry
from .load_order import LoadOrder

logger = logging.getLogger(__name__)


class ModdbSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    updated: str = ""


class GithubSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    tag: str = LATEST_TAG
    filename: str


class UrlSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class ModEntry(BaseModel):
    """One configured mod: a single source plus optional layout hints."""

    model_config = ConfigDict(frozen=True)

    moddb: ModdbSource | None = None
    github: GithubSource | None = None
    url: UrlSource | None = None
    # Only read by migration tooling
    renamed_from: str | None = None
    addon_folder: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ModEntry":
        sources = [s for s in (self.moddb, self.github, self.url) if s is not None]
        if len(sources) != 1:
            raise ValueError(f"exactly one of moddb/github/url must be set, got {len(sources)}")
        return self

    def to_addon_key(self) -> AddonKey:
        if self.moddb is not None:
            return PortalLink(slug=self.moddb.url, updated_marker=self.moddb.updated)
        if self.github is not None:
            return VersionedRepo(
                repo_id=self.github.url,
                tag=self.github.tag,
                filename_template=self.github.filename,
            )
        if self.url is not None:
            return DirectUrl(url=self.url.url)
        raise ConfigError("Mod entry has no source", context={"entry": self.model_dump()})

    def to_folder_entry(self) -> FolderEntry:
        return FolderEntry(key=self.to_addon_key(), addon_subfolder=self.addon_folder)


class ModpackMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    config_version: int
    name: str


class ModpackConfig(BaseModel):
    """Modpack catalogue document (consumed, never written by the core)."""

    model_config = ConfigDict(frozen=True)

    metadata: ModpackMetadata
    mods: dict[str, ModEntry]

    @classmethod
    def from_json(cls, text: str | bytes) -> "ModpackConfig":
        """
        Parse a catalogue from JSON text.

        Raises:
            ConfigError: If the document is not valid JSON or violates the schema
        """
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise ConfigError(f"Invalid modpack config: {e}") from e

    @classmethod
    def from_file(cls, config_path: Path) -> "ModpackConfig":
        """
        Load a catalogue from a JSON file.

        Args:
            config_path: Path to the catalogue document

        Returns:
            ModpackConfig instance

        Raises:
            ConfigError: If the file is missing, unreadable or invalid
        """
        if not config_path.exists():
            raise ConfigError(f"Modpack config not found: {config_path}", context={"path": str(config_path)})

        try:
            text = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Could not read {config_path}: {e}", context={"path": str(config_path)}) from e

        config = cls.from_json(text)
        logger.debug(f"Loaded modpack '{config.metadata.name}' with {len(config.mods)} mods from {config_path}")
        return config

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", exclude_none=True), indent=2)

    def to_registry(self) -> AddonRegistry:
        registry = AddonRegistry()
        for name, entry in self.mods.items():
            registry.insert(name, entry.to_folder_entry())
        return registry

    def to_load_order(self) -> LoadOrder:
        """Every configured mod enabled, in document order."""
        return LoadOrder(self.mods.keys())
