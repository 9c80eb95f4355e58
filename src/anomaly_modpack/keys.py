"""Addon keys - where an addon's archive comes from.

An AddonKey is a closed, serializable union of source descriptions. Keys are
frozen pydantic models, so equality and hashing are structural: two keys name
the same addon iff every field matches, and that holds across JSON round-trips.
This identity is what the download cache is keyed on.
"""

from typing import Annotated
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter

LATEST_TAG = "latest"
VERSION_PLACEHOLDER = "$VERSION"


class DirectUrl(BaseModel):
    """Archive downloadable from a fixed URL."""

    model_config = ConfigDict(frozen=True)

    type: Literal["url"] = "url"
    url: str


class VersionedRepo(BaseModel):
    """Release asset of a GitHub repository.

    `tag` may be "latest"; `filename_template` may contain "$VERSION", which is
    replaced with the tag minus a leading "v".
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["github"] = "github"
    repo_id: str
    tag: str = LATEST_TAG
    filename_template: str


class PortalLink(BaseModel):
    """Addon page on the ModDB portal.

    `updated_marker` is advisory: it only exists so a changed portal entry yields
    a different key. It is never used for resolution.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["moddb"] = "moddb"
    slug: str
    updated_marker: str = ""


AddonKey = Annotated[DirectUrl | VersionedRepo | PortalLink, Field(discriminator="type")]

ADDON_KEY_ADAPTER: TypeAdapter[AddonKey] = TypeAdapter(AddonKey)


def parse_addon_key(data: dict | str | bytes) -> AddonKey:
    """Parse an addon key from a dict or a JSON document."""
    if isinstance(data, dict):
        return ADDON_KEY_ADAPTER.validate_python(data)
    return ADDON_KEY_ADAPTER.validate_json(data)


def dump_addon_key(key: AddonKey) -> str:
    """Serialize an addon key to JSON."""
    return ADDON_KEY_ADAPTER.dump_json(key).decode()


class FolderEntry(BaseModel):
    """Catalogue entry for one installed addon directory."""

    model_config = ConfigDict(frozen=True)

    key: AddonKey
    # Which payload candidate to pick when the archive bundles several addons
    addon_subfolder: str | None = None
