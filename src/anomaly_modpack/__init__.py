"""anomaly-modpack - Transactional addon installation for Mod Organizer managed games.

Library mechanism only: apps inject policy (paths, HTTP client, 7-Zip location).
"""

from .archive import ArchiveUnpacker
from .archive import run_decompression_tool
from .cache import DownloadCache
from .exceptions import AddonFolderError
from .exceptions import AddonInstallError
from .exceptions import ArchiveError
from .exceptions import BackupTargetNotCleanError
from .exceptions import ConfigError
from .exceptions import DownloadButtonNotFoundError
from .exceptions import DuplicateAddonError
from .exceptions import InstallFailedAndUnrecoverableError
from .exceptions import InstallFailedButRevertedError
from .exceptions import LoadOrderError
from .exceptions import MirrorLinkNotFoundError
from .exceptions import ModpackError
from .exceptions import NoReleasesFoundError
from .exceptions import ResolutionError
from .exceptions import ResolutionErrorKind
from .exceptions import SourceUnreachableError
from .exceptions import TransactionError
from .exceptions import UnknownAddonError
from .fetch import ArchiveFetcher
from .fetch import DownloadProgress
from .fetch import download_file
from .installer import InstallReport
from .installer import Modpack
from .installer import install_modpack
from .keys import ADDON_KEY_ADAPTER
from .keys import AddonKey
from .keys import DirectUrl
from .keys import FolderEntry
from .keys import PortalLink
from .keys import VersionedRepo
from .keys import dump_addon_key
from .keys import parse_addon_key
from .load_order import MODLIST_HEADER
from .load_order import AddonRegistry
from .load_order import LoadOrder
from .locator import CONTENT_MARKER
from .locator import find_addon_folders
from .locator import folder_entries_for
from .locator import locate_addon_folder
from .protocols import FetchAndUnpack
from .protocols import TransactionSource
from .resolver import create_client
from .resolver import find_link
from .resolver import resolve
from .schema import ModEntry
from .schema import ModpackConfig
from .transaction import Composite
from .transaction import DirectorySource
from .transaction import GuardedTransaction
from .transaction import Nested
from .transaction import guarded_install

__all__ = [
    # Addon keys
    "AddonKey",
    "DirectUrl",
    "VersionedRepo",
    "PortalLink",
    "FolderEntry",
    "ADDON_KEY_ADAPTER",
    "parse_addon_key",
    "dump_addon_key",
    # Configuration
    "ModpackConfig",
    "ModEntry",
    # Resolution
    "resolve",
    "find_link",
    "create_client",
    # Download
    "DownloadCache",
    "ArchiveFetcher",
    "ArchiveUnpacker",
    "DownloadProgress",
    "FetchAndUnpack",
    "download_file",
    "run_decompression_tool",
    # Transactions
    "TransactionSource",
    "DirectorySource",
    "Nested",
    "Composite",
    "GuardedTransaction",
    "guarded_install",
    # Payload discovery
    "CONTENT_MARKER",
    "find_addon_folders",
    "locate_addon_folder",
    "folder_entries_for",
    # Load order
    "AddonRegistry",
    "LoadOrder",
    "MODLIST_HEADER",
    # Installation
    "Modpack",
    "InstallReport",
    "install_modpack",
    # Exceptions
    "ModpackError",
    "ConfigError",
    "ResolutionError",
    "ResolutionErrorKind",
    "SourceUnreachableError",
    "NoReleasesFoundError",
    "DownloadButtonNotFoundError",
    "MirrorLinkNotFoundError",
    "ArchiveError",
    "AddonFolderError",
    "TransactionError",
    "BackupTargetNotCleanError",
    "InstallFailedButRevertedError",
    "InstallFailedAndUnrecoverableError",
    "LoadOrderError",
    "UnknownAddonError",
    "DuplicateAddonError",
    "AddonInstallError",
]

__version__ = "0.1.0"
