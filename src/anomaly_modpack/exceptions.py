"""Modpack-specific exceptions.

Every failure carries a human-readable message plus a context dict, so callers
can branch on the exception type and still log something actionable.
"""

from enum import Enum
from pathlib import Path


class ModpackError(Exception):
    """Base exception for modpack operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (paths, URLs, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigError(ModpackError):
    """Invalid or unreadable modpack catalogue."""


# Resolution


class ResolutionErrorKind(str, Enum):
    """Why an addon key could not be turned into a download URL."""

    SOURCE_UNREACHABLE = "source_unreachable"
    NO_RELEASES_FOUND = "no_releases_found"
    DOWNLOAD_BUTTON_NOT_FOUND = "download_button_not_found"
    MIRROR_LINK_NOT_FOUND = "mirror_link_not_found"


class ResolutionError(ModpackError):
    """Addon key could not be resolved to a download URL."""

    kind: ResolutionErrorKind

    def __init__(self, message: str, key: object = None, context: dict | None = None):
        super().__init__(message, context)
        self.key = key


class SourceUnreachableError(ResolutionError):
    """Network or host failure while resolving (never retried)."""

    kind = ResolutionErrorKind.SOURCE_UNREACHABLE


class NoReleasesFoundError(ResolutionError):
    """Release repository has no published release."""

    kind = ResolutionErrorKind.NO_RELEASES_FOUND


class DownloadButtonNotFoundError(ResolutionError):
    """Portal addon page has no download call-to-action link."""

    kind = ResolutionErrorKind.DOWNLOAD_BUTTON_NOT_FOUND


class MirrorLinkNotFoundError(ResolutionError):
    """Portal download page has no mirror link."""

    kind = ResolutionErrorKind.MIRROR_LINK_NOT_FOUND


# Archive / payload layout


class ArchiveError(ModpackError):
    """Archive could not be unpacked."""


class AddonFolderError(ModpackError):
    """No unambiguous payload folder in an unpacked archive."""

    def __init__(self, message: str, candidates: set[Path] | None = None, context: dict | None = None):
        super().__init__(message, context)
        self.candidates = candidates or set()


# Transactions


class TransactionError(ModpackError):
    """Base for guarded directory-merge failures."""


class BackupTargetNotCleanError(TransactionError):
    """Backup directory exists and is not empty (or is a file)."""


class InstallFailedButRevertedError(TransactionError):
    """Apply failed; destination was restored to its prior state."""

    def __init__(self, original: BaseException, context: dict | None = None):
        super().__init__(f"Install failed but was reverted: {original}", context)
        self.original = original


class InstallFailedAndUnrecoverableError(TransactionError):
    """Apply failed and the restore failed too; backup is kept for manual recovery."""

    def __init__(
        self,
        original: BaseException,
        rollback_error: BaseException,
        backup_dir: Path,
        context: dict | None = None,
    ):
        super().__init__(
            f"Install failed: {original}; rollback also failed: {rollback_error}. "
            f"Original files are preserved in {backup_dir}",
            context,
        )
        self.original = original
        self.rollback_error = rollback_error
        self.backup_dir = backup_dir


# Load order


class LoadOrderError(ModpackError):
    """Invalid load order operation."""


class UnknownAddonError(LoadOrderError):
    """Addon name is not known."""

    def __init__(self, name: str, context: dict | None = None):
        super().__init__(f"Unknown addon: {name}", context)
        self.name = name


class DuplicateAddonError(LoadOrderError):
    """Addon name is already present in the load order."""

    def __init__(self, name: str, context: dict | None = None):
        super().__init__(f"Addon already in load order: {name}", context)
        self.name = name


# Orchestration


class AddonInstallError(ModpackError):
    """Resolving, fetching or locating one addon failed."""

    def __init__(self, addon_name: str, cause: BaseException, context: dict | None = None):
        super().__init__(f"Failed to prepare addon '{addon_name}': {cause}", context)
        self.addon_name = addon_name
        self.cause = cause
