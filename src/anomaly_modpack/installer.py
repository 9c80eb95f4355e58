"""Modpack installation (orchestration).

Installs every configured addon that is missing from the mods directory:

1. Missing addons = registry names without a directory under mods_root
2. Each missing addon is resolved, downloaded and unpacked through the
   DownloadCache (one download per distinct key)
3. Its payload folder is located and staged under <staging>/<addon name>
4. All staged addons become one Composite merge plan
5. The plan is committed into mods_root by a single GuardedTransaction, so
   either every addon lands or mods_root is restored

Addons are processed one after another by default; `concurrency > 1` runs
them on a bounded pool of tasks, which stays correct because the cache is
single-flight.

Apps inject policy: where mods live, which HTTP client and unpacker to use,
whether one broken addon aborts the whole run.
"""

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import httpx

from .archive import ArchiveUnpacker
from .cache import DownloadCache
from .exceptions import AddonInstallError
from .fetch import ArchiveFetcher
from .fetch import ProgressCallback
from .keys import FolderEntry
from .load_order import AddonRegistry
from .load_order import LoadOrder
from .locator import locate_addon_folder
from .protocols import FetchAndUnpack
from .resolver import create_client
from .resolver import resolve
from .schema import ModpackConfig
from .transaction import Composite
from .transaction import DirectorySource
from .transaction import GuardedTransaction
from .transaction import Nested

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    """Outcome of a modpack install."""

    installed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, AddonInstallError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


async def _prepare_addon(
    name: str,
    entry: FolderEntry,
    cache: DownloadCache,
    fetch_and_unpack: FetchAndUnpack,
    staging_root: Path,
) -> Nested:
    """Fetch one addon and stage its payload under staging_root/name."""
    try:
        unpacked = await cache.get_or_fetch(entry.key, fetch_and_unpack)
        payload = locate_addon_folder(unpacked, entry.addon_subfolder)
        Nested(DirectorySource(payload), name).apply(staging_root)
    except Exception as e:
        raise AddonInstallError(name, e, context={"key": entry.key.model_dump()}) from e

    logger.info(f"Prepared addon '{name}'")
    return Nested(DirectorySource(staging_root / name), name)


class Modpack:
    """A configured set of addons plus their load order."""

    def __init__(self, registry: AddonRegistry, order: LoadOrder):
        order.validate(registry)
        self.registry = registry
        self.order = order

    @classmethod
    def from_config(cls, config: ModpackConfig) -> "Modpack":
        return cls(config.to_registry(), config.to_load_order())

    def missing_addons(self, mods_root: Path) -> list[str]:
        return self.registry.missing_addons(mods_root)

    def write_modlist(self, modlist_path: Path) -> None:
        self.order.write(modlist_path, self.registry)

    async def install(
        self,
        mods_root: Path,
        *,
        cache: DownloadCache | None = None,
        fetch_and_unpack: FetchAndUnpack | None = None,
        client: httpx.AsyncClient | None = None,
        unpacker: ArchiveUnpacker | None = None,
        progress_callback: ProgressCallback | None = None,
        stop_on_error: bool = True,
        concurrency: int = 1,
        modlist_path: Path | None = None,
    ) -> InstallReport:
        """
        Install every missing addon into mods_root as one guarded transaction.

        Args:
            mods_root: Managed mods directory (one subdirectory per addon)
            cache: Download cache to reuse across installs; a private one is
                created (and cleaned up) when omitted
            fetch_and_unpack: Download collaborator; defaults to ArchiveFetcher
            client: HTTP client; a private one is created when omitted
            unpacker: Archive unpacker for the default fetcher
            progress_callback: Download progress callback for the default fetcher
            stop_on_error: Abort on the first addon that fails to prepare;
                otherwise skip failed addons and install the rest
            concurrency: Number of addons prepared at the same time
            modlist_path: Where to write the rendered load order after a
                successful commit

        Returns:
            InstallReport

        Raises:
            AddonInstallError: An addon failed to prepare and stop_on_error is set
            TransactionError: The commit into mods_root failed (see subclasses
                for whether mods_root was restored)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        owns_client = client is None
        if client is None:
            client = create_client()

        owns_cache = cache is None
        if cache is None:
            cache = DownloadCache(resolver=lambda key: resolve(key, client))

        if fetch_and_unpack is None:
            fetch_and_unpack = ArchiveFetcher(client, unpacker, progress_callback)

        try:
            return await self._install(mods_root, cache, fetch_and_unpack, stop_on_error, concurrency, modlist_path)
        finally:
            if owns_cache:
                cache.close()
            if owns_client:
                await client.aclose()

    async def _install(
        self,
        mods_root: Path,
        cache: DownloadCache,
        fetch_and_unpack: FetchAndUnpack,
        stop_on_error: bool,
        concurrency: int,
        modlist_path: Path | None,
    ) -> InstallReport:
        mods_root.mkdir(parents=True, exist_ok=True)
        report = InstallReport()
        missing = self.missing_addons(mods_root)
        report.skipped = [name for name in self.registry if name not in missing]
        logger.info(f"Installing {len(missing)} addons into {mods_root} ({len(report.skipped)} already present)")

        with tempfile.TemporaryDirectory(prefix="anomaly-modpack-staging-") as staging:
            staging_root = Path(staging)
            pending = [(name, entry) for name, entry in self.registry.items() if name in missing]
            staged = await self._prepare_all(pending, cache, fetch_and_unpack, staging_root, stop_on_error, concurrency)

            plan = Composite()
            for name in missing:
                result = staged[name]
                if isinstance(result, AddonInstallError):
                    logger.warning(f"Skipping addon '{name}': {result.cause}")
                    report.failed[name] = result
                else:
                    plan.add(result)
                    report.installed.append(name)

            backup_root = Path(tempfile.mkdtemp(prefix="anomaly-modpack-backup-"))
            GuardedTransaction(plan, mods_root, backup_root).run()

        if modlist_path is not None:
            self.write_modlist(modlist_path)

        logger.info(f"Installed {len(report.installed)} addons into {mods_root}")
        return report

    async def _prepare_all(
        self,
        pending: list[tuple[str, FolderEntry]],
        cache: DownloadCache,
        fetch_and_unpack: FetchAndUnpack,
        staging_root: Path,
        stop_on_error: bool,
        concurrency: int,
    ) -> dict[str, Nested | AddonInstallError]:
        """Prepare addons, returning staged sources (or failures) keyed by name."""
        results: dict[str, Nested | AddonInstallError] = {}

        async def prepare(name: str, entry: FolderEntry) -> None:
            try:
                results[name] = await _prepare_addon(name, entry, cache, fetch_and_unpack, staging_root)
            except AddonInstallError as e:
                if stop_on_error:
                    raise
                results[name] = e

        if concurrency == 1:
            for name, entry in pending:
                await prepare(name, entry)
            return results

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(name: str, entry: FolderEntry) -> None:
            async with semaphore:
                await prepare(name, entry)

        tasks = [asyncio.create_task(bounded(name, entry)) for name, entry in pending]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return results


async def install_modpack(
    registry: AddonRegistry,
    order: LoadOrder,
    mods_root: Path,
    **kwargs,
) -> InstallReport:
    """
    Install every missing addon of registry into mods_root.

    Function form of Modpack.install; keyword arguments are forwarded.

    Example:
        >>> config = ModpackConfig.from_file(Path("config.json"))
        >>> report = await install_modpack(
        ...     config.to_registry(),
        ...     config.to_load_order(),
        ...     Path("mo2/mods"),
        ...     unpacker=ArchiveUnpacker(tool_path=Path("7zr.exe")),
        ... )
    """
    return await Modpack(registry, order).install(mods_root, **kwargs)
