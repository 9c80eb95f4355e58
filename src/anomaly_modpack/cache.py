"""Session-scoped download cache.

Several addons often ship in the same archive, so downloads are keyed on the
addon key (structural equality) rather than on the addon name. For a given
cache, each key is resolved, fetched and unpacked at most once; concurrent
requests for a key already in flight await the same future instead of
starting a second download (single-flight).

The cache owns every unpacked directory and deletes them on close().
"""

import asyncio
import logging
import shutil
from pathlib import Path
from types import TracebackType

from .keys import AddonKey
from .protocols import FetchAndUnpack
from .protocols import Resolver

logger = logging.getLogger(__name__)


class DownloadCache:
    """
    Map addon keys to unpacked download directories.

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     cache = DownloadCache(resolver=lambda key: resolve(key, client))
        ...     with cache:
        ...         folder = await cache.get_or_fetch(key, ArchiveFetcher(client))
    """

    def __init__(self, resolver: Resolver):
        """Initialize with the function that turns a key into a URL."""
        self.resolver = resolver
        self._entries: dict[AddonKey, Path] = {}
        self._in_flight: dict[AddonKey, asyncio.Future[Path]] = {}
        self.fetch_count = 0

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: AddonKey) -> Path | None:
        """Cached directory for key, without fetching."""
        return self._entries.get(key)

    async def get_or_fetch(self, key: AddonKey, fetch_and_unpack: FetchAndUnpack) -> Path:
        """
        Return the unpacked directory for key, fetching it on first request.

        Args:
            key: Addon key
            fetch_and_unpack: Downloads a URL and unpacks it into a new directory

        Returns:
            Directory owned by the cache (callers must not delete it)

        Raises:
            ResolutionError: If the key could not be resolved
            Exception: Whatever fetch_and_unpack raised; failures are not cached
        """
        while True:
            cached = self._entries.get(key)
            if cached is not None:
                logger.debug(f"Download cache hit for {key!r}")
                return cached

            pending = self._in_flight.get(key)
            if pending is None:
                break
            logger.debug(f"Waiting for in-flight download of {key!r}")
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # The first caller was cancelled, not this one: take over its download
                if not pending.cancelled() or asyncio.current_task().cancelling():
                    raise
                logger.debug(f"In-flight download of {key!r} was cancelled, fetching again")

        future: asyncio.Future[Path] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            url = await self.resolver(key)
            self.fetch_count += 1
            directory = await fetch_and_unpack(url)
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure does not log a warning
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        finally:
            del self._in_flight[key]

        self._entries[key] = directory
        future.set_result(directory)
        logger.debug(f"Cached {key!r} at {directory}")
        return directory

    def close(self) -> None:
        """Delete every unpacked directory owned by the cache."""
        for key, directory in self._entries.items():
            try:
                shutil.rmtree(directory)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete download directory {directory} for {key!r}: {e}")
        self._entries.clear()

    def __enter__(self) -> "DownloadCache":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    async def __aenter__(self) -> "DownloadCache":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
