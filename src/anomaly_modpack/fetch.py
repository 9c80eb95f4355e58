"""Archive download.

Streams HTTP responses to disk with httpx and aiofiles and reports progress,
then hands the file to an ArchiveUnpacker. ArchiveFetcher glues both into the
`fetch_and_unpack(url) -> directory` callable the download cache expects.
"""

import asyncio
import logging
import re
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import httpx

from .archive import ArchiveUnpacker
from .exceptions import SourceUnreachableError

logger = logging.getLogger(__name__)

_FILENAME_PATTERN = re.compile(r'filename ?= ?"?([^\s";]*)"?')


@dataclass
class DownloadProgress:
    """Download progress snapshot passed to progress callbacks."""

    file_name: str | None = None
    size: int | None = None
    downloaded: int = 0


ProgressCallback = Callable[[DownloadProgress], None]


def filename_from_content_disposition(header: str | None) -> str | None:
    if not header:
        return None
    match = _FILENAME_PATTERN.search(header)
    return match.group(1) if match and match.group(1) else None


async def download_file(
    url: str,
    destination: Path,
    client: httpx.AsyncClient,
    progress_callback: ProgressCallback | None = None,
) -> DownloadProgress:
    """
    Stream url into a file.

    Args:
        url: Download URL
        destination: File to create or overwrite
        client: HTTP client
        progress_callback: Called once with the response metadata and after every chunk

    Returns:
        Final progress (file name, total size if known, bytes written)

    Raises:
        SourceUnreachableError: On network failure or a non-success status
    """
    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            content_length = response.headers.get("Content-Length")
            progress = DownloadProgress(
                file_name=filename_from_content_disposition(response.headers.get("Content-Disposition")),
                size=int(content_length) if content_length and content_length.isdigit() else None,
            )
            if progress_callback:
                progress_callback(progress)

            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.aiter_bytes():
                    await f.write(chunk)
                    progress.downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(progress)
    except httpx.HTTPError as e:
        raise SourceUnreachableError(f"Download of {url} failed: {e}", context={"url": url}) from e

    logger.debug(f"Downloaded {progress.downloaded} bytes from {url}")
    return progress


class ArchiveFetcher:
    """Download an archive and unpack it into a fresh directory.

    Unpacking runs in a worker thread so the event loop keeps serving other
    tasks. The returned directory belongs to the caller.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        unpacker: ArchiveUnpacker | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        self.client = client
        self.unpacker = unpacker or ArchiveUnpacker()
        self.progress_callback = progress_callback

    async def __call__(self, url: str) -> Path:
        with tempfile.TemporaryDirectory(prefix="anomaly-modpack-dl-") as download_dir:
            archive_path = Path(download_dir) / "archive"
            progress = await download_file(url, archive_path, self.client, self.progress_callback)
            logger.info(f"Downloaded {progress.file_name or url} ({progress.downloaded} bytes)")
            return await asyncio.to_thread(self.unpacker.unpack, archive_path)
