"""Archive unpacking.

Zip archives are unpacked with the standard library. Anything else (7z, rar,
or a zip the library rejects) goes through an external 7-Zip executable:

    <7z> x -o<out_dir> <archive>
"""

import logging
import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path

from .exceptions import ArchiveError

logger = logging.getLogger(__name__)


def run_decompression_tool(executable_path: Path, archive_path: Path, out_dir: Path) -> bool:
    """
    Extract an archive with an external 7-Zip compatible executable.

    Returns:
        True if the tool exited successfully
    """
    if out_dir.is_file():
        raise ArchiveError(f"Output directory is a file: {out_dir}", context={"out_dir": str(out_dir)})

    try:
        result = subprocess.run(
            [str(executable_path), "x", "-y", f"-o{out_dir}", str(archive_path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as e:
        logger.warning(f"Could not run decompression tool {executable_path}: {e}")
        return False

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        logger.warning(f"{executable_path} failed on {archive_path} (exit {result.returncode}): {stderr}")
        return False
    return True


def unpack_zip(archive_path: Path, out_dir: Path) -> None:
    """
    Unpack a zip archive, refusing entries that would land outside out_dir.

    Raises:
        zipfile.BadZipFile: If the file is not a zip archive
        NotImplementedError: If an entry uses an unsupported compression method
        ArchiveError: If an entry escapes out_dir
    """
    root = out_dir.resolve()
    with zipfile.ZipFile(archive_path) as archive:
        for member in archive.infolist():
            target = (root / member.filename).resolve()
            if target != root and root not in target.parents:
                raise ArchiveError(
                    f"Zip is ill-formed, entry escapes output directory: {member.filename}",
                    context={"archive": str(archive_path)},
                )
        archive.extractall(root)


class ArchiveUnpacker:
    """Unpack archives into fresh temporary directories.

    Args:
        tool_path: Optional 7-Zip executable used when the zip path fails
    """

    def __init__(self, tool_path: Path | None = None):
        self.tool_path = tool_path

    def unpack(self, archive_path: Path) -> Path:
        """
        Unpack archive_path into a new temporary directory.

        The caller owns the returned directory.

        Raises:
            ArchiveError: If neither the zip library nor the external tool succeeded
        """
        out_dir = Path(tempfile.mkdtemp(prefix="anomaly-modpack-"))
        try:
            unpack_zip(archive_path, out_dir)
            logger.debug(f"Unpacked {archive_path} as zip into {out_dir}")
            return out_dir
        except Exception as e:
            # Not only BadZipFile: unsupported methods (Deflate64) and encrypted entries too
            zip_error = e
            logger.debug(f"Zip unpack of {archive_path} failed: {e}")

        # The zip attempt may have left partial output behind
        shutil.rmtree(out_dir, ignore_errors=True)
        out_dir.mkdir()

        if self.tool_path is not None and run_decompression_tool(self.tool_path, archive_path, out_dir):
            logger.debug(f"Unpacked {archive_path} with {self.tool_path} into {out_dir}")
            return out_dir

        shutil.rmtree(out_dir, ignore_errors=True)
        raise ArchiveError(
            f"Could not unpack {archive_path}: {zip_error}"
            + ("" if self.tool_path else " (no decompression tool configured)"),
            context={"archive": str(archive_path), "tool": str(self.tool_path) if self.tool_path else None},
        ) from zip_error
