# deploy_engine/artifacts/archive.py
"""Archive extraction and network-path staging for build artifacts."""

import logging
import os
import sys
import zipfile
from pathlib import Path
from typing import Optional

from deploy_engine.core.errors import ArtifactNotFound
from deploy_engine.filesystem import FileSystem

logger = logging.getLogger(__name__)

_DRIVE_REMOTE = 4


def is_unc_path(path: str) -> bool:
    return path.startswith("\\\\") or path.startswith("//")


def is_network_path(path: str) -> bool:
    """True for UNC paths and, on Windows, for paths on mapped network drives."""
    if is_unc_path(path):
        return True
    if sys.platform != "win32":
        return False

    drive = os.path.splitdrive(os.path.abspath(path))[0]
    if not drive:
        return False

    import ctypes
    return ctypes.windll.kernel32.GetDriveTypeW(f"{drive}\\") == _DRIVE_REMOTE


class ArchiveStager:
    """Brings an artifact onto local disk and into an extracted directory."""

    def __init__(self, products_folder: str, file_system: Optional[FileSystem] = None):
        self.products_folder = products_folder
        self._fs = file_system or FileSystem()

    def copy_local_when_network_drive(self, path: str) -> str:
        """
        Copy an archive that lives on a network share into ``products_folder``.

        Local paths are returned unchanged. An already staged copy is reused.
        """
        if not is_network_path(path):
            return path

        # UNC names use backslashes even when read on a POSIX host
        file_name = path.replace("\\", "/").rstrip("/").split("/")[-1]
        destination = Path(self.products_folder) / file_name

        if self._fs.exists_file(destination):
            logger.info(f"[Staging] - Reusing local copy {destination}")
            return str(destination)

        logger.info(f"[Staging] - Copying {path} to {destination}")
        last_reported = [-10]

        def report(percent: float) -> None:
            if percent - last_reported[0] >= 10 or percent >= 100:
                last_reported[0] = int(percent)
                logger.info(f"[Staging] - {percent:.0f}% copied")

        partial = destination.with_name(destination.name + ".partial")
        self._fs.copy_file_with_progress(path, partial, report)
        self._fs.move_file(partial, destination)
        return str(destination)

    def unzip_or_take_existing(self, path: str) -> str:
        """
        Return an extracted directory for ``path``.

        Directories are used as-is. Archives are extracted next to
        themselves into a folder named after the archive stem; a
        non-empty folder from an earlier run is reused.
        """
        source = Path(path)
        if self._fs.exists_directory(source):
            return str(source)
        if not self._fs.exists_file(source):
            raise ArtifactNotFound(source.name, str(source.parent))

        target = source.with_suffix("")
        if self._fs.exists_directory(target) and any(target.iterdir()):
            logger.info(f"[Unzip] - Using existing extraction {target}")
            return str(target)

        logger.info(f"[Unzip] - Extracting {source} to {target}")
        target.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(source) as archive:
            archive.extractall(target)
        logger.info(f"[Unzip] - ✅ Extracted {source.name}")
        return str(target)
