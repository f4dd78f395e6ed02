# deploy_engine/filesystem.py
"""Filesystem collaborator used by the resolver, restore engine, and orchestrator."""

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_COPY_BUFFER_SIZE = 1024 * 1024


class FileSystem:
    """Thin wrapper over pathlib/shutil so tests can swap the filesystem."""

    # ============================================
    # QUERIES
    # ============================================

    def exists_file(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def exists_directory(self, path: PathLike) -> bool:
        return Path(path).is_dir()

    def list_directories(self, path: PathLike) -> List[Path]:
        root = Path(path)
        if not root.is_dir():
            return []
        return sorted(p for p in root.iterdir() if p.is_dir())

    def list_files(self, path: PathLike, pattern: str = "*", recursive: bool = False) -> List[Path]:
        root = Path(path)
        if not root.is_dir():
            return []
        matches = root.rglob(pattern) if recursive else root.glob(pattern)
        return sorted(p for p in matches if p.is_file())

    def creation_time(self, path: PathLike) -> float:
        """Creation timestamp where the platform records one, change time otherwise."""
        stat = Path(path).stat()
        return getattr(stat, "st_birthtime", stat.st_ctime)

    def last_write_time(self, path: PathLike) -> float:
        return Path(path).stat().st_mtime

    def file_size(self, path: PathLike) -> int:
        return Path(path).stat().st_size

    # ============================================
    # MUTATIONS
    # ============================================

    def create_directory(self, path: PathLike) -> Path:
        directory = Path(path)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def copy_file(self, source: PathLike, destination: PathLike, overwrite: bool = True) -> Path:
        dest = Path(destination)
        if dest.exists() and not overwrite:
            raise FileExistsError(f"File {dest} already exists")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        return dest

    def copy_file_with_progress(
        self,
        source: PathLike,
        destination: PathLike,
        progress: Optional[Callable[[float], None]] = None,
    ) -> Path:
        """Copy in 1 MB chunks, reporting percentage complete."""
        dest = Path(destination)
        dest.parent.mkdir(parents=True, exist_ok=True)
        total = max(Path(source).stat().st_size, 1)
        copied = 0

        with open(source, "rb") as src, open(dest, "wb") as dst:
            while True:
                chunk = src.read(_COPY_BUFFER_SIZE)
                if not chunk:
                    break
                dst.write(chunk)
                copied += len(chunk)
                if progress is not None:
                    progress(min(100.0, 100.0 * copied / total))

        return dest

    def copy_directory_with_filter(
        self,
        source: PathLike,
        destination: PathLike,
        exclude: Callable[[Path], bool],
    ) -> int:
        """
        Copy a tree, skipping every file or directory for which ``exclude``
        returns True (at any depth). Returns the number of files copied.
        """
        source_root = Path(source)
        dest_root = Path(destination)
        dest_root.mkdir(parents=True, exist_ok=True)
        copied = 0

        for current, dir_names, file_names in os.walk(source_root):
            current_path = Path(current)
            # Prune excluded directories in place so os.walk never enters them
            dir_names[:] = [d for d in dir_names if not exclude(current_path / d)]
            target_dir = dest_root / current_path.relative_to(source_root)
            target_dir.mkdir(parents=True, exist_ok=True)

            for name in file_names:
                file_path = current_path / name
                if exclude(file_path):
                    continue
                shutil.copy2(file_path, target_dir / name)
                copied += 1

        logger.debug(f"[filesystem] copied {copied} file(s) from {source_root} to {dest_root}")
        return copied

    def create_symbolic_link(self, link: PathLike, target: PathLike) -> Path:
        """Point ``link`` at ``target``; an existing link is replaced."""
        link_path = Path(link)
        if link_path.is_symlink():
            link_path.unlink()
        link_path.parent.mkdir(parents=True, exist_ok=True)
        link_path.symlink_to(Path(target), target_is_directory=Path(target).is_dir())
        return link_path

    def move_file(self, source: PathLike, destination: PathLike) -> Path:
        """Rename ``source`` to ``destination``, replacing an existing file."""
        return Path(source).replace(destination)

    def delete_file(self, path: PathLike) -> None:
        Path(path).unlink(missing_ok=True)

    def read_text(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_text(self, path: PathLike, content: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
