# deploy_engine/artifacts/inspection.py
"""Inspect an extracted application tree."""

import logging
from pathlib import Path
from typing import Optional

from deploy_engine.core.errors import BackupNotFound
from deploy_engine.core.models import DatabaseKind, FrameworkType
from deploy_engine.filesystem import FileSystem

logger = logging.getLogger(__name__)

BACKUP_EXTENSIONS = {
    ".backup": DatabaseKind.POSTGRES,
    ".bak": DatabaseKind.MSSQL,
}


def detect_database_kind(app_path: str, file_system: Optional[FileSystem] = None) -> DatabaseKind:
    """
    Classify the tree by the backup it ships: ``db/`` first, then the root.

    Raises BackupNotFound when neither location holds a known backup.
    """
    fs = file_system or FileSystem()
    root = Path(app_path)

    for directory in (root / "db", root):
        for file_path in fs.list_files(directory):
            kind = BACKUP_EXTENSIONS.get(file_path.suffix.lower())
            if kind is not None:
                logger.debug(f"[Inspect] - {file_path.name} -> {kind.value}")
                return kind

    raise BackupNotFound(f"No .backup or .bak file found in {root / 'db'} or {root}")


def detect_framework(app_path: str, file_system: Optional[FileSystem] = None) -> FrameworkType:
    """
    .NET Core trees carry ``*.WebHost.dll`` or a ``*.runtimeconfig.json``
    at the root; everything else is treated as .NET Framework.
    """
    fs = file_system or FileSystem()
    root = Path(app_path)

    if fs.list_files(root, "*.WebHost.dll") or fs.list_files(root, "*.runtimeconfig.json"):
        return FrameworkType.NET_CORE
    return FrameworkType.NET_FRAMEWORK
