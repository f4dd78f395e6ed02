# deploy_engine/database/backup_detector.py
"""Classify database backup files by engine family."""

import logging
from pathlib import Path

from deploy_engine.core.models import BackupFileType

logger = logging.getLogger(__name__)

POSTGRES_MAGIC = b"PGDMP"
MSSQL_MAGIC = b"TAPE"

_EXTENSION_FALLBACK = {
    ".backup": BackupFileType.POSTGRES_BACKUP,
    ".bak": BackupFileType.MSSQL_BACKUP,
}


class BackupFileDetector:
    """Reads the file header first and falls back to the extension."""

    def detect_backup_type(self, path: str) -> BackupFileType:
        file_path = Path(path)
        if not file_path.is_file():
            logger.warning(f"[Backup detector] - {file_path} does not exist")
            return BackupFileType.UNKNOWN

        with open(file_path, "rb") as handle:
            header = handle.read(len(POSTGRES_MAGIC))

        if header.startswith(POSTGRES_MAGIC):
            return BackupFileType.POSTGRES_BACKUP
        if header.startswith(MSSQL_MAGIC):
            return BackupFileType.MSSQL_BACKUP

        return _EXTENSION_FALLBACK.get(file_path.suffix.lower(), BackupFileType.UNKNOWN)
