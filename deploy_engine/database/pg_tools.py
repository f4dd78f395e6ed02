# deploy_engine/database/pg_tools.py
"""Locate PostgreSQL client tools."""

import glob
import logging
import os
import shutil
import sys
from typing import List, Optional

logger = logging.getLogger(__name__)


def _executable(name: str) -> str:
    return f"{name}.exe" if sys.platform == "win32" else name


def _well_known_directories() -> List[str]:
    if sys.platform == "win32":
        roots = [os.environ.get("ProgramFiles", r"C:\Program Files"), os.environ.get("ProgramFiles(x86)", "")]
        found = []
        for root in filter(None, roots):
            found.extend(glob.glob(os.path.join(root, "PostgreSQL", "*", "bin")))
        return sorted(found, key=_version_key, reverse=True)

    candidates = sorted(glob.glob("/usr/lib/postgresql/*/bin"), key=_version_key, reverse=True)
    candidates += sorted(glob.glob("/Library/PostgreSQL/*/bin"), key=_version_key, reverse=True)
    candidates += [
        "/Applications/Postgres.app/Contents/Versions/latest/bin",
        "/opt/homebrew/bin",
        "/usr/local/bin",
        "/usr/bin",
    ]
    return candidates


def _version_key(path: str):
    version = os.path.basename(os.path.dirname(path))
    return [int(p) if p.isdigit() else 0 for p in version.split(".")]


class PostgresToolsLocator:
    """Finds pg_restore: configured path, then PATH, then install directories."""

    def get_pg_restore_path(self, configured_path: Optional[str] = None) -> Optional[str]:
        name = _executable("pg_restore")

        if configured_path:
            for candidate in (configured_path, os.path.join(configured_path, name)):
                if os.path.isfile(candidate):
                    return candidate
            logger.warning(f"[pg_tools] - pg_restore not found in configured path {configured_path}")

        on_path = shutil.which(name)
        if on_path:
            return on_path

        for directory in _well_known_directories():
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate

        return None
