# deploy_engine/artifacts/resolver.py
"""Artifact resolver - finds the newest build archive for a product."""

import logging
from pathlib import Path
from typing import List, Optional

from deploy_engine.artifacts.products import resolve_product_name
from deploy_engine.core.errors import ArtifactNotFound
from deploy_engine.core.models import BuildArtifact, DatabaseKind, RuntimePlatform, Version
from deploy_engine.filesystem import FileSystem

logger = logging.getLogger(__name__)


def product_file_token(
    product: str,
    database_kind: DatabaseKind,
    runtime_platform: RuntimePlatform,
) -> str:
    """File-name fragment every matching archive contains, minus the build number."""
    return f"_{product}{runtime_platform.suffix}_Softkey_{database_kind.value}_ENU.zip"


class ArtifactResolver:
    """
    Locates build archives in a version-numbered directory tree.

    Layout::

        <root>/<major.minor.build>/<full.revision>/.../<rev>_<product>_Softkey_<db>_ENU.zip

    Only the newest version directory is searched. Inside it, revision
    directories are tried newest-created first (the version directory
    itself when none parse as versions) and archives newest-written first.
    A miss in the newest version is a failure, never a fall back to an
    older version.
    """

    def __init__(self, file_system: Optional[FileSystem] = None):
        self._fs = file_system or FileSystem()

    def resolve(
        self,
        root_path: str,
        product: str,
        database_kind: DatabaseKind,
        runtime_platform: RuntimePlatform,
    ) -> str:
        """Return the full path of the matching archive."""
        return self.resolve_artifact(root_path, product, database_kind, runtime_platform).path

    def resolve_artifact(
        self,
        root_path: str,
        product: str,
        database_kind: DatabaseKind,
        runtime_platform: RuntimePlatform,
    ) -> BuildArtifact:
        product_name = resolve_product_name(product)
        token = product_file_token(product_name, database_kind, runtime_platform)

        version_dir, version = self._latest_version_directory(root_path, token)
        logger.info(f"[Artifact] - Searching {token} in {version_dir}")

        for search_dir in self._revision_directories(version_dir):
            for archive in self._archives_newest_first(search_dir):
                if token.lower() in archive.name.lower():
                    logger.info(f"[Artifact] - Found {archive}")
                    return BuildArtifact(
                        product=product_name,
                        database_kind=database_kind,
                        runtime_platform=runtime_platform,
                        version=Version.parse(search_dir.name) or version,
                        path=str(archive),
                    )

        raise ArtifactNotFound(token, str(version_dir))

    def latest_version(self, root_path: str) -> Version:
        """Greatest version-named child directory of ``root_path``."""
        _, version = self._latest_version_directory(root_path, "")
        return version

    # ============================================
    # HELPERS
    # ============================================

    def _latest_version_directory(self, root_path: str, token: str):
        candidates = []
        for directory in self._fs.list_directories(root_path):
            version = Version.parse(directory.name)
            if version is not None:
                candidates.append((version, directory))

        if not candidates:
            raise ArtifactNotFound(token or "<version directory>", root_path)

        version, directory = max(candidates, key=lambda c: c[0])
        return directory, version

    def _revision_directories(self, version_dir: Path) -> List[Path]:
        subdirectories = sorted(
            self._fs.list_directories(version_dir),
            key=self._fs.creation_time,
            reverse=True,
        )
        revisions = [d for d in subdirectories if Version.parse(d.name) is not None]
        return revisions or [version_dir]

    def _archives_newest_first(self, directory: Path) -> List[Path]:
        return sorted(
            self._fs.list_files(directory, "*.zip", recursive=True),
            key=self._fs.last_write_time,
            reverse=True,
        )
