"""On-disk staging of per-org project directories before retrieval."""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sf_org_source.retrieval.manifest import ManifestDocument, write_manifest
from sf_org_source.retrieval.models import RetrievalKey

logger = logging.getLogger(__name__)

PROJECT_FILE_NAME = "sfdx-project.json"
MANIFEST_FILE_NAME = "package.xml"
PACKAGE_DIRECTORY = "force-app"
SOURCE_SUBPATH: tuple[str, ...] = (PACKAGE_DIRECTORY, "main", "default")
TOMBSTONE_PREFIX = ".removing-org-"


@dataclass(slots=True)
class StagedOrg:
    """Paths prepared for one retrieval."""

    workdir: Path
    project_path: Path
    manifest_path: Path
    source_dir: Path


class OrgWorkdirManager:
    """Creates deterministic per-org project layout under the cache root."""

    def __init__(self, root_dir: Path, *, api_version: str) -> None:
        self.root_dir = root_dir
        self.api_version = api_version

    def org_dir(self, key: RetrievalKey) -> Path:
        return self.root_dir / f"org-{key}"

    def source_dir(self, key: RetrievalKey) -> Path:
        return self.org_dir(key).joinpath(*SOURCE_SUBPATH)

    def stage(self, key: RetrievalKey, manifest: ManifestDocument) -> StagedOrg:
        workdir = self.org_dir(key)
        workdir.mkdir(parents=True, exist_ok=True)

        project_path = workdir / PROJECT_FILE_NAME
        if not project_path.exists():
            write_json(
                project_path,
                {
                    "packageDirectories": [{"path": PACKAGE_DIRECTORY, "default": True}],
                    "namespace": "",
                    "sourceApiVersion": self.api_version,
                },
            )
            logger.debug("Created %s", project_path)

        source_dir = self.source_dir(key)
        source_dir.mkdir(parents=True, exist_ok=True)

        manifest_path = workdir / MANIFEST_FILE_NAME
        write_manifest(manifest_path, manifest)
        logger.debug("Manifest with %d types written to %s", len(manifest.types), manifest_path)

        return StagedOrg(
            workdir=workdir,
            project_path=project_path,
            manifest_path=manifest_path,
            source_dir=source_dir,
        )

    def detach(self, key: RetrievalKey) -> Path | None:
        """Rename the org directory to a unique tombstone so it can be purged later.

        Returns the tombstone path, or ``None`` when there was nothing to move.
        """

        workdir = self.org_dir(key)
        if not workdir.exists():
            return None
        tombstone = self.root_dir / f"{TOMBSTONE_PREFIX}{key}-{uuid.uuid4().hex}"
        try:
            workdir.rename(tombstone)
        except OSError as error:
            logger.warning("Failed to detach %s: %s", workdir, error)
            return None
        return tombstone

    def purge(self, path: Path) -> bool:
        """Best-effort recursive removal of a detached directory."""

        return remove_tree(path)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")


def remove_tree(path: Path) -> bool:
    """Remove ``path`` recursively; log and swallow filesystem errors."""

    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
    except OSError as error:
        logger.warning("Failed to remove %s: %s", path, error)
        return False
    return True
