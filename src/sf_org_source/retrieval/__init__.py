"""Org source retrieval: manifests, staging, cache and the orchestrating service."""

from sf_org_source.retrieval.cache import SourceCache
from sf_org_source.retrieval.manifest import ManifestDocument, build_manifest, render_manifest
from sf_org_source.retrieval.models import CacheEntry, CacheStats, OrgFile
from sf_org_source.retrieval.service import FileContentError, SourceRetrievalService
from sf_org_source.retrieval.staging import OrgWorkdirManager

__all__ = [
    "CacheEntry",
    "CacheStats",
    "FileContentError",
    "ManifestDocument",
    "OrgFile",
    "OrgWorkdirManager",
    "SourceCache",
    "SourceRetrievalService",
    "build_manifest",
    "render_manifest",
]
