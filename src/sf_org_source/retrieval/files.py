"""Enumerate retrieved source files as ``OrgFile`` descriptors."""

from __future__ import annotations

from pathlib import Path

from sf_org_source.retrieval.models import OrgFile

SOURCE_FILE_EXTENSIONS: frozenset[str] = frozenset(
    {".cls", ".trigger", ".js", ".html", ".css", ".xml", ".json", ".yaml", ".yml", ".md"},
)


def list_retrieved_files(source_dir: Path) -> list[OrgFile]:
    """List source files under ``source_dir`` in stable path order."""

    if not source_dir.is_dir():
        return []

    files: list[OrgFile] = []
    for path in sorted(source_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in SOURCE_FILE_EXTENSIONS:
            continue
        relative = path.relative_to(source_dir)
        files.append(
            OrgFile(
                name=path.name,
                file_path=path,
                metadata_directory=relative.parts[0] if len(relative.parts) > 1 else "",
                relative_path=relative.as_posix(),
            ),
        )
    return files


def group_by_directory(files: list[OrgFile]) -> dict[str, list[OrgFile]]:
    grouped: dict[str, list[OrgFile]] = {}
    for org_file in files:
        grouped.setdefault(org_file.metadata_directory, []).append(org_file)
    return grouped
