"""Metadata type catalog and ``package.xml`` manifest rendering."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from xml.etree import ElementTree as ElementBuilder

from defusedxml import ElementTree

from sf_org_source.config import SecurityPolicy
from sf_org_source.executor.errors import ValidationError
from sf_org_source.executor.validation import validate_api_version, validate_metadata_type

MANIFEST_NAMESPACE = "http://soap.sforce.com/2006/04/metadata"
WILDCARD_MEMBER = "*"

_MEMBER_NAME = re.compile(r"[A-Za-z0-9_.\-/ ]+")


@dataclass(frozen=True, slots=True)
class MetadataTypeInfo:
    """One selectable metadata type."""

    name: str
    display_name: str
    category: str


METADATA_TYPE_CATALOG: tuple[MetadataTypeInfo, ...] = (
    MetadataTypeInfo("ApexClass", "Apex Classes", "Apex"),
    MetadataTypeInfo("ApexTrigger", "Apex Triggers", "Apex"),
    MetadataTypeInfo("ApexTestSuite", "Apex Test Suites", "Apex"),
    MetadataTypeInfo("LightningComponentBundle", "Lightning Web Components", "Components"),
    MetadataTypeInfo("AuraDefinitionBundle", "Aura Components", "Components"),
    MetadataTypeInfo("CustomObject", "Custom Objects", "Objects"),
    MetadataTypeInfo("CustomField", "Custom Fields", "Objects"),
    MetadataTypeInfo("CustomMetadata", "Custom Metadata Types", "Objects"),
    MetadataTypeInfo("Flow", "Flows", "Automation"),
    MetadataTypeInfo("WorkflowRule", "Workflow Rules", "Automation"),
    MetadataTypeInfo("Layout", "Page Layouts", "UI"),
    MetadataTypeInfo("ListView", "List Views", "UI"),
    MetadataTypeInfo("FlexiPage", "Lightning Pages", "UI"),
    MetadataTypeInfo("PermissionSet", "Permission Sets", "Security"),
    MetadataTypeInfo("Profile", "Profiles", "Security"),
    MetadataTypeInfo("Role", "Roles", "Security"),
    MetadataTypeInfo("EmailTemplate", "Email Templates", "Communication"),
    MetadataTypeInfo("LetterHead", "Letterheads", "Communication"),
    MetadataTypeInfo("Report", "Reports", "Analytics"),
    MetadataTypeInfo("Dashboard", "Dashboards", "Analytics"),
    MetadataTypeInfo("ReportType", "Report Types", "Analytics"),
    MetadataTypeInfo("StaticResource", "Static Resources", "Resources"),
    MetadataTypeInfo("ContentAsset", "Content Assets", "Resources"),
    MetadataTypeInfo("RemoteSiteSetting", "Remote Site Settings", "Integration"),
    MetadataTypeInfo("NamedCredential", "Named Credentials", "Integration"),
    MetadataTypeInfo("ValidationRule", "Validation Rules", "Business Logic"),
    MetadataTypeInfo("AssignmentRule", "Assignment Rules", "Business Logic"),
    MetadataTypeInfo("AutoResponseRule", "Auto-Response Rules", "Business Logic"),
)


@dataclass(frozen=True, slots=True)
class ManifestType:
    """One ``<types>`` block: a metadata type and the members to fetch."""

    name: str
    members: tuple[str, ...] = (WILDCARD_MEMBER,)


@dataclass(frozen=True, slots=True)
class ManifestDocument:
    """Declarative list of metadata to retrieve at one API version."""

    types: tuple[ManifestType, ...]
    api_version: str

    @property
    def type_names(self) -> tuple[str, ...]:
        return tuple(entry.name for entry in self.types)


def metadata_types_by_category() -> dict[str, list[MetadataTypeInfo]]:
    """Group the catalog by category, preserving catalog order."""

    grouped: dict[str, list[MetadataTypeInfo]] = {}
    for info in METADATA_TYPE_CATALOG:
        grouped.setdefault(info.category, []).append(info)
    return grouped


def build_manifest(
    metadata_types: Iterable[str],
    *,
    api_version: str,
    policy: SecurityPolicy,
    members: Mapping[str, Iterable[str]] | None = None,
) -> ManifestDocument:
    """Validate type names and members, dropping duplicate types."""

    validate_api_version(api_version)
    custom_members = members or {}
    types: list[ManifestType] = []
    seen: set[str] = set()
    for name in metadata_types:
        validate_metadata_type(name, policy)
        if name in seen:
            continue
        seen.add(name)
        selected = tuple(custom_members.get(name, ())) or (WILDCARD_MEMBER,)
        for member in selected:
            _validate_member(member)
        types.append(ManifestType(name=name, members=selected))

    if not types:
        raise ValidationError("Manifest must list at least one metadata type", field="types")
    return ManifestDocument(types=tuple(types), api_version=api_version)


def render_manifest(document: ManifestDocument) -> str:
    """Serialize to the ``package.xml`` format understood by the Salesforce CLI."""

    package = ElementBuilder.Element("Package", xmlns=MANIFEST_NAMESPACE)
    for entry in document.types:
        types_element = ElementBuilder.SubElement(package, "types")
        for member in entry.members:
            ElementBuilder.SubElement(types_element, "members").text = member
        ElementBuilder.SubElement(types_element, "name").text = entry.name
    ElementBuilder.SubElement(package, "version").text = document.api_version
    ElementBuilder.indent(package, space="    ")
    body = ElementBuilder.tostring(package, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def write_manifest(path: Path, document: ManifestDocument) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_manifest(document), "utf-8")


def read_manifest(path: Path) -> ManifestDocument:
    """Parse a ``package.xml`` file back into a manifest document."""

    try:
        root = ElementTree.fromstring(path.read_text("utf-8"))
    except ElementTree.ParseError as error:
        raise ValueError(f"Invalid manifest XML in {path}: {error}") from error

    namespace = f"{{{MANIFEST_NAMESPACE}}}"
    if root.tag not in {"Package", f"{namespace}Package"}:
        raise ValueError(f"Expected <Package> root in {path}, got <{root.tag}>")

    def _find_all(element, name: str) -> list:
        return element.findall(f"{namespace}{name}") or element.findall(name)

    types: list[ManifestType] = []
    for types_element in _find_all(root, "types"):
        names = _find_all(types_element, "name")
        if not names or not (names[0].text or "").strip():
            raise ValueError(f"Manifest <types> block without <name> in {path}")
        members = tuple(
            (member.text or "").strip()
            for member in _find_all(types_element, "members")
            if (member.text or "").strip()
        )
        types.append(
            ManifestType(name=names[0].text.strip(), members=members or (WILDCARD_MEMBER,)),
        )

    versions = _find_all(root, "version")
    api_version = (versions[0].text or "").strip() if versions else ""
    return ManifestDocument(types=tuple(types), api_version=api_version)


def _validate_member(member: str) -> None:
    if member == WILDCARD_MEMBER:
        return
    if not isinstance(member, str) or not _MEMBER_NAME.fullmatch(member):
        raise ValidationError(f"Invalid manifest member name: {member!r}", field="members")
