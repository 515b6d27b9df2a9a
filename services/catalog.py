"""Package descriptor parsing and the local catalog folder reader."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable

from services.dependencies import And, DependencyNode, ExternalProbe, Not, Or, Predicate
from services.facts import EXTERNAL_DETECTION_KEY, PNP_ID_KEY
from services.packages import Package, build_package, parse_success_codes


@dataclass(frozen=True)
class CatalogEntry:
    package: Package
    dependencies: tuple[DependencyNode, ...]


class CatalogError(RuntimeError):
    pass


def parse_dependencies(element: ET.Element | None) -> tuple[DependencyNode, ...]:
    """Translate a ``<Dependencies>`` element into typed dependency nodes."""

    if element is None:
        return ()
    return tuple(_parse_node(child) for child in element)


def _parse_node(element: ET.Element) -> DependencyNode:
    tag = element.tag
    if tag == "Not":
        return Not()
    if tag == "And":
        return And(tuple(_parse_node(child) for child in element))
    if tag == "Or":
        return Or(tuple(_parse_node(child) for child in element))
    if tag == EXTERNAL_DETECTION_KEY:
        codes = parse_success_codes(element.get("rc", "0")) or frozenset({0})
        return ExternalProbe((element.text or "").strip(), codes)
    if tag.startswith("_"):
        return _parse_leaf(element)
    # Composite kinds nobody taught us about still combine like Or.
    return Or(tuple(_parse_node(child) for child in element), kind=tag)


def _parse_leaf(element: ET.Element) -> DependencyNode:
    values = [_leaf_value(element.tag, child.text) for child in element if (child.text or "").strip()]
    if not values:
        return Predicate(element.tag, _leaf_value(element.tag, element.text))
    if len(values) == 1:
        return Predicate(element.tag, values[0])
    return Or(tuple(Predicate(element.tag, value) for value in values))


def _leaf_value(key: str, text: str | None) -> str:
    value = (text or "").strip()
    if key == PNP_ID_KEY:
        return value.upper()
    return value


def parse_package_descriptor(
    xml_text: str,
    *,
    category: str | None = None,
    source_url: str = "",
) -> CatalogEntry:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise CatalogError(f"Invalid package descriptor: {exc}") from exc
    if root.tag != "Package":
        raise CatalogError(f"Unexpected descriptor root <{root.tag}>")
    install = root.find("Install")
    installer_file = root.find("Files/Installer/File")
    fields = {
        "id": root.get("id"),
        "category": category or _text(root, "Category") or root.get("category"),
        "title": _text(root, "Title/Desc") or root.get("name"),
        "version": root.get("version"),
        "vendor": _text(root, "Vendor"),
        "severity": _attr(root, "Severity", "type"),
        "reboot_type": _attr(root, "Reboot", "type"),
        "source_url": source_url,
        "extract_command": _text(root, "ExtractCommand"),
        "file_name": _text(installer_file, "Name"),
        "file_size": _text(installer_file, "Size"),
        "file_checksum": _text(installer_file, "CRC"),
        "install_type": install.get("type") if install is not None else None,
        "success_codes": install.get("rc") if install is not None else None,
        "inf_file": _attr(install, "INFCmd", "INFfile"),
        "install_command": _text(install, "Cmdline"),
    }
    try:
        package = build_package(fields)
    except ValueError as exc:
        raise CatalogError(str(exc)) from exc
    return CatalogEntry(package, parse_dependencies(root.find("Dependencies")))


def _text(element: ET.Element | None, path: str) -> str | None:
    if element is None:
        return None
    found = element.find(path)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _attr(element: ET.Element | None, path: str, name: str) -> str | None:
    if element is None:
        return None
    found = element.find(path)
    if found is None:
        return None
    return found.get(name)


class FileCatalog:
    """Reads package descriptors from a local catalog folder.

    Packages come back in file-name order, which is also the order they are
    installed in.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def load(self) -> list[CatalogEntry]:
        if not self._root.is_dir():
            raise CatalogError(f"Catalog folder not found: {self._root}")
        entries: list[CatalogEntry] = []
        seen: set[str] = set()
        for descriptor in sorted(self._descriptors(), key=lambda p: p.name.lower()):
            xml_text = descriptor.read_text(encoding="utf-8")
            entry = parse_package_descriptor(xml_text)
            entry = CatalogEntry(self._with_payload_url(descriptor, entry.package), entry.dependencies)
            if entry.package.id in seen:
                raise CatalogError(f"Duplicate package ID {entry.package.id} in {descriptor.name}")
            seen.add(entry.package.id)
            entries.append(entry)
        return entries

    def _descriptors(self) -> Iterable[Path]:
        return (path for path in self._root.glob("*.xml") if path.is_file())

    def _with_payload_url(self, descriptor: Path, package: Package) -> Package:
        if not package.extract.file_name:
            return package
        url = (descriptor.parent / package.extract.file_name).resolve().as_uri()
        return replace(package, source_url=url)
