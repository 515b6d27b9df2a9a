"""Normalized description of vendor catalog packages."""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from functools import total_ordering
from typing import Iterable, Mapping

from update_deployer.constants import IMMUTABLE_CONFIG

VERSION_FIELDS = 4


@total_ordering
@dataclass(frozen=True)
class Version:
    parts: tuple[int, int, int, int]

    @classmethod
    def parse(cls, text: str | None) -> "Version":
        if text is None or not text.strip():
            raise ValueError("Empty version string")
        raw = text.strip().split(".")
        if len(raw) > VERSION_FIELDS:
            raise ValueError(f"Too many version fields: {text}")
        if not all(re.fullmatch(r"\d+", part) for part in raw):
            raise ValueError(f"Non-numeric version: {text}")
        numbers = [int(part) for part in raw]
        while len(numbers) < VERSION_FIELDS:
            numbers.append(0)
        return cls(tuple(numbers))  # type: ignore[arg-type]

    @classmethod
    def try_parse(cls, text: str | None) -> "Version | None":
        try:
            return cls.parse(text)
        except ValueError:
            return None

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.parts < other.parts

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.parts)


class Severity(str, Enum):
    CRITICAL = "Critical"
    RECOMMENDED = "Recommended"
    OPTIONAL = "Optional"

    @classmethod
    def parse(cls, value: str | int | None) -> "Severity":
        # Vendor descriptors use 1/2/3 as often as names.
        numeric = {"1": cls.CRITICAL, "2": cls.RECOMMENDED, "3": cls.OPTIONAL}
        text = str(value).strip() if value is not None else ""
        if text in numeric:
            return numeric[text]
        for member in cls:
            if member.value.lower() == text.lower():
                return member
        return cls.OPTIONAL


@dataclass(frozen=True)
class CommandLine:
    tag: str = "cmd"


@dataclass(frozen=True)
class DriverInf:
    tag: str = "inf"


@dataclass(frozen=True)
class Unsupported:
    tag: str


InstallType = CommandLine | DriverInf | Unsupported


def parse_install_type(tag: str | None) -> InstallType:
    cleaned = (tag or "").strip()
    if cleaned.lower() == "cmd":
        return CommandLine()
    if cleaned.lower() == "inf":
        return DriverInf()
    return Unsupported(cleaned)


@dataclass(frozen=True)
class ExtractInfo:
    command: str
    file_name: str
    file_size: int
    file_checksum: str


@dataclass(frozen=True)
class InstallInfo:
    unattended: bool
    install_type: InstallType
    success_codes: frozenset[int] = frozenset()
    driver_inf_file: str = ""
    install_command: str = ""


@dataclass(frozen=True)
class Package:
    id: str
    category: str
    title: str
    version: str
    vendor: str
    severity: Severity
    reboot_type: int
    source_url: str
    extract: ExtractInfo
    install: InstallInfo
    is_applicable: bool = False
    is_installed: bool = False
    detected_version: str | None = None

    @property
    def parsed_version(self) -> Version | None:
        return Version.try_parse(self.version)

    @property
    def is_firmware(self) -> bool:
        return is_firmware_category(self.category)

    @property
    def needs_action(self) -> bool:
        return self.is_applicable and not self.is_installed

    def with_applicability(self, applicable: bool) -> "Package":
        return replace(self, is_applicable=applicable)

    def with_install_state(self, installed: bool, detected_version: str | None) -> "Package":
        return replace(self, is_installed=installed, detected_version=detected_version)


def is_firmware_category(category: str | None) -> bool:
    """Whole-name, case-insensitive match against the configured BIOS categories."""
    if not category:
        return False
    wanted = category.strip().lower()
    return any(name.lower() == wanted for name in IMMUTABLE_CONFIG.firmware.categories)


def parse_success_codes(value: str | Iterable[int] | None) -> frozenset[int]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        codes: set[int] = set()
        for token in re.split(r"[,;\s]+", value.strip()):
            if not token:
                continue
            try:
                codes.add(int(token))
            except ValueError:
                continue
        return frozenset(codes)
    return frozenset(int(code) for code in value)


def is_unattended(reboot_type: int, category: str, install_type: InstallType) -> bool:
    if reboot_type in IMMUTABLE_CONFIG.install.unattended_reboot_types:
        return True
    if is_firmware_category(category):
        return True
    return isinstance(install_type, DriverInf)


def build_package(fields: Mapping[str, object]) -> Package:
    """Build a package from flat descriptor fields.

    Recognized keys: ``id``, ``category``, ``title``, ``version``,
    ``vendor``, ``severity``, ``reboot_type``, ``source_url``,
    ``extract_command``, ``file_name``, ``file_size``, ``file_checksum``,
    ``install_type``, ``success_codes``, ``inf_file``, ``install_command``.
    """

    package_id = str(fields.get("id") or "").strip()
    if not package_id:
        raise ValueError("Package descriptor has no ID")
    category = str(fields.get("category") or "")
    reboot_type = _as_int(fields.get("reboot_type"), default=0)
    install_type = parse_install_type(_as_text(fields.get("install_type")))
    extract = ExtractInfo(
        command=_as_text(fields.get("extract_command")),
        file_name=_as_text(fields.get("file_name")),
        file_size=_as_int(fields.get("file_size"), default=0),
        file_checksum=_as_text(fields.get("file_checksum")).lower(),
    )
    install = InstallInfo(
        unattended=is_unattended(reboot_type, category, install_type),
        install_type=install_type,
        success_codes=parse_success_codes(fields.get("success_codes")),  # type: ignore[arg-type]
        driver_inf_file=_as_text(fields.get("inf_file")),
        install_command=_as_text(fields.get("install_command")),
    )
    return Package(
        id=package_id,
        category=category,
        title=_as_text(fields.get("title")),
        version=_as_text(fields.get("version")),
        vendor=_as_text(fields.get("vendor")),
        severity=Severity.parse(fields.get("severity")),  # type: ignore[arg-type]
        reboot_type=reboot_type,
        source_url=_as_text(fields.get("source_url")),
        extract=extract,
        install=install,
    )


def _as_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: object, *, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default
