"""Install history ledger and the advisory resolution cache."""
from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from services.packages import (
    CommandLine,
    DriverInf,
    ExtractInfo,
    InstallInfo,
    InstallType,
    Package,
    Severity,
    Unsupported,
    Version,
)
from update_deployer.constants import IMMUTABLE_CONFIG
from update_deployer.paths import get_data_directory


@dataclass(frozen=True)
class HistoryItem:
    id: str
    category: str
    title: str
    version: str
    is_installed: bool
    updated_at: datetime
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryItem":
        return cls(
            id=str(data["id"]),
            category=str(data.get("category", "")),
            title=str(data.get("title", "")),
            version=str(data.get("version", "")),
            is_installed=bool(data.get("is_installed", False)),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            error_message=str(data.get("error_message", "")),
        )

    @classmethod
    def for_package(cls, package: Package, *, success: bool, error_message: str = "") -> "HistoryItem":
        return cls(
            id=package.id,
            category=package.category,
            title=package.title,
            version=package.version,
            is_installed=success,
            updated_at=datetime.now(timezone.utc),
            error_message="" if success else error_message,
        )


class HistoryStoreError(RuntimeError):
    """The ledger could not be read or written."""


class HistoryStore:
    """JSON ledger keyed by package ID. Single writer only."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else get_data_directory() / IMMUTABLE_CONFIG.storage.history_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[HistoryItem]:
        self._ensure_exists()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "[]")
            return [HistoryItem.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise HistoryStoreError(f"Cannot read install history {self._path}: {exc}") from exc

    def get(self, package_id: str) -> HistoryItem | None:
        for item in self.load():
            if item.id == package_id:
                return item
        return None

    def save(self, items: Iterable[HistoryItem]) -> None:
        payload = [item.to_dict() for item in items]
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            temp_path.replace(self._path)
        except OSError as exc:
            raise HistoryStoreError(f"Cannot write install history {self._path}: {exc}") from exc

    def upsert(self, item: HistoryItem) -> None:
        items = self.load()
        for index, existing in enumerate(items):
            if existing.id == item.id:
                items[index] = item
                break
        else:
            items.append(item)
        self.save(items)

    def record(self, package: Package, *, success: bool, message: str = "") -> HistoryItem:
        item = HistoryItem.for_package(package, success=success, error_message=message)
        self.upsert(item)
        return item

    def _ensure_exists(self) -> None:
        if self._path.exists():
            return
        self.save([])


def apply_history(packages: Iterable[Package], history: Iterable[HistoryItem]) -> list[Package]:
    """Stamp ``is_installed``/``detected_version`` from prior install outcomes."""

    by_id = {item.id: item for item in history}
    stamped: list[Package] = []
    for package in packages:
        item = by_id.get(package.id)
        if item is None:
            stamped.append(package.with_install_state(False, None))
            continue
        installed = item.is_installed and _at_least(item.version, package.version)
        detected = item.version if item.is_installed and item.version != package.version else None
        stamped.append(package.with_install_state(installed, detected))
    return stamped


def _at_least(recorded: str, wanted: str) -> bool:
    recorded_version = Version.try_parse(recorded)
    wanted_version = Version.try_parse(wanted)
    if recorded_version is None or wanted_version is None:
        return recorded == wanted
    return recorded_version >= wanted_version


def package_to_dict(package: Package) -> dict[str, Any]:
    install_type = package.install.install_type
    return {
        "id": package.id,
        "category": package.category,
        "title": package.title,
        "version": package.version,
        "vendor": package.vendor,
        "severity": package.severity.value,
        "reboot_type": package.reboot_type,
        "source_url": package.source_url,
        "extract": asdict(package.extract),
        "install": {
            "unattended": package.install.unattended,
            "install_type": {"kind": type(install_type).__name__, "tag": install_type.tag},
            "success_codes": sorted(package.install.success_codes),
            "driver_inf_file": package.install.driver_inf_file,
            "install_command": package.install.install_command,
        },
        "is_applicable": package.is_applicable,
        "is_installed": package.is_installed,
        "detected_version": package.detected_version,
    }


def package_from_dict(data: dict[str, Any]) -> Package:
    install = data["install"]
    return Package(
        id=data["id"],
        category=data["category"],
        title=data["title"],
        version=data["version"],
        vendor=data["vendor"],
        severity=Severity(data["severity"]),
        reboot_type=int(data["reboot_type"]),
        source_url=data["source_url"],
        extract=ExtractInfo(**data["extract"]),
        install=InstallInfo(
            unattended=bool(install["unattended"]),
            install_type=_install_type_from_dict(install["install_type"]),
            success_codes=frozenset(int(code) for code in install["success_codes"]),
            driver_inf_file=install["driver_inf_file"],
            install_command=install["install_command"],
        ),
        is_applicable=bool(data["is_applicable"]),
        is_installed=bool(data["is_installed"]),
        detected_version=data.get("detected_version"),
    )


def _install_type_from_dict(data: dict[str, str]) -> InstallType:
    kind = data.get("kind")
    if kind == "CommandLine":
        return CommandLine()
    if kind == "DriverInf":
        return DriverInf()
    return Unsupported(data.get("tag", ""))


class ResultCache:
    """Resolved package lists keyed by tag. Purely a shortcut, never trusted for decisions."""

    def __init__(self, directory: Path | str | None = None) -> None:
        self._directory = Path(directory) if directory else get_data_directory() / IMMUTABLE_CONFIG.storage.cache_dir

    def get(self, tag: str) -> list[Package] | None:
        path = self._path_for(tag)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return [package_from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def put(self, tag: str, packages: Iterable[Package]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = [package_to_dict(package) for package in packages]
        self._path_for(tag).write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def delete(self, tag: str) -> None:
        path = self._path_for(tag)
        if path.exists():
            path.unlink()

    def _path_for(self, tag: str) -> Path:
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", tag).lower() or "default"
        return self._directory / f"{safe}.json"
