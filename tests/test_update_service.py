from __future__ import annotations

from pathlib import Path

import pytest

from services.catalog import CatalogEntry, CatalogError
from services.dependencies import Not, Predicate, ProbeExecutionError
from services.downloads import DownloadManager
from services.facts import FactSnapshot
from services.history import HistoryStore, ResultCache
from services.packages import build_package
from services.updates import UpdateService
from update_deployer.user_settings import UserSettings


class FakeCatalog:
    def __init__(self, entries: list[CatalogEntry]) -> None:
        self.entries = entries
        self.loads = 0

    def load(self) -> list[CatalogEntry]:
        self.loads += 1
        return list(self.entries)


def _entry(package_id: str, *dependencies, severity: str = "1", version: str = "1.0") -> CatalogEntry:
    package = build_package({"id": package_id, "title": package_id, "version": version, "severity": severity})
    return CatalogEntry(package, tuple(dependencies))


def _service(tmp_path: Path, catalog: FakeCatalog, settings: UserSettings | None = None, **kwargs) -> UpdateService:
    facts = FactSnapshot.from_mapping({"_OS": "WIN11", "_Bios": "N2JET85W"})
    return UpdateService(
        settings or UserSettings(),
        catalog=catalog,
        facts_provider=lambda: facts,
        probe=kwargs.pop("probe", lambda command: 0),
        history=HistoryStore(tmp_path / "history.json"),
        cache=ResultCache(tmp_path / "cache"),
        downloads=DownloadManager(tmp_path / "packages"),
        **kwargs,
    )


def test_resolve_stamps_applicability(tmp_path: Path) -> None:
    catalog = FakeCatalog(
        [
            _entry("win11", Predicate("_OS", "WIN11")),
            _entry("win10", Predicate("_OS", "WIN10")),
            _entry("not-old-bios", Not(), Predicate("_Bios", "N2JET99")),
            _entry("no-deps"),
            _entry("unknown-key", Predicate("_Camera", "IMX")),
        ]
    )
    service = _service(tmp_path, catalog)

    packages = {package.id: package for package in service.resolve(refresh=True)}

    assert packages["win11"].is_applicable
    assert not packages["win10"].is_applicable
    assert packages["not-old-bios"].is_applicable
    assert packages["no-deps"].is_applicable
    assert packages["unknown-key"].is_applicable
    assert service.last_facts is not None


def test_strict_mode_rejects_unknown_keys(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("unknown-key", Predicate("_Camera", "IMX"))])
    service = _service(tmp_path, catalog, UserSettings(strict_dependencies=True))

    assert not service.resolve(refresh=True)[0].is_applicable


def test_resolve_preserves_catalog_order(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("c"), _entry("a"), _entry("b")])
    service = _service(tmp_path, catalog)
    assert [package.id for package in service.resolve(refresh=True)] == ["c", "a", "b"]


def test_history_marks_installed_packages(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("done", version="2.0"), _entry("todo")])
    service = _service(tmp_path, catalog)
    service.history.record(catalog.entries[0].package, success=True)

    packages = service.resolve(refresh=True)

    assert [package.is_installed for package in packages] == [True, False]
    assert [package.id for package in service.pending(packages)] == ["todo"]


def test_pending_respects_optional_setting(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("critical", severity="1"), _entry("optional", severity="3")])
    with_optional = _service(tmp_path, catalog)
    without_optional = _service(tmp_path, catalog, UserSettings(include_optional=False))

    packages = with_optional.resolve(refresh=True)

    assert [package.id for package in with_optional.pending(packages)] == ["critical", "optional"]
    assert [package.id for package in without_optional.pending(packages)] == ["critical"]


def test_cached_resolution_skips_catalog_but_reapplies_history(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("pkg")])
    service = _service(tmp_path, catalog)
    first = service.resolve(tag="t14")
    assert catalog.loads == 1
    assert not first[0].is_installed

    service.history.record(first[0], success=True)
    second = service.resolve(tag="t14")

    assert catalog.loads == 1
    assert second[0].is_installed
    service.resolve(tag="t14", refresh=True)
    assert catalog.loads == 2


def test_cache_disabled_always_reads_catalog(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("pkg")])
    service = _service(tmp_path, catalog, UserSettings(use_result_cache=False))
    service.resolve(tag="t14")
    service.resolve(tag="t14")

    assert catalog.loads == 2
    assert not (tmp_path / "cache").exists()


def test_probe_start_failure_aborts_resolution(tmp_path: Path) -> None:
    def broken_probe(command: str) -> int:
        raise ProbeExecutionError("cannot start")

    catalog = FakeCatalog([_entry("pkg", Predicate("_ExternalDetection", "check.cmd"))])
    service = _service(tmp_path, catalog, probe=broken_probe)

    with pytest.raises(ProbeExecutionError):
        service.resolve(refresh=True)


def test_missing_catalog_folder_setting(tmp_path: Path) -> None:
    service = UpdateService(
        UserSettings(),
        history=HistoryStore(tmp_path / "history.json"),
        cache=ResultCache(tmp_path / "cache"),
        downloads=DownloadManager(tmp_path / "packages"),
    )
    with pytest.raises(CatalogError, match="not configured"):
        service.resolve(refresh=True)


def test_download_failures_become_warnings(tmp_path: Path) -> None:
    catalog = FakeCatalog([_entry("pkg")])
    messages: list[str] = []
    service = _service(tmp_path, catalog, log_callback=messages.append)

    report = service.download(service.resolve(refresh=True))

    assert not report.ok
    assert service.last_warnings and "No download URL" in service.last_warnings[0]
    assert messages[-1].startswith("[WARN]")


def test_corrupt_history_only_warns_during_resolve(tmp_path: Path) -> None:
    (tmp_path / "history.json").write_text("{not json", encoding="utf-8")
    catalog = FakeCatalog([_entry("pkg"), _entry("other")])
    messages: list[str] = []
    service = _service(tmp_path, catalog, log_callback=messages.append)

    packages = service.resolve(refresh=True)

    assert [package.id for package in packages] == ["pkg", "other"]
    assert not any(package.is_installed for package in packages)
    assert len(service.pending(packages)) == 2
    assert "Cannot read install history" in service.last_warnings[0]
    assert messages[0].startswith("[WARN]")


def test_unreadable_history_only_warns_when_refreshing_state(tmp_path: Path) -> None:
    (tmp_path / "history.json").mkdir()
    service = _service(tmp_path, FakeCatalog([]))
    package = _entry("pkg").package

    refreshed = service.refresh_install_state([package])

    assert [item.is_installed for item in refreshed] == [False]
    assert service.last_warnings
