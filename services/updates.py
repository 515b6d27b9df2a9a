"""Resolution, download and install of vendor update packages."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence

from services.catalog import CatalogEntry, CatalogError, FileCatalog
from services.dependencies import Probe, evaluate_roots
from services.downloads import DownloadManager, DownloadReport
from services.facts import FactSnapshot, collect_local_facts
from services.history import HistoryItem, HistoryStore, HistoryStoreError, ResultCache, apply_history
from services.installer import InstallOrchestrator, InstallResult
from services.packages import Package, Severity
from update_deployer.constants import IMMUTABLE_CONFIG
from update_deployer.paths import get_data_directory
from update_deployer.user_settings import UserSettings

LogCallback = Callable[[str], None]
ProgressCallback = Callable[[int, int, str], None]


class CatalogSource(Protocol):
    def load(self) -> list[CatalogEntry]:  # pragma: no cover - protocol
        ...


class UpdateService:
    def __init__(
        self,
        settings: UserSettings | None = None,
        *,
        catalog: CatalogSource | None = None,
        facts_provider: Callable[[], FactSnapshot] | None = None,
        probe: Probe | None = None,
        history: HistoryStore | None = None,
        cache: ResultCache | None = None,
        downloads: DownloadManager | None = None,
        orchestrator: InstallOrchestrator | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        self._settings = settings or UserSettings()
        self._catalog = catalog
        self._facts_provider = facts_provider or collect_local_facts
        self._probe = probe
        self._history = history or HistoryStore()
        self._cache = cache or ResultCache()
        download_dir = self._settings.download_dir.strip()
        self._downloads = downloads or DownloadManager(
            Path(download_dir) if download_dir else get_data_directory() / IMMUTABLE_CONFIG.storage.download_dir
        )
        self._log = log_callback or (lambda _message: None)
        self._orchestrator = orchestrator or InstallOrchestrator(
            self._downloads,
            self._history,
            log_callback=self._log,
            proxy=self._settings.proxy or None,
        )
        self.last_warnings: list[str] = []
        self.last_facts: FactSnapshot | None = None

    @property
    def history(self) -> HistoryStore:
        return self._history

    def resolve(self, *, tag: str | None = None, refresh: bool = False) -> list[Package]:
        """Evaluate every catalog package against this machine.

        Catalog failures propagate; no partial package list is produced.
        """

        self.last_warnings = []
        cache_tag = tag or self._cache_tag()
        if self._settings.use_result_cache and not refresh:
            cached = self._cache.get(cache_tag)
            if cached is not None:
                return apply_history(cached, self._load_history())
        entries = self._load_catalog()
        facts = self._facts_provider()
        self.last_facts = facts
        packages = self.evaluate(entries, facts)
        if self._settings.use_result_cache:
            try:
                self._cache.put(cache_tag, packages)
            except OSError as exc:
                self._warn(f"Result cache write failed: {exc}")
        return packages

    def evaluate(self, entries: Sequence[CatalogEntry], facts: FactSnapshot) -> list[Package]:
        stamped: list[Package] = []
        for entry in entries:
            applicable = evaluate_roots(
                entry.dependencies,
                facts,
                strict=self._settings.strict_dependencies,
                probe=self._probe,
            )
            stamped.append(entry.package.with_applicability(applicable))
        return apply_history(stamped, self._load_history())

    def refresh_install_state(self, packages: Iterable[Package]) -> list[Package]:
        return apply_history(packages, self._load_history())

    def pending(self, packages: Iterable[Package]) -> list[Package]:
        wanted: list[Package] = []
        for package in packages:
            if not package.needs_action:
                continue
            if package.severity is Severity.OPTIONAL and not self._settings.include_optional:
                continue
            wanted.append(package)
        return wanted

    def download(
        self,
        packages: Iterable[Package],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> DownloadReport:
        report = self._downloads.fetch_all(
            packages,
            force=self._settings.force_download,
            proxy=self._settings.proxy or None,
            progress_callback=progress_callback,
        )
        for failure in report.failed:
            self._warn(f"Download failed: {failure.url} ({failure.reason})")
        return report

    def install(
        self,
        packages: Iterable[Package],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> list[InstallResult]:
        results = self._orchestrator.install(packages, progress_callback=progress_callback)
        self.last_warnings.extend(self._orchestrator.last_warnings)
        return results

    def _load_catalog(self) -> list[CatalogEntry]:
        catalog = self._catalog
        if catalog is None:
            root = self._settings.catalog_root.strip()
            if not root:
                raise CatalogError("Catalog folder not configured")
            catalog = FileCatalog(root)
        return catalog.load()

    def _load_history(self) -> list[HistoryItem]:
        try:
            return self._history.load()
        except HistoryStoreError as exc:
            self._warn(f"{exc}; treating every package as not installed")
            return []

    def _cache_tag(self) -> str:
        root = self._settings.catalog_root.strip()
        return Path(root).name if root else "default"

    def _warn(self, message: str) -> None:
        self.last_warnings.append(message)
        self._log(f"[WARN] {message}")
