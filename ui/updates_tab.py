"""Updates tab UI for resolving, downloading and installing vendor packages."""
from __future__ import annotations

from typing import Callable, Iterable, List

from PySide6.QtCore import Qt, QThreadPool
from PySide6.QtGui import QColor
from PySide6.QtWidgets import (
    QAbstractItemView,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QMessageBox,
    QProgressBar,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from services.downloads import DownloadReport
from services.installer import InstallResult
from services.packages import Package
from services.updates import UpdateService
from ui.settings_dialog import SettingsDialog
from ui.workers import ServiceWorker
from update_deployer.user_settings import SettingsStore, UserSettings

LogCallback = Callable[[str], None]

COLUMNS = ["Select", "ID", "Title", "Category", "Version", "Severity", "Applicable", "Installed"]


class UpdatesTab(QWidget):
    def __init__(
        self,
        log_callback: LogCallback,
        thread_pool: QThreadPool,
        *,
        settings: UserSettings | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        super().__init__()
        self._log = log_callback
        self._thread_pool = thread_pool
        self._settings_store = settings_store or SettingsStore()
        self._settings = settings or self._settings_store.load()
        self._refresh_service()
        self._packages: list[Package] = []
        self._workers: set[ServiceWorker] = set()
        self._busy = False
        self._build_ui()

    def _refresh_service(self) -> None:
        self._service = UpdateService(self._settings, log_callback=self._log)

    def _track_worker(self, worker: ServiceWorker) -> None:
        self._workers.add(worker)
        worker.signals.finished.connect(lambda *_: self._workers.discard(worker))
        worker.signals.error.connect(lambda *_: self._workers.discard(worker))

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)

        button_row = QHBoxLayout()
        self._btn_scan = QPushButton("Scan Catalog")
        self._btn_download = QPushButton("Download Selected")
        self._btn_install = QPushButton("Install Selected")
        self._btn_settings = QPushButton("Settings")
        self._btn_select_pending = QPushButton("Select Pending")
        self._btn_select_none = QPushButton("Select None")
        for btn in (self._btn_scan, self._btn_download, self._btn_install):
            btn.setMinimumWidth(150)
        button_row.addWidget(self._btn_scan)
        button_row.addWidget(self._btn_download)
        button_row.addWidget(self._btn_install)
        button_row.addWidget(self._btn_settings)
        button_row.addStretch()
        button_row.addWidget(self._btn_select_pending)
        button_row.addWidget(self._btn_select_none)
        layout.addLayout(button_row)

        self._table = QTableWidget(0, len(COLUMNS), self)
        self._table.setHorizontalHeaderLabels(COLUMNS)
        self._table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self._table.setAlternatingRowColors(True)
        self._table.verticalHeader().setVisible(False)
        header = self._table.horizontalHeader()
        header.setStretchLastSection(True)
        for column in range(len(COLUMNS)):
            mode = QHeaderView.ResizeMode.Stretch if column == 2 else QHeaderView.ResizeMode.ResizeToContents
            header.setSectionResizeMode(column, mode)
        layout.addWidget(self._table)

        status_row = QHBoxLayout()
        self._status = QLabel("Idle")
        self._progress = QProgressBar()
        self._progress.setRange(0, 1)
        self._progress.setValue(0)
        status_row.addWidget(self._status)
        status_row.addWidget(self._progress, 1)
        layout.addLayout(status_row)

        self._btn_scan.clicked.connect(self._start_scan)
        self._btn_download.clicked.connect(lambda: self._start_operation("download"))
        self._btn_install.clicked.connect(lambda: self._start_operation("install"))
        self._btn_settings.clicked.connect(self._open_settings)
        self._btn_select_pending.clicked.connect(self._select_pending)
        self._btn_select_none.clicked.connect(lambda: self._set_all(Qt.Unchecked))

    def _start_scan(self) -> None:
        if self._busy:
            return
        self._refresh_service()
        self._set_busy(True, "Resolving catalog...")
        self._log("Resolving catalog packages...")
        worker = ServiceWorker(lambda: self._service.resolve(refresh=True))
        worker.signals.finished.connect(self._handle_scan_results)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _handle_scan_results(self, packages: Iterable[Package]) -> None:
        self._packages = list(packages)
        self._populate_table()
        pending = self._service.pending(self._packages)
        self._log(f"Catalog resolved. {len(self._packages)} package(s), {len(pending)} need action.")
        for warning in self._service.last_warnings:
            self._log(f"[WARN] {warning}")
        self._set_busy(False, "Idle")

    def _start_operation(self, op: str) -> None:
        if self._busy:
            QMessageBox.information(self, "In Progress", "Wait for the current operation to finish.")
            return
        selected = self._selected_packages()
        if not selected:
            QMessageBox.information(self, "No Selection", "Select at least one package.")
            return
        action = self._service.download if op == "download" else self._service.install
        self._set_busy(True, f"Running {op}...")
        self._log(f"Running {op} for {len(selected)} package(s)...")
        worker = ServiceWorker(action, selected, report_progress=True)
        worker.signals.progress.connect(self._handle_progress)
        worker.signals.finished.connect(lambda result, op=op: self._handle_operation_results(op, result))
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _handle_progress(self, completed: int, total: int, message: str) -> None:
        self._progress.setRange(0, max(total, 1))
        self._progress.setValue(completed)
        self._status.setText(message)

    def _handle_operation_results(self, op: str, result: object) -> None:
        if isinstance(result, DownloadReport):
            self._log(
                f"Download finished: {len(result.succeeded)} fetched, "
                f"{len(result.skipped)} already current, {len(result.failed)} failed."
            )
            for failure in result.failed:
                self._log(f"[FAIL] download :: {failure.url} -> {failure.reason}")
        elif isinstance(result, list):
            self._log_install_results(result)
            self._packages = self._service.refresh_install_state(self._packages)
            self._populate_table()
        self._set_busy(False, "Idle")

    def _log_install_results(self, results: List[InstallResult]) -> None:
        needs_restart = False
        for item in results:
            status = "OK" if item.success else "FAIL"
            self._log(f"[{status}] install :: {item.package.title or item.package.id} -> {item.message}")
            if item.success and item.bios is not None and item.bios.action_needed is not None:
                needs_restart = True
        if needs_restart:
            QMessageBox.information(self, "Firmware Updated", "A firmware update is pending. Restart or shut down to finish.")

    def _populate_table(self) -> None:
        self._table.setRowCount(len(self._packages))
        for row, package in enumerate(self._packages):
            checkbox = QTableWidgetItem()
            checkbox.setFlags(Qt.ItemIsSelectable | Qt.ItemIsUserCheckable | Qt.ItemIsEnabled)
            checkbox.setCheckState(Qt.Checked if self._is_wanted(package) else Qt.Unchecked)
            checkbox.setData(Qt.UserRole, row)
            self._table.setItem(row, 0, checkbox)
            version = package.version
            if package.detected_version:
                version = f"{package.version} (had {package.detected_version})"
            values = [
                package.id,
                package.title,
                package.category,
                version,
                package.severity.value,
                "Yes" if package.is_applicable else "No",
                "Yes" if package.is_installed else "No",
            ]
            for column, value in enumerate(values, start=1):
                item = QTableWidgetItem(value)
                if column >= 4:
                    item.setTextAlignment(Qt.AlignCenter)
                self._table.setItem(row, column, item)
            self._apply_row_colors(row, package)

    def _apply_row_colors(self, row: int, package: Package) -> None:
        applicable = self._table.item(row, 6)
        installed = self._table.item(row, 7)
        if applicable:
            applicable.setForeground(QColor("#22c55e" if package.is_applicable else "#9ca3af"))
        if installed:
            installed.setForeground(QColor("#22c55e" if package.is_installed else "#ef4444" if package.needs_action else "#9ca3af"))

    def _is_wanted(self, package: Package) -> bool:
        return package in self._service.pending([package])

    def _selected_packages(self) -> list[Package]:
        selections: list[Package] = []
        for row in range(self._table.rowCount()):
            item = self._table.item(row, 0)
            if item and item.checkState() == Qt.Checked:
                idx = item.data(Qt.UserRole)
                if isinstance(idx, int) and 0 <= idx < len(self._packages):
                    selections.append(self._packages[idx])
        return selections

    def _select_pending(self) -> None:
        for row in range(self._table.rowCount()):
            item = self._table.item(row, 0)
            if item:
                wanted = self._is_wanted(self._packages[row])
                item.setCheckState(Qt.Checked if wanted else Qt.Unchecked)

    def _set_all(self, state: Qt.CheckState) -> None:
        for row in range(self._table.rowCount()):
            item = self._table.item(row, 0)
            if item:
                item.setCheckState(state)

    def _set_busy(self, busy: bool, status: str) -> None:
        self._busy = busy
        self._status.setText(status)
        for button in (
            self._btn_scan,
            self._btn_download,
            self._btn_install,
            self._btn_settings,
            self._btn_select_pending,
            self._btn_select_none,
        ):
            button.setEnabled(not busy)
        if not busy:
            self._progress.setRange(0, 1)
            self._progress.setValue(0)

    def _handle_error(self, message: str) -> None:
        self._set_busy(False, "Idle")
        self._log(f"[ERROR] {message}")

    def _open_settings(self) -> None:
        dialog = SettingsDialog(self._settings, self._settings_store, self)
        if dialog.exec():
            self._refresh_service()
            self._log("Settings saved.")
