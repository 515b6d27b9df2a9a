"""Settings dialog for catalog, download and resolution options."""
from __future__ import annotations

from pathlib import Path

from PySide6.QtWidgets import (
    QCheckBox,
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLineEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from update_deployer.user_settings import SettingsStore, UserSettings


class SettingsDialog(QDialog):
    def __init__(self, settings: UserSettings, store: SettingsStore, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._store = store
        self.setWindowTitle("Update Settings")
        self.setMinimumWidth(560)
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        form = QFormLayout()

        self._catalog_root = QLineEdit(self._settings.catalog_root)
        form.addRow("Catalog Folder", self._make_dir_picker(self._catalog_root, "Select Catalog Folder"))

        self._download_dir = QLineEdit(self._settings.download_dir)
        self._download_dir.setPlaceholderText("Default: ProgramData\\UpdateDeployer\\packages")
        form.addRow("Download Folder", self._make_dir_picker(self._download_dir, "Select Download Folder"))

        self._proxy = QLineEdit(self._settings.proxy)
        self._proxy.setPlaceholderText("http://proxy:8080")
        form.addRow("Proxy", self._proxy)

        self._strict = QCheckBox("Treat unknown dependency checks as not met")
        self._strict.setChecked(self._settings.strict_dependencies)
        form.addRow("", self._strict)

        self._force = QCheckBox("Download again even when the payload checksum matches")
        self._force.setChecked(self._settings.force_download)
        form.addRow("", self._force)

        self._optional = QCheckBox("Include optional packages in pending selection")
        self._optional.setChecked(self._settings.include_optional)
        form.addRow("", self._optional)

        self._cache = QCheckBox("Reuse the last resolved package list")
        self._cache.setChecked(self._settings.use_result_cache)
        form.addRow("", self._cache)

        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._save)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _make_dir_picker(self, field: QLineEdit, title: str) -> QWidget:
        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(field)
        browse = QPushButton("Browse")
        browse.clicked.connect(lambda: self._browse_for_dir(field, title))
        row.addWidget(browse)
        return container

    def _browse_for_dir(self, field: QLineEdit, title: str) -> None:
        current = field.text().strip()
        start_dir = current or str(Path.home())
        path = QFileDialog.getExistingDirectory(self, title, start_dir)
        if path:
            field.setText(path)

    def _save(self) -> None:
        self._settings.catalog_root = self._catalog_root.text().strip()
        self._settings.download_dir = self._download_dir.text().strip()
        self._settings.proxy = self._proxy.text().strip()
        self._settings.strict_dependencies = self._strict.isChecked()
        self._settings.force_download = self._force.isChecked()
        self._settings.include_optional = self._optional.isChecked()
        self._settings.use_result_cache = self._cache.isChecked()
        self._store.save(self._settings)
        self.accept()
