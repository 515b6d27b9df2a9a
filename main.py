#!/usr/bin/env python3
"""Launch the update deployer window, or run unattended from the console."""
from __future__ import annotations

import argparse
import sys
from typing import Sequence

from services.catalog import CatalogError
from services.dependencies import ProbeExecutionError
from services.privilege import is_admin, relaunch_as_admin
from services.updates import UpdateService
from update_deployer.user_settings import SettingsStore, UserSettings


def run_unattended(settings: UserSettings, *, download_only: bool = False) -> int:
    if sys.platform != "win32" and not download_only:
        print("[ERROR] Installing updates is only supported on Windows.")
        return 3
    service = UpdateService(settings, log_callback=print)
    try:
        packages = service.resolve(refresh=True)
    except (CatalogError, ProbeExecutionError) as exc:
        print(f"[ERROR] {exc}")
        return 2
    pending = service.pending(packages)
    print(f"{len(packages)} package(s) in catalog, {len(pending)} need action.")
    for package in pending:
        print(f"  {package.id:<12} {package.severity.value:<12} {package.version:<14} {package.title}")
    if not pending:
        return 0
    report = service.download(pending, progress_callback=_print_progress)
    if download_only:
        return 0 if report.ok else 1
    unattended = [package for package in pending if package.install.unattended]
    skipped = len(pending) - len(unattended)
    if skipped:
        print(f"[WARN] {skipped} package(s) need an interactive installer and were skipped.")
    results = service.install(unattended, progress_callback=_print_progress)
    failures = [result for result in results if not result.success]
    return 1 if failures or not report.ok else 0


def _print_progress(completed: int, total: int, message: str) -> None:
    print(f"[{completed}/{total}] {message}")


def run_gui(settings_store: SettingsStore) -> int:
    from PySide6.QtCore import QObject, Qt, QThreadPool, Signal
    from PySide6.QtWidgets import QApplication, QMainWindow, QPlainTextEdit, QSplitter

    from ui.updates_tab import UpdatesTab

    class LogBridge(QObject):
        message = Signal(str)

    app = QApplication(sys.argv)
    window = QMainWindow()
    window.setWindowTitle("Update Deployer")
    window.resize(1100, 700)
    log_view = QPlainTextEdit()
    log_view.setReadOnly(True)
    bridge = LogBridge()
    bridge.message.connect(log_view.appendPlainText)
    tab = UpdatesTab(bridge.message.emit, QThreadPool.globalInstance(), settings_store=settings_store)
    splitter = QSplitter(Qt.Vertical)
    splitter.addWidget(tab)
    splitter.addWidget(log_view)
    splitter.setStretchFactor(0, 3)
    window.setCentralWidget(splitter)
    window.show()
    if not is_admin():
        bridge.message.emit("[WARN] Not running elevated; driver and firmware installs will prompt for consent.")
    return app.exec()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve, download and install vendor update packages.")
    parser.add_argument("--unattended", action="store_true", help="Run without a window and install every pending package")
    parser.add_argument("--download-only", action="store_true", help="With --unattended, stop after downloading")
    parser.add_argument("--catalog", help="Catalog folder with package descriptor XML files")
    parser.add_argument("--proxy", help="Proxy URL for downloads")
    parser.add_argument("--strict", action="store_true", help="Treat unknown dependency checks as not met")
    parser.add_argument("--force", action="store_true", help="Download payloads even when already present")
    parser.add_argument("--settings", help="Path to an alternate settings JSON file")
    parser.add_argument("--elevate", action="store_true", help="Relaunch with administrator rights first")
    args = parser.parse_args(argv)

    if args.elevate and not is_admin():
        relaunch_as_admin()
        return 0

    store = SettingsStore(args.settings) if args.settings else SettingsStore()
    if not args.unattended:
        return run_gui(store)
    settings = store.load()
    if args.catalog:
        settings.catalog_root = args.catalog
    if args.proxy:
        settings.proxy = args.proxy
    if args.strict:
        settings.strict_dependencies = True
    if args.force:
        settings.force_download = True
    return run_unattended(settings, download_only=args.download_only)


if __name__ == "__main__":
    sys.exit(main())
