"""Per-package install orchestration: download, extract, dispatch, record."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from services.bios import BiosUpdateHandler, BiosUpdateResult, to_filetime
from services.downloads import DownloadManager
from services.history import HistoryStore, HistoryStoreError
from services.packages import CommandLine, DriverInf, Package, Unsupported
from services.privilege import elevated_command, is_admin
from services.process import CommandRunner, SubprocessRunner, format_output
from services.registry import FirmwarePendingAction, FirmwarePendingStore, PersistenceWriteError
from update_deployer.constants import IMMUTABLE_CONFIG, InstallSetting

LogCallback = Callable[[str], None]
ProgressCallback = Callable[[int, int, str], None]


class InstallState(str, Enum):
    NOT_DOWNLOADED = "NotDownloaded"
    DOWNLOADED = "Downloaded"
    EXTRACTED = "Extracted"
    ATTEMPTED = "Attempted"
    INSTALLED = "Installed"
    FAILED = "Failed"


@dataclass
class InstallResult:
    package: Package
    state: InstallState
    message: str
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    bios: BiosUpdateResult | None = None
    transitions: tuple[InstallState, ...] = ()

    @property
    def success(self) -> bool:
        return self.state is InstallState.INSTALLED


def correct_install_command(command: str, settings: InstallSetting | None = None) -> str:
    corrections = (settings or IMMUTABLE_CONFIG.install).command_corrections
    for wrong, right in corrections:
        command = command.replace(wrong, right)
    return command


class InstallOrchestrator:
    """Installs packages one at a time and records every outcome in history."""

    def __init__(
        self,
        downloads: DownloadManager,
        history: HistoryStore,
        *,
        command_runner: CommandRunner | None = None,
        bios_handler: BiosUpdateHandler | None = None,
        pending_store: FirmwarePendingStore | None = None,
        admin_check: Callable[[], bool] | None = None,
        log_callback: LogCallback | None = None,
        proxy: str | None = None,
        settings: InstallSetting | None = None,
    ) -> None:
        self._downloads = downloads
        self._history = history
        self._runner = command_runner or SubprocessRunner()
        self._bios = bios_handler or BiosUpdateHandler(command_runner=self._runner)
        self._pending = pending_store or FirmwarePendingStore()
        self._is_admin = admin_check or is_admin
        self._log = log_callback or (lambda _message: None)
        self._proxy = proxy
        self._settings = settings or IMMUTABLE_CONFIG.install
        self.last_warnings: list[str] = []

    def install(
        self,
        packages: Iterable[Package],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> list[InstallResult]:
        self.last_warnings = []
        package_list = list(packages)
        total = len(package_list)
        results: list[InstallResult] = []
        for index, package in enumerate(package_list, start=1):
            result = self.install_one(package)
            results.append(result)
            if progress_callback:
                status = "Installed" if result.success else "Failed"
                progress_callback(index, total, f"{status}: {package.title or package.id}")
        return results

    def install_one(self, package: Package) -> InstallResult:
        trail = [InstallState.NOT_DOWNLOADED]
        try:
            result = self._attempt(package, trail)
        except Exception as exc:
            result = InstallResult(package, InstallState.FAILED, f"Install error: {exc}")
        result.transitions = (*trail, result.state)
        try:
            self._history.record(package, success=result.success, message=result.message)
        except HistoryStoreError as exc:
            self._warn(f"Outcome of {package.id} not recorded: {exc}")
        prefix = "[OK]" if result.success else "[FAIL]"
        self._log(f"{prefix} {package.id} {package.title} -> {result.message}")
        return result

    def _attempt(self, package: Package, trail: list[InstallState]) -> InstallResult:
        package_dir = self._downloads.package_directory(package)
        self._ensure_downloaded(package)
        if not package_dir.is_dir() or not any(package_dir.iterdir()):
            return InstallResult(
                package,
                InstallState.FAILED,
                f"Package folder {package_dir} is empty; payload missing, nothing was extracted or installed",
            )
        trail.append(InstallState.DOWNLOADED)
        self._extract(package, package_dir)
        trail.append(InstallState.EXTRACTED)

        if package.is_firmware:
            return self._install_firmware(package, package_dir, trail)
        install_type = package.install.install_type
        if isinstance(install_type, CommandLine):
            trail.append(InstallState.ATTEMPTED)
            return self._install_command(package, package_dir)
        if isinstance(install_type, DriverInf):
            trail.append(InstallState.ATTEMPTED)
            return self._install_driver(package, package_dir)
        tag = install_type.tag if isinstance(install_type, Unsupported) else str(install_type)
        return InstallResult(package, InstallState.FAILED, f"Unsupported install type '{tag}'")

    def _ensure_downloaded(self, package: Package) -> None:
        if self._downloads.target_path(package).exists():
            return
        report = self._downloads.fetch_all([package], proxy=self._proxy)
        for failure in report.failed:
            self._warn(f"Download of {package.id} failed: {failure.url} ({failure.reason})")

    def _extract(self, package: Package, package_dir: Path) -> None:
        command = package.extract.command
        if not command:
            return
        completed = self._run_shell(command, package_dir)
        if completed.returncode != 0:
            self._warn(f"Extraction of {package.id} returned {format_output(completed)}")

    def _install_command(self, package: Package, package_dir: Path) -> InstallResult:
        command = correct_install_command(package.install.install_command, self._settings)
        completed = self._run_shell(command, package_dir)
        return self._judge(package, completed, package.install.success_codes)

    def _install_driver(self, package: Package, package_dir: Path) -> InstallResult:
        command = ["pnputil", "/add-driver", package.install.driver_inf_file, "/install"]
        if not self._is_admin():
            command = elevated_command(command, cwd=package_dir)
        completed = self._runner.run(command, cwd=package_dir, env=self._package_env(package_dir))
        codes = package.install.success_codes | self._settings.driver_extra_success_codes
        return self._judge(package, completed, codes)

    def _install_firmware(self, package: Package, package_dir: Path, trail: list[InstallState]) -> InstallResult:
        outcome = self._bios.run(package_dir)
        if not outcome.was_run:
            return InstallResult(
                package,
                InstallState.FAILED,
                "No supported firmware installer found in package; BIOS update not applicable",
                bios=outcome,
            )
        trail.append(InstallState.ATTEMPTED)
        codes = package.install.success_codes or frozenset({0})
        success = outcome.exit_code in codes
        action = outcome.action_needed.value if outcome.action_needed else ""
        if success:
            self._remember_pending_action(package, outcome)
            message = f"Firmware updated; {action} required"
        else:
            message = f"Firmware update failed with exit code {outcome.exit_code}"
        return InstallResult(
            package,
            InstallState.INSTALLED if success else InstallState.FAILED,
            message,
            exit_code=outcome.exit_code,
            stdout=outcome.log_message,
            bios=outcome,
        )

    def _remember_pending_action(self, package: Package, outcome: BiosUpdateResult) -> None:
        action = FirmwarePendingAction(
            last_update=to_filetime(outcome.timestamp),
            action_needed=outcome.action_needed.value if outcome.action_needed else "",
            package_hash=package.extract.file_checksum,
        )
        try:
            self._pending.write(action)
        except PersistenceWriteError as exc:
            self._warn(str(exc))

    def _judge(
        self,
        package: Package,
        completed: subprocess.CompletedProcess[str],
        codes: frozenset[int],
    ) -> InstallResult:
        if completed.returncode in codes:
            return InstallResult(
                package,
                InstallState.INSTALLED,
                f"Installed (exit {completed.returncode})",
                exit_code=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
        if (completed.stdout or "").strip() or (completed.stderr or "").strip():
            message = f"Installer failed: {format_output(completed)}"
        else:
            message = f"Installer exit {completed.returncode}"
        return InstallResult(
            package,
            InstallState.FAILED,
            message,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def _run_shell(self, command: str, package_dir: Path) -> subprocess.CompletedProcess[str]:
        return self._runner.run(
            [*self._settings.shell, command],
            cwd=package_dir,
            env=self._package_env(package_dir),
        )

    def _package_env(self, package_dir: Path) -> dict[str, str]:
        return {self._settings.package_path_variable: str(package_dir)}

    def _warn(self, message: str) -> None:
        self.last_warnings.append(message)
        self._log(f"[WARN] {message}")
