"""Firmware flashing for BIOS/UEFI packages."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from services.process import CommandRunner, SubprocessRunner
from update_deployer.constants import IMMUTABLE_CONFIG, BiosStyleSetting, FirmwareSetting


class ActionNeeded(str, Enum):
    REBOOT = "REBOOT"
    SHUTDOWN = "SHUTDOWN"


@dataclass(frozen=True)
class BiosUpdateResult:
    was_run: bool
    timestamp: datetime
    exit_code: int | None = None
    log_message: str = ""
    action_needed: ActionNeeded | None = None


class DiskEncryption(Protocol):
    def is_protection_on(self) -> bool:  # pragma: no cover - protocol
        ...

    def suspend_for_next_boot(self) -> None:  # pragma: no cover - protocol
        ...


class BitLockerController:
    STATUS_SCRIPT = "(Get-BitLockerVolume -MountPoint $env:SystemDrive).ProtectionStatus"
    SUSPEND_SCRIPT = "Suspend-BitLocker -MountPoint $env:SystemDrive -RebootCount 1"

    def __init__(self, *, powershell: str = "powershell", command_runner: CommandRunner | None = None) -> None:
        self._powershell = powershell
        self._runner = command_runner or SubprocessRunner()

    def is_protection_on(self) -> bool:
        try:
            completed = self._runner.run([self._powershell, "-NoProfile", "-Command", self.STATUS_SCRIPT])
        except OSError:
            return False
        if completed.returncode != 0:
            return False
        return completed.stdout.strip().lower() in {"on", "1"}

    def suspend_for_next_boot(self) -> None:
        completed = self._runner.run([self._powershell, "-NoProfile", "-Command", self.SUSPEND_SCRIPT])
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip() or f"exit code {completed.returncode}"
            raise RuntimeError(f"Suspending BitLocker failed: {detail}")


class BiosUpdateHandler:
    """Detects the flashing tool shipped in an extracted package and runs it.

    ``winuptp.exe`` flashes silently and writes its own log; ``Flash.cmd``
    is run with unattended switches and its stdout becomes the log. A folder
    with neither is reported with ``was_run=False``.
    """

    def __init__(
        self,
        *,
        command_runner: CommandRunner | None = None,
        encryption: DiskEncryption | None = None,
        settings: FirmwareSetting | None = None,
    ) -> None:
        self._runner = command_runner or SubprocessRunner()
        self._encryption = encryption or BitLockerController(command_runner=self._runner)
        self._settings = settings or IMMUTABLE_CONFIG.firmware

    def detect_style(self, package_dir: Path) -> BiosStyleSetting | None:
        for style in (self._settings.winuptp, self._settings.flash_cmd):
            if (package_dir / style.payload).is_file():
                return style
        return None

    def run(self, package_dir: Path | str) -> BiosUpdateResult:
        directory = Path(package_dir)
        style = self.detect_style(directory)
        if style is None:
            return BiosUpdateResult(was_run=False, timestamp=_now())
        if self._encryption.is_protection_on():
            self._encryption.suspend_for_next_boot()
        if style is self._settings.winuptp:
            return self._run_winuptp(directory, style)
        return self._run_flash_cmd(directory, style)

    def _run_winuptp(self, directory: Path, style: BiosStyleSetting) -> BiosUpdateResult:
        log_path = directory / (style.log_file or "")
        if style.log_file and log_path.exists():
            log_path.unlink()
        completed = self._runner.run([str(directory / style.payload), *style.arguments], cwd=directory)
        log = ""
        if style.log_file and log_path.is_file():
            log = log_path.read_text(encoding="utf-8", errors="ignore")
        return BiosUpdateResult(
            was_run=True,
            timestamp=_now(),
            exit_code=completed.returncode,
            log_message=log,
            action_needed=ActionNeeded(style.action_needed),
        )

    def _run_flash_cmd(self, directory: Path, style: BiosStyleSetting) -> BiosUpdateResult:
        command = [*IMMUTABLE_CONFIG.install.shell, style.payload, *style.arguments]
        completed = self._runner.run(command, cwd=directory)
        return BiosUpdateResult(
            was_run=True,
            timestamp=_now(),
            exit_code=completed.returncode,
            log_message=completed.stdout or "",
            action_needed=ActionNeeded(style.action_needed),
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_filetime(moment: datetime) -> int:
    """Windows FILETIME: 100ns ticks since 1601-01-01 UTC."""
    epoch = datetime(1601, 1, 1, tzinfo=timezone.utc)
    delta = moment - epoch
    return (delta.days * 86400 + delta.seconds) * 10_000_000 + delta.microseconds * 10
