"""Immutable settings for the update deployment engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class BiosStyleSetting:
    payload: str
    arguments: Tuple[str, ...]
    log_file: str | None
    action_needed: str


@dataclass(frozen=True)
class FirmwareSetting:
    categories: Tuple[str, ...]
    winuptp: BiosStyleSetting
    flash_cmd: BiosStyleSetting
    pending_registry_path: str


@dataclass(frozen=True)
class InstallSetting:
    package_path_variable: str
    command_corrections: Tuple[Tuple[str, str], ...]
    driver_extra_success_codes: frozenset[int]
    unattended_reboot_types: frozenset[int]
    shell: Tuple[str, ...] = ("cmd", "/c")


@dataclass(frozen=True)
class StorageSetting:
    history_file: str
    cache_dir: str
    settings_file: str
    download_dir: str


@dataclass(frozen=True)
class ImmutableConfig:
    firmware: FirmwareSetting
    install: InstallSetting
    storage: StorageSetting
    external_detection_key: str = "_ExternalDetection"
    probe_success_codes: frozenset[int] = field(default_factory=lambda: frozenset({0}))


FIRMWARE_SETTING = FirmwareSetting(
    categories=("BIOS UEFI", "BIOS", "UEFI"),
    winuptp=BiosStyleSetting(
        payload="winuptp.exe",
        arguments=("-s",),
        log_file="winuptp.log",
        action_needed="REBOOT",
    ),
    flash_cmd=BiosStyleSetting(
        payload="Flash.cmd",
        arguments=("/quiet", "/sccm", "/ign"),
        log_file=None,
        action_needed="SHUTDOWN",
    ),
    pending_registry_path=r"HKLM:\SOFTWARE\UpdateDeployer\BIOSUpdate",
)

INSTALL_SETTING = InstallSetting(
    package_path_variable="PACKAGEPATH",
    command_corrections=(("-overwirte", "-overwrite"),),
    driver_extra_success_codes=frozenset({0, 3010}),
    unattended_reboot_types=frozenset({0, 3}),
)

STORAGE_SETTING = StorageSetting(
    history_file="history.json",
    cache_dir="cache",
    settings_file="settings.json",
    download_dir="packages",
)

IMMUTABLE_CONFIG = ImmutableConfig(
    firmware=FIRMWARE_SETTING,
    install=INSTALL_SETTING,
    storage=STORAGE_SETTING,
)
