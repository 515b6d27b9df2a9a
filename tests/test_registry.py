from __future__ import annotations

import pytest

from services.registry import (
    ACTION_NEEDED_VALUE,
    FirmwarePendingAction,
    FirmwarePendingStore,
    PersistenceWriteError,
    hklm_subkey,
)
from update_deployer.constants import IMMUTABLE_CONFIG


class FakeRegistry:
    def __init__(self, fail: bool = False) -> None:
        self.values: dict[tuple[str, str], str | int] = {}
        self.fail = fail

    def get_value(self, path: str, value_name: str) -> str | int | None:
        return self.values.get((path, value_name))

    def set_value(self, path: str, value_name: str, value: str | int) -> None:
        if self.fail:
            raise PermissionError("access denied")
        self.values[(path, value_name)] = value


def test_pending_action_overwrites_previous_values() -> None:
    registry = FakeRegistry()
    store = FirmwarePendingStore(registry)

    store.write(FirmwarePendingAction(133_000_000_000_000_000, "REBOOT", "aa"))
    store.write(FirmwarePendingAction(133_000_000_100_000_000, "SHUTDOWN", "bb"))

    assert store.read() == FirmwarePendingAction(133_000_000_100_000_000, "SHUTDOWN", "bb")
    path = IMMUTABLE_CONFIG.firmware.pending_registry_path
    assert registry.values[(path, ACTION_NEEDED_VALUE)] == "SHUTDOWN"


def test_nothing_written_reads_as_none() -> None:
    assert FirmwarePendingStore(FakeRegistry()).read() is None


def test_write_fault_is_typed() -> None:
    store = FirmwarePendingStore(FakeRegistry(fail=True))
    with pytest.raises(PersistenceWriteError, match="access denied"):
        store.write(FirmwarePendingAction(1, "REBOOT", ""))


def test_hklm_subkey() -> None:
    assert hklm_subkey(r"HKLM:\SOFTWARE\UpdateDeployer\BIOSUpdate") == r"SOFTWARE\UpdateDeployer\BIOSUpdate"
    assert hklm_subkey("hklm:/SOFTWARE/Vendor/") == r"SOFTWARE\Vendor"
    with pytest.raises(ValueError):
        hklm_subkey(r"HKCU:\Software\Vendor")
