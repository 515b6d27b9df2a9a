"""Registry access and the persisted firmware pending-action flag."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from update_deployer.constants import IMMUTABLE_CONFIG

try:  # Windows-only dependency, optional for test doubles
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

LAST_UPDATE_VALUE = "LastUpdate"
ACTION_NEEDED_VALUE = "ActionNeeded"
PACKAGE_HASH_VALUE = "PackageHash"


class PersistenceWriteError(RuntimeError):
    pass


class RegistryAccessor(Protocol):
    def get_value(self, path: str, value_name: str) -> str | int | None:  # pragma: no cover - protocol
        ...

    def set_value(self, path: str, value_name: str, value: str | int) -> None:  # pragma: no cover - protocol
        ...


class WindowsRegistryAccessor:
    """HKLM-only accessor for the firmware pending flag. Integers are written as QWORD."""

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")

    def get_value(self, path: str, value_name: str) -> str | int | None:
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, hklm_subkey(path)) as key:
                return winreg.QueryValueEx(key, value_name)[0]
        except FileNotFoundError:
            return None

    def set_value(self, path: str, value_name: str, value: str | int) -> None:
        value_type = winreg.REG_QWORD if isinstance(value, int) else winreg.REG_SZ
        with winreg.CreateKeyEx(winreg.HKEY_LOCAL_MACHINE, hklm_subkey(path), 0, winreg.KEY_WRITE) as key:
            winreg.SetValueEx(key, value_name, 0, value_type, value)


def hklm_subkey(path: str) -> str:
    """``HKLM:\\SOFTWARE\\X`` -> ``SOFTWARE\\X``."""
    cleaned = path.replace("/", "\\")
    prefix = "HKLM:\\"
    if not cleaned.upper().startswith(prefix):
        raise ValueError(f"Only HKLM registry paths are supported: {path}")
    return cleaned[len(prefix):].strip("\\")


@dataclass(frozen=True)
class FirmwarePendingAction:
    last_update: int
    action_needed: str
    package_hash: str


class FirmwarePendingStore:
    """Remembers which reboot/shutdown the last firmware flash asked for."""

    def __init__(self, registry: RegistryAccessor | None = None, *, path: str | None = None) -> None:
        self._registry = registry
        self._path = path or IMMUTABLE_CONFIG.firmware.pending_registry_path

    def write(self, action: FirmwarePendingAction) -> None:
        try:
            registry = self._accessor()
            registry.set_value(self._path, LAST_UPDATE_VALUE, int(action.last_update))
            registry.set_value(self._path, ACTION_NEEDED_VALUE, action.action_needed)
            registry.set_value(self._path, PACKAGE_HASH_VALUE, action.package_hash)
        except (OSError, RuntimeError, ValueError) as exc:
            raise PersistenceWriteError(f"Could not record pending firmware action: {exc}") from exc

    def read(self) -> FirmwarePendingAction | None:
        registry = self._accessor()
        last_update = registry.get_value(self._path, LAST_UPDATE_VALUE)
        action = registry.get_value(self._path, ACTION_NEEDED_VALUE)
        if last_update is None or action is None:
            return None
        package_hash = registry.get_value(self._path, PACKAGE_HASH_VALUE) or ""
        return FirmwarePendingAction(int(last_update), str(action), str(package_hash))

    def _accessor(self) -> RegistryAccessor:
        if self._registry is None:
            self._registry = WindowsRegistryAccessor()
        return self._registry
