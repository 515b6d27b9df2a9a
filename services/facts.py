"""Local hardware and software facts used to evaluate package dependencies."""
from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Protocol, Sequence

from update_deployer.constants import IMMUTABLE_CONFIG

OS_KEY = "_OS"
CPU_ADDRESS_WIDTH_KEY = "_CPUAddressWidth"
BIOS_KEY = "_Bios"
PNP_ID_KEY = "_PnPID"
EC_VERSION_KEY = "_EmbeddedControllerVersion"
EXTERNAL_DETECTION_KEY = IMMUTABLE_CONFIG.external_detection_key

# Windows build number to the tag vendor catalogs use.
OS_BUILD_TAGS = {
    "10240": "WIN10",
    "19041": "WIN10",
    "19044": "WIN10",
    "19045": "WIN10",
    "22000": "WIN11",
    "22621": "WIN11",
    "22631": "WIN11",
    "26100": "WIN11",
}


@dataclass(frozen=True)
class FactSnapshot:
    """Immutable key to value-set mapping captured once per run."""

    values: Mapping[str, frozenset[str]] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str | Iterable[str]]) -> "FactSnapshot":
        frozen: dict[str, frozenset[str]] = {}
        for key, value in raw.items():
            if isinstance(value, str):
                frozen[key] = frozenset({value})
            else:
                frozen[key] = frozenset(str(item) for item in value)
        return cls(MappingProxyType(frozen))

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def get(self, key: str) -> frozenset[str] | None:
        return self.values.get(key)

    def keys(self) -> list[str]:
        return sorted(self.values)

    def to_dict(self) -> dict[str, list[str]]:
        return {key: sorted(values) for key, values in self.values.items()}


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(command, capture_output=True, text=True, check=False, timeout=60)


_FACTS_SCRIPT = """
$os = Get-CimInstance Win32_OperatingSystem
$cpu = Get-CimInstance Win32_Processor | Select-Object -First 1
$bios = Get-CimInstance Win32_BIOS
$pnp = Get-CimInstance Win32_PnPEntity -ErrorAction SilentlyContinue | Where-Object { $_.HardwareID } | ForEach-Object { $_.HardwareID }
$result = @{
    OSBuild = $os.BuildNumber
    AddressWidth = $cpu.AddressWidth
    BiosVersion = $bios.SMBIOSBIOSVersion
    ECMajor = $bios.EmbeddedControllerMajorVersion
    ECMinor = $bios.EmbeddedControllerMinorVersion
    PnPIDs = @($pnp)
}
$result | ConvertTo-Json -Depth 3 -Compress
"""


def collect_local_facts(
    *,
    powershell: str = "powershell",
    command_runner: CommandRunner | None = None,
) -> FactSnapshot:
    """Query WMI for the facts vendor dependency trees refer to.

    Missing tooling or unparsable output leaves the affected keys out of the
    snapshot so those predicates are treated as unsupported.
    """

    runner = command_runner or SubprocessRunner()
    if command_runner is None and not shutil.which(powershell):
        return FactSnapshot()
    try:
        result = runner.run([powershell, "-NoProfile", "-Command", _FACTS_SCRIPT])
    except (OSError, subprocess.TimeoutExpired):
        return FactSnapshot()
    if result.returncode != 0 or not result.stdout:
        return FactSnapshot()
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return FactSnapshot()
    if not isinstance(data, dict):
        return FactSnapshot()
    return FactSnapshot.from_mapping(facts_from_wmi(data))


def facts_from_wmi(data: Mapping[str, object]) -> dict[str, list[str]]:
    facts: dict[str, list[str]] = {}
    build = str(data.get("OSBuild") or "").strip()
    if build:
        facts[OS_KEY] = [OS_BUILD_TAGS.get(build, "WIN11" if build.isdigit() and int(build) >= 22000 else "WIN10")]
    width = str(data.get("AddressWidth") or "").strip()
    if width:
        facts[CPU_ADDRESS_WIDTH_KEY] = [width]
    bios = str(data.get("BiosVersion") or "").strip()
    if bios:
        facts[BIOS_KEY] = [bios]
    major = data.get("ECMajor")
    minor = data.get("ECMinor")
    if major is not None and minor is not None and str(major) != "255":
        facts[EC_VERSION_KEY] = [f"{major}.{minor}"]
    pnp = data.get("PnPIDs")
    if isinstance(pnp, str):
        pnp = [pnp]
    if isinstance(pnp, list):
        ids = sorted({str(item).upper() for item in pnp if item})
        if ids:
            facts[PNP_ID_KEY] = ids
    return facts
