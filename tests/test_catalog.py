from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence

import pytest

from services.catalog import CatalogError, FileCatalog, parse_package_descriptor
from services.dependencies import And, ExternalProbe, Not, Or, Predicate, evaluate_roots
from services.facts import FactSnapshot, collect_local_facts, facts_from_wmi
from services.packages import CommandLine, DriverInf, Severity, Unsupported, Version, build_package

DESCRIPTOR = """<?xml version="1.0" encoding="UTF-8"?>
<Package id="n2juj28w" version="1.45" name="N2JUJ28W">
  <Title><Desc>BIOS Update for Windows 11 (64-bit)</Desc></Title>
  <Vendor>Lenovo</Vendor>
  <Severity type="1"/>
  <Reboot type="5"/>
  <ExtractCommand>n2juj28w.exe /VERYSILENT /DIR=%PACKAGEPATH%\\ext</ExtractCommand>
  <Install type="cmd" rc="0,1">
    <Cmdline>ext\\winuptp.exe -s</Cmdline>
  </Install>
  <Dependencies>
    <And>
      <_OS><OS>WIN11</OS><OS>WIN10</OS></_OS>
      <_PnPID><![CDATA[pci\\ven_8086&dev_a0e8]]></_PnPID>
      <Not/>
      <_Bios><Level>N2JET99</Level></_Bios>
    </And>
    <_ExternalDetection rc="0,5">cmd /c exit 5</_ExternalDetection>
  </Dependencies>
  <Files>
    <Installer>
      <File>
        <Name>n2juj28w.exe</Name>
        <CRC>ABCDEF0123456789ABCDEF0123456789ABCDEF01</CRC>
        <Size>12345678</Size>
      </File>
    </Installer>
  </Files>
</Package>
"""


def _descriptor(package_id: str, *, extra: str = "") -> str:
    return f"""<Package id="{package_id}" version="1.0">
  <Title><Desc>Package {package_id}</Desc></Title>
  <Install type="INF"><INFCmd INFfile="{package_id}.inf"/></Install>
  <Files><Installer><File><Name>{package_id}.exe</Name></File></Installer></Files>
  {extra}
</Package>"""


def test_descriptor_fields_are_read(tmp_path: Path) -> None:
    entry = parse_package_descriptor(DESCRIPTOR, category="BIOS UEFI")
    package = entry.package

    assert package.id == "n2juj28w"
    assert package.version == "1.45"
    assert package.title == "BIOS Update for Windows 11 (64-bit)"
    assert package.vendor == "Lenovo"
    assert package.severity is Severity.CRITICAL
    assert package.reboot_type == 5
    assert package.is_firmware
    assert package.extract.file_name == "n2juj28w.exe"
    assert package.extract.file_size == 12345678
    assert package.extract.file_checksum == "abcdef0123456789abcdef0123456789abcdef01"
    assert package.install.install_type == CommandLine()
    assert package.install.success_codes == frozenset({0, 1})
    assert package.install.install_command == "ext\\winuptp.exe -s"
    assert package.install.unattended


def test_dependency_tree_shape() -> None:
    roots = parse_package_descriptor(DESCRIPTOR).dependencies

    assert roots == (
        And(
            (
                Or((Predicate("_OS", "WIN11"), Predicate("_OS", "WIN10"))),
                Predicate("_PnPID", "PCI\\VEN_8086&DEV_A0E8"),
                Not(),
                Predicate("_Bios", "N2JET99"),
            )
        ),
        ExternalProbe("cmd /c exit 5", frozenset({0, 5})),
    )


def test_parsed_tree_evaluates_against_facts() -> None:
    roots = parse_package_descriptor(DESCRIPTOR).dependencies
    facts = FactSnapshot.from_mapping(
        {"_OS": "WIN11", "_PnPID": ["PCI\\VEN_8086&DEV_A0E8&SUBSYS_1234"], "_Bios": "N2JET85W"}
    )

    assert evaluate_roots(roots[:1], facts, probe=lambda command: 1)
    old_bios = FactSnapshot.from_mapping({"_OS": "WIN11", "_PnPID": ["PCI\\VEN_8086&DEV_A0E8"], "_Bios": "N2JET99W"})
    assert not evaluate_roots(roots[:1], old_bios, probe=lambda command: 1)


def test_unknown_composite_parses_as_or() -> None:
    entry = parse_package_descriptor(_descriptor("x1", extra="<Dependencies><Any><_OS>WIN10</_OS></Any></Dependencies>"))
    assert entry.dependencies == (Or((Predicate("_OS", "WIN10"),), kind="Any"),)


@pytest.mark.parametrize(
    "xml_text",
    ["<Package version='1.0'/>", "<Catalog/>", "<Package id='x'"],
)
def test_invalid_descriptors_raise(xml_text: str) -> None:
    with pytest.raises(CatalogError):
        parse_package_descriptor(xml_text)


def test_file_catalog_orders_by_name_and_points_at_payload(tmp_path: Path) -> None:
    (tmp_path / "b_pkg.xml").write_text(_descriptor("bbb"), encoding="utf-8")
    (tmp_path / "a_pkg.xml").write_text(_descriptor("aaa"), encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    entries = FileCatalog(tmp_path).load()

    assert [entry.package.id for entry in entries] == ["aaa", "bbb"]
    assert entries[0].package.source_url == (tmp_path / "aaa.exe").resolve().as_uri()
    assert entries[0].package.install.install_type == DriverInf()
    assert entries[0].package.install.driver_inf_file == "aaa.inf"


def test_file_catalog_rejects_duplicates(tmp_path: Path) -> None:
    (tmp_path / "one.xml").write_text(_descriptor("dup"), encoding="utf-8")
    (tmp_path / "two.xml").write_text(_descriptor("dup"), encoding="utf-8")

    with pytest.raises(CatalogError, match="Duplicate package ID dup"):
        FileCatalog(tmp_path).load()


def test_file_catalog_missing_folder(tmp_path: Path) -> None:
    with pytest.raises(CatalogError, match="not found"):
        FileCatalog(tmp_path / "missing").load()


@pytest.mark.parametrize(
    ("reboot_type", "category", "install_type", "expected"),
    [
        ("0", "Audio", "cmd", True),
        ("3", "Audio", "cmd", True),
        ("1", "Audio", "cmd", False),
        ("5", "BIOS", "cmd", True),
        ("1", "Networking", "INF", True),
        ("4", "Networking", "msi", False),
        ("1", "Thunderbolt Firmware", "cmd", False),
        ("1", "bios uefi", "cmd", True),
    ],
)
def test_unattended_derivation(reboot_type: str, category: str, install_type: str, expected: bool) -> None:
    package = build_package(
        {"id": "p", "reboot_type": reboot_type, "category": category, "install_type": install_type}
    )
    assert package.install.unattended is expected


def test_install_type_variants() -> None:
    assert build_package({"id": "a", "install_type": "CMD"}).install.install_type == CommandLine()
    assert build_package({"id": "b", "install_type": "inf"}).install.install_type == DriverInf()
    assert build_package({"id": "c", "install_type": "msi"}).install.install_type == Unsupported("msi")


def test_versions_compare_numerically() -> None:
    assert Version.parse("1.10") > Version.parse("1.9")
    assert Version.parse("2") == Version.parse("2.0.0.0")
    assert Version.try_parse("1.2b") is None
    with pytest.raises(ValueError):
        Version.parse("1.2.3.4.5")


def test_severity_accepts_numbers_and_names() -> None:
    assert Severity.parse("2") is Severity.RECOMMENDED
    assert Severity.parse("critical") is Severity.CRITICAL
    assert Severity.parse(None) is Severity.OPTIONAL


def test_facts_from_wmi_output() -> None:
    facts = facts_from_wmi(
        {
            "OSBuild": "22631",
            "AddressWidth": 64,
            "BiosVersion": "N2JET85W (1.63 )",
            "ECMajor": 1,
            "ECMinor": 30,
            "PnPIDs": ["pci\\ven_8086&dev_a0e8", "USB\\VID_046D"],
        }
    )

    assert facts["_OS"] == ["WIN11"]
    assert facts["_CPUAddressWidth"] == ["64"]
    assert facts["_EmbeddedControllerVersion"] == ["1.30"]
    assert facts["_PnPID"] == ["PCI\\VEN_8086&DEV_A0E8", "USB\\VID_046D"]


class FakeRunner:
    def __init__(self, stdout: str, returncode: int = 0) -> None:
        self.stdout = stdout
        self.returncode = returncode

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, "")


def test_collect_local_facts_parses_script_output() -> None:
    snapshot = collect_local_facts(command_runner=FakeRunner('{"OSBuild": "19045", "BiosVersion": "R1XET50W"}'))
    assert snapshot.get("_OS") == frozenset({"WIN10"})
    assert snapshot.get("_Bios") == frozenset({"R1XET50W"})


def test_collect_local_facts_tolerates_bad_output() -> None:
    assert collect_local_facts(command_runner=FakeRunner("not json")).keys() == []
    assert collect_local_facts(command_runner=FakeRunner("{}", returncode=1)).keys() == []
