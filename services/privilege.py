"""Elevation helpers for Windows."""
from __future__ import annotations

import ctypes
import sys
from pathlib import Path
from typing import Sequence


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except AttributeError:
        return False


def elevated_command(command: Sequence[str], *, cwd: Path | None = None, powershell: str = "powershell") -> list[str]:
    """Wrap ``command`` so it runs through a RunAs prompt and forwards its exit code."""

    executable, *arguments = command
    script = f"$p = Start-Process -FilePath {_ps_quote(executable)}"
    if arguments:
        script += " -ArgumentList " + ",".join(_ps_quote(arg) for arg in arguments)
    if cwd is not None:
        script += f" -WorkingDirectory {_ps_quote(str(cwd))}"
    script += " -Verb RunAs -Wait -PassThru; exit $p.ExitCode"
    return [powershell, "-NoProfile", "-Command", script]


def relaunch_as_admin() -> None:
    arguments = sys.argv[1:] if getattr(sys, "frozen", False) else sys.argv
    params = " ".join(f'"{arg}"' for arg in arguments)
    ctypes.windll.shell32.ShellExecuteW(None, "runas", sys.executable, params, None, 1)  # type: ignore[attr-defined]


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
