"""Filesystem locations used by the application."""
from __future__ import annotations

import os
import sys
from pathlib import Path

APP_FOLDER_NAME = "UpdateDeployer"


def get_application_directory() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent


def get_data_directory() -> Path:
    """Per-machine directory holding history, cache and settings."""
    override = os.environ.get("UPDATE_DEPLOYER_DATA")
    if override:
        return Path(override)
    program_data = os.environ.get("ProgramData")
    if program_data:
        return Path(program_data) / APP_FOLDER_NAME
    return get_application_directory() / "data"
