"""User-editable settings persisted next to the history ledger."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from update_deployer.constants import IMMUTABLE_CONFIG
from update_deployer.paths import get_data_directory


@dataclass
class UserSettings:
    catalog_root: str = ""
    download_dir: str = ""
    proxy: str = ""
    strict_dependencies: bool = False
    force_download: bool = False
    include_optional: bool = True
    use_result_cache: bool = True


class SettingsStore:
    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else get_data_directory() / IMMUTABLE_CONFIG.storage.settings_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UserSettings:
        if not self._path.exists():
            return UserSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return UserSettings()
        if not isinstance(data, dict):
            return UserSettings()
        known = {item.name for item in fields(UserSettings)}
        return UserSettings(**{key: value for key, value in data.items() if key in known})

    def save(self, settings: UserSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
