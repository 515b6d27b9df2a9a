from __future__ import annotations

import pytest

import main
from services.catalog import CatalogError
from services.dependencies import ProbeExecutionError
from update_deployer.user_settings import UserSettings


class FailingService:
    error: Exception = RuntimeError("unset")

    def __init__(self, settings, *, log_callback=None) -> None:
        self.settings = settings

    def resolve(self, *, refresh: bool = False):
        raise self.error


@pytest.mark.parametrize(
    "error",
    [CatalogError("Catalog folder not configured"), ProbeExecutionError("Unable to start probe command 'x'")],
)
def test_unattended_run_reports_resolution_errors(monkeypatch, capsys, error: Exception) -> None:
    FailingService.error = error
    monkeypatch.setattr(main, "UpdateService", FailingService)

    code = main.run_unattended(UserSettings(), download_only=True)

    assert code == 2
    assert capsys.readouterr().out.startswith(f"[ERROR] {error}")
