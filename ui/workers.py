"""Background execution of service calls on the Qt thread pool."""
from __future__ import annotations

from typing import Any, Callable

from PySide6.QtCore import QObject, QRunnable, Signal


class WorkerSignals(QObject):
    finished = Signal(object)
    error = Signal(str)
    progress = Signal(int, int, str)


class ServiceWorker(QRunnable):
    """Runs ``action(*args)`` off the UI thread.

    With ``report_progress=True`` the action also receives a
    ``progress_callback`` keyword that forwards to ``signals.progress``.
    """

    def __init__(self, action: Callable[..., Any], *args: Any, report_progress: bool = False) -> None:
        super().__init__()
        self._action = action
        self._args = args
        self._report_progress = report_progress
        self.signals = WorkerSignals()

    def run(self) -> None:
        kwargs: dict[str, Any] = {}
        if self._report_progress:
            kwargs["progress_callback"] = self.signals.progress.emit
        try:
            result = self._action(*self._args, **kwargs)
        except Exception as exc:
            self.signals.error.emit(str(exc))
            return
        self.signals.finished.emit(result)
