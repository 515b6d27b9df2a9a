"""Concurrent, checksum-verified download of package payloads."""
from __future__ import annotations

import hashlib
import shutil
import threading
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from services.packages import Package

ProgressCallback = Callable[[int, int, str], None]
Transport = Callable[[str, Path, "str | None"], None]

_DIGESTS_BY_LENGTH = {32: "md5", 40: "sha1", 64: "sha256"}


class DownloadError(RuntimeError):
    pass


@dataclass(frozen=True)
class DownloadFailure:
    url: str
    reason: str
    package_id: str = ""


@dataclass
class DownloadReport:
    succeeded: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failed: list[DownloadFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def file_checksum(path: Path, algorithm: str = "sha256") -> str:
    digest = hashlib.new(algorithm)
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def checksum_matches(path: Path, expected: str) -> bool:
    expected = (expected or "").strip().lower()
    algorithm = _DIGESTS_BY_LENGTH.get(len(expected))
    if not algorithm or not path.is_file():
        return False
    return file_checksum(path, algorithm) == expected


def urllib_transport(url: str, destination: Path, proxy: str | None = None) -> None:
    handlers: list[urllib.request.BaseHandler] = []
    if proxy:
        handlers.append(urllib.request.ProxyHandler({"http": proxy, "https": proxy}))
    opener = urllib.request.build_opener(*handlers)
    request = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0"})
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination.with_suffix(destination.suffix + ".download")
    try:
        with opener.open(request, timeout=60) as response, temp_path.open("wb") as handle:
            shutil.copyfileobj(response, handle)
        temp_path.replace(destination)
    except (urllib.error.URLError, OSError) as exc:
        if temp_path.exists():
            temp_path.unlink()
        raise DownloadError(f"Download failed for {url}: {exc}") from exc


class DownloadManager:
    def __init__(
        self,
        destination: Path | str,
        *,
        transport: Transport | None = None,
    ) -> None:
        self._destination = Path(destination)
        self._transport = transport or urllib_transport

    @property
    def destination(self) -> Path:
        return self._destination

    def target_path(self, package: Package) -> Path:
        return self._destination / package.id / package.extract.file_name

    def package_directory(self, package: Package) -> Path:
        return self._destination / package.id

    def is_current(self, package: Package) -> bool:
        return checksum_matches(self.target_path(package), package.extract.file_checksum)

    def fetch_all(
        self,
        packages: Iterable[Package],
        *,
        force: bool = False,
        proxy: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> DownloadReport:
        report = DownloadReport()
        pending: list[Package] = []
        for package in packages:
            if not force and self.is_current(package):
                report.skipped.append(self.target_path(package))
                continue
            pending.append(package)
        if not pending:
            return report

        total = len(pending)
        completed = 0
        lock = threading.Lock()

        def _emit(message: str) -> None:
            nonlocal completed
            with lock:
                completed += 1
                if progress_callback:
                    progress_callback(completed, total, message)

        with ThreadPoolExecutor(max_workers=total) as pool:
            futures = {pool.submit(self._fetch_one, package, proxy): package for package in pending}
            for future in as_completed(futures):
                package = futures[future]
                try:
                    report.succeeded.append(future.result())
                    _emit(f"Downloaded: {package.title or package.id}")
                except Exception as exc:
                    report.failed.append(DownloadFailure(package.source_url, str(exc), package.id))
                    _emit(f"Failed: {package.title or package.id}")
        return report

    def _fetch_one(self, package: Package, proxy: str | None) -> Path:
        if not package.source_url:
            raise DownloadError(f"No download URL for package {package.id}")
        target = self.target_path(package)
        target.parent.mkdir(parents=True, exist_ok=True)
        self._transport(package.source_url, target, proxy)
        if package.extract.file_checksum and not checksum_matches(target, package.extract.file_checksum):
            raise DownloadError(f"Checksum mismatch for {target.name}")
        return target
