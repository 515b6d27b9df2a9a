from __future__ import annotations

import hashlib
import threading
from pathlib import Path

from services.downloads import DownloadError, DownloadManager, checksum_matches
from services.packages import build_package

PAYLOAD = b"firmware payload"
PAYLOAD_SHA256 = hashlib.sha256(PAYLOAD).hexdigest()


class FakeTransport:
    def __init__(self, payloads: dict[str, bytes] | None = None, failing: set[str] | None = None) -> None:
        self.payloads = payloads or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, Path, str | None]] = []
        self._lock = threading.Lock()

    def __call__(self, url: str, destination: Path, proxy: str | None) -> None:
        with self._lock:
            self.calls.append((url, destination, proxy))
        if url in self.failing:
            raise DownloadError(f"Download failed for {url}: 404")
        destination.write_bytes(self.payloads.get(url, PAYLOAD))


def _package(package_id: str, checksum: str = PAYLOAD_SHA256):
    return build_package(
        {
            "id": package_id,
            "title": f"Package {package_id}",
            "version": "1.0",
            "source_url": f"https://example.test/{package_id}.exe",
            "file_name": f"{package_id}.exe",
            "file_checksum": checksum,
            "install_type": "cmd",
        }
    )


def test_existing_file_with_matching_checksum_is_skipped(tmp_path: Path) -> None:
    transport = FakeTransport()
    manager = DownloadManager(tmp_path, transport=transport)
    package = _package("n1abc01w")
    target = manager.target_path(package)
    target.parent.mkdir(parents=True)
    target.write_bytes(PAYLOAD)

    report = manager.fetch_all([package])

    assert transport.calls == []
    assert report.skipped == [target]
    assert report.ok


def test_mismatched_checksum_triggers_transfer(tmp_path: Path) -> None:
    transport = FakeTransport()
    manager = DownloadManager(tmp_path, transport=transport)
    package = _package("n1abc02w")
    target = manager.target_path(package)
    target.parent.mkdir(parents=True)
    target.write_bytes(b"stale")

    report = manager.fetch_all([package])

    assert len(transport.calls) == 1
    assert report.succeeded == [target]
    assert target.read_bytes() == PAYLOAD


def test_force_downloads_even_when_current(tmp_path: Path) -> None:
    transport = FakeTransport()
    manager = DownloadManager(tmp_path, transport=transport)
    package = _package("n1abc03w")
    target = manager.target_path(package)
    target.parent.mkdir(parents=True)
    target.write_bytes(PAYLOAD)

    manager.fetch_all([package], force=True, proxy="http://proxy:8080")

    assert transport.calls == [(package.source_url, target, "http://proxy:8080")]


def test_target_path_is_destination_id_filename(tmp_path: Path) -> None:
    manager = DownloadManager(tmp_path, transport=FakeTransport())
    package = _package("n1abc04w")
    assert manager.target_path(package) == tmp_path / "n1abc04w" / "n1abc04w.exe"


def test_one_failure_does_not_cancel_siblings(tmp_path: Path) -> None:
    good = _package("good01")
    bad = _package("bad01")
    transport = FakeTransport(failing={bad.source_url})
    manager = DownloadManager(tmp_path, transport=transport)
    progress: list[tuple[int, int, str]] = []

    report = manager.fetch_all([good, bad], progress_callback=lambda *args: progress.append(args))

    assert not report.ok
    assert report.succeeded == [manager.target_path(good)]
    assert [failure.url for failure in report.failed] == [bad.source_url]
    assert "404" in report.failed[0].reason
    assert manager.target_path(good).read_bytes() == PAYLOAD
    assert sorted(item[0] for item in progress) == [1, 2]
    assert all(item[1] == 2 for item in progress)


def test_corrupt_download_is_reported_as_failure(tmp_path: Path) -> None:
    package = _package("corrupt01")
    transport = FakeTransport(payloads={package.source_url: b"truncated"})
    manager = DownloadManager(tmp_path, transport=transport)

    report = manager.fetch_all([package])

    assert not report.ok
    assert "Checksum mismatch" in report.failed[0].reason


def test_checksum_algorithm_follows_digest_length(tmp_path: Path) -> None:
    path = tmp_path / "payload.bin"
    path.write_bytes(PAYLOAD)
    assert checksum_matches(path, hashlib.md5(PAYLOAD).hexdigest())
    assert checksum_matches(path, hashlib.sha1(PAYLOAD).hexdigest().upper())
    assert checksum_matches(path, PAYLOAD_SHA256)
    assert not checksum_matches(path, "abc")
    assert not checksum_matches(tmp_path / "missing.bin", PAYLOAD_SHA256)
