"""Shared fixtures for tidytop tests."""

import os
import threading
from pathlib import Path

import pytest

from tidytop.config import ScanConfig
from tidytop.models import CleanupResult, ProcessSample, ResourceSnapshot
from tidytop.runtime import ImageEntry, ImageNotFound, RuntimeUnavailable


class FakeRuntime:
    """In-memory stand-in for the container runtime CLI."""

    binary = "fake-runtime"

    def __init__(self, images=None, available=True, list_error=None):
        self.images = list(images or [])
        self._available = available
        self.list_error = list_error
        self.removed: list[str] = []

    def available(self) -> bool:
        return self._available

    def list_images(self) -> list[ImageEntry]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.images)

    def remove_image(self, image_id: str) -> None:
        if not self._available:
            raise RuntimeUnavailable("fake runtime is down")
        self.removed.append(image_id)
        for image in self.images:
            if image.image_id == image_id:
                self.images.remove(image)
                return
        raise ImageNotFound(image_id)


class BlockingScanner:
    """Scanner that waits for ``release`` so tests control when a scan ends."""

    def __init__(self, report):
        self.report = report
        self.calls = 0
        self.release = threading.Event()

    def scan(self, snapshot=None, cancel=None):
        self.calls += 1
        self.release.wait(timeout=5.0)
        return self.report


class RecordingExecutor:
    """Executor that records actions and succeeds once ``release`` is set."""

    def __init__(self, findings):
        self.findings = findings
        self.actions = []
        self.release = threading.Event()
        self.release.set()

    def execute(self, action):
        self.actions.append(action)
        self.release.wait(timeout=5.0)
        self.findings.invalidate(action.finding)
        return CleanupResult(action=action, success=True, bytes_reclaimed=action.finding.size or 0)


def write_file(path: Path, size: int) -> Path:
    """Create ``path`` (and parents) holding ``size`` bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


@pytest.fixture
def make_snapshot():
    """Factory for ResourceSnapshot instances with sensible defaults."""

    def _make(processes=(), **overrides) -> ResourceSnapshot:
        fields = dict(
            timestamp=1000.0,
            cpu_percent=12.5,
            memory_used=8 * 1024**3,
            memory_total=16 * 1024**3,
            swap_used=0,
            swap_total=2 * 1024**3,
            disks=(),
            processes=tuple(processes),
        )
        fields.update(overrides)
        return ResourceSnapshot(**fields)

    return _make


@pytest.fixture
def make_process():
    def _make(pid: int, cpu: float = 0.0, rss: int = 0, name: str | None = None) -> ProcessSample:
        return ProcessSample(pid=pid, name=name or f"proc{pid}", cpu_percent=cpu, memory_rss=rss)

    return _make


@pytest.fixture
def project_tree(tmp_path):
    """
    A small tree of projects:

    - a/node_modules (with a nested node_modules inside) = 3000 bytes
    - b/node_modules = 500 bytes
    - .hidden/node_modules is not reachable through a hidden parent
    """
    root = tmp_path / "projects"
    write_file(root / "a" / "node_modules" / "left-pad" / "index.js", 1000)
    write_file(root / "a" / "node_modules" / "dep" / "node_modules" / "inner" / "x.js", 2000)
    write_file(root / "b" / "node_modules" / "lib.js", 500)
    write_file(root / ".hidden" / "node_modules" / "ignored.js", 4000)
    write_file(root / "a" / "src" / "main.js", 100)
    return root


@pytest.fixture
def scan_config(project_tree, tmp_path):
    """ScanConfig over ``project_tree`` with no real caches or runtime."""
    return ScanConfig(
        roots=(project_tree,),
        max_depth=6,
        min_dependency_bytes=1,
        heavy_process_bytes=1024**4,
        container_runtime="tidytop-test-missing-runtime",
        package_caches=(("pip", tmp_path / "cache" / "pip"),),
    )


@pytest.fixture
def no_user_config(tmp_path, monkeypatch):
    """Point XDG_CONFIG_HOME at an empty directory."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    return tmp_path / "xdg"


@pytest.fixture
def on_posix():
    if os.name != "posix":
        pytest.skip("POSIX signals required")
