"""Reclaimable-space issue scanner for tidytop."""

import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from tidytop.config import ScanConfig
from tidytop.logging_setup import logger
from tidytop.models import (
    CategoryStatus,
    Finding,
    FindingKind,
    ResourceSnapshot,
    ScanReport,
)
from tidytop.runtime import ContainerRuntime, RuntimeUnavailable


class ScanAbandoned(Exception):
    """The scan was cancelled while walking."""


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ScanAbandoned()


def directory_size(path: Path, cancel: threading.Event | None = None) -> tuple[int, bool]:
    """
    Sum the sizes of all files under ``path`` without following symlinks.

    Returns:
        (total_bytes, complete). ``complete`` is False when some subtree
        could not be read, making the total a lower bound.
    """
    total = 0
    complete = True
    stack = [path]

    while stack:
        _check_cancel(cancel)
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            stack.append(Path(entry.path))
                        elif entry.is_file(follow_symlinks=False):
                            total += entry.stat(follow_symlinks=False).st_size
                    except OSError:
                        complete = False
        except OSError:
            complete = False

    return total, complete


def find_dependency_dirs(
    root: Path,
    max_depth: int,
    names: Iterable[str],
    skip_names: Iterable[str] = (),
    cancel: threading.Event | None = None,
) -> list[Path]:
    """
    Find directories named like dependency trees under ``root``.

    The walk does not enter a matched directory, so nested matches are
    covered by their outermost ancestor. Hidden and skipped directories
    are not entered either, unless their name is itself a match.
    """
    wanted = set(names)
    skipped = set(skip_names)
    matches: list[Path] = []
    stack: list[tuple[Path, int]] = [(root, 0)]

    while stack:
        _check_cancel(cancel)
        current, depth = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {current}: {e}")
            continue

        for entry in entries:
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError:
                continue
            if entry.name in wanted:
                matches.append(Path(entry.path))
                continue
            if entry.name.startswith(".") or entry.name in skipped:
                continue
            if depth + 1 < max_depth:
                stack.append((Path(entry.path), depth + 1))

    return matches


def _outermost(paths: Iterable[Path]) -> list[Path]:
    """Drop duplicates and paths nested inside another path of the set."""
    result: list[Path] = []
    for path in sorted(set(paths), key=lambda p: len(p.parts)):
        if not any(path.is_relative_to(kept) for kept in result):
            result.append(path)
    return result


class IssueScanner:
    """
    Builds the ranked list of reclaimable-space findings.

    Each category runs independently: one that raises is reported as
    FAILED (or UNAVAILABLE for a missing container runtime) with no
    findings, and the rest still complete.
    """

    def __init__(self, config: ScanConfig, runtime: ContainerRuntime | None = None) -> None:
        self._config = config
        self._runtime = runtime or ContainerRuntime(config.container_runtime, config.runtime_timeout)

    @property
    def config(self) -> ScanConfig:
        return self._config

    def scan(
        self,
        snapshot: ResourceSnapshot | None = None,
        cancel: threading.Event | None = None,
    ) -> ScanReport:
        """Run every category and merge the results into one ordered report."""
        started = time.time()
        statuses: dict[FindingKind, CategoryStatus] = {}
        categories: list[tuple[FindingKind, Callable[[], list[Finding]]]] = [
            (FindingKind.DEPENDENCY_DIR, lambda: self.scan_dependency_dirs(cancel)),
            (FindingKind.CONTAINER_IMAGE, self.scan_container_images),
            (FindingKind.PACKAGE_CACHE, lambda: self.scan_package_caches(cancel)),
            (FindingKind.HEAVY_PROCESS, lambda: self.scan_heavy_processes(snapshot)),
        ]

        sized: list[Finding] = []
        processes: list[Finding] = []
        for kind, run in categories:
            found = self._run_category(kind, run, statuses, cancel)
            if kind is FindingKind.HEAVY_PROCESS:
                processes.extend(found)
            else:
                sized.extend(found)

        sized.sort(key=lambda f: (-(f.size or 0), f.label))
        report = ScanReport(
            findings=tuple(sized + processes),
            statuses=statuses,
            started_at=started,
            finished_at=time.time(),
        )
        logger.info(
            f"Scan finished in {report.finished_at - started:.2f}s with {len(report.findings)} findings"
        )
        return report

    def _run_category(
        self,
        kind: FindingKind,
        run: Callable[[], list[Finding]],
        statuses: dict[FindingKind, CategoryStatus],
        cancel: threading.Event | None,
    ) -> list[Finding]:
        if cancel is not None and cancel.is_set():
            statuses[kind] = CategoryStatus.ABANDONED
            return []
        try:
            found = run()
        except ScanAbandoned:
            statuses[kind] = CategoryStatus.ABANDONED
            return []
        except RuntimeUnavailable as e:
            logger.warning(f"Container runtime unavailable: {e}")
            statuses[kind] = CategoryStatus.UNAVAILABLE
            return []
        except Exception:
            logger.exception(f"Scan category {kind.value} failed")
            statuses[kind] = CategoryStatus.FAILED
            return []
        statuses[kind] = CategoryStatus.OK
        return found

    def scan_dependency_dirs(self, cancel: threading.Event | None = None) -> list[Finding]:
        cfg = self._config
        found: list[Path] = []
        for root in cfg.roots:
            found.extend(
                find_dependency_dirs(
                    root,
                    cfg.max_depth,
                    cfg.dependency_dir_names,
                    cfg.skip_dir_names,
                    cancel,
                )
            )

        findings: list[Finding] = []
        for path in _outermost(found):
            size, complete = directory_size(path, cancel)
            if size < cfg.min_dependency_bytes:
                continue
            findings.append(
                Finding(
                    kind=FindingKind.DEPENDENCY_DIR,
                    label=str(path),
                    size=size,
                    target=path,
                    size_is_lower_bound=not complete,
                )
            )

        findings.sort(key=lambda f: (-(f.size or 0), f.label))
        return findings[: cfg.max_findings_per_category]

    def scan_container_images(self) -> list[Finding]:
        if not self._runtime.available():
            raise RuntimeUnavailable(f"{self._runtime.binary} not installed")

        findings = [
            Finding(
                kind=FindingKind.CONTAINER_IMAGE,
                label=image.name,
                size=image.size,
                target=image.image_id,
            )
            for image in self._runtime.list_images()
        ]
        findings.sort(key=lambda f: (-(f.size or 0), f.label))
        return findings[: self._config.max_findings_per_category]

    def scan_package_caches(self, cancel: threading.Event | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for label, path in self._config.package_caches:
            if not path.is_dir() or path.is_symlink():
                continue
            try:
                with os.scandir(path) as it:
                    empty = next(it, None) is None
            except OSError as e:
                logger.debug(f"Cannot read cache {path}: {e}")
                continue
            if empty:
                continue
            size, complete = directory_size(path, cancel)
            findings.append(
                Finding(
                    kind=FindingKind.PACKAGE_CACHE,
                    label=f"{label} cache",
                    size=size,
                    target=path,
                    size_is_lower_bound=not complete,
                )
            )
        return findings

    def scan_heavy_processes(self, snapshot: ResourceSnapshot | None) -> list[Finding]:
        if snapshot is None:
            return []
        heavy = [
            p for p in snapshot.processes if p.memory_rss >= self._config.heavy_process_bytes
        ]
        heavy.sort(key=lambda p: (-p.memory_rss, p.pid))
        return [
            Finding(
                kind=FindingKind.HEAVY_PROCESS,
                label=p.name,
                size=None,
                target=p.pid,
                memory_rss=p.memory_rss,
            )
            for p in heavy
        ]
