"""The current finding set shared by the scanner, planner and renderer."""

import threading
from dataclasses import dataclass, field
from pathlib import Path

from tidytop.models import CategoryStatus, Finding, FindingKind, ScanReport


@dataclass(slots=True, frozen=True)
class FindingSetView:
    """A complete, immutable view of the finding set at one moment."""

    findings: tuple[Finding, ...] = ()
    stale: frozenset[tuple[str, str]] = frozenset()
    statuses: dict[FindingKind, CategoryStatus] = field(default_factory=dict)
    scanned: bool = False

    def is_stale(self, finding: Finding) -> bool:
        return finding.key in self.stale


def _affects(done: Finding, other: Finding) -> bool:
    """Whether acting on ``done`` changes the resource behind ``other``."""
    if done.key == other.key:
        return True
    if isinstance(done.target, Path) and isinstance(other.target, Path):
        return other.target.is_relative_to(done.target) or done.target.is_relative_to(other.target)
    return False


class FindingSet:
    """
    Single-writer, multi-reader holder of the latest scan's findings.

    Writers swap in a new immutable view under a lock, so readers always
    get a complete set: either the one before or the one after a change.

    Every invalidation bumps ``generation``. A scan records the generation
    it started at, and marks made after that survive its ``replace`` since
    the scan may have walked the resource before it was cleaned.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._view = FindingSetView()
        self._generation = 0
        self._marked: dict[tuple[str, str], int] = {}

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def view(self) -> FindingSetView:
        return self._view

    def replace(self, report: ScanReport, started_generation: int | None = None) -> None:
        """
        Install a completed scan in place of the previous set.

        Args:
            report: The finished scan.
            started_generation: ``generation`` when the scan was started.
                Stale marks made later are kept; None drops them all.
        """
        with self._lock:
            if started_generation is None:
                self._marked = {}
            else:
                self._marked = {
                    key: gen for key, gen in self._marked.items() if gen > started_generation
                }
            self._view = FindingSetView(
                findings=report.findings,
                stale=frozenset(self._marked),
                statuses=dict(report.statuses),
                scanned=True,
            )

    def invalidate(self, finding: Finding) -> None:
        """Mark every finding on the same resource as stale until the next scan."""
        with self._lock:
            self._generation += 1
            current = self._view
            keys = {f.key for f in current.findings if _affects(finding, f)}
            keys.add(finding.key)
            for key in keys:
                self._marked[key] = self._generation
            self._view = FindingSetView(
                findings=current.findings,
                stale=current.stale | keys,
                statuses=current.statuses,
                scanned=current.scanned,
            )
