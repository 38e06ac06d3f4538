"""Data models for tidytop."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Immutable sample of one process, owned by its ResourceSnapshot."""

    pid: int
    name: str
    cpu_percent: float  # 0.0 - 100.0, normalised by core count
    memory_rss: int  # Bytes


@dataclass(slots=True, frozen=True)
class DiskUsage:
    """Usage of a single mounted volume."""

    mountpoint: str
    used: int
    total: int

    @property
    def percent(self) -> float:
        return (self.used / self.total) * 100.0 if self.total > 0 else 0.0


@dataclass(slots=True, frozen=True)
class ResourceSnapshot:
    """
    One consistent point-in-time capture of system and process metrics.

    Snapshots are superseded by the next sample, never edited. A degraded
    snapshot carries the data of the last good sample because the OS query
    failed on this tick.
    """

    timestamp: float
    cpu_percent: float
    memory_used: int
    memory_total: int
    swap_used: int
    swap_total: int
    disks: tuple[DiskUsage, ...] = ()
    processes: tuple[ProcessSample, ...] = ()
    degraded: bool = False

    @property
    def memory_percent(self) -> float:
        return (self.memory_used / self.memory_total) * 100.0 if self.memory_total > 0 else 0.0

    @property
    def swap_percent(self) -> float:
        return (self.swap_used / self.swap_total) * 100.0 if self.swap_total > 0 else 0.0

    @property
    def disk_used(self) -> int:
        return sum(disk.used for disk in self.disks)

    @property
    def disk_total(self) -> int:
        return sum(disk.total for disk in self.disks)


class FindingKind(Enum):
    """Categories of cleanup candidates."""

    DEPENDENCY_DIR = "dependency_dir"
    CONTAINER_IMAGE = "container_image"
    PACKAGE_CACHE = "package_cache"
    HEAVY_PROCESS = "heavy_process"


class CategoryStatus(Enum):
    """Outcome of one scanner sub-category."""

    OK = "ok"
    UNAVAILABLE = "unavailable"  # external tool missing or unusable
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(slots=True, frozen=True)
class Finding:
    """
    A single ranked cleanup candidate.

    ``target`` depends on ``kind``: a Path for dependency directories and
    package caches, the image id for container images, the pid for heavy
    processes.
    """

    kind: FindingKind
    label: str
    size: int | None
    target: Path | str | int
    size_is_lower_bound: bool = False
    memory_rss: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the underlying resource, shared across kinds."""
        if isinstance(self.target, Path):
            return ("path", str(self.target))
        if self.kind is FindingKind.CONTAINER_IMAGE:
            return ("image", str(self.target))
        return ("pid", str(self.target))


@dataclass(slots=True, frozen=True)
class ScanReport:
    """The result of one complete scan; replaces the previous one wholesale."""

    findings: tuple[Finding, ...]
    statuses: dict[FindingKind, CategoryStatus] = field(default_factory=dict)
    started_at: float = 0.0
    finished_at: float = 0.0

    def status(self, kind: FindingKind) -> CategoryStatus:
        return self.statuses.get(kind, CategoryStatus.OK)


class Operation(Enum):
    """Concrete cleanup operations."""

    DELETE = "delete"
    PRUNE = "prune"
    CLEAR_CACHE = "clear_cache"
    TERMINATE = "terminate"


@dataclass(slots=True, frozen=True)
class CleanupAction:
    """A not-yet-executed operation derived from exactly one Finding."""

    finding: Finding
    operation: Operation
    signal: int | None = None  # Only for TERMINATE

    def describe(self) -> str:
        """Human-readable description used in the confirmation prompt."""
        finding = self.finding
        if self.operation is Operation.DELETE:
            return f"Delete {finding.target}"
        if self.operation is Operation.CLEAR_CACHE:
            return f"Clear contents of {finding.target}"
        if self.operation is Operation.PRUNE:
            return f"Remove image {finding.label}"
        return f"Kill {finding.label} (pid {finding.target}) with signal {self.signal}"


class ErrorKind(Enum):
    """Closed taxonomy of failures surfaced to the session."""

    TRANSIENT_METRIC_FAILURE = "transient_metric_failure"
    PARTIAL_SCAN_FAILURE = "partial_scan_failure"
    RESOURCE_GONE = "resource_gone"
    EXTERNAL_TOOL_UNAVAILABLE = "external_tool_unavailable"
    UNRECOGNIZED_FINDING_KIND = "unrecognized_finding_kind"
    OPERATION_FAILED = "operation_failed"


@dataclass(slots=True, frozen=True)
class CleanupResult:
    """Terminal outcome of executing (or failing to plan) a CleanupAction."""

    action: CleanupAction | None
    success: bool
    bytes_reclaimed: int = 0
    reason: str = ""
    error: ErrorKind | None = None

    @classmethod
    def failed(
        cls, action: CleanupAction | None, error: ErrorKind, reason: str
    ) -> "CleanupResult":
        return cls(action=action, success=False, reason=reason, error=error)
