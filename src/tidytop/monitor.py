"""Metric sampling engine for tidytop."""

import threading
import time
from collections import deque
from dataclasses import replace
from queue import Queue

import psutil

from tidytop.logging_setup import logger
from tidytop.models import DiskUsage, ProcessSample, ResourceSnapshot


def _clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


class MetricSampler:
    """
    Samples system-wide and per-process resource usage using psutil.

    ``sample()`` may be called directly, or ``start()`` runs it on a daemon
    thread every ``poll_rate`` seconds and pushes each snapshot to a
    thread-safe Queue. CPU percentages are deltas since the previous sample;
    the first sample reports 0% everywhere. A failed or overlong OS query
    yields the previous snapshot flagged as degraded.
    """

    def __init__(
        self,
        update_queue: Queue[ResourceSnapshot] | None = None,
        poll_rate: float = 2.0,
        sample_timeout: float | None = None,
        history_size: int = 30,
    ) -> None:
        """
        Initialize the MetricSampler.

        Args:
            update_queue: Thread-safe queue the polling thread pushes to.
            poll_rate: How often to poll the system (in seconds). Default 2.0s.
            sample_timeout: Slowest acceptable sample. Defaults to poll_rate.
            history_size: Number of recent snapshots kept.
        """
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._sample_timeout = sample_timeout if sample_timeout is not None else self._poll_rate
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._history: deque[ResourceSnapshot] = deque(maxlen=history_size)
        self._previous: ResourceSnapshot | None = None
        self._lock = threading.Lock()
        self._cpu_count = psutil.cpu_count() or 1

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the sampler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def latest(self) -> ResourceSnapshot | None:
        """The most recent good snapshot, if any."""
        return self._previous

    def history(self) -> list[ResourceSnapshot]:
        """Recent snapshots, oldest first."""
        with self._lock:
            return list(self._history)

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="MetricSampler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                snapshot = self.sample()
                if self._queue is not None:
                    self._queue.put(snapshot)
            except Exception:
                # Keep the loop alive; the next tick retries
                logger.exception("Unexpected error in sampler loop")

            self._stop_event.wait(timeout=self._poll_rate)

    def sample(self) -> ResourceSnapshot:
        """Take one snapshot, or return the previous one flagged as degraded."""
        started = time.monotonic()
        try:
            snapshot = self._collect_snapshot(first=self._previous is None)
        except (OSError, psutil.Error) as e:
            logger.warning(f"Metric query failed, keeping previous snapshot: {e}")
            return self._degraded()

        elapsed = time.monotonic() - started
        if elapsed > self._sample_timeout:
            logger.warning(f"Metric query took {elapsed:.2f}s, keeping previous snapshot")
            return self._degraded()

        with self._lock:
            self._previous = snapshot
            self._history.append(snapshot)
        return snapshot

    def _degraded(self) -> ResourceSnapshot:
        previous = self._previous
        if previous is None:
            return ResourceSnapshot(
                timestamp=time.time(),
                cpu_percent=0.0,
                memory_used=0,
                memory_total=0,
                swap_used=0,
                swap_total=0,
                degraded=True,
            )
        return replace(previous, degraded=True)

    def _collect_snapshot(self, first: bool) -> ResourceSnapshot:
        """Collect a snapshot of the current system state."""
        # Non-blocking: averaged across cores since the previous call
        cpu_percent = psutil.cpu_percent(interval=None)

        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()

        processes = self._collect_processes(first)

        return ResourceSnapshot(
            timestamp=time.time(),
            cpu_percent=0.0 if first else _clamp_percent(cpu_percent),
            memory_used=min(mem.used, mem.total),
            memory_total=mem.total,
            swap_used=min(swap.used, swap.total),
            swap_total=swap.total,
            disks=self._collect_disks(),
            processes=processes,
        )

    def _collect_disks(self) -> tuple[DiskUsage, ...]:
        """Usage of each mounted physical volume, one entry per device."""
        disks: list[DiskUsage] = []
        seen_devices: set[str] = set()

        for part in psutil.disk_partitions(all=False):
            if part.device in seen_devices:
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError):
                # Unmounted or inaccessible volumes are skipped
                continue
            seen_devices.add(part.device)
            disks.append(
                DiskUsage(
                    mountpoint=part.mountpoint,
                    used=min(usage.used, usage.total),
                    total=usage.total,
                )
            )

        return tuple(disks)

    def _collect_processes(self, first: bool = False) -> tuple[ProcessSample, ...]:
        """
        Collect samples of all running processes.

        psutil.process_iter() caches Process objects between calls, so each
        cpu_percent is measured against that process's previous sample.
        """
        processes: list[ProcessSample] = []

        for proc in psutil.process_iter(attrs=["pid", "name", "cpu_percent", "memory_info"]):
            try:
                info = proc.info

                mem_info = info.get("memory_info")
                memory_rss = mem_info.rss if mem_info else 0

                cpu = info.get("cpu_percent") or 0.0
                processes.append(
                    ProcessSample(
                        pid=info.get("pid", 0),
                        name=info.get("name") or "",
                        cpu_percent=0.0 if first else _clamp_percent(cpu / self._cpu_count),
                        memory_rss=memory_rss,
                    )
                )

            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Processes that died mid-poll, access denied, or zombies
                continue

        return tuple(processes)
