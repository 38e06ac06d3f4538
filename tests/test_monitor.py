"""Tests for the MetricSampler class."""

from queue import Queue
from types import SimpleNamespace

import psutil

from tidytop.models import ProcessSample, ResourceSnapshot
from tidytop.monitor import MetricSampler


def assert_within_bounds(snapshot: ResourceSnapshot) -> None:
    assert 0.0 <= snapshot.cpu_percent <= 100.0
    assert snapshot.memory_used <= snapshot.memory_total
    assert snapshot.swap_used <= snapshot.swap_total
    for disk in snapshot.disks:
        assert disk.used <= disk.total
    for proc in snapshot.processes:
        assert 0.0 <= proc.cpu_percent <= 100.0


class TestMetricSampler:
    """Tests for MetricSampler class."""

    def test_sampler_creation(self):
        """Test MetricSampler can be instantiated."""
        queue: Queue[ResourceSnapshot] = Queue()
        sampler = MetricSampler(queue)

        assert sampler.poll_rate == 2.0
        assert not sampler.is_running
        assert sampler.latest is None

    def test_sampler_custom_poll_rate(self):
        """Test MetricSampler with custom poll rate."""
        sampler = MetricSampler(poll_rate=1.0)

        assert sampler.poll_rate == 1.0

    def test_poll_rate_minimum(self):
        """Test poll rate has a minimum value."""
        sampler = MetricSampler()

        sampler.poll_rate = 0.01
        assert sampler.poll_rate >= 0.1

    def test_first_sample_reports_zero_cpu(self):
        """Test the first sample has no CPU baseline."""
        sampler = MetricSampler(sample_timeout=30.0)

        snapshot = sampler.sample()

        assert snapshot.cpu_percent == 0.0
        assert all(proc.cpu_percent == 0.0 for proc in snapshot.processes)
        assert not snapshot.degraded

    def test_consecutive_samples_stay_within_bounds(self):
        """Test samples stay within their valid ranges."""
        sampler = MetricSampler(sample_timeout=30.0)

        first = sampler.sample()
        second = sampler.sample()

        assert_within_bounds(first)
        assert_within_bounds(second)
        assert second.timestamp >= first.timestamp
        assert second.memory_total > 0

    def test_sample_collects_processes(self):
        """Test a sample includes processes."""
        sampler = MetricSampler(sample_timeout=30.0)

        snapshot = sampler.sample()

        assert isinstance(snapshot.processes, tuple)
        assert len(snapshot.processes) > 0
        pids = [proc.pid for proc in snapshot.processes]
        assert len(pids) == len(set(pids))
        for proc in snapshot.processes:
            assert isinstance(proc, ProcessSample)
            assert isinstance(proc.name, str)
            assert isinstance(proc.memory_rss, int)

    def test_query_failure_returns_previous_snapshot_degraded(self, mocker):
        """Test a failed query republishes the previous snapshot as degraded."""
        sampler = MetricSampler(sample_timeout=30.0)
        good = sampler.sample()

        mocker.patch("tidytop.monitor.psutil.virtual_memory", side_effect=OSError("boom"))
        degraded = sampler.sample()

        assert degraded.degraded
        assert degraded.timestamp == good.timestamp
        assert degraded.memory_total == good.memory_total
        assert degraded.processes == good.processes
        assert sampler.latest is good

    def test_query_failure_without_previous_snapshot(self, mocker):
        """Test a failed first query yields an empty degraded snapshot."""
        mocker.patch("tidytop.monitor.psutil.swap_memory", side_effect=psutil.Error())
        sampler = MetricSampler()

        snapshot = sampler.sample()

        assert snapshot.degraded
        assert snapshot.processes == ()
        assert snapshot.memory_total == 0

    def test_slow_query_is_treated_as_degraded(self, mocker):
        """Test an overlong query is reported as degraded."""
        sampler = MetricSampler(sample_timeout=30.0)
        good = sampler.sample()

        # Any real query takes longer than this
        sampler._sample_timeout = 0.0
        snapshot = sampler.sample()

        assert snapshot.degraded
        assert snapshot.timestamp == good.timestamp

    def test_recovers_after_failure(self, mocker):
        """Test sampling recovers after a failed query."""
        sampler = MetricSampler(sample_timeout=30.0)
        sampler.sample()

        mocker.patch("tidytop.monitor.psutil.virtual_memory", side_effect=OSError("boom"))
        assert sampler.sample().degraded
        mocker.stopall()

        assert not sampler.sample().degraded

    def test_history_is_bounded(self):
        """Test the history ring keeps only recent snapshots."""
        sampler = MetricSampler(history_size=3, sample_timeout=30.0)

        for _ in range(5):
            sampler.sample()

        history = sampler.history()
        assert len(history) == 3
        assert history[-1] is sampler.latest

    def test_sampler_start_stop(self):
        """Test MetricSampler can be started and stopped."""
        queue: Queue[ResourceSnapshot] = Queue()
        sampler = MetricSampler(queue, poll_rate=0.1, sample_timeout=30.0)

        sampler.start()
        assert sampler.is_running

        sampler.stop()
        assert not sampler.is_running

    def test_sampler_start_idempotent(self):
        """Test starting an already running sampler is safe."""
        sampler = MetricSampler(Queue(), poll_rate=0.1, sample_timeout=30.0)

        sampler.start()
        thread1 = sampler._thread

        sampler.start()
        thread2 = sampler._thread

        assert thread1 is thread2
        sampler.stop()

    def test_sampler_pushes_snapshots(self):
        """Test the polling thread collects and queues data."""
        queue: Queue[ResourceSnapshot] = Queue()
        sampler = MetricSampler(queue, poll_rate=0.1, sample_timeout=30.0)

        sampler.start()

        try:
            snapshot1 = queue.get(timeout=5.0)
            snapshot2 = queue.get(timeout=5.0)
            assert isinstance(snapshot1, ResourceSnapshot)
            assert snapshot1.memory_total > 0
            assert_within_bounds(snapshot2)
        finally:
            sampler.stop()

    def test_daemon_thread(self):
        """Test sampler thread is a daemon thread."""
        sampler = MetricSampler(Queue(), poll_rate=0.1)

        sampler.start()

        try:
            assert sampler._thread is not None
            assert sampler._thread.daemon is True
            assert sampler._thread.name == "MetricSampler"
        finally:
            sampler.stop()

    def test_collect_disks_deduplicates_devices(self, mocker):
        """Test disks mounted twice are counted once."""
        part = SimpleNamespace(device="/dev/sda1", mountpoint="/")
        bind = SimpleNamespace(device="/dev/sda1", mountpoint="/mnt/bind")
        gone = SimpleNamespace(device="/dev/sdb1", mountpoint="/media/usb")
        mocker.patch("tidytop.monitor.psutil.disk_partitions", return_value=[part, bind, gone])

        def usage(mountpoint):
            if mountpoint == "/media/usb":
                raise PermissionError(mountpoint)
            return SimpleNamespace(total=100, used=40, free=60, percent=40.0)

        mocker.patch("tidytop.monitor.psutil.disk_usage", side_effect=usage)

        disks = MetricSampler()._collect_disks()

        assert [d.mountpoint for d in disks] == ["/"]
        assert disks[0].used == 40
        assert disks[0].total == 100
