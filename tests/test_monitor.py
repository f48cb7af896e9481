"""Tests for discovery and the ServerMonitor class."""

import json
import os
import sys
from queue import Queue

import pytest

from mcptop.models import DiscoverySnapshot, ProcessRecord, ScanResult, Source
from mcptop.monitor import ServerMonitor, discover
from mcptop.process_table import ProcessTable, ProcessTableError
from mcptop.settings import Settings


class FakeTable(ProcessTable):
    """Process table serving canned lines."""

    def __init__(self, records: list[ProcessRecord] | None = None, fail: bool = False) -> None:
        self._records = records or []
        self._fail = fail

    def enumerate(self) -> list[str]:
        if self._fail:
            raise ProcessTableError("ps: not found")
        return [str(index) for index in range(len(self._records))]

    def parse(self, line: str) -> ProcessRecord | None:
        return self._records[int(line)]


def record(pid: int, command_line: str, cpu: float | None = None) -> ProcessRecord:
    return ProcessRecord(
        pid=pid,
        ppid=1,
        memory_percent=0.5,
        rss_kb=102400,
        elapsed_raw="10:00",
        command_line=command_line,
        cpu_percent=cpu,
    )


@pytest.fixture
def settings(tmp_path):
    config = tmp_path / ".cursor/mcp.json"
    config.parent.mkdir(parents=True)
    config.write_text(
        json.dumps({"mcpServers": {"tracker": {"command": "node", "args": ["/opt/tracker/index.js"]}}}),
        encoding="utf-8",
    )
    return Settings.for_home(tmp_path, cpu_interval=0.01)


def empty_snapshot() -> DiscoverySnapshot:
    return DiscoverySnapshot(processes=(), configs=())


class TestDiscover:
    """Tests for the combined discovery cycle."""

    def test_discovers_configured_and_heuristic_servers(self, settings):
        """Test a full cycle classifies, names and samples servers."""
        table = FakeTable(
            [
                record(10, "node /opt/tracker/index.js"),
                record(11, "uvx mcp-server-fetch"),
                record(12, "/usr/bin/sshd -D"),
            ]
        )

        snapshot = discover(
            settings,
            table=table,
            parent_lookup=lambda ppid: None,
            sample=lambda pid, interval: 7.5,
        )

        assert snapshot.scan_ok
        assert len(snapshot.configs) == 1
        names = {proc.pid: proc.display_name for proc in snapshot.processes}
        assert names == {10: "tracker", 11: "mcp-server-fetch"}
        assert snapshot.processes[0].source is Source.CURSOR
        assert all(proc.cpu_percentage == 7.5 for proc in snapshot.processes)
        assert snapshot.total_ram_mb == 200

    def test_listing_cpu_is_not_resampled(self, settings):
        """Test records that carry CPU skip the extra sample."""
        sampled = []

        def sample(pid, interval):
            sampled.append(pid)
            return 1.0

        snapshot = discover(
            settings,
            table=FakeTable([record(20, "node mcp-server.js", cpu=64.0)]),
            parent_lookup=lambda ppid: None,
            sample=sample,
        )

        assert sampled == []
        assert snapshot.processes[0].cpu_percentage == 64.0

    def test_own_process_is_not_listed(self, settings):
        """Test the running mcptop process is left out of its own table."""
        table = FakeTable(
            [
                record(os.getpid(), f"{sys.executable} /home/me/.venv/bin/mcptop --poll-rate 2"),
                record(10, "node /opt/tracker/index.js"),
            ]
        )

        snapshot = discover(
            settings,
            table=table,
            parent_lookup=lambda ppid: None,
            sample=lambda pid, interval: 0.0,
        )

        assert [proc.pid for proc in snapshot.processes] == [10]

    def test_failed_listing_is_empty(self, settings):
        """Test an unavailable listing yields no processes and flags the scan."""
        snapshot = discover(settings, table=FakeTable(fail=True), parent_lookup=lambda ppid: None)

        assert snapshot.processes == ()
        assert snapshot.scan_ok is False
        assert len(snapshot.configs) == 1

    def test_no_servers_is_empty(self, tmp_path):
        """Test a process list without servers is a normal empty result."""
        snapshot = discover(
            Settings.for_home(tmp_path),
            table=FakeTable([record(1, "/sbin/init")]),
            parent_lookup=lambda ppid: None,
        )
        assert snapshot.processes == ()
        assert snapshot.scan_ok


class TestServerMonitor:
    """Tests for ServerMonitor class."""

    def test_monitor_creation(self):
        """Test ServerMonitor can be instantiated."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, discover_fn=empty_snapshot)

        assert monitor.poll_rate == 5.0
        assert not monitor.is_running

    def test_poll_rate_minimum(self):
        """Test poll rate has a minimum value."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.01, discover_fn=empty_snapshot)
        assert monitor.poll_rate >= 0.5

        monitor.poll_rate = 0.01
        assert monitor.poll_rate >= 0.5

    def test_monitor_start_stop(self):
        """Test ServerMonitor can be started and stopped."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.5, discover_fn=empty_snapshot)

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self):
        """Test starting an already running monitor is safe."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.5, discover_fn=empty_snapshot)

        monitor.start()
        thread1 = monitor._thread
        monitor.start()
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()

    def test_monitor_collects_snapshots(self):
        """Test ServerMonitor queues snapshots."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.5, discover_fn=empty_snapshot)

        monitor.start()
        try:
            snapshot = queue.get(timeout=2.0)
            assert isinstance(snapshot, DiscoverySnapshot)
        finally:
            monitor.stop()

    def test_monitor_survives_failing_cycles(self):
        """Test a raising discovery cycle does not kill the loop."""
        calls = 0

        def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return empty_snapshot()

        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.5, discover_fn=flaky)

        monitor.start()
        try:
            assert isinstance(queue.get(timeout=3.0), DiscoverySnapshot)
            assert monitor.is_running
        finally:
            monitor.stop()

    def test_refresh_runs_cycle_early(self):
        """Test refresh() skips the rest of the poll interval."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=30.0, discover_fn=empty_snapshot)

        monitor.start()
        try:
            queue.get(timeout=2.0)
            monitor.refresh()
            assert isinstance(queue.get(timeout=2.0), DiscoverySnapshot)
        finally:
            monitor.stop()

    def test_daemon_thread(self):
        """Test monitor thread is a daemon thread."""
        queue: Queue[DiscoverySnapshot] = Queue()
        monitor = ServerMonitor(queue, poll_rate=0.5, discover_fn=empty_snapshot)

        monitor.start()
        try:
            assert monitor._thread is not None
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "ServerMonitor"
        finally:
            monitor.stop()


def test_scan_result_from_fake_table():
    """Test the fake table behaves like a real reader."""
    assert FakeTable([record(1, "x")]).scan() == ScanResult(records=(record(1, "x"),))
