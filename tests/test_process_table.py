"""Tests for the platform process-table readers."""

import subprocess

import psutil
import pytest

from mcptop import process_table
from mcptop.models import ProcessRecord
from mcptop.process_table import (
    PosixProcessTable,
    ProcessTable,
    ProcessTableError,
    WindowsProcessTable,
    list_processes,
    parent_command_line,
    select_process_table,
)


class FakeCompleted:
    def __init__(self, stdout: str, returncode: int = 0) -> None:
        self.stdout = stdout
        self.returncode = returncode


PS_OUTPUT = """\
  PID  PPID %MEM   RSS     ELAPSED COMMAND
    1     0  0.1 11840  5-12:34:56 /sbin/init splash
 4242  4100  1.3 204800       12:34 node /opt/mcp/server.js --stdio
 4243  4242  0,7 51200    01:02:03 uvx mcp-server-git --repository /src
garbage line
"""


class TestPosixProcessTable:
    """Tests for the ps based reader."""

    def test_parse_simple_line(self):
        """Test a regular ps line becomes a ProcessRecord."""
        table = PosixProcessTable()
        record = table.parse(" 4242  4100  1.3 204800       12:34 node /opt/mcp/server.js --stdio")

        assert record == ProcessRecord(
            pid=4242,
            ppid=4100,
            memory_percent=1.3,
            rss_kb=204800,
            elapsed_raw="12:34",
            command_line="node /opt/mcp/server.js --stdio",
        )

    def test_parse_days_and_decimal_comma(self):
        """Test elapsed times with days and locale decimal commas."""
        table = PosixProcessTable()
        record = table.parse("7 1 0,7 100 3-04:05:06 python -m server")

        assert record.memory_percent == 0.7
        assert record.elapsed_raw == "3-04:05:06"
        assert record.command_line == "python -m server"

    def test_parse_rejects_header_and_garbage(self):
        """Test non-matching lines are skipped."""
        table = PosixProcessTable()
        assert table.parse("  PID  PPID %MEM   RSS     ELAPSED COMMAND") is None
        assert table.parse("garbage line") is None
        assert table.parse("") is None

    def test_parse_rejects_pid_zero(self):
        """Test pid 0 is not a valid record."""
        assert PosixProcessTable().parse("0 0 0.0 0 00:01 kernel_task") is None

    def test_scan_parses_all_valid_lines(self, monkeypatch):
        """Test scan runs ps and keeps only parseable lines."""
        calls = []

        def fake_run(argv, **kwargs):
            calls.append((argv, kwargs))
            return FakeCompleted(PS_OUTPUT)

        monkeypatch.setattr(process_table.subprocess, "run", fake_run)

        result = PosixProcessTable().scan()

        assert result.ok
        assert [r.pid for r in result.records] == [1, 4242, 4243]
        argv, kwargs = calls[0]
        assert argv == ["ps", "-eo", "pid,ppid,%mem,rss,etime,command"]
        assert kwargs["env"]["LC_ALL"] == "C"
        assert "shell" not in kwargs

    def test_scan_missing_command_is_empty(self, monkeypatch):
        """Test an unavailable ps yields a failed, empty scan."""

        def fake_run(argv, **kwargs):
            raise FileNotFoundError(argv[0])

        monkeypatch.setattr(process_table.subprocess, "run", fake_run)

        result = PosixProcessTable().scan()
        assert not result.ok
        assert result.records == ()
        assert list_processes(PosixProcessTable()) == []

    def test_scan_timeout_is_empty(self, monkeypatch):
        """Test a hanging ps yields a failed scan."""

        def fake_run(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        monkeypatch.setattr(process_table.subprocess, "run", fake_run)
        assert not PosixProcessTable().scan().ok

    def test_scan_nonzero_exit_is_empty(self, monkeypatch):
        """Test a failing ps yields a failed scan."""
        monkeypatch.setattr(process_table.subprocess, "run", lambda argv, **kw: FakeCompleted("", 1))
        result = PosixProcessTable().scan()
        assert not result.ok
        assert "status 1" in result.error

    def test_scan_empty_output(self, monkeypatch):
        """Test no output is a successful empty scan."""
        monkeypatch.setattr(process_table.subprocess, "run", lambda argv, **kw: FakeCompleted(""))
        result = PosixProcessTable().scan()
        assert result.ok
        assert result.records == ()


class TestWindowsProcessTable:
    """Tests for the PowerShell based reader."""

    def test_parse_line(self):
        """Test a delimited line becomes a ProcessRecord with listing CPU."""
        table = WindowsProcessTable(total_memory_kb=1024 * 1024)
        record = table.parse("5120|4000|12.5|262144|C:/Program Files/nodejs/node.exe|node.exe")

        assert record.pid == 5120
        assert record.ppid == 4000
        assert record.cpu_percent == 12.5
        assert record.rss_kb == 262144
        assert record.memory_percent == 25.0
        assert record.elapsed_raw == ""
        assert record.command_line == "C:/Program Files/nodejs/node.exe"

    def test_parse_command_line_containing_delimiter(self):
        """Test a command line with '|' keeps the name as the last column."""
        table = WindowsProcessTable(total_memory_kb=1000)
        record = table.parse('1|2|0|10|node server.js --sep "a|b"|node.exe')

        assert record.command_line == 'node server.js --sep "a|b"'

    def test_parse_keeps_backslashes(self):
        """Test command lines reach the classifier as Windows wrote them."""
        table = WindowsProcessTable(total_memory_kb=1000)
        record = table.parse(r'7|2|0|10|"C:\Program Files\nodejs\node.exe" C:\tools\forecast.js|node.exe')
        assert record.command_line == r'"C:\Program Files\nodejs\node.exe" C:\tools\forecast.js'

    def test_script_rewrites_only_executable_paths(self):
        """Test the listing script leaves command lines untouched."""
        script = WindowsProcessTable.SCRIPT
        assert "$_.CommandLine }" in script
        assert "$_.ExecutablePath -replace" in script
        assert "$_.CommandLine -replace" not in script

    def test_parse_falls_back_to_name(self):
        """Test an empty path uses the process name."""
        table = WindowsProcessTable(total_memory_kb=1000)
        record = table.parse("10|4|0|100||System")
        assert record.command_line == "System"

    def test_parse_rejects_short_or_bad_lines(self):
        """Test malformed lines are skipped."""
        table = WindowsProcessTable(total_memory_kb=1000)
        assert table.parse("1|2|3|4|5") is None
        assert table.parse("x|2|0|10|path|name") is None
        assert table.parse("1|2|high|10|path|name") is None
        assert table.parse("") is None

    def test_enumerate_uses_argument_list(self, monkeypatch):
        """Test PowerShell is invoked without a shell."""
        calls = []

        def fake_run(argv, **kwargs):
            calls.append(argv)
            return FakeCompleted("1|0|0|10|C:/x.exe|x.exe\n")

        monkeypatch.setattr(process_table.subprocess, "run", fake_run)

        result = WindowsProcessTable(total_memory_kb=1000).scan()
        assert len(result.records) == 1
        assert calls[0][0] == "powershell"


def test_select_process_table():
    """Test the reader is chosen by platform."""
    assert isinstance(select_process_table("win32"), WindowsProcessTable)
    assert isinstance(select_process_table("darwin"), PosixProcessTable)
    assert isinstance(select_process_table("linux"), PosixProcessTable)


def test_custom_table_error_becomes_failed_scan():
    """Test a ProcessTableError from any reader is contained."""

    class BrokenTable(ProcessTable):
        def enumerate(self):
            raise ProcessTableError("boom")

        def parse(self, line):
            return None

    result = BrokenTable().scan()
    assert not result.ok
    assert result.error == "boom"


class TestParentCommandLine:
    """Tests for parent process lookup."""

    def test_current_process_parent(self):
        """Test looking up a live process returns its command line."""
        parent = psutil.Process().ppid()
        if parent <= 0:
            pytest.skip("no parent process")
        assert parent_command_line(parent)

    def test_invalid_pid(self):
        """Test pid 0 and negative pids return None."""
        assert parent_command_line(0) is None
        assert parent_command_line(-5) is None

    def test_lookup_failure(self, monkeypatch):
        """Test psutil errors are turned into None."""

        def fake_process(pid):
            raise psutil.AccessDenied(pid)

        monkeypatch.setattr(process_table.psutil, "Process", fake_process)
        assert parent_command_line(1234) is None
