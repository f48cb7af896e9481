"""Platform process-table readers for mcptop.

Each reader runs one listing command and turns its text output into
uniform ``ProcessRecord`` rows. The reader is picked once per platform by
``select_process_table``; shared code never branches on the OS.
"""

import logging
import os
import re
import subprocess
import sys
from abc import ABC, abstractmethod

import psutil

from mcptop.models import ProcessRecord, ScanResult

logger = logging.getLogger(__name__)

LISTING_TIMEOUT = 10.0  # seconds


class ProcessTableError(Exception):
    """The listing command is unavailable, failed or timed out."""


class ProcessTable(ABC):
    """Capability set of a platform process listing."""

    @abstractmethod
    def enumerate(self) -> list[str]:
        """Run the listing command and return its raw output lines."""

    @abstractmethod
    def parse(self, line: str) -> ProcessRecord | None:
        """Parse one output line, or return None if it does not fit."""

    def scan(self) -> ScanResult:
        """
        Enumerate and parse the process table.

        Lines that fail to parse are skipped. A failing listing command
        yields a failed ``ScanResult`` with no records instead of raising.
        """
        try:
            lines = self.enumerate()
        except ProcessTableError as exc:
            logger.warning("Process listing failed: %s", exc)
            return ScanResult.failed(str(exc))

        records = []
        for line in lines:
            record = self.parse(line)
            if record is not None:
                records.append(record)
        return ScanResult(records=tuple(records))

    def _run(self, argv: list[str], env: dict[str, str] | None = None) -> list[str]:
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=LISTING_TIMEOUT,
                env=env,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ProcessTableError(f"{argv[0]}: {exc}") from exc

        if completed.returncode != 0:
            raise ProcessTableError(f"{argv[0]} exited with status {completed.returncode}")
        return completed.stdout.splitlines()


class PosixProcessTable(ProcessTable):
    """``ps`` based listing for macOS and Linux."""

    ARGV = ["ps", "-eo", "pid,ppid,%mem,rss,etime,command"]

    # PID PPID %MEM RSS ELAPSED COMMAND; the command is the rest of the line.
    LINE_RE = re.compile(
        r"^\s*(\d+)\s+(\d+)\s+(\d+(?:[.,]\d+)?)\s+(\d+)\s+([\d:-]+)\s+(.+?)\s*$"
    )

    def enumerate(self) -> list[str]:
        # Pin the locale so %mem always uses a decimal point
        env = dict(os.environ, LC_ALL="C")
        return self._run(self.ARGV, env=env)

    def parse(self, line: str) -> ProcessRecord | None:
        match = self.LINE_RE.match(line)
        if match is None:
            return None

        pid_str, ppid_str, mem_str, rss_str, etime, command_line = match.groups()
        pid = int(pid_str)
        if pid <= 0:
            return None

        return ProcessRecord(
            pid=pid,
            ppid=int(ppid_str),
            memory_percent=float(mem_str.replace(",", ".")),
            rss_kb=int(rss_str),
            elapsed_raw=etime,
            command_line=command_line,
        )


class WindowsProcessTable(ProcessTable):
    """PowerShell CIM listing for Windows.

    Emits ``pid|ppid|cpu%|memKB|path|name`` per process. The path column
    holds the full command line when Windows reports one, so it may contain
    the delimiter itself; the name is always the last column.
    """

    SCRIPT = r"""
$ErrorActionPreference = 'SilentlyContinue'
$perf = @{}
Get-CimInstance Win32_PerfFormattedData_PerfProc_Process | ForEach-Object { $perf[[int]$_.IDProcess] = $_.PercentProcessorTime }
Get-CimInstance Win32_Process | ForEach-Object {
  $cpu = $perf[[int]$_.ProcessId]
  if ($null -eq $cpu) { $cpu = 0 }
  $memKB = [int64]([double]$_.WorkingSetSize / 1KB)
  $path = if ($_.CommandLine) { $_.CommandLine } elseif ($_.ExecutablePath) { $_.ExecutablePath -replace '\\', '/' } else { '' }
  $path = $path -replace '[\r\n]', ' '
  "$($_.ProcessId)|$($_.ParentProcessId)|$cpu|$memKB|$path|$($_.Name)"
}
"""

    NUMBER_RE = re.compile(r"^\d+(?:[.,]\d+)?$")

    def __init__(self, total_memory_kb: int | None = None) -> None:
        """
        Args:
            total_memory_kb: Physical memory used to derive memory percent.
                Read from psutil on first use when omitted.
        """
        self._total_memory_kb = total_memory_kb

    @property
    def total_memory_kb(self) -> int:
        if self._total_memory_kb is None:
            self._total_memory_kb = psutil.virtual_memory().total // 1024
        return self._total_memory_kb

    def enumerate(self) -> list[str]:
        return self._run(["powershell", "-NoProfile", "-NonInteractive", "-Command", self.SCRIPT])

    def parse(self, line: str) -> ProcessRecord | None:
        parts = line.strip().split("|", 4)
        if len(parts) < 5:
            return None
        pid_str, ppid_str, cpu_str, mem_str, rest = parts
        path, separator, name = rest.rpartition("|")
        if not separator:
            return None

        pid_str, ppid_str, cpu_str, mem_str = (
            pid_str.strip(),
            ppid_str.strip(),
            cpu_str.strip(),
            mem_str.strip(),
        )
        if not (pid_str.isdigit() and ppid_str.isdigit() and mem_str.isdigit()):
            return None
        if not self.NUMBER_RE.match(cpu_str):
            return None

        pid = int(pid_str)
        if pid <= 0:
            return None

        rss_kb = int(mem_str)
        total = self.total_memory_kb
        memory_percent = round(rss_kb / total * 100, 1) if total else 0.0

        return ProcessRecord(
            pid=pid,
            ppid=int(ppid_str),
            memory_percent=memory_percent,
            rss_kb=rss_kb,
            elapsed_raw="",
            command_line=path.strip() or name.strip(),
            cpu_percent=float(cpu_str.replace(",", ".")),
        )


def select_process_table(platform: str | None = None) -> ProcessTable:
    """Pick the process-table reader for ``platform`` (defaults to this one)."""
    platform = sys.platform if platform is None else platform
    if platform.startswith("win"):
        return WindowsProcessTable()
    return PosixProcessTable()


def list_processes(table: ProcessTable | None = None) -> list[ProcessRecord]:
    """Return the current process records; empty if the listing fails."""
    if table is None:
        table = select_process_table()
    return list(table.scan().records)


def parent_command_line(ppid: int) -> str | None:
    """
    Look up the command line of a parent process.

    Returns None when the process is gone, inaccessible or the pid is not
    usable, so callers can fall back without handling OS errors.
    """
    if ppid <= 0:
        return None
    try:
        proc = psutil.Process(ppid)
        with proc.oneshot():
            cmdline = proc.cmdline()
            return " ".join(cmdline) if cmdline else proc.name()
    except (psutil.Error, ValueError, OSError) as exc:
        logger.debug("Parent lookup for %d failed: %s", ppid, exc)
        return None
