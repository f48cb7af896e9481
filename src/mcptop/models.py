"""Data models for mcptop."""

from dataclasses import dataclass, field
from enum import Enum


class Source(Enum):
    """Tool that declared or spawned an MCP server."""

    CLAUDE_DESKTOP = "claude-desktop"
    VSCODE = "vscode"
    CURSOR = "cursor"
    CLAUDE_CODE = "claude-code"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        """Human-readable name of the source."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Source.CLAUDE_DESKTOP: "Claude Desktop",
    Source.VSCODE: "VS Code",
    Source.CURSOR: "Cursor",
    Source.CLAUDE_CODE: "Claude Code",
    Source.UNKNOWN: "Unknown",
}


@dataclass(slots=True, frozen=True)
class ServerDefinition:
    """One server entry declared in a configuration file."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ConfigSnapshot:
    """Server declarations parsed from a single configuration file."""

    source: Source
    file_path: str
    servers: dict[str, ServerDefinition]


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Raw process-table row, before classification."""

    pid: int
    ppid: int
    memory_percent: float
    rss_kb: int  # Kilobytes
    elapsed_raw: str  # '[[DD-]HH:]MM:SS' or '' when the platform has none
    command_line: str
    cpu_percent: float | None = None  # Only set when the listing carries it


@dataclass(slots=True, frozen=True)
class ClassifiedProcess:
    """A process identified as a running MCP server."""

    pid: int
    display_name: str
    command: str  # argv[0]
    command_line: str
    ram_usage_mb: int
    ram_percentage: float
    cpu_percentage: float
    source: Source
    config_path: str | None = None
    start_time: str | None = None


@dataclass(slots=True, frozen=True)
class ScanResult:
    """Outcome of one process-table scan.

    A failed scan carries no records. Callers that only care about records
    can treat both variants alike; ``ok`` tells "nothing running" apart from
    "the listing command failed".
    """

    records: tuple[ProcessRecord, ...] = ()
    ok: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "ScanResult":
        return cls(records=(), ok=False, error=error)


@dataclass(slots=True, frozen=True)
class DiscoverySnapshot:
    """Result of one full discovery cycle."""

    processes: tuple[ClassifiedProcess, ...]
    configs: tuple[ConfigSnapshot, ...]
    scan_ok: bool = True

    @property
    def total_ram_mb(self) -> int:
        return sum(proc.ram_usage_mb for proc in self.processes)
