"""Classification of process records into MCP server instances.

Every decision is driven by an ordered rule table so the precedence is
data rather than control flow:

* configuration matches beat heuristic name rules;
* command-line matches beat parent-process source inference.
"""

import logging
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from mcptop.metrics import format_elapsed
from mcptop.models import ClassifiedProcess, ConfigSnapshot, ProcessRecord, Source
from mcptop.process_table import parent_command_line

logger = logging.getLogger(__name__)

MARKERS = ("mcp", "model-context-protocol")
# Interpreters and launchers MCP servers run under
RUNTIME_RE = re.compile(r"node|python|npx|uvx|deno", re.IGNORECASE)
FALLBACK_NAME = "MCP Server"

SERVER_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"mcp[-_]?server",
        r"@modelcontextprotocol",
        r"stdio.*server",
        r"server\.js.*stdio",
        r"server\.py.*stdio",
        r"uvx.*mcp",
        r"npx.*mcp",
        r"-mcp$",
        r"mcp-",
    )
)

ParentLookup = Callable[[int], str | None]


@dataclass(slots=True, frozen=True)
class ConfigMatch:
    """Lookup-table entry built from one configured server."""

    key: str
    command: str
    args: tuple[str, ...]
    name: str
    source: Source
    config_path: str

    @property
    def tokens(self) -> tuple[str, ...]:
        # Flags such as "-y" say nothing about which server this is
        return tuple(
            token for arg in self.args for token in arg.split() if not token.startswith("-")
        )


def normalize_separators(text: str) -> str:
    """Use forward slashes so Windows paths compare equal however they are written."""
    return text.replace("\\", "/")


def build_lookup(configs: Iterable[ConfigSnapshot]) -> list[ConfigMatch]:
    """Flatten all configured servers into a lookup table, in config order."""
    lookup: list[ConfigMatch] = []
    for config in configs:
        for name, server in config.servers.items():
            command = normalize_separators(server.command)
            args = tuple(normalize_separators(arg) for arg in server.args)
            lookup.append(
                ConfigMatch(
                    key=" ".join((command, *args)),
                    command=command,
                    args=args,
                    name=name,
                    source=config.source,
                    config_path=config.file_path,
                )
            )
    return lookup


def _declares(command_line: str, entry: ConfigMatch) -> bool:
    return entry.command in command_line and any(arg in command_line for arg in entry.args)


def runs_on_runtime(command_line: str, lookup: Iterable[ConfigMatch]) -> bool:
    """Pre-filter: the process runs under a known launcher or a configured command.

    Keeps editors, pagers and log tailers that merely mention an MCP file
    out of the table.
    """
    if RUNTIME_RE.search(command_line):
        return True
    return any(_declares(command_line, entry) for entry in lookup)


def looks_like_server(command_line: str, lookup: Iterable[ConfigMatch]) -> bool:
    """Decide whether a command line belongs to an MCP server.

    Deliberately permissive: a stray match costs a row in the list, a miss
    hides a running server.
    """
    lowered = command_line.lower()
    if any(marker in lowered for marker in MARKERS):
        return True
    if any(_declares(command_line, entry) for entry in lookup):
        return True
    return any(pattern.search(command_line) for pattern in SERVER_PATTERNS)


# Config lookup passes, strongest first. The first pass with a hit wins and,
# within a pass, the first entry in config order wins.
CONFIG_MATCH_RULES: tuple[Callable[[str, ConfigMatch], bool], ...] = (
    lambda line, entry: entry.key in line,
    _declares,
    lambda line, entry: any(token in line for token in entry.tokens),
)


def match_config(command_line: str, lookup: list[ConfigMatch]) -> ConfigMatch | None:
    """Find the configured server a command line belongs to, if any."""
    for rule in CONFIG_MATCH_RULES:
        for entry in lookup:
            if rule(command_line, entry):
                return entry
    return None


_PACKAGE_RE = re.compile(r"(@[\w-]+/)?[\w-]*mcp[\w-]*", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"/([^/\s]+)\.(?:js|ts|py)(?:\s|$)")
_SERVER_AFFIX_RE = re.compile(r"[-_]?server[-_]?", re.IGNORECASE)
_RUNNER_RE = re.compile(r"\b(?:npx|uvx)\s+(?:-\S+\s+)*(@?\w[\w-]*/[\w-]+|\w[\w-]*)")


def _name_from_package(command_line: str) -> str | None:
    match = _PACKAGE_RE.search(command_line)
    return match.group(0) if match else None


def _name_from_script(command_line: str) -> str | None:
    match = _SCRIPT_RE.search(command_line)
    if match is None:
        return None
    stem = match.group(1)
    return _SERVER_AFFIX_RE.sub("", stem, count=1).replace("-", " ").strip() or stem


def _name_from_runner(command_line: str) -> str | None:
    match = _RUNNER_RE.search(command_line)
    return match.group(1) if match else None


NAME_RULES: tuple[Callable[[str], str | None], ...] = (
    _name_from_package,
    _name_from_script,
    _name_from_runner,
)


def extract_server_name(command_line: str) -> str:
    """Guess a display name from the command line alone."""
    for rule in NAME_RULES:
        name = rule(command_line)
        if name:
            return name
    return FALLBACK_NAME


PARENT_SOURCE_RULES: tuple[tuple[Callable[[str], bool], Source], ...] = (
    (lambda cmd: "claude-code" in cmd or "claude_code" in cmd, Source.CLAUDE_CODE),
    (lambda cmd: "claude" in cmd and "desktop" in cmd, Source.CLAUDE_DESKTOP),
    (lambda cmd: "cursor" in cmd, Source.CURSOR),
    (lambda cmd: "code" in cmd or "vscode" in cmd, Source.VSCODE),
)


def source_from_parent(ppid: int, parent_lookup: ParentLookup = parent_command_line) -> Source:
    """Infer the source tool from the parent's command line."""
    try:
        parent = parent_lookup(ppid)
    except Exception:
        logger.debug("Parent lookup for %d raised", ppid, exc_info=True)
        return Source.UNKNOWN
    if not parent:
        return Source.UNKNOWN

    lowered = parent.lower()
    for predicate, source in PARENT_SOURCE_RULES:
        if predicate(lowered):
            return source
    return Source.UNKNOWN


def classify_record(
    record: ProcessRecord,
    lookup: list[ConfigMatch],
    parent_lookup: ParentLookup = parent_command_line,
) -> ClassifiedProcess | None:
    """Classify one record, or return None if it is not an MCP server."""
    if record.pid == os.getpid():
        return None

    line = normalize_separators(record.command_line)
    if not runs_on_runtime(line, lookup) or not looks_like_server(line, lookup):
        return None

    entry = match_config(line, lookup)
    if entry is not None:
        name, source, config_path = entry.name, entry.source, entry.config_path
    else:
        name = extract_server_name(line)
        source = source_from_parent(record.ppid, parent_lookup)
        config_path = None

    start_time = format_elapsed(record.elapsed_raw) if record.elapsed_raw else None
    argv = line.split()

    return ClassifiedProcess(
        pid=record.pid,
        display_name=name,
        command=argv[0] if argv else "",
        command_line=record.command_line,
        ram_usage_mb=(record.rss_kb + 512) // 1024,  # Rounded half up
        ram_percentage=record.memory_percent,
        cpu_percentage=record.cpu_percent or 0.0,
        source=source,
        config_path=config_path,
        start_time=start_time,
    )


def classify(
    records: Iterable[ProcessRecord],
    configs: Iterable[ConfigSnapshot],
    parent_lookup: ParentLookup = parent_command_line,
) -> list[ClassifiedProcess]:
    """Keep the records that are MCP servers and resolve their name and source."""
    lookup = build_lookup(configs)
    classified = []
    for record in records:
        process = classify_record(record, lookup, parent_lookup)
        if process is not None:
            classified.append(process)
    return classified
