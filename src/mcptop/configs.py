"""Loading of MCP server declarations from the tools' configuration files."""

import json
import logging
from pathlib import Path
from typing import Any

from mcptop.models import ConfigSnapshot, ServerDefinition, Source
from mcptop.settings import Settings

logger = logging.getLogger(__name__)

# Keys that may hold the server map, in precedence order. None stands for
# "the whole document".
SERVER_KEYS: dict[Source, tuple[str | None, ...]] = {
    Source.CLAUDE_DESKTOP: ("mcpServers",),
    Source.VSCODE: ("mcpServers", "servers", None),
    Source.CURSOR: ("mcpServers", "servers", None),
    Source.CLAUDE_CODE: ("mcpServers",),
}


def load_configs(settings: Settings | None = None) -> list[ConfigSnapshot]:
    """
    Read every existing configuration file of every known source.

    All candidate paths are read and merged, not just the first one found.
    A file that is missing, unreadable or malformed contributes nothing.
    """
    if settings is None:
        settings = Settings.from_environment()

    snapshots: list[ConfigSnapshot] = []
    for source, paths in settings.candidate_paths.items():
        for path in paths:
            snapshot = load_config_file(source, path)
            if snapshot is not None:
                snapshots.append(snapshot)
    return snapshots


def load_config_file(source: Source, path: Path) -> ConfigSnapshot | None:
    """Parse one configuration file, or return None if it yields nothing."""
    if not path.is_file():
        return None

    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Skipping %s config %s: %s", source.value, path, exc)
        return None

    servers = extract_servers(source, document)
    if servers is None:
        logger.debug("No server map in %s config %s", source.value, path)
        return None

    return ConfigSnapshot(source=source, file_path=str(path), servers=servers)


def extract_servers(source: Source, document: Any) -> dict[str, ServerDefinition] | None:
    """Pick the server map out of a parsed document using the source's precedence."""
    if not isinstance(document, dict):
        return None

    for key in SERVER_KEYS.get(source, ("mcpServers",)):
        if key is None:
            candidate = document
        elif document.get(key) is not None:
            candidate = document[key]
        else:
            continue

        if not isinstance(candidate, dict):
            return None
        return _normalize_servers(candidate)

    return None


def _normalize_servers(raw: dict[str, Any]) -> dict[str, ServerDefinition]:
    servers: dict[str, ServerDefinition] = {}
    for name, entry in raw.items():
        definition = _parse_definition(str(name), entry)
        if definition is not None:
            servers[definition.name] = definition
    return servers


def _parse_definition(name: str, entry: Any) -> ServerDefinition | None:
    # Entries without a local command (remote URL servers, VS Code "inputs")
    # cannot show up in the process table.
    if not isinstance(entry, dict):
        return None
    command = entry.get("command")
    if not isinstance(command, str) or not command:
        return None

    args = entry.get("args") or []
    if not isinstance(args, list):
        args = []
    env = entry.get("env") or {}
    if not isinstance(env, dict):
        env = {}

    return ServerDefinition(
        name=name,
        command=command,
        args=tuple(str(arg) for arg in args),
        env={str(key): str(value) for key, value in env.items()},
    )
