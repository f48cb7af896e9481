"""Runtime settings for mcptop, resolved once from the environment."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from mcptop.models import Source

logger = logging.getLogger(__name__)

DEFAULT_POLL_RATE = 5.0
DEFAULT_CPU_INTERVAL = 0.5
DEFAULT_LOG_LEVEL = "WARNING"

# Home-relative configuration files, probed in order for every source.
CANDIDATE_PATHS: dict[Source, tuple[str, ...]] = {
    Source.CLAUDE_DESKTOP: (
        "Library/Application Support/Claude/claude_desktop_config.json",
        ".config/claude/claude_desktop_config.json",
        ".config/Claude/claude_desktop_config.json",
        "AppData/Roaming/Claude/claude_desktop_config.json",
    ),
    Source.VSCODE: (
        "Library/Application Support/Code/User/mcp.json",
        ".vscode/mcp.json",
        ".config/Code/User/mcp.json",
        "AppData/Roaming/Code/User/mcp.json",
    ),
    Source.CURSOR: (
        ".cursor/mcp.json",
        "Library/Application Support/Cursor/cursor_desktop_config.json",
        ".config/Cursor/User/mcp.json",
        "AppData/Roaming/Cursor/User/mcp.json",
    ),
    Source.CLAUDE_CODE: (
        ".claude/settings.json",
        ".config/claude-code/settings.json",
        ".claude/settings.local.json",
        ".claude.json",
    ),
}


def resolve_candidate_paths(home: Path) -> dict[Source, tuple[Path, ...]]:
    """Anchor every known configuration path at ``home``."""
    return {
        source: tuple(home / relative for relative in relatives)
        for source, relatives in CANDIDATE_PATHS.items()
    }


@dataclass(slots=True, frozen=True)
class Settings:
    """Immutable settings shared by every discovery cycle."""

    home: Path
    candidate_paths: dict[Source, tuple[Path, ...]] = field(default_factory=dict)
    poll_rate: float = DEFAULT_POLL_RATE
    cpu_interval: float = DEFAULT_CPU_INTERVAL
    log_level: str = DEFAULT_LOG_LEVEL
    sudo_force_kill: bool = False  # macOS: force kills go through sudo

    @classmethod
    def for_home(cls, home: Path, **overrides) -> "Settings":
        """Build settings whose candidate paths all live under ``home``."""
        return cls(home=home, candidate_paths=resolve_candidate_paths(home), **overrides)

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Resolve settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Recognised variables: MCPTOP_HOME, MCPTOP_POLL_RATE,
        MCPTOP_CPU_INTERVAL, MCPTOP_LOG_LEVEL and MCPTOP_SUDO_KILL.
        """
        env = os.environ if environ is None else environ
        home_value = env.get("MCPTOP_HOME")
        home = Path(home_value).expanduser() if home_value else Path.home()

        return cls.for_home(
            home,
            poll_rate=_read_float(env, "MCPTOP_POLL_RATE", DEFAULT_POLL_RATE),
            cpu_interval=min(_read_float(env, "MCPTOP_CPU_INTERVAL", DEFAULT_CPU_INTERVAL), 0.9),
            log_level=normalize_log_level(env.get("MCPTOP_LOG_LEVEL")),
            sudo_force_kill=env.get("MCPTOP_SUDO_KILL", "").lower() in ("1", "true", "yes"),
        )


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive", name, raw)
        return default
    return value


def normalize_log_level(value: str | None) -> str:
    """Upper-case a logging level name, falling back to the default if unknown."""
    if not value:
        return DEFAULT_LOG_LEVEL
    name = value.strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        logger.warning("Ignoring log level %r: not a logging level", value)
        return DEFAULT_LOG_LEVEL
    return name
