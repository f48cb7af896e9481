"""Termination of discovered server processes."""

import logging
import subprocess
import sys
from collections.abc import Iterable
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

# Sanity bound against malformed input, not the OS pid limit
MAX_PID = 999_999
SUDO_TIMEOUT = 60.0  # seconds, leaves room for a password prompt


@dataclass(slots=True, frozen=True)
class TerminationSummary:
    """Outcome of terminating several processes."""

    killed: int
    failed: int

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0


def is_valid_pid(pid: object) -> bool:
    """Check that ``pid`` is a plausible process id."""
    return isinstance(pid, int) and not isinstance(pid, bool) and 0 < pid < MAX_PID


def terminate(pid: int, force: bool = False, *, elevate: bool = False) -> bool:
    """
    Send a termination signal to a process.

    Args:
        pid: Process to signal. Invalid ids are rejected without any OS call.
        force: Send the non-ignorable kill signal instead of a graceful one.
        elevate: On macOS, deliver a forced kill through ``sudo``, which may
            prompt for a password outside the app.

    Returns:
        True only if the signal was delivered.
    """
    if not is_valid_pid(pid):
        logger.error("Refusing to signal invalid pid %r", pid)
        return False

    if force and elevate and sys.platform == "darwin":
        return _sudo_kill(pid)

    try:
        proc = psutil.Process(pid)
        if force:
            proc.kill()
        else:
            proc.terminate()
    except psutil.NoSuchProcess:
        logger.info("Process %d already exited", pid)
        return False
    except (psutil.Error, OSError) as exc:
        logger.warning("Could not signal process %d: %s", pid, exc)
        return False

    logger.info("Sent %s to process %d", "kill" if force else "terminate", pid)
    return True


def _sudo_kill(pid: int) -> bool:
    try:
        completed = subprocess.run(
            ["sudo", "kill", "-9", str(pid)],
            capture_output=True,
            timeout=SUDO_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("sudo kill for %d failed: %s", pid, exc)
        return False
    return completed.returncode == 0


def terminate_all(pids: Iterable[int], force: bool = False) -> TerminationSummary:
    """Terminate each process in turn; partial failure is reported, not hidden."""
    killed = failed = 0
    for pid in pids:
        if terminate(pid, force):
            killed += 1
        else:
            failed += 1
    return TerminationSummary(killed=killed, failed=failed)


def failure_hint(force: bool, platform: str | None = None) -> str:
    """User guidance after a failed termination."""
    platform = sys.platform if platform is None else platform
    if not force:
        return "Try force killing the process."
    if platform == "darwin":
        return "Force kill may need sudo; make sure a password or Touch ID prompt is available."
    if platform.startswith("win"):
        return "Administrative privileges may be required. Try running as administrator."
    return "The process may have already exited or require elevated privileges."
