"""Resource metrics: CPU sampling, level thresholds and human formatting."""

import logging
import re
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from enum import Enum

import psutil

from mcptop.models import ClassifiedProcess

logger = logging.getLogger(__name__)


class ResourceLevel(Enum):
    """Severity bucket for a resource reading."""

    LOW = "low"
    MODERATE = "moderate"
    MEDIUM = "medium"
    HIGH = "high"


# Inclusive lower bounds in MB, highest first
RAM_THRESHOLDS = (
    (500, ResourceLevel.HIGH),
    (200, ResourceLevel.MEDIUM),
    (100, ResourceLevel.MODERATE),
)

# Exclusive lower bounds in percent, highest first
CPU_THRESHOLDS = (
    (50.0, ResourceLevel.HIGH),
    (20.0, ResourceLevel.MEDIUM),
)


def ram_level(ram_mb: float) -> ResourceLevel:
    """Bucket a RAM reading; each threshold belongs to the higher level."""
    for threshold, level in RAM_THRESHOLDS:
        if ram_mb >= threshold:
            return level
    return ResourceLevel.LOW


def cpu_level(cpu_percent: float) -> ResourceLevel:
    """Bucket a CPU reading; a value equal to a threshold stays in the lower level."""
    for threshold, level in CPU_THRESHOLDS:
        if cpu_percent > threshold:
            return level
    return ResourceLevel.LOW


def format_ram(ram_mb: int) -> str:
    """Format RAM in MB as 'N MB' or 'X.Y GB'."""
    if ram_mb >= 1024:
        return f"{ram_mb / 1024:.1f} GB"
    return f"{ram_mb} MB"


_ELAPSED_RE = re.compile(r"^(?:(\d+)-)?(?:(\d+):)?(\d+):(\d+)$")


def format_elapsed(raw: str) -> str:
    """
    Render a ps elapsed time ('[[DD-]HH:]MM:SS') as a relative age.

    Only the coarsest non-zero unit is shown, days folded into hours.
    Input that does not parse is returned unchanged.
    """
    match = _ELAPSED_RE.match(raw.strip())
    if match is None:
        return raw

    days, hours, minutes, seconds = (int(group) if group else 0 for group in match.groups())
    hours += days * 24

    if hours > 0:
        return f"{hours}h {minutes}m ago"
    if minutes > 0:
        return f"{minutes}m ago"
    if seconds > 0:
        return f"{seconds}s ago"
    return "Just started"


def sample_cpu(pid: int, interval: float = 0.5) -> float:
    """
    Measure a process's instantaneous CPU usage.

    Blocks for ``interval`` seconds. Any failure (process gone, access
    denied, bad pid) yields 0.0.
    """
    try:
        return psutil.Process(pid).cpu_percent(interval=interval)
    except (psutil.Error, ValueError, OSError) as exc:
        logger.debug("CPU sample for %d failed: %s", pid, exc)
        return 0.0


CpuSampler = Callable[[int, float], float]


def enrich_cpu(
    processes: Sequence[ClassifiedProcess],
    sample: CpuSampler = sample_cpu,
    interval: float = 0.5,
    max_workers: int = 16,
    skip_pids: frozenset[int] = frozenset(),
) -> list[ClassifiedProcess]:
    """
    Fill in CPU usage for classified processes.

    Samples run concurrently, one per process, so the whole step costs about
    one ``interval``. Processes in ``skip_pids`` already carry a CPU figure
    from the listing and are left alone. Order is preserved.
    """
    pending = [proc for proc in processes if proc.pid not in skip_pids]
    if not pending:
        return list(processes)

    def _safe_sample(pid: int) -> float:
        try:
            return float(sample(pid, interval))
        except Exception:
            logger.debug("CPU sampler raised for %d", pid, exc_info=True)
            return 0.0

    workers = max(1, min(max_workers, len(pending)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cpu-sample") as pool:
        samples = dict(zip((p.pid for p in pending), pool.map(_safe_sample, (p.pid for p in pending))))

    return [
        replace(proc, cpu_percentage=samples[proc.pid]) if proc.pid in samples else proc
        for proc in processes
    ]
