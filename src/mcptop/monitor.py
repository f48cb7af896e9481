"""Discovery cycle and background polling engine for mcptop."""

import logging
import threading
from collections.abc import Callable
from queue import Queue

from mcptop.classifier import ParentLookup, classify
from mcptop.configs import load_configs
from mcptop.metrics import CpuSampler, enrich_cpu, sample_cpu
from mcptop.models import DiscoverySnapshot
from mcptop.process_table import ProcessTable, parent_command_line, select_process_table
from mcptop.settings import Settings

logger = logging.getLogger(__name__)


def discover(
    settings: Settings | None = None,
    table: ProcessTable | None = None,
    parent_lookup: ParentLookup = parent_command_line,
    sample: CpuSampler = sample_cpu,
) -> DiscoverySnapshot:
    """
    Run one full discovery cycle.

    Loads configs, scans the process table, classifies the rows and samples
    CPU for the servers found. OS failures degrade to empty results.
    """
    if settings is None:
        settings = Settings.from_environment()
    if table is None:
        table = select_process_table()

    configs = load_configs(settings)
    scan = table.scan()
    processes = classify(scan.records, configs, parent_lookup)

    # Listings that report CPU themselves need no extra sample
    listed_cpu = frozenset(r.pid for r in scan.records if r.cpu_percent is not None)
    processes = enrich_cpu(
        processes,
        sample=sample,
        interval=settings.cpu_interval,
        skip_pids=listed_cpu,
    )

    logger.debug(
        "Discovered %d servers from %d processes and %d configs",
        len(processes),
        len(scan.records),
        len(configs),
    )
    return DiscoverySnapshot(processes=tuple(processes), configs=tuple(configs), scan_ok=scan.ok)


class ServerMonitor:
    """
    Monitor that runs discovery cycles on a background thread.

    Runs in a daemon thread and pushes snapshots to a thread-safe Queue.
    A failing cycle is logged and the loop keeps going.
    """

    def __init__(
        self,
        update_queue: Queue[DiscoverySnapshot],
        poll_rate: float = 5.0,
        discover_fn: Callable[[], DiscoverySnapshot] = discover,
    ) -> None:
        """
        Initialize the ServerMonitor.

        Args:
            update_queue: Thread-safe queue to push snapshots to.
            poll_rate: Seconds between discovery cycles. Default 5.0s.
            discover_fn: Callable producing one snapshot per cycle.
        """
        self._queue = update_queue
        self._poll_rate = max(0.5, poll_rate)
        self._discover = discover_fn
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.5, value)  # Discovery itself takes ~cpu_interval

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="ServerMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def refresh(self) -> None:
        """Run the next cycle now instead of waiting for the poll interval."""
        self._wake_event.set()

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self._discover())
            except Exception:
                logger.exception("Discovery cycle failed")

            self._wake_event.wait(timeout=self._poll_rate)
            self._wake_event.clear()
