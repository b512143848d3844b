"""Periodic background rescans of the indexed folder."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from filerank.index.indexer import IndexStats
from filerank.models import RescanConfig
from filerank.service import IndexService

LOGGER = logging.getLogger(__name__)

MIN_DELAY_SECONDS = 5.0


class RescanScheduler:
    """Runs incremental passes on the interval stored in the rescan config.

    The config is re-read on every cycle, so enabling, disabling or changing
    the interval takes effect without restarting the scheduler.
    """

    def __init__(
        self,
        service: IndexService,
        *,
        clock: Callable[[], float] = time.time,
        min_delay: float = MIN_DELAY_SECONDS,
    ) -> None:
        self.service = service
        self._clock = clock
        self._min_delay = min_delay
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._forced = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="filerank-rescan", daemon=True
        )
        self._thread.start()
        LOGGER.info("Rescan scheduler started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOGGER.info("Rescan scheduler stopped")

    def trigger(self) -> None:
        """Request a pass right away, even if auto-rescan is disabled."""
        self._forced = True
        self._wake.set()

    def next_delay(self, config: RescanConfig) -> float:
        interval = max(config.rescan_interval_minutes, 1) * 60.0
        if not config.auto_rescan_enabled or config.last_scan_timestamp <= 0:
            return interval
        elapsed = self._clock() - config.last_scan_timestamp
        return max(interval - elapsed, self._min_delay)

    def run_once(self, *, force: bool = False) -> IndexStats | None:
        """Run one pass if it is due; returns ``None`` when skipped."""
        config = self.service.rescan_config()
        if not force and not config.auto_rescan_enabled:
            LOGGER.debug("Auto-rescan disabled")
            return None
        if not config.root:
            LOGGER.info("No indexed folder yet, skipping rescan")
            return None
        LOGGER.info("Rescanning %s", config.root)
        return self.service.index_begin(Path(config.root))

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                delay = self.next_delay(self.service.rescan_config())
            except Exception as exc:
                LOGGER.error("Cannot read rescan configuration: %s", exc)
                delay = self._min_delay
            self._wake.wait(timeout=delay)
            self._wake.clear()
            if self._stop.is_set():
                break
            forced, self._forced = self._forced, False
            try:
                stats = self.run_once(force=forced)
            except Exception as exc:
                LOGGER.exception("Scheduled rescan failed: %s", exc)
                continue
            if stats is not None and not stats.ok:
                LOGGER.warning("Scheduled rescan ended with %s: %s", stats.status, stats.reason)
