# File: src/parktrack/application/debounce.py
"""
Per-driver scan debouncing

Camera callbacks deliver the same QR code many times a second. The debouncer
accepts a scan for a driver when either the debounce interval has passed since
the last accepted scan, or the driver's session status label has changed since
then (a genuine transition always goes through).

Thread safety: each driver has its own record guarded by its own lock, so the
read-modify-write for one driver never blocks scans for another. The registry
lock is only held while looking up or creating a record.

Records are dropped on reset, and once the registry reaches prune_threshold
drivers, any record idle for a full interval is dropped before a new one is
added. A dropped record is marked retired so a caller already holding it
looks the driver up again.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
import logging
import threading
import time


DEFAULT_DEBOUNCE_SECONDS = 3.0
DEFAULT_PRUNE_THRESHOLD = 10_000


@dataclass
class _DriverScanRecord:
    lock: threading.Lock = field(default_factory=threading.Lock)
    seen: bool = False
    last_accepted: float = 0.0
    last_status: Optional[str] = None
    # Set once the record has been dropped from the registry
    retired: bool = False


class ScanDebouncer:
    """
    Suppresses duplicate processing of rapid repeat scans

    Args:
        debounce_seconds: minimum spacing between accepted scans with an unchanged status
        clock: monotonic time source in seconds (injectable for tests)
        prune_threshold: registry size at which records idle for a full
            interval are dropped when a new driver is added
    """

    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: int = DEFAULT_PRUNE_THRESHOLD
    ):
        if debounce_seconds < 0:
            raise ValueError("Debounce interval cannot be negative")
        if prune_threshold <= 0:
            raise ValueError("Prune threshold must be positive")
        self.debounce_seconds = debounce_seconds
        self.prune_threshold = prune_threshold
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._records: Dict[str, _DriverScanRecord] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def tracked_drivers(self) -> int:
        with self._registry_lock:
            return len(self._records)

    def _record_for(self, driver_id: str) -> _DriverScanRecord:
        with self._registry_lock:
            record = self._records.get(driver_id)
            if record is None:
                if len(self._records) >= self.prune_threshold:
                    self._prune_locked()
                record = _DriverScanRecord()
                self._records[driver_id] = record
            return record

    def _prune_locked(self) -> int:
        """Drop records idle for at least one interval; caller holds the registry lock"""
        now = self._clock()
        removed = 0
        for driver_id, record in list(self._records.items()):
            # Never wait on a driver lock while holding the registry lock
            if not record.lock.acquire(blocking=False):
                continue
            try:
                if not record.seen or now - record.last_accepted >= self.debounce_seconds:
                    record.retired = True
                    del self._records[driver_id]
                    removed += 1
            finally:
                record.lock.release()
        if removed:
            self.logger.debug(f"Pruned {removed} idle scan records")
        return removed

    def prune(self) -> int:
        """
        Forget drivers whose last accepted scan is at least one interval old
        Their next scan is accepted either way, so the decision is unchanged.
        Returns: number of records dropped
        """
        with self._registry_lock:
            return self._prune_locked()

    def should_process(self, driver_id: str, status_label: Optional[str]) -> bool:
        """
        Decide whether a scan for driver_id goes through
        Returns: True (and records the decision) or False (nothing recorded)
        """
        while True:
            record = self._record_for(driver_id)
            with record.lock:
                if record.retired:
                    continue

                now = self._clock()
                if record.seen:
                    elapsed = now - record.last_accepted
                    status_changed = record.last_status != status_label
                    if elapsed < self.debounce_seconds and not status_changed:
                        self.logger.debug(
                            f"Suppressed scan for {driver_id}: {elapsed:.2f}s since last, status {status_label}"
                        )
                        return False

                record.seen = True
                record.last_accepted = now
                record.last_status = status_label
                return True

    def time_until_next_scan(self, driver_id: str) -> float:
        """Seconds before a same-status scan would be accepted, 0 if allowed now"""
        with self._registry_lock:
            record = self._records.get(driver_id)
        if record is None:
            return 0.0
        with record.lock:
            if not record.seen or record.retired:
                return 0.0
            remaining = self.debounce_seconds - (self._clock() - record.last_accepted)
            return max(0.0, remaining)

    def reset(self, driver_id: str) -> None:
        """Forget the last accepted scan for one driver"""
        with self._registry_lock:
            record = self._records.pop(driver_id, None)
        if record is None:
            return
        with record.lock:
            record.retired = True

    def clear_all(self) -> None:
        """Drop every driver record"""
        with self._registry_lock:
            records = list(self._records.values())
            self._records = {}
        for record in records:
            with record.lock:
                record.retired = True
        self.logger.info("Scan debounce records cleared")
