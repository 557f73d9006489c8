"""Foreground timer that triggers automatic backups on the configured cadence."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .create import BackupWriter
from .ledger import SettingsStore
from .logs import BackupLogger
from .types import BackupResult, BackupSettings

THRESHOLDS = {
    "daily": timedelta(hours=24),
    "weekly": timedelta(hours=24 * 7),
}


def _local_now() -> datetime:
    return datetime.now().astimezone()


def needs_auto_backup(settings: BackupSettings, now: datetime) -> bool:
    if not settings.auto_backup_enabled:
        return False
    threshold = THRESHOLDS.get(settings.auto_backup_interval)
    if threshold is None:
        return False
    if not settings.last_backup_at:
        return True
    try:
        last = datetime.fromisoformat(settings.last_backup_at)
    except ValueError:
        return True
    if last.tzinfo is None and now.tzinfo is not None:
        last = last.replace(tzinfo=now.tzinfo)
    elif last.tzinfo is not None and now.tzinfo is None:
        now = now.replace(tzinfo=last.tzinfo)
    return now - last >= threshold


class ScheduleGate:
    """Check on a fixed interval whether an automatic backup is due.

    Only runs while the application is open. Automatic backups always use the
    download destination since the folder path may need a consent prompt.
    """

    def __init__(
        self,
        *,
        writer: BackupWriter,
        settings: SettingsStore,
        logger: BackupLogger,
        interval_s: float = 3600.0,
        initial_delay_s: float = 5.0,
        include_assets: bool = False,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._writer = writer
        self._settings = settings
        self._logger = logger
        self._interval_s = float(interval_s)
        self._initial_delay_s = float(initial_delay_s)
        self._include_assets = include_assets
        self._clock = clock
        self._in_flight = threading.Lock()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_checked_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def needs_auto_backup(self, now: Optional[datetime] = None) -> bool:
        return needs_auto_backup(self._settings.load(), now or self._clock())

    # ------------------------------------------------------------------
    def tick(self) -> Optional[BackupResult]:
        """Run one check; returns the backup result if a backup was started."""

        if not self._in_flight.acquire(blocking=False):
            self._logger.info("auto_backup_skipped", reason="in_flight")
            return None
        try:
            now = self._clock()
            self.last_checked_at = now
            if not self.needs_auto_backup(now):
                return None
            self._logger.info("auto_backup_due", checked_at=now.isoformat())
            result = self._writer.run_manual("download", include_assets=self._include_assets, kind="auto")
            if not result.ok:
                self._logger.error("auto_backup_failed", message=result.message)
            return result
        finally:
            self._in_flight.release()

    # ------------------------------------------------------------------
    def _run_loop(self) -> None:
        delay = self._initial_delay_s
        while not self._stop_event.wait(delay):
            try:
                self.tick()
            except Exception as exc:  # keep the timer alive for the next tick
                self._logger.failure("auto_backup_crashed", "schedule", exc)
            delay = self._interval_s

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="backup-schedule", daemon=True)
            self._thread.start()
        self._logger.event(event="schedule_started", phase="schedule", ok=True, interval_s=self._interval_s)

    def stop(self) -> None:
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread:
            thread.join(timeout=2)
        with self._lock:
            self._thread = None


__all__ = ["ScheduleGate", "THRESHOLDS", "needs_auto_backup"]
