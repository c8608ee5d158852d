"""
Staging-directory garbage collection on a fixed daily schedule.

Default schedule: local midnight + noon. Only files are pruned; directory
structure is left alone so in-flight uploads can keep creating folders.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Sequence

from media_engine.domain.models import (
    DEFAULT_MAX_AGE_HOURS,
    CleanupStats,
    normalize_schedule_hours,
)
from media_engine.security.sandbox import PathSandbox

logger = logging.getLogger(__name__)

MIN_MAX_AGE_HOURS = 1.0


class SchedulerState(str, enum.Enum):
    """Lifecycle of the cleanup timer."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    STOPPED = "stopped"


def next_run_time(now: datetime, schedule_hours: Sequence[int]) -> datetime:
    """Earliest configured hour strictly after ``now`` (rolls over to tomorrow)."""
    candidates = []
    for hour in schedule_hours:
        candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        candidates.append(candidate)
    return min(candidates)


class GarbageCollector:
    """Delete staging files older than a cutoff."""

    def __init__(self, sandbox: PathSandbox, staging_dirs: Sequence[str]):
        self.sandbox = sandbox
        self.staging_dirs = tuple(staging_dirs)

    def run_once(
        self,
        max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
        now: Optional[float] = None,
    ) -> CleanupStats:
        age_hours = max(MIN_MAX_AGE_HOURS, float(max_age_hours))
        cutoff = (time.time() if now is None else now) - age_hours * 3600

        stats = CleanupStats()
        for logical_dir in self.staging_dirs:
            self._sweep(self.sandbox.resolve_directory(logical_dir), cutoff, stats)
        stats.finished_at = datetime.now()

        if stats.deleted_files:
            logger.info(
                "Temp uploads: deleted %s of %s files (%s KB)",
                f"{stats.deleted_files:,}",
                f"{stats.scanned_files:,}",
                f"{round(stats.deleted_bytes / 1024):,}",
            )
        return stats

    def _sweep(self, directory: str | os.PathLike[str], cutoff: float, stats: CleanupStats) -> None:
        try:
            with os.scandir(directory) as iterator:
                entries = list(iterator)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", directory, exc)
            return

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    self._sweep(entry.path, cutoff, stats)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                info = entry.stat(follow_symlinks=False)
            except OSError:
                continue

            stats.scanned_files += 1
            if info.st_mtime >= cutoff:
                continue

            try:
                os.unlink(entry.path)
            except OSError as exc:
                # vanished or locked
                logger.debug("Skipped %s: %s", entry.path, exc)
                continue
            stats.deleted_files += 1
            stats.deleted_bytes += info.st_size


class CleanupScheduler:
    """Single-timer scheduler: a run is re-armed only after the previous one finished."""

    def __init__(
        self,
        collector: GarbageCollector,
        max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
        schedule_hours: Optional[Iterable[int]] = None,
        history_size: int = 20,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.collector = collector
        self.max_age_hours = max_age_hours
        self.schedule_hours = normalize_schedule_hours(schedule_hours)
        self.clock = clock
        self.state = SchedulerState.IDLE
        self.next_run: Optional[datetime] = None
        self.history: Deque[CleanupStats] = deque(maxlen=history_size)

        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = False

    def start(self) -> Optional[datetime]:
        """Arm the first timer. Calling it again while armed changes nothing."""
        with self._lock:
            if not self._stopped and self._timer is not None:
                return self.next_run
            self._stopped = False
        return self.schedule_next()

    def stop(self) -> None:
        """Cancel the pending timer; nothing is re-armed afterwards."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.next_run = None
            self.state = SchedulerState.STOPPED
        logger.info("Temp uploads cleanup stopped")

    def schedule_next(self, now: Optional[datetime] = None) -> Optional[datetime]:
        current = now or self.clock()
        with self._lock:
            if self._stopped:
                return None
            run_at = next_run_time(current, self.schedule_hours)
            delay = max(0.0, (run_at - current).total_seconds())
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(delay, self._fire)
            timer.daemon = True
            self._timer = timer
            self.next_run = run_at
            self.state = SchedulerState.SCHEDULED
            timer.start()
        logger.info("Temp uploads cleanup scheduled for %s", run_at.isoformat(timespec="minutes"))
        return run_at

    def run_once(self, max_age_hours: Optional[float] = None) -> CleanupStats:
        """Manual trigger, independent of the timer."""
        age = self.max_age_hours if max_age_hours is None else max_age_hours
        stats = self.collector.run_once(age)
        self.history.append(stats)
        return stats

    def status(self) -> Dict[str, Any]:
        last = self.history[-1] if self.history else None
        return {
            "state": self.state.value,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "schedule_hours": list(self.schedule_hours),
            "max_age_hours": self.max_age_hours,
            "last_run": last.to_dict() if last else None,
            "runs": len(self.history),
        }

    def _fire(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self.state = SchedulerState.RUNNING
        try:
            self.run_once()
        except Exception:
            logger.exception("Temp uploads cleanup failed")
        finally:
            with self._lock:
                if not self._stopped:
                    self.state = SchedulerState.IDLE
            self.schedule_next()
