"""
Lock watchdog for debugging.

TrackedLock remembers which thread holds it and since when. The
DeadlockDetector thread periodically reports every tracked lock that has
been held for too long, together with the stack of the holding thread.
It only reads lock bookkeeping and never touches the guarded state.
"""

import sys
import threading
import time
import traceback
import weakref
from types import TracebackType

from lightswitch.logging_config import get_logger

logger = get_logger(__name__)

_tracked_locks: "weakref.WeakSet[TrackedLock]" = weakref.WeakSet()
_tracked_locks_guard = threading.Lock()


class TrackedLock:
    """A non-reentrant lock that records its current holder."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self.holder: int | None = None
        self.acquired_at: float | None = None
        with _tracked_locks_guard:
            _tracked_locks.add(self)

    def acquire(self, blocking: bool = True, timeout: float = -1) -> bool:
        acquired = self._lock.acquire(blocking, timeout)
        if acquired:
            self.holder = threading.get_ident()
            self.acquired_at = time.monotonic()
        return acquired

    def release(self) -> None:
        self.holder = None
        self.acquired_at = None
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> "TrackedLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"<TrackedLock {self.name} holder={self.holder}>"


def tracked_locks() -> list[TrackedLock]:
    """Return all live tracked locks."""
    with _tracked_locks_guard:
        return list(_tracked_locks)


def find_stuck_locks(threshold: float, now: float | None = None) -> list[TrackedLock]:
    """
    Find tracked locks held for longer than threshold seconds.

    Args:
        threshold: Maximum hold time considered healthy
        now: Reference time (time.monotonic() if not given)

    Returns:
        The stuck locks
    """
    if now is None:
        now = time.monotonic()

    stuck = []
    for lock in tracked_locks():
        acquired_at = lock.acquired_at
        if acquired_at is not None and now - acquired_at > threshold:
            stuck.append(lock)
    return stuck


class DeadlockDetector:
    """
    Background thread that checks for stuck locks every interval seconds.

    Args:
        interval: Seconds between checks (default: 5)
        threshold: Hold time after which a lock is reported (default: 5)
    """

    def __init__(self, interval: float = 5.0, threshold: float = 5.0) -> None:
        self.interval = interval
        self.threshold = threshold
        self.thread: threading.Thread | None = None
        self.stop_event = threading.Event()

    def check(self) -> int:
        """Run one check and log every stuck lock. Returns the number found."""
        stuck = find_stuck_locks(self.threshold)
        if not stuck:
            return 0

        logger.error("%s potential deadlock(s) detected", len(stuck))
        frames = sys._current_frames()  # pylint: disable=protected-access

        for i, lock in enumerate(stuck):
            holder = lock.holder
            logger.error("Deadlock #%s: lock '%s' held by thread id %s", i, lock.name, holder)
            frame = frames.get(holder) if holder is not None else None
            if frame is not None:
                logger.error("%s", "".join(traceback.format_stack(frame)))

        return len(stuck)

    def start(self) -> None:
        """Start the detector thread."""
        def run() -> None:
            while not self.stop_event.wait(self.interval):
                self.check()

        self.thread = threading.Thread(target=run, name="deadlockd", daemon=True)
        self.thread.start()
        logger.debug("Deadlock detector started")

    def stop(self) -> None:
        """Stop the detector thread."""
        if self.thread:
            self.stop_event.set()
            self.thread.join(timeout=5)
