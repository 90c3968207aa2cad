"""Fixed-interval scheduling with overlap protection."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Lock, Thread
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IntervalScheduler(Generic[T]):
    """Runs ``job`` every ``interval`` seconds on a worker thread.

    A tick that arrives while the previous run is still in progress is
    skipped rather than queued.
    """

    def __init__(self, job: Callable[[], T], interval: float = 10.0, name: str = "job") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive.")
        self.job = job
        self.interval = interval
        self.name = name
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self.skipped_ticks = 0
        self._running = Lock()
        self._stop = Event()
        self._thread: Optional[Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = Thread(target=self._loop, name=f"{self.name}-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler %s started (every %ss)", self.name, self.interval)

    def tick(self) -> Optional[Future[Optional[T]]]:
        """Submit one run unless the previous one is still in progress."""
        if not self._running.acquire(blocking=False):
            self._record_skip()
            return None
        try:
            return self.executor.submit(self._run_guarded)
        except RuntimeError:
            self._running.release()
            raise

    def trigger(self) -> Optional[T]:
        """Run one guarded cycle in the caller's thread; ``None`` if skipped."""
        if not self._running.acquire(blocking=False):
            self._record_skip()
            return None
        return self._run_guarded()

    def shutdown(self, wait: bool = False) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None
        self.executor.shutdown(wait=wait, cancel_futures=True)

    def _loop(self) -> None:
        next_run = time.monotonic() + self.interval
        while not self._stop.wait(max(0.0, next_run - time.monotonic())):
            next_run += self.interval
            try:
                self.tick()
            except RuntimeError:
                break

    def _run_guarded(self) -> Optional[T]:
        started = time.perf_counter()
        try:
            return self.job()
        except Exception:
            logger.exception("Scheduled job %s failed", self.name)
            return None
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.debug("Job %s finished", self.name, extra={"duration_ms": duration_ms})
            self._running.release()

    def _record_skip(self) -> None:
        self.skipped_ticks += 1
        logger.warning(
            "Skipping tick of %s: previous run still in progress",
            self.name,
            extra={"reason": "overlap"},
        )
