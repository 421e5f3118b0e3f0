"""
Interval timers for background services

Each timer owns a daemon thread that waits on a threading.Event, so stop()
interrupts the wait immediately instead of sleeping out the interval.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalTimer:
    """Runs job every interval_seconds until stopped"""

    def __init__(self, name: str, interval_seconds: float, job: Callable[[], object],
                 run_immediately: bool = False, first_run_after: Optional[float] = None):
        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self.run_immediately = run_immediately
        self.first_run_after = first_run_after
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.stop_event.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self.stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"Timer '{self.name}' started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        thread = self._thread
        if thread is not None and timeout is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info(f"Timer '{self.name}' stopped")

    def _run_job(self) -> None:
        try:
            self.job()
        except Exception as e:
            logger.error(f"Error in timer '{self.name}': {e}")

    def _run(self) -> None:
        stop_event = self.stop_event

        if self.first_run_after is not None:
            if stop_event.wait(self.first_run_after):
                return
            self._run_job()
        elif self.run_immediately:
            self._run_job()

        while not stop_event.wait(self.interval_seconds):
            self._run_job()
