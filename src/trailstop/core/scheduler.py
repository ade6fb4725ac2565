# file: trailstop/core/scheduler.py

import math
import threading
from typing import Callable, Dict, List, Optional

from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)


class IntervalScheduler:
    """
    Runs periodic ticks outside the engine.

    Every job gets its own daemon thread; a tick always finishes before the
    job waits for the next one, so ticks of the same job never overlap.
    Jobs with an infinite (or non-positive) interval are not scheduled.
    """

    def __init__(self):
        self._jobs: Dict[str, tuple] = {}
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    def add_job(self, name: str, interval_seconds: float, tick: Callable[[], object]) -> bool:
        if interval_seconds is None or math.isinf(interval_seconds) or interval_seconds <= 0:
            logger.info(f"[SCHEDULER] Job '{name}' disabled (interval={interval_seconds}).")
            return False
        self._jobs[name] = (interval_seconds, tick)
        return True

    @property
    def job_names(self) -> List[str]:
        return list(self._jobs)

    def _run_job(self, name: str, interval_seconds: float, tick: Callable[[], object]) -> None:
        logger.info(f"[SCHEDULER] Starting '{name}' every {interval_seconds}s.")
        while not self._stop_event.wait(interval_seconds):
            try:
                tick()
            except Exception as e:
                logger.error(f"[SCHEDULER] Tick '{name}' failed: {e}", exc_info=True)

    def start(self) -> None:
        self._stop_event.clear()
        for name, (interval_seconds, tick) in self._jobs.items():
            thread = threading.Thread(
                target=self._run_job,
                args=(name, interval_seconds, tick),
                daemon=True,
                name=f"tick-{name}",
            )
            self._threads.append(thread)
            thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until stop() is called (or timeout). True when stopped."""
        return self._stop_event.wait(timeout)
