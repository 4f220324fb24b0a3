"""
Named one-shot timers. Scheduling a name that is already pending cancels the earlier timer,
so a burst of changes results in a single callback after the last one (debounce).
"""
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List, Optional


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self._callbacks: Dict[str, Callable[[], Any]] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger("TaskManager")

    def schedule_task(self, name: str, callback: Callable[[], Any], delay: float) -> None:
        """Run callback once after delay seconds, replacing any pending task with the same name."""
        with self._lock:
            if name in self.tasks:
                self.logger.debug(f"Cancelling pending task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task)
            # The timer passes itself so a superseded timer that already fired is ignored
            timer.args = (name, timer)
            timer.daemon = True
            timer.scheduled_time = scheduled_time

            self.tasks[name] = timer
            self._callbacks[name] = callback
            timer.start()
            self.logger.debug(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")

    def _take(self, name: str, timer: Optional[Timer]) -> Optional[Callable[[], Any]]:
        """Remove the pending entry for name and return its callback.

        When timer is given, only take the entry if it still belongs to that timer.
        """
        with self._lock:
            current = self.tasks.get(name)
            if current is None or (timer is not None and current is not timer):
                return None
            del self.tasks[name]
            return self._callbacks.pop(name, None)

    def _run_task(self, name: str, timer: Optional[Timer]) -> None:
        callback = self._take(name, timer)
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")

    def cancel(self, name: str) -> bool:
        """Cancel a pending task. Returns True if one was pending."""
        with self._lock:
            timer = self.tasks.pop(name, None)
            self._callbacks.pop(name, None)
        if timer is None:
            return False
        timer.cancel()
        self.logger.debug(f"Cancelled task {name}")
        return True

    def run_now(self, name: str) -> bool:
        """Fire a pending task immediately on the calling thread. Returns True if one was pending."""
        with self._lock:
            timer = self.tasks.get(name)
            if timer is None:
                return False
            timer.cancel()
        callback = self._take(name, timer)
        if callback is None:
            return False
        callback()
        return True

    def is_pending(self, name: str) -> bool:
        with self._lock:
            return name in self.tasks

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return pending timer names and their scheduled run time (for API)."""
        with self._lock:
            timers = list(self.tasks.items())
        return [
            {"name": name, "next_run_at": datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)}
            for name, timer in timers
        ]

    def stop(self) -> None:
        """Cancel all pending tasks without running them."""
        with self._lock:
            timers = list(self.tasks.values())
            self.tasks.clear()
            self._callbacks.clear()
        for timer in timers:
            timer.cancel()
