"""Named recurring jobs whose results are handed to subscribers."""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

WorkFn = Callable[[], Any]
Subscriber = Callable[[Any], Any]


class _Job:
    """One named job running on its own thread."""

    def __init__(self, name: str, work: WorkFn, interval_seconds: float, run_lock: threading.Lock):
        self.name = name
        self.work = work
        self.interval_seconds = interval_seconds
        self.subscribers: List[Subscriber] = []
        self._run_lock = run_lock
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, run_immediately: bool = False):
        self._thread = threading.Thread(
            target=self._loop,
            args=(run_immediately,),
            name=f"job-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def cancel(self):
        self._stopped.set()

    def join(self, timeout: Optional[float] = None):
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _loop(self, run_immediately: bool):
        if run_immediately and not self.stopped:
            self.execute()
        # The next wait starts only after the previous run returned.
        while not self._stopped.wait(self.interval_seconds):
            self.execute()

    def execute(self) -> Any:
        """Run the work function once and hand its result to subscribers."""
        with self._run_lock:
            try:
                result = self.work()
            except Exception:
                logger.exception(f"Job '{self.name}' failed")
                return None

            for subscriber in list(self.subscribers):
                try:
                    subscriber(result)
                except Exception:
                    logger.exception(f"Subscriber of job '{self.name}' failed")
            return result


class Scheduler:
    """
    Runs named jobs on fixed intervals.

    A job never overlaps with itself: every run of a job, whether triggered
    by its timer or by ``run_now``, holds a lock kept per job name, so a
    replacement job waits for a run of the job it replaced. Different jobs run
    on separate threads and may overlap each other.
    """

    def __init__(self):
        self._jobs: Dict[str, _Job] = {}
        self._run_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def schedule(self, name: str, work: WorkFn, interval_seconds: float, run_immediately: bool = False):
        """
        Register a job and start its timer.

        The first run happens after one interval, or right away when
        ``run_immediately`` is set. Registering an existing name stops and
        replaces the previous job.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        with self._lock:
            # Shared by every job ever registered under this name.
            run_lock = self._run_locks.setdefault(name, threading.Lock())
            job = _Job(name, work, interval_seconds, run_lock)
            previous = self._jobs.get(name)
            self._jobs[name] = job
        if previous is not None:
            previous.cancel()
            logger.info(f"Job '{name}' replaced")

        job.start(run_immediately)
        logger.info(f"Job '{name}' scheduled every {interval_seconds}s")

    def subscribe(self, name: str, callback: Subscriber):
        """Add a callback receiving each result of the job. Unknown names are ignored."""
        with self._lock:
            job = self._jobs.get(name)
        if job is None:
            logger.warning(f"Cannot subscribe to unknown job '{name}'")
            return
        job.subscribers.append(callback)

    def stop(self, name: str):
        """Cancel a job; a run already in progress is allowed to finish."""
        with self._lock:
            job = self._jobs.pop(name, None)
        if job is None:
            return
        job.cancel()
        logger.info(f"Job '{name}' stopped")

    def stop_all(self, timeout: Optional[float] = None):
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.cancel()
        for job in jobs:
            job.join(timeout)

    def run_now(self, name: str) -> Any:
        """Run a job synchronously, waiting for any run already in progress."""
        with self._lock:
            job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown job '{name}'")
        return job.execute()

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self._jobs
