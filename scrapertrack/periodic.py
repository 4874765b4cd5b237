"""Background housekeeping: IPInfo cache expiry, behavior eviction, quota reset.

Each job gets its own daemon thread that waits on a shared stop event, so
``Sweeper.stop()`` wakes every loop immediately instead of waiting for the
next interval. Reads never depend on a sweep having run.
"""

import logging
import threading
from typing import Callable, Dict, List, Tuple

_LOG = logging.getLogger('scrapertrack.periodic')


class Sweeper:
    def __init__(self):
        self._jobs: List[Tuple[str, float, Callable[[], object]]] = []
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._runs: Dict[str, int] = {}

    def add_job(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        with self._lock:
            if self._threads:
                raise RuntimeError('cannot add jobs to a running sweeper')
            self._jobs.append((name, max(0.01, float(interval)), fn))

    @property
    def running(self) -> bool:
        with self._lock:
            return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            self._stop.clear()
            for name, interval, fn in self._jobs:
                t = threading.Thread(
                    target=self._loop, args=(name, interval, fn),
                    name=f'scrapertrack-sweep-{name}', daemon=True,
                )
                self._threads.append(t)
                t.start()
                _LOG.info('sweep[%s]: started interval=%ss', name, interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        with self._lock:
            threads, self._threads = self._threads, []
        for t in threads:
            t.join(timeout)
        if threads:
            _LOG.info('sweeper stopped (%d jobs)', len(threads))

    def run_once(self) -> Dict[str, object]:
        """Run every job synchronously once; returns each job's result."""
        out: Dict[str, object] = {}
        for name, _interval, fn in list(self._jobs):
            out[name] = self._run_job(name, fn)
        return out

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._runs)

    def _run_job(self, name: str, fn: Callable[[], object]) -> object:
        try:
            result = fn()
        except Exception:
            _LOG.exception('sweep[%s]: job failed', name)
            return None
        with self._lock:
            self._runs[name] = self._runs.get(name, 0) + 1
        return result

    def _loop(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        while not self._stop.wait(interval):
            self._run_job(name, fn)
        _LOG.debug('sweep[%s]: loop exit', name)
