"""
Dispatchers - run network calls off the UI thread, apply results on it.

Design:
- A store submits a blocking client call plus success/failure callbacks.
- BackgroundDispatcher runs the call on a worker thread; the completion is
  queued and only applied when the owning thread calls pump(). Store state is
  therefore only ever mutated on one thread, and no store needs a lock.
- ManualDispatcher never runs anything on its own. Jobs wait until run() /
  run_all(), in whatever order the caller picks. Tests use it to deliver
  responses out of request order.
"""

import itertools
import logging
import queue
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JOB_PENDING = 'pending'
JOB_DONE = 'done'
JOB_FAILED = 'failed'

_job_ids = itertools.count(1)


class Job:
    """One submitted network call and its outcome."""

    def __init__(self, fn: Callable, args: tuple, on_success: Optional[Callable],
                 on_failure: Optional[Callable], description: str = ''):
        self.job_id = next(_job_ids)
        self.fn = fn
        self.args = args
        self.on_success = on_success
        self.on_failure = on_failure
        self.description = description or getattr(fn, '__name__', 'job')
        self.state = JOB_PENDING
        self.result: Any = None
        self.error: Optional[BaseException] = None

    def __repr__(self):
        return f"<Job #{self.job_id} {self.description} {self.state}>"


class Dispatcher:
    """Common completion handling; subclasses decide when calls actually run."""

    def submit(self, fn: Callable, *args, on_success: Callable = None,
               on_failure: Callable = None, description: str = '') -> Job:
        raise NotImplementedError

    def pump(self) -> int:
        """Apply queued completions on the calling thread. Returns how many ran."""
        return 0

    def settle(self, timeout: Optional[float] = None) -> int:
        """Finish everything submitted so far (and its follow-ups). For scripts and the CLI."""
        return self.pump()

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        """Release worker resources, if any."""

    @staticmethod
    def _complete(job: Job, result: Any = None, error: Optional[BaseException] = None) -> None:
        if error is None:
            job.state = JOB_DONE
            job.result = result
            logger.debug(f"{job!r} completed")
            if job.on_success:
                job.on_success(result)
        else:
            job.state = JOB_FAILED
            job.error = error
            logger.debug(f"{job!r} failed: {type(error).__name__}: {error}")
            if job.on_failure:
                job.on_failure(error)


class BackgroundDispatcher(Dispatcher):
    """Thread-pool dispatcher. Call pump() from the UI loop, or drain() to block."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='homecare-sync')
        self._completed: "queue.Queue" = queue.Queue()
        self._outstanding: Dict[int, Any] = {}

    def submit(self, fn, *args, on_success=None, on_failure=None, description=''):
        job = Job(fn, args, on_success, on_failure, description)
        future = self._executor.submit(fn, *args)
        self._outstanding[job.job_id] = future
        # runs on the worker thread: only enqueue, never touch store state here
        future.add_done_callback(lambda f, job=job: self._completed.put((job, f)))
        logger.debug(f"Submitted {job!r}")
        return job

    def pump(self) -> int:
        count = 0
        while True:
            try:
                job, future = self._completed.get_nowait()
            except queue.Empty:
                return count
            self._outstanding.pop(job.job_id, None)
            error = future.exception()
            if error is None:
                self._complete(job, result=future.result())
            else:
                self._complete(job, error=error)
            count += 1

    def drain(self, timeout: Optional[float] = None) -> int:
        """Block until every outstanding job (including follow-ups) has been applied."""
        applied = 0
        while self._outstanding or not self._completed.empty():
            futures = list(self._outstanding.values())
            if futures:
                _, not_done = wait(futures, timeout=timeout)
                if not_done:
                    logger.warning(f"drain timed out with {len(not_done)} jobs still running")
                    return applied + self.pump()
            applied += self.pump()
        return applied

    def settle(self, timeout=None):
        return self.drain(timeout)

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)


class ManualDispatcher(Dispatcher):
    """Holds every job until explicitly run. Completions apply immediately on run()."""

    def __init__(self):
        self.pending: List[Job] = []

    def submit(self, fn, *args, on_success=None, on_failure=None, description=''):
        job = Job(fn, args, on_success, on_failure, description)
        self.pending.append(job)
        return job

    def run(self, job: Job) -> Job:
        """Execute one held job now and apply its completion."""
        self.pending.remove(job)
        try:
            result = job.fn(*job.args)
        except Exception as e:
            self._complete(job, error=e)
        else:
            self._complete(job, result=result)
        return job

    def run_all(self) -> int:
        """Run held jobs in submission order, including any they submit while running."""
        count = 0
        while self.pending:
            self.run(self.pending[0])
            count += 1
        return count

    def settle(self, timeout=None):
        return self.run_all()
