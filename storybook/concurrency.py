"""
Job Concurrency
===============
Background execution of pipeline jobs on a bounded thread pool.
HTTP handlers submit and return; workers observe cancellation between phases.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future, wait
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class CancelledException(Exception):
    """A job stopped because its cancellation token was set."""
    pass


class CancellationToken:
    """
    Cooperative cancellation flag shared between a job and its canceller.

    Jobs poll it at phase boundaries (before parsing, between chapters,
    before persisting results); nothing is interrupted mid-phase.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise CancelledException carrying the cancel reason."""
        if self._event.is_set():
            raise CancelledException(self.reason or "cancelled")


class JobWorkerPool:
    """
    ThreadPoolExecutor keyed by job ID.

    Each submitted job gets its own CancellationToken, passed as the first
    argument. A job ID can be tracked once at a time; the entry is dropped
    when the job function returns or raises.

    Example:
        pool = JobWorkerPool(max_workers=2)
        pool.submit(job_id, run_job, job_id)  # run_job(cancel_token, job_id)
        pool.cancel(job_id)
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="storybook-job"
        )
        self._futures: dict[int, Future] = {}
        self._tokens: dict[int, CancellationToken] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, job_id: int, func: Callable[..., Any], *args, **kwargs) -> bool:
        """
        Queue func(cancel_token, *args, **kwargs) for execution.

        Returns:
            True if queued, False if job_id is already tracked

        Raises:
            RuntimeError: If the pool has been shut down
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Worker pool has been shut down")
            if job_id in self._futures:
                return False

            token = CancellationToken()
            self._tokens[job_id] = token
            self._futures[job_id] = self._executor.submit(self._run, job_id, token, func, args, kwargs)

        logger.debug(f"Queued job {job_id}")
        return True

    def _run(self, job_id: int, token: CancellationToken, func, args, kwargs) -> Any:
        started = time.monotonic()
        try:
            return func(token, *args, **kwargs)
        except CancelledException as e:
            logger.info(f"Job {job_id} stopped: {e}")
        except Exception as e:
            logger.error(f"Job {job_id} raised {type(e).__name__}: {e}")
            raise
        finally:
            logger.debug(f"Job {job_id} left the pool after {time.monotonic() - started:.2f}s")
            with self._lock:
                self._futures.pop(job_id, None)
                self._tokens.pop(job_id, None)
        return None

    def cancel(self, job_id: int, reason: str = "cancelled", wait: bool = False, timeout: float = 30.0) -> bool:
        """
        Set the cancellation token of a tracked job.

        Args:
            job_id: Job to cancel
            reason: Text carried by the resulting CancelledException
            wait: Block until the job function returns
            timeout: Maximum seconds to wait

        Returns:
            False if the job is not tracked by this pool
        """
        with self._lock:
            token = self._tokens.get(job_id)
            future = self._futures.get(job_id)
        if token is None:
            return False

        token.cancel(reason)
        if wait and future is not None:
            self._wait_for([future], timeout)
        return True

    def is_tracked(self, job_id: int) -> bool:
        """True while the job is queued or running in this process."""
        with self._lock:
            return job_id in self._futures

    def is_running(self, job_id: int) -> bool:
        with self._lock:
            future = self._futures.get(job_id)
        return future is not None and future.running()

    def wait(self, job_id: int, timeout: Optional[float] = None) -> bool:
        """Block until a job finishes; True if it is no longer tracked."""
        with self._lock:
            future = self._futures.get(job_id)
        return future is None or self._wait_for([future], timeout)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            futures = list(self._futures.values())
        return self._wait_for(futures, timeout)

    def active_count(self) -> int:
        with self._lock:
            return len(self._futures)

    def shutdown(self, wait: bool = True, cancel: bool = True) -> None:
        """
        Stop accepting jobs and release the executor.

        Args:
            wait: Block until running jobs return
            cancel: Set every tracked token first, reason "shutdown", and
                drop queued jobs that no worker has picked up yet
        """
        with self._lock:
            self._closed = True
            tokens = list(self._tokens.values())
        if cancel:
            for token in tokens:
                token.cancel("shutdown")
        self._executor.shutdown(wait=wait, cancel_futures=cancel)

        # Futures cancelled while queued never reach _run's cleanup
        with self._lock:
            for job_id in [job_id for job_id, future in self._futures.items() if future.cancelled()]:
                self._futures.pop(job_id, None)
                self._tokens.pop(job_id, None)

    @staticmethod
    def _wait_for(futures: list[Future], timeout: Optional[float]) -> bool:
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done
