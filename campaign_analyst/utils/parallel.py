"""
Worker pool with an explicit lifetime.

The pool wraps a joblib ``Parallel`` instance held open as a context manager,
so the workers are spawned once and reused by every ``map`` call until the
pool is closed. There is no module-level pool: whoever needs parallelism gets
a ``WorkerPool`` passed in.

Tasks must be picklable (module-level functions, plain data arguments) when
the ``loky`` or ``multiprocessing`` backend is used.
"""

import logging
from typing import Any, Callable, Iterable, List, Optional, Union

from joblib import Parallel, delayed

from campaign_analyst.config import ParallelBackend

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed-size joblib worker pool, usable as a context manager."""

    def __init__(self, n_jobs: int = 2, backend: Union[ParallelBackend, str] = ParallelBackend.LOKY):
        if n_jobs == 0:
            raise ValueError("n_jobs must be positive or -1")
        self.n_jobs = n_jobs
        self.backend = ParallelBackend(backend)
        self._parallel: Optional[Parallel] = None

    @property
    def is_open(self) -> bool:
        return self._parallel is not None

    def open(self) -> "WorkerPool":
        """Start the workers. Opening an open pool is a no-op."""
        if self._parallel is None:
            self._parallel = Parallel(n_jobs=self.n_jobs, backend=self.backend.value)
            self._parallel.__enter__()
            logger.info(f"Worker pool opened ({self.n_jobs} workers, {self.backend.value} backend)")
        return self

    def close(self) -> None:
        """Stop the workers. Closing a closed pool is a no-op."""
        if self._parallel is not None:
            parallel, self._parallel = self._parallel, None
            parallel.__exit__(None, None, None)
            logger.info("Worker pool closed")

    def __enter__(self) -> "WorkerPool":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def map(self, func: Callable[..., Any], items: Iterable[Any]) -> List[Any]:
        """
        Apply ``func`` to every item on the workers and return results in order.

        Raises:
            RuntimeError: if the pool is not open
        """
        if self._parallel is None:
            raise RuntimeError("WorkerPool.map called on a closed pool")
        return list(self._parallel(delayed(func)(item) for item in items))

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"WorkerPool(n_jobs={self.n_jobs}, backend='{self.backend.value}', {state})"


def parallel_map(pool: Optional[WorkerPool], func: Callable[..., Any], items: Iterable[Any]) -> List[Any]:
    """Map over the pool when one is open, otherwise run serially in-process."""
    if pool is not None and pool.is_open:
        return pool.map(func, items)
    return [func(item) for item in items]


__all__ = ["WorkerPool", "parallel_map"]
